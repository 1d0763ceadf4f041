import logging
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from school_library.models.circulation import Circulation
from school_library.models.enums import (
    BookCondition, CirculationStatus, ACTIVE_CIRCULATION_STATUSES, RETURNABLE_CIRCULATION_STATUSES,
    HELD_BOOK_STATUSES
)
from school_library.models.user import Student
from school_library.services.exceptions import (
    CirculationNotFound, StudentNotFound, BookUnavailable, BorrowingLimitExceeded, DuplicateCirculation,
    InvalidDueDate, RenewalLimitExceeded, NotBorrowed, AlreadyReturned
)
from school_library.services.fines import FineLedger
from school_library.services.inventory import InventoryStore
from school_library.services.reservations import ReservationQueue
from school_library.utils.timezone import now_local, days_after, to_local

logger = logging.getLogger(__name__)


class CirculationLedger:
    """Issue, renewal and return of books, one ``Circulation`` row per issue event."""

    def __init__(self, db: Session, inventory: InventoryStore, reservations: ReservationQueue,
                 fines: FineLedger, policy):
        self.db = db
        self.inventory = inventory
        self.reservations = reservations
        self.fines = fines
        self.policy = policy

    # Queries

    def get(self, circulation_id: int) -> Circulation:
        circulation = self.db.query(Circulation).filter(
            Circulation.circulation_id == circulation_id
        ).first()
        if not circulation:
            raise CirculationNotFound(circulation_id)
        return circulation

    def _lock(self, circulation_id: int) -> Circulation:
        """Lock the circulation's book, then re-read the circulation under a row lock.

        Status checks made after this see the latest committed state, and every
        change to the loan is ordered behind the book lock like issue and reserve."""
        book_id = self.get(circulation_id).book_id
        self.inventory.lock_book(book_id)
        return (
            self.db.query(Circulation)
            .filter(Circulation.circulation_id == circulation_id)
            .populate_existing()
            .with_for_update()
            .one()
        )

    def active_for_student(self, student_id: int) -> List[Circulation]:
        return self.db.query(Circulation).filter(
            Circulation.student_id == student_id,
            Circulation.status.in_(ACTIVE_CIRCULATION_STATUSES)
        ).order_by(Circulation.due_date.asc()).all()

    def history_for_student(self, student_id: int) -> List[Circulation]:
        return self.db.query(Circulation).filter(
            Circulation.student_id == student_id
        ).order_by(Circulation.issue_date.desc(), Circulation.circulation_id.desc()).all()

    def list_overdue(self, now=None) -> List[Circulation]:
        now = now or now_local()
        candidates = self.db.query(Circulation).filter(
            Circulation.status.in_(ACTIVE_CIRCULATION_STATUSES),
            Circulation.due_date < now
        ).order_by(Circulation.due_date.asc()).all()
        return [c for c in candidates if c.days_overdue(now) > 0]

    def check_borrowing_limit(self, student_id: int) -> Dict[str, int]:
        current = len(self.active_for_student(student_id))
        limit = self.policy.borrowing_limit
        return {
            "canBorrow": current < limit,
            "currentCount": current,
            "limit": limit,
            "remaining": max(0, limit - current),
        }

    def days_overdue(self, circulation_id: int, now=None) -> int:
        return self.get(circulation_id).days_overdue(now or now_local())

    # Operations

    def issue(self, book_id: int, student_id: int, issued_by: int, due_date: Optional[datetime] = None,
              condition: BookCondition = BookCondition.GOOD, now=None) -> Circulation:
        now = now or now_local()
        book = self.inventory.lock_book(book_id)

        if not self.db.query(Student).filter(Student.student_id == student_id).first():
            raise StudentNotFound(student_id)

        held = self.reservations.held_for(book_id, student_id)
        if held is not None:
            # A copy is already set aside for this student
            can_take = book.available_copies > 0 and book.status not in HELD_BOOK_STATUSES
        else:
            can_take = self.inventory._is_available(book) and self.reservations.unclaimed_copies(book) > 0
        if not can_take:
            raise BookUnavailable("Book is not available for borrowing")

        active = self.active_for_student(student_id)
        if len(active) >= self.policy.borrowing_limit:
            raise BorrowingLimitExceeded(
                f"Student has reached the maximum borrowing limit of {self.policy.borrowing_limit} books"
            )
        if any(c.book_id == book_id for c in active):
            raise DuplicateCirculation("Student already has this book checked out")

        if due_date is not None:
            due_date = to_local(due_date)
            if due_date <= now:
                raise InvalidDueDate("Due date must be after the issue date")
        else:
            due_date = days_after(now, self.policy.borrowing_period_days)

        self.inventory.decrement_available(book_id)
        circulation = Circulation(
            book_id=book_id,
            student_id=student_id,
            issue_date=now,
            due_date=due_date,
            status=CirculationStatus.BORROWED,
            renewal_count=0,
            max_renewals=self.policy.max_renewals,
            condition_on_issue=condition,
            fine=0,
            fine_paid=False,
            issued_by=issued_by,
        )
        self.db.add(circulation)
        self.db.flush()

        if held is not None:
            self.reservations.fulfill(held.reservation_id, now=now)

        logger.info(
            f"Circulation {circulation.circulation_id}: book {book_id} issued to student {student_id} "
            f"by user {issued_by}, due {due_date.date()}"
        )
        return circulation

    def renew(self, circulation_id: int, now=None) -> Circulation:
        now = now or now_local()
        circulation = self._lock(circulation_id)

        if circulation.status not in ACTIVE_CIRCULATION_STATUSES:
            raise NotBorrowed(f"Circulation is {circulation.status.value}, only borrowed books can be renewed")
        if circulation.renewal_count >= circulation.max_renewals:
            raise RenewalLimitExceeded(
                f"Book cannot be renewed. Maximum of {circulation.max_renewals} renewals reached"
            )

        circulation.renewal_count += 1
        circulation.due_date = days_after(now, self.policy.borrowing_period_days)
        circulation.status = CirculationStatus.RENEWED
        self.db.flush()
        logger.info(
            f"Circulation {circulation_id} renewed ({circulation.renewal_count}/{circulation.max_renewals}), "
            f"due {circulation.due_date.date()}"
        )
        return circulation

    def return_book(self, circulation_id: int, returned_by: int, condition: Optional[BookCondition] = None,
                    now=None) -> Circulation:
        """Close the circulation, charge any fine, put the copy back and serve the reservation queue."""
        now = now or now_local()
        circulation = self._lock(circulation_id)

        if circulation.return_date is not None or circulation.status in (CirculationStatus.RETURNED, CirculationStatus.LOST):
            raise AlreadyReturned("Book has already been returned")
        if circulation.status not in RETURNABLE_CIRCULATION_STATUSES:
            raise NotBorrowed(f"Circulation is {circulation.status.value}")

        days_overdue = circulation.days_overdue(now)
        if days_overdue > 0:
            self.fines.open_or_update_overdue_fine(circulation, days_overdue, self.policy.daily_fine_rate)

        circulation.return_date = now
        circulation.returned_by = returned_by
        circulation.condition_on_return = condition
        circulation.status = CirculationStatus.RETURNED
        self.db.flush()

        if condition == BookCondition.DAMAGED and circulation.condition_on_issue != BookCondition.DAMAGED:
            self.fines.open_damaged_fine(circulation)

        self.inventory.increment_available(circulation.book_id)
        self.reservations.advance(circulation.book_id, now=now)

        logger.info(
            f"Circulation {circulation_id} returned by user {returned_by}, "
            f"{days_overdue} days overdue, condition {condition.value if condition else 'unrecorded'}"
        )
        return circulation

    def mark_lost(self, circulation_id: int, reported_by: int, now=None) -> Circulation:
        """Close a loan whose copy will not come back: final overdue fine, replacement fine, copy written off."""
        now = now or now_local()
        circulation = self._lock(circulation_id)

        if circulation.return_date is not None or circulation.status in (CirculationStatus.RETURNED, CirculationStatus.LOST):
            raise AlreadyReturned("Circulation is already closed")

        days_overdue = circulation.days_overdue(now)
        if days_overdue > 0:
            self.fines.open_or_update_overdue_fine(circulation, days_overdue, self.policy.daily_fine_rate)

        book = self.inventory.get_book(circulation.book_id)
        self.fines.open_lost_fine(circulation, book.price)

        circulation.status = CirculationStatus.LOST
        circulation.returned_by = reported_by
        circulation.remarks = f"Reported lost on {now.date()}"
        self.db.flush()
        self.inventory.write_off_copy(circulation.book_id)

        logger.info(f"Circulation {circulation_id} marked lost by user {reported_by}")
        return circulation

    def overdue_sweep(self, now=None) -> int:
        """Materialize or refresh the overdue fine of every outstanding past-due loan. Safe to re-run."""
        now = now or now_local()
        candidates = self.db.query(Circulation).filter(
            Circulation.status.in_(ACTIVE_CIRCULATION_STATUSES),
            Circulation.due_date < now
        ).with_for_update().all()

        refreshed = 0
        for circulation in candidates:
            days_overdue = circulation.days_overdue(now)
            if days_overdue <= 0:
                continue
            self.fines.open_or_update_overdue_fine(circulation, days_overdue, self.policy.daily_fine_rate)
            refreshed += 1

        logger.info(f"Overdue sweep refreshed {refreshed} fines")
        return refreshed
