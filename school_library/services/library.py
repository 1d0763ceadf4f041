import logging
from contextlib import contextmanager, nullcontext
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from fastapi import Depends
from sqlalchemy.orm import Session
from school_library.config import settings
from school_library.database import get_db
from school_library.models.book import Book
from school_library.models.circulation import Circulation
from school_library.models.enums import BookCondition, BookStatus, FineStatus, ReservationStatus
from school_library.models.fine import LibraryFine
from school_library.models.reservation import Reservation
from school_library.services.circulation import CirculationLedger
from school_library.services.fines import FineLedger
from school_library.services.inventory import InventoryStore
from school_library.services.notifications import NotificationOutbox, NotificationSink, notification_service
from school_library.services.reservations import ReservationQueue
from school_library.utils.locks import book_locks
from school_library.utils.timezone import now_local

logger = logging.getLogger(__name__)


class LibraryService:
    """Entry point for every library operation.

    Each mutating call is one transaction: it holds the book's in-process
    lock, commits on success and rolls back on any error. Notifications
    raised along the way go out only after the commit."""

    def __init__(self, db: Session, sink: Optional[NotificationSink] = None, policy=None):
        self.db = db
        self.policy = policy or settings
        self.outbox = NotificationOutbox(db, sink if sink is not None else notification_service)
        self.inventory = InventoryStore(db)
        self.fines = FineLedger(db, self.outbox, self.policy)
        self.reservations = ReservationQueue(db, self.inventory, self.outbox, self.policy)
        self.circulation = CirculationLedger(db, self.inventory, self.reservations, self.fines, self.policy)

    @contextmanager
    def _transaction(self, book_id: Optional[int] = None):
        with book_locks.hold(book_id) if book_id is not None else nullcontext():
            try:
                yield
                self.db.commit()
            except Exception:
                self.db.rollback()
                self.outbox.discard()
                raise
        self.outbox.flush()

    # Books

    def add_book(self, accession_number: str, title: str, author: str, copies: int = 1,
                 price: Optional[Decimal] = None, **details) -> Book:
        with self._transaction():
            book = self.inventory.add_book(accession_number, title, author, copies=copies, price=price, **details)
        return book

    def get_book(self, book_id: int) -> Book:
        return self.inventory.get_book(book_id)

    def search_books(self, search: Optional[str] = None, category: Optional[str] = None,
                     status: Optional[BookStatus] = None, page: int = 1, limit: int = 20) -> Tuple[List[Book], int]:
        return self.inventory.search_books(search, category, status, page, limit)

    def flag_book(self, book_id: int, status: Optional[BookStatus], now=None) -> Book:
        """Flag a book lost/withdrawn, or clear the flag. Clearing hands any free copies to the queue."""
        now = now or now_local()
        with self._transaction(book_id):
            book = self.inventory.flag_status(book_id, status)
            if status is None:
                self.reservations.advance(book_id, now=now)
        return book

    def book_queue(self, book_id: int) -> List[Reservation]:
        self.inventory.get_book(book_id)
        return self.reservations.queue_for_book(book_id)

    # Circulation

    def issue(self, book_id: int, student_id: int, issued_by: int, due_date=None,
              condition: BookCondition = BookCondition.GOOD, now=None) -> Circulation:
        with self._transaction(book_id):
            circulation = self.circulation.issue(
                book_id, student_id, issued_by, due_date=due_date, condition=condition, now=now
            )
        return circulation

    def renew(self, circulation_id: int, now=None) -> Circulation:
        book_id = self.circulation.get(circulation_id).book_id
        with self._transaction(book_id):
            circulation = self.circulation.renew(circulation_id, now=now)
        return circulation

    def return_book(self, circulation_id: int, returned_by: int, condition: Optional[BookCondition] = None,
                    now=None) -> Circulation:
        book_id = self.circulation.get(circulation_id).book_id
        with self._transaction(book_id):
            circulation = self.circulation.return_book(circulation_id, returned_by, condition=condition, now=now)
        return circulation

    def mark_lost(self, circulation_id: int, reported_by: int, now=None) -> Circulation:
        book_id = self.circulation.get(circulation_id).book_id
        with self._transaction(book_id):
            circulation = self.circulation.mark_lost(circulation_id, reported_by, now=now)
        return circulation

    def get_circulation(self, circulation_id: int) -> Circulation:
        return self.circulation.get(circulation_id)

    def days_overdue(self, circulation_id: int, now=None) -> int:
        return self.circulation.days_overdue(circulation_id, now=now)

    def active_circulations(self, student_id: int) -> List[Circulation]:
        return self.circulation.active_for_student(student_id)

    def circulation_history(self, student_id: int) -> List[Circulation]:
        return self.circulation.history_for_student(student_id)

    def overdue_circulations(self, now=None) -> List[Circulation]:
        return self.circulation.list_overdue(now=now)

    def borrowing_limit(self, student_id: int) -> Dict[str, Any]:
        return self.circulation.check_borrowing_limit(student_id)

    # Reservations

    def reserve(self, book_id: int, student_id: int, now=None) -> Reservation:
        with self._transaction(book_id):
            reservation = self.reservations.reserve(book_id, student_id, now=now)
        return reservation

    def cancel_reservation(self, reservation_id: int, cancelled_by: Optional[int] = None,
                           reason: Optional[str] = None, now=None) -> Reservation:
        book_id = self.reservations.get(reservation_id).book_id
        with self._transaction(book_id):
            reservation = self.reservations.cancel(reservation_id, cancelled_by=cancelled_by, reason=reason, now=now)
        return reservation

    def fulfill_reservation(self, reservation_id: int, now=None) -> Reservation:
        book_id = self.reservations.get(reservation_id).book_id
        with self._transaction(book_id):
            reservation = self.reservations.fulfill(reservation_id, now=now)
        return reservation

    def advance_queue(self, book_id: int, now=None) -> List[Reservation]:
        with self._transaction(book_id):
            promoted = self.reservations.advance(book_id, now=now)
        return promoted

    def get_reservation(self, reservation_id: int) -> Reservation:
        return self.reservations.get(reservation_id)

    def student_reservations(self, student_id: int, status: Optional[ReservationStatus] = None) -> List[Reservation]:
        return self.reservations.for_student(student_id, status)

    # Fines

    def record_payment(self, fine_id: int, amount, method: str, transaction_id: Optional[str] = None,
                       recorded_by: Optional[int] = None, now=None) -> LibraryFine:
        with self._transaction():
            fine = self.fines.record_payment(
                fine_id, amount, method, transaction_id=transaction_id, recorded_by=recorded_by, now=now
            )
        return fine

    def waive_fine(self, fine_id: int, amount, waived_by: int, reason: str, now=None) -> LibraryFine:
        with self._transaction():
            fine = self.fines.waive(fine_id, amount, waived_by, reason, now=now)
        return fine

    def get_fine(self, fine_id: int) -> LibraryFine:
        return self.fines.get(fine_id)

    def student_fines(self, student_id: int, status: Optional[FineStatus] = None) -> List[LibraryFine]:
        return self.fines.for_student(student_id, status)

    def outstanding_fines(self, student_id: int) -> Tuple[List[LibraryFine], Decimal]:
        fines = self.fines.outstanding_for_student(student_id)
        return fines, self.fines.total_outstanding(student_id)

    # Sweeps

    def run_overdue_sweep(self, now=None) -> int:
        now = now or now_local()
        with self._transaction():
            refreshed = self.circulation.overdue_sweep(now=now)
        return refreshed

    def run_reservation_sweep(self, now=None) -> int:
        """Expire stale reservations, one transaction per book so a failure stays local to that book."""
        now = now or now_local()
        expired = 0
        for book_id in self.reservations.books_with_expired(now):
            with self._transaction(book_id):
                expired += self.reservations.expire_for_book(book_id, now=now)
        logger.info(f"Reservation sweep expired {expired} reservations")
        return expired


def get_library(db: Session = Depends(get_db)) -> LibraryService:
    return LibraryService(db)
