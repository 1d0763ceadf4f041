import logging
from typing import List, Optional
from sqlalchemy.orm import Session
from school_library.models.book import Book
from school_library.models.enums import (
    ReservationStatus, ACTIVE_RESERVATION_STATUSES, HELD_BOOK_STATUSES, BookStatus
)
from school_library.models.reservation import Reservation
from school_library.models.user import Student
from school_library.services.exceptions import (
    ReservationNotFound, StudentNotFound, BookCurrentlyAvailable, DuplicateReservation,
    ReservationExpired, InvalidReservationState, InvalidBookStatus, InvariantViolation
)
from school_library.services.inventory import InventoryStore
from school_library.services.notifications import NotificationOutbox
from school_library.utils.timezone import now_local, days_after, to_local

logger = logging.getLogger(__name__)


class ReservationQueue:
    """Per-book FIFO waiting list for titles with no free copy.

    Pending reservations of a book always hold positions 1..N. A reservation
    promoted to ``available`` leaves the queue and claims one shelf copy until
    it is fulfilled, cancelled or expires. Mutations of a book's queue must run
    under that book's lock."""

    def __init__(self, db: Session, inventory: InventoryStore, outbox: NotificationOutbox, policy):
        self.db = db
        self.inventory = inventory
        self.outbox = outbox
        self.policy = policy

    # Queries

    def get(self, reservation_id: int) -> Reservation:
        reservation = self.db.query(Reservation).filter(
            Reservation.reservation_id == reservation_id
        ).first()
        if not reservation:
            raise ReservationNotFound(reservation_id)
        return reservation

    def for_student(self, student_id: int, status: Optional[ReservationStatus] = None) -> List[Reservation]:
        query = self.db.query(Reservation).filter(Reservation.student_id == student_id)
        if status:
            query = query.filter(Reservation.status == status)
        return query.order_by(Reservation.reservation_date.desc(), Reservation.reservation_id.desc()).all()

    def queue_for_book(self, book_id: int) -> List[Reservation]:
        """Pending reservations of a book in promotion order."""
        return self.db.query(Reservation).filter(
            Reservation.book_id == book_id,
            Reservation.status == ReservationStatus.PENDING
        ).order_by(Reservation.queue_position.asc(), Reservation.reservation_id.asc()).all()

    def held_for(self, book_id: int, student_id: int) -> Optional[Reservation]:
        """The student's reservation that currently holds a copy of the book, if any."""
        return self.db.query(Reservation).filter(
            Reservation.book_id == book_id,
            Reservation.student_id == student_id,
            Reservation.status == ReservationStatus.AVAILABLE
        ).first()

    def claimed_copies(self, book_id: int) -> int:
        return self.db.query(Reservation).filter(
            Reservation.book_id == book_id,
            Reservation.status == ReservationStatus.AVAILABLE
        ).count()

    def unclaimed_copies(self, book: Book) -> int:
        """Shelf copies not held for a reservation."""
        return max(0, book.available_copies - self.claimed_copies(book.book_id))

    # Operations

    def reserve(self, book_id: int, student_id: int, now=None) -> Reservation:
        now = now or now_local()
        book = self.inventory.lock_book(book_id)

        if not self.db.query(Student).filter(Student.student_id == student_id).first():
            raise StudentNotFound(student_id)

        if book.status in HELD_BOOK_STATUSES:
            raise InvalidBookStatus(f"Book {book_id} is {book.status.value} and cannot be reserved")

        if book.status == BookStatus.AVAILABLE and self.unclaimed_copies(book) > 0:
            raise BookCurrentlyAvailable(
                "Book is currently available. No need to reserve. Please borrow directly."
            )

        existing = self.db.query(Reservation).filter(
            Reservation.book_id == book_id,
            Reservation.student_id == student_id,
            Reservation.status.in_(ACTIVE_RESERVATION_STATUSES)
        ).first()
        if existing:
            raise DuplicateReservation("Student already has an active reservation for this book")

        position = len(self.queue_for_book(book_id)) + 1
        reservation = Reservation(
            book_id=book_id,
            student_id=student_id,
            reservation_date=now,
            expiry_date=days_after(now, self.policy.reservation_pending_days),
            status=ReservationStatus.PENDING,
            queue_position=position,
        )
        self.db.add(reservation)
        self.db.flush()
        self._check_density(book_id)

        self.outbox.queue(
            student_id,
            "Book Reservation Confirmed",
            f'Your reservation for "{book.title}" has been confirmed. You are #{position} in the queue. '
            f"We will notify you when the book becomes available.",
            data={"bookId": book_id, "reservationId": reservation.reservation_id, "queuePosition": position},
        )
        logger.info(f"Reservation {reservation.reservation_id}: student {student_id} queued at #{position} for book {book_id}")
        return reservation

    def advance(self, book_id: int, now=None) -> List[Reservation]:
        """Hand free copies to the head of the queue. A no-op without a free copy or a pending reservation."""
        now = now or now_local()
        book = self.inventory.lock_book(book_id)
        promoted = []

        if book.status in HELD_BOOK_STATUSES:
            return promoted

        while self.unclaimed_copies(book) > 0:
            queue = self.queue_for_book(book_id)
            if not queue:
                break
            reservation = queue[0]
            reservation.status = ReservationStatus.AVAILABLE
            reservation.available_date = now
            reservation.expiry_date = days_after(now, self.policy.reservation_collection_days)
            reservation.queue_position = None
            self.db.flush()
            promoted.append(reservation)

            self.outbox.queue(
                reservation.student_id,
                "Reserved Book Available",
                f'The book "{book.title}" you reserved is now available. Please collect it within '
                f"{self.policy.reservation_collection_days} days or your reservation will expire.",
                data={
                    "bookId": book_id,
                    "reservationId": reservation.reservation_id,
                    "expiryDays": self.policy.reservation_collection_days,
                },
                level="success",
            )
            logger.info(f"Reservation {reservation.reservation_id} promoted to available for book {book_id}")

        if promoted:
            self._renumber(book_id)
        return promoted

    def fulfill(self, reservation_id: int, now=None) -> Reservation:
        now = now or now_local()
        reservation = self.get(reservation_id)

        if reservation.status == ReservationStatus.EXPIRED:
            raise ReservationExpired("Reservation has expired. Please create a new reservation.")
        if reservation.status != ReservationStatus.AVAILABLE:
            raise InvalidReservationState(
                f"Reservation is {reservation.status.value}, only available reservations can be fulfilled"
            )
        if to_local(now) > to_local(reservation.expiry_date):
            raise ReservationExpired("Reservation has expired. Please create a new reservation.")

        reservation.status = ReservationStatus.FULFILLED
        reservation.fulfilled_date = now
        self.db.flush()
        logger.info(f"Reservation {reservation_id} fulfilled")
        return reservation

    def cancel(self, reservation_id: int, cancelled_by: Optional[int] = None,
               reason: Optional[str] = None, now=None) -> Reservation:
        now = now or now_local()
        reservation = self.get(reservation_id)

        if not reservation.is_active:
            raise InvalidReservationState(f"Reservation is {reservation.status.value} and cannot be cancelled")

        was_holding_copy = reservation.status == ReservationStatus.AVAILABLE
        reservation.status = ReservationStatus.CANCELLED
        reservation.cancelled_date = now
        reservation.cancelled_by = cancelled_by
        reservation.cancel_reason = reason
        reservation.queue_position = None
        self.db.flush()
        self._renumber(reservation.book_id)

        self.outbox.queue(
            reservation.student_id,
            "Reservation Cancelled",
            f'Your reservation for "{reservation.book.title}" has been cancelled.',
            data={"bookId": reservation.book_id, "reservationId": reservation_id, "reason": reason},
        )
        logger.info(f"Reservation {reservation_id} cancelled (reason: {reason or 'none given'})")

        if was_holding_copy:
            self.advance(reservation.book_id, now=now)
        return reservation

    def books_with_expired(self, now=None) -> List[int]:
        """Ids of books holding a pending or available reservation past its expiry."""
        now = now or now_local()
        rows = self.db.query(Reservation.book_id).filter(
            Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
            Reservation.expiry_date < now
        ).distinct().all()
        return sorted(row[0] for row in rows)

    def expire_for_book(self, book_id: int, now=None) -> int:
        """Expire the book's stale reservations, close the queue gaps and pass freed copies on."""
        now = now or now_local()
        self.inventory.lock_book(book_id)
        stale = self.db.query(Reservation).filter(
            Reservation.book_id == book_id,
            Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
            Reservation.expiry_date < now
        ).all()

        for reservation in stale:
            reservation.status = ReservationStatus.EXPIRED
            reservation.queue_position = None
            self.outbox.queue(
                reservation.student_id,
                "Reservation Expired",
                f'Your reservation for "{reservation.book.title}" has expired as it was not collected within '
                f"the specified time. Please create a new reservation if you still need the book.",
                data={"bookId": book_id, "reservationId": reservation.reservation_id},
                level="warning",
            )
            logger.info(f"Reservation {reservation.reservation_id} for book {book_id} expired")

        if stale:
            self.db.flush()
            self._renumber(book_id)
            self.advance(book_id, now=now)
        return len(stale)

    def expire_sweep(self, now=None) -> int:
        now = now or now_local()
        return sum(self.expire_for_book(book_id, now=now) for book_id in self.books_with_expired(now))

    # Queue positions

    def _renumber(self, book_id: int):
        """Reassign 1..N to the pending reservations of a book, keeping their relative order."""
        for position, reservation in enumerate(self.queue_for_book(book_id), start=1):
            if reservation.queue_position != position:
                reservation.queue_position = position
        self.db.flush()
        self._check_density(book_id)

    def _check_density(self, book_id: int):
        positions = sorted(
            row[0] for row in self.db.query(Reservation.queue_position).filter(
                Reservation.book_id == book_id,
                Reservation.status == ReservationStatus.PENDING
            ).all()
        )
        if positions != list(range(1, len(positions) + 1)):
            raise InvariantViolation(f"Reservation queue of book {book_id} is not dense: {positions}")
