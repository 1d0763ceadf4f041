"""
Closed enumerations used by the library models.
"""

import enum

from sqlalchemy import Enum as SAEnum


class BookStatus(str, enum.Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    LOST = "lost"
    DAMAGED = "damaged"
    WITHDRAWN = "withdrawn"


# Flags set by staff that win over the copy count
HELD_BOOK_STATUSES = (BookStatus.LOST, BookStatus.WITHDRAWN)


class BookCondition(str, enum.Enum):
    GOOD = "good"
    POOR = "poor"
    DAMAGED = "damaged"


class CirculationStatus(str, enum.Enum):
    """
    Lifecycle of one issue event.

        BORROWED -> RENEWED* -> RETURNED
        BORROWED/RENEWED -> LOST

    OVERDUE is only derived from the due date for display; rows written by
    this service never carry it.
    """
    BORROWED = "borrowed"
    RENEWED = "renewed"
    RETURNED = "returned"
    OVERDUE = "overdue"
    LOST = "lost"


ACTIVE_CIRCULATION_STATUSES = (CirculationStatus.BORROWED, CirculationStatus.RENEWED)
RETURNABLE_CIRCULATION_STATUSES = ACTIVE_CIRCULATION_STATUSES + (CirculationStatus.OVERDUE,)


class ReservationStatus(str, enum.Enum):
    """
    Status of a reservation.

        PENDING -> AVAILABLE -> FULFILLED (collected)
        PENDING -> EXPIRED (sat in the queue too long)
        AVAILABLE -> EXPIRED (not collected in time)
        PENDING/AVAILABLE -> CANCELLED
    """
    PENDING = "pending"      # In the queue, waiting for a copy
    AVAILABLE = "available"  # Copy held, waiting for collection
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


ACTIVE_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.AVAILABLE)


class FineReason(str, enum.Enum):
    OVERDUE = "overdue"
    LOST = "lost"
    DAMAGED = "damaged"


class FineStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    WAIVED = "waived"


OUTSTANDING_FINE_STATUSES = (FineStatus.PENDING, FineStatus.PARTIAL)


class SettlementKind(str, enum.Enum):
    PAYMENT = "payment"
    WAIVER = "waiver"


class UserRole(str, enum.Enum):
    STUDENT = "student"
    LIBRARIAN = "librarian"
    ADMIN = "admin"


STAFF_ROLES = (UserRole.LIBRARIAN, UserRole.ADMIN)


def enum_column_type(enum_cls, name: str) -> SAEnum:
    """VARCHAR column type storing the enum values, guarded by a CHECK constraint."""
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=20,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
