from fastapi import status


class LibraryError(Exception):
    """Rejected library operation. Raised before any state is changed."""

    status_code = status.HTTP_409_CONFLICT
    code = "library_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvariantViolation(RuntimeError):
    """Stored library state broke one of its invariants. Indicates a bug, never expected at runtime."""


# Not found

class NotFound(LibraryError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class BookNotFound(NotFound):
    code = "book_not_found"

    def __init__(self, book_id: int):
        super().__init__(f"Book {book_id} not found")


class CirculationNotFound(NotFound):
    code = "circulation_not_found"

    def __init__(self, circulation_id: int):
        super().__init__(f"Circulation record {circulation_id} not found")


class ReservationNotFound(NotFound):
    code = "reservation_not_found"

    def __init__(self, reservation_id: int):
        super().__init__(f"Reservation {reservation_id} not found")


class FineNotFound(NotFound):
    code = "fine_not_found"

    def __init__(self, fine_id: int):
        super().__init__(f"Fine {fine_id} not found")


class StudentNotFound(NotFound):
    code = "student_not_found"

    def __init__(self, student_id: int):
        super().__init__(f"Student {student_id} not found")


# Inventory

class NotAvailable(LibraryError):
    code = "not_available"


class OverCapacity(LibraryError):
    code = "over_capacity"


class InvalidBookStatus(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_book_status"


# Circulation

class BookUnavailable(LibraryError):
    code = "book_unavailable"


class BorrowingLimitExceeded(LibraryError):
    code = "borrowing_limit_exceeded"


class DuplicateCirculation(LibraryError):
    code = "duplicate_circulation"


class InvalidDueDate(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_due_date"


class RenewalLimitExceeded(LibraryError):
    code = "renewal_limit_exceeded"


class NotBorrowed(LibraryError):
    code = "not_borrowed"


class AlreadyReturned(LibraryError):
    code = "already_returned"


# Reservations

class BookCurrentlyAvailable(LibraryError):
    code = "book_currently_available"


class DuplicateReservation(LibraryError):
    code = "duplicate_reservation"


class ReservationExpired(LibraryError):
    status_code = status.HTTP_410_GONE
    code = "reservation_expired"


class InvalidReservationState(LibraryError):
    code = "invalid_reservation_state"


# Fines

class InvalidAmount(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_amount"


class ExceedsBalance(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "exceeds_balance"
