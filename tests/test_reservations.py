import pytest

from school_library.models.enums import ReservationStatus
from school_library.services.exceptions import (
    BookCurrentlyAvailable, DuplicateReservation, ReservationExpired, InvalidReservationState,
    BookUnavailable, ReservationNotFound
)
from conftest import at


@pytest.fixture
def borrowed_book(library, make_book, students, staff):
    """A single-copy book out with the first student."""
    book = make_book(copies=1)
    circulation = library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    return book, circulation


def positions(library, book_id):
    return [(r.student_id, r.queue_position) for r in library.book_queue(book_id)]


def test_reserve_available_book_is_rejected(library, make_book, students):
    book = make_book(copies=1)
    with pytest.raises(BookCurrentlyAvailable):
        library.reserve(book.book_id, students[0].student_id, now=at(0))


def test_reserve_queues_in_order(library, borrowed_book, students):
    book, _ = borrowed_book
    first = library.reserve(book.book_id, students[1].student_id, now=at(1))
    second = library.reserve(book.book_id, students[2].student_id, now=at(1, hours=1))

    assert first.status == ReservationStatus.PENDING
    assert (first.queue_position, second.queue_position) == (1, 2)
    assert (first.expiry_date.date() - at(1).date()).days == 30


def test_duplicate_reservation(library, borrowed_book, students):
    book, _ = borrowed_book
    library.reserve(book.book_id, students[1].student_id, now=at(1))
    with pytest.raises(DuplicateReservation):
        library.reserve(book.book_id, students[1].student_id, now=at(2))
    assert positions(library, book.book_id) == [(students[1].student_id, 1)]


def test_return_promotes_head_of_queue(library, borrowed_book, students, staff):
    book, circulation = borrowed_book
    head = library.reserve(book.book_id, students[1].student_id, now=at(1))
    library.reserve(book.book_id, students[2].student_id, now=at(2))

    library.return_book(circulation.circulation_id, staff.user_id, now=at(5))

    head = library.get_reservation(head.reservation_id)
    assert head.status == ReservationStatus.AVAILABLE
    assert head.queue_position is None
    assert head.available_date.date() == at(5).date()
    assert (head.expiry_date.date() - at(5).date()).days == 3
    assert positions(library, book.book_id) == [(students[2].student_id, 1)]


def test_advance_without_free_copy_is_noop(library, borrowed_book, students):
    book, _ = borrowed_book
    library.reserve(book.book_id, students[1].student_id, now=at(1))
    assert library.advance_queue(book.book_id, now=at(2)) == []
    assert library.advance_queue(book.book_id, now=at(2)) == []
    assert positions(library, book.book_id) == [(students[1].student_id, 1)]


def test_held_copy_only_goes_to_holder(library, borrowed_book, students, staff):
    book, circulation = borrowed_book
    held = library.reserve(book.book_id, students[1].student_id, now=at(1))
    library.return_book(circulation.circulation_id, staff.user_id, now=at(5))

    with pytest.raises(BookUnavailable):
        library.issue(book.book_id, students[2].student_id, staff.user_id, now=at(6))
    with pytest.raises(DuplicateReservation):
        library.reserve(book.book_id, students[1].student_id, now=at(6))

    library.issue(book.book_id, students[1].student_id, staff.user_id, now=at(6))
    held = library.get_reservation(held.reservation_id)
    assert held.status == ReservationStatus.FULFILLED
    assert held.fulfilled_date.date() == at(6).date()


def test_fulfill_after_collection_window(library, borrowed_book, students, staff):
    book, circulation = borrowed_book
    held = library.reserve(book.book_id, students[1].student_id, now=at(1))
    library.return_book(circulation.circulation_id, staff.user_id, now=at(5))

    with pytest.raises(ReservationExpired):
        library.fulfill_reservation(held.reservation_id, now=at(9))
    assert library.get_reservation(held.reservation_id).status == ReservationStatus.AVAILABLE


def test_fulfill_pending_reservation(library, borrowed_book, students):
    book, _ = borrowed_book
    pending = library.reserve(book.book_id, students[1].student_id, now=at(1))
    with pytest.raises(InvalidReservationState):
        library.fulfill_reservation(pending.reservation_id, now=at(2))


def test_cancel_closes_gap_in_original_order(library, borrowed_book, students):
    book, _ = borrowed_book
    reservations = [library.reserve(book.book_id, s.student_id, now=at(1)) for s in students[1:4]]

    cancelled = library.cancel_reservation(reservations[1].reservation_id, reason="No longer needed", now=at(2))

    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.queue_position is None
    assert positions(library, book.book_id) == [(students[1].student_id, 1), (students[3].student_id, 2)]


def test_cancel_twice(library, borrowed_book, students):
    book, _ = borrowed_book
    reservation = library.reserve(book.book_id, students[1].student_id, now=at(1))
    library.cancel_reservation(reservation.reservation_id, now=at(2))
    with pytest.raises(InvalidReservationState):
        library.cancel_reservation(reservation.reservation_id, now=at(3))


def test_cancel_held_reservation_passes_copy_on(library, borrowed_book, students, staff):
    book, circulation = borrowed_book
    first = library.reserve(book.book_id, students[1].student_id, now=at(1))
    second = library.reserve(book.book_id, students[2].student_id, now=at(1))
    library.return_book(circulation.circulation_id, staff.user_id, now=at(5))

    library.cancel_reservation(first.reservation_id, cancelled_by=staff.user_id, now=at(6))

    assert library.get_reservation(second.reservation_id).status == ReservationStatus.AVAILABLE
    assert library.book_queue(book.book_id) == []


def test_expiry_sweep_moves_queue_along(library, borrowed_book, students, staff):
    book, circulation = borrowed_book
    first = library.reserve(book.book_id, students[1].student_id, now=at(1))
    second = library.reserve(book.book_id, students[2].student_id, now=at(1))
    library.return_book(circulation.circulation_id, staff.user_id, now=at(5))

    assert library.run_reservation_sweep(now=at(7)) == 0
    assert library.run_reservation_sweep(now=at(9)) == 1
    assert library.run_reservation_sweep(now=at(9)) == 0

    assert library.get_reservation(first.reservation_id).status == ReservationStatus.EXPIRED
    assert library.get_reservation(second.reservation_id).status == ReservationStatus.AVAILABLE


def test_expiry_sweep_drops_stale_pending(library, borrowed_book, students):
    book, _ = borrowed_book
    stale = library.reserve(book.book_id, students[1].student_id, now=at(1))
    fresh = library.reserve(book.book_id, students[2].student_id, now=at(20))

    assert library.run_reservation_sweep(now=at(32)) == 1

    assert library.get_reservation(stale.reservation_id).status == ReservationStatus.EXPIRED
    assert library.get_reservation(fresh.reservation_id).queue_position == 1


def test_student_reservations(library, borrowed_book, students):
    book, _ = borrowed_book
    reservation = library.reserve(book.book_id, students[1].student_id, now=at(1))
    assert [r.reservation_id for r in library.student_reservations(students[1].student_id)] == [reservation.reservation_id]
    assert library.student_reservations(students[1].student_id, ReservationStatus.CANCELLED) == []


def test_unknown_reservation(library):
    with pytest.raises(ReservationNotFound):
        library.cancel_reservation(77, now=at(0))
