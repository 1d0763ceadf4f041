"""Serialization of work on the same book and the same fine."""
import threading
from decimal import Decimal

import pytest

from school_library.config import settings
from school_library.database import SessionLocal
from school_library.models.enums import CirculationStatus, FineStatus
from school_library.services.exceptions import AlreadyReturned, BookUnavailable
from school_library.services.library import LibraryService
from school_library.utils.locks import KeyedLock
from conftest import RecordingSink, at


def other_worker():
    """A second service with its own session, as another request or process would have."""
    session = SessionLocal()
    return session, LibraryService(session, sink=RecordingSink(), policy=settings)


def test_keyed_lock_serializes_same_key_only():
    locks = KeyedLock()
    order = []
    entered = threading.Event()
    release = threading.Event()

    def first():
        with locks.hold(1):
            order.append("first-in")
            entered.set()
            release.wait(5)
            order.append("first-out")

    def second():
        entered.wait(5)
        with locks.hold(1):
            order.append("second-in")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    entered.wait(5)
    with locks.hold(2):
        order.append("other-key")
    release.set()
    for thread in threads:
        thread.join(5)

    assert order == ["first-in", "other-key", "first-out", "second-in"]
    assert len(locks) == 0


def test_keyed_lock_released_after_error():
    locks = KeyedLock()
    with pytest.raises(ValueError):
        with locks.hold("book"):
            raise ValueError("boom")
    assert len(locks) == 0
    with locks.hold("book"):
        pass


def test_last_copy_goes_to_exactly_one_thread(library, make_book, students, staff):
    book = make_book(copies=1)
    book_id = book.book_id
    staff_id = staff.user_id
    student_ids = [s.student_id for s in students]
    start = threading.Barrier(len(student_ids))
    results = {}
    sessions = []

    def borrow(student_id):
        session, worker = other_worker()
        sessions.append(session)
        start.wait(5)
        try:
            worker.issue(book_id, student_id, staff_id, now=at(0))
            results[student_id] = "issued"
        except BookUnavailable:
            results[student_id] = "unavailable"

    threads = [threading.Thread(target=borrow, args=(student_id,)) for student_id in student_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)
    for session in sessions:
        session.close()

    assert sorted(results.values()) == ["issued"] + ["unavailable"] * (len(student_ids) - 1)
    book = library.get_book(book_id)
    assert book.available_copies == 0
    assert len(library.overdue_circulations(now=at(30))) == 1


def test_return_rechecks_status_under_lock(library, make_book, students, staff):
    book = make_book(copies=2)
    first = library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    library.issue(book.book_id, students[1].student_id, staff.user_id, now=at(0))
    cached = library.get_circulation(first.circulation_id)
    assert cached.status == CirculationStatus.BORROWED

    session, worker = other_worker()
    try:
        worker.return_book(first.circulation_id, staff.user_id, now=at(2))
    finally:
        session.close()

    with pytest.raises(AlreadyReturned):
        library.return_book(first.circulation_id, staff.user_id, now=at(3))
    assert library.get_book(book.book_id).available_copies == 1


def test_overdue_refresh_keeps_payment_recorded_elsewhere(library, make_book, students, staff):
    book = make_book()
    library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    library.run_overdue_sweep(now=at(16))
    fine = library.student_fines(students[0].student_id)[0]
    fine_id = fine.fine_id
    assert fine.paid_amount == Decimal("0.00")

    session, worker = other_worker()
    try:
        worker.record_payment(fine_id, Decimal("4"), "cash", now=at(17))
    finally:
        session.close()

    library.run_overdue_sweep(now=at(18))
    fine = library.get_fine(fine_id)
    assert fine.fine_amount == Decimal("20.00")
    assert fine.paid_amount == Decimal("4.00")
    assert fine.balance == Decimal("16.00")
    assert fine.status == FineStatus.PARTIAL
