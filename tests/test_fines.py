from decimal import Decimal

import pytest

from school_library.models.enums import BookCondition, FineStatus, SettlementKind
from school_library.services.exceptions import InvalidAmount, ExceedsBalance, FineNotFound, InvariantViolation
from school_library.services.fines import derive_fine_status
from conftest import at


@pytest.fixture
def damaged_fine(library, make_book, students, staff):
    """A 100.00 damaged-book fine on the first student."""
    book = make_book()
    circulation = library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    library.return_book(circulation.circulation_id, staff.user_id, condition=BookCondition.DAMAGED, now=at(3))
    return library.student_fines(students[0].student_id)[0]


def assert_balanced(fine):
    assert fine.balance == fine.fine_amount - fine.paid_amount - fine.waived_amount
    assert fine.balance >= 0


@pytest.mark.parametrize("balance, paid, waived, last, expected", [
    ("10", "0", "0", None, FineStatus.PENDING),
    ("10", "5", "0", SettlementKind.PAYMENT, FineStatus.PARTIAL),
    ("10", "0", "5", SettlementKind.WAIVER, FineStatus.PARTIAL),
    ("0", "15", "0", SettlementKind.PAYMENT, FineStatus.PAID),
    ("0", "5", "10", SettlementKind.WAIVER, FineStatus.WAIVED),
    ("0", "10", "5", SettlementKind.PAYMENT, FineStatus.PAID),
])
def test_derive_fine_status(balance, paid, waived, last, expected):
    assert derive_fine_status(Decimal(balance), Decimal(paid), Decimal(waived), last) == expected


def test_negative_balance_is_an_invariant_violation():
    with pytest.raises(InvariantViolation):
        derive_fine_status(Decimal("-1"), Decimal("0"), Decimal("0"), None)


def test_partial_then_full_payment(library, damaged_fine, staff):
    fine = library.record_payment(damaged_fine.fine_id, Decimal("30"), "cash", recorded_by=staff.user_id, now=at(4))
    assert fine.status == FineStatus.PARTIAL
    assert fine.balance == Decimal("70.00")
    assert_balanced(fine)

    fine = library.record_payment(fine.fine_id, Decimal("70"), "esewa", transaction_id="TXN-1", now=at(5))
    assert fine.status == FineStatus.PAID
    assert fine.balance == Decimal("0.00")
    assert fine.payment_method == "esewa"
    assert fine.circulation.fine_paid is True
    assert [(p.kind, p.amount) for p in fine.payments] == [
        (SettlementKind.PAYMENT, Decimal("30.00")), (SettlementKind.PAYMENT, Decimal("70.00"))
    ]


def test_waiver_then_payment_clears_as_paid(library, damaged_fine, staff):
    library.waive_fine(damaged_fine.fine_id, Decimal("20"), staff.user_id, "First offence", now=at(4))
    fine = library.record_payment(damaged_fine.fine_id, Decimal("80"), "cash", now=at(5))
    assert fine.status == FineStatus.PAID
    assert fine.waived_amount == Decimal("20.00")
    assert_balanced(fine)


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_amounts_rejected(library, damaged_fine, staff, amount):
    with pytest.raises(InvalidAmount):
        library.record_payment(damaged_fine.fine_id, amount, "cash", now=at(4))
    with pytest.raises(InvalidAmount):
        library.waive_fine(damaged_fine.fine_id, amount, staff.user_id, "test", now=at(4))


def test_overdraw_rejected(library, damaged_fine, staff):
    library.record_payment(damaged_fine.fine_id, Decimal("90"), "cash", now=at(4))
    with pytest.raises(ExceedsBalance):
        library.record_payment(damaged_fine.fine_id, Decimal("10.01"), "cash", now=at(4))
    with pytest.raises(ExceedsBalance):
        library.waive_fine(damaged_fine.fine_id, Decimal("11"), staff.user_id, "too much", now=at(4))

    fine = library.get_fine(damaged_fine.fine_id)
    assert fine.balance == Decimal("10.00")
    assert fine.status == FineStatus.PARTIAL
    assert len(fine.payments) == 1


def test_outstanding_total(library, make_book, students, staff, damaged_fine):
    book = make_book()
    circulation = library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    library.return_book(circulation.circulation_id, staff.user_id, now=at(16))

    fines, total = library.outstanding_fines(students[0].student_id)
    assert len(fines) == 2
    assert total == Decimal("110.00")

    library.record_payment(damaged_fine.fine_id, Decimal("100"), "cash", now=at(17))
    fines, total = library.outstanding_fines(students[0].student_id)
    assert total == Decimal("10.00")
    assert library.student_fines(students[0].student_id, FineStatus.PAID)[0].fine_id == damaged_fine.fine_id


def test_unknown_fine(library):
    with pytest.raises(FineNotFound):
        library.record_payment(9, Decimal("1"), "cash", now=at(0))
