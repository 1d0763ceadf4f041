import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from sqlalchemy.orm import Session
from school_library.models.circulation import Circulation
from school_library.models.enums import (
    FineReason, FineStatus, SettlementKind, OUTSTANDING_FINE_STATUSES
)
from school_library.models.fine import LibraryFine, FinePayment
from school_library.services.exceptions import (
    FineNotFound, InvalidAmount, ExceedsBalance, InvariantViolation
)
from school_library.services.notifications import NotificationOutbox
from school_library.utils.timezone import now_local

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

REASON_TEXT = {
    FineReason.OVERDUE: "late return",
    FineReason.LOST: "lost book",
    FineReason.DAMAGED: "damaged book",
}


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def derive_fine_status(balance: Decimal, paid_amount: Decimal, waived_amount: Decimal,
                       last_settlement: Optional[SettlementKind]) -> FineStatus:
    """Status of a fine as a pure function of its amounts.

    A cleared fine is ``waived`` when the reduction that cleared it was a
    waiver and ``paid`` otherwise; an open fine is ``partial`` once anything
    has been paid or waived."""
    if balance < ZERO:
        raise InvariantViolation(f"Fine balance went negative: {balance}")
    if balance == ZERO:
        if last_settlement == SettlementKind.WAIVER:
            return FineStatus.WAIVED
        return FineStatus.PAID
    if paid_amount > ZERO or waived_amount > ZERO:
        return FineStatus.PARTIAL
    return FineStatus.PENDING


class FineLedger:
    """Fines derived from overdue, lost and damaged books, with payments and waivers."""

    def __init__(self, db: Session, outbox: NotificationOutbox, policy):
        self.db = db
        self.outbox = outbox
        self.policy = policy

    # Queries

    def get(self, fine_id: int) -> LibraryFine:
        fine = self.db.query(LibraryFine).filter(LibraryFine.fine_id == fine_id).first()
        if not fine:
            raise FineNotFound(fine_id)
        return fine

    def _lock(self, fine_id: int) -> LibraryFine:
        fine = (
            self.db.query(LibraryFine)
            .filter(LibraryFine.fine_id == fine_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not fine:
            raise FineNotFound(fine_id)
        return fine

    def find(self, circulation_id: int, reason: FineReason, lock: bool = False) -> Optional[LibraryFine]:
        query = self.db.query(LibraryFine).filter(
            LibraryFine.circulation_id == circulation_id,
            LibraryFine.fine_reason == reason
        )
        if lock:
            query = query.populate_existing().with_for_update()
        return query.first()

    def for_student(self, student_id: int, status: Optional[FineStatus] = None) -> List[LibraryFine]:
        query = self.db.query(LibraryFine).filter(LibraryFine.student_id == student_id)
        if status:
            query = query.filter(LibraryFine.status == status)
        return query.order_by(LibraryFine.fine_id.desc()).all()

    def outstanding_for_student(self, student_id: int) -> List[LibraryFine]:
        return self.db.query(LibraryFine).filter(
            LibraryFine.student_id == student_id,
            LibraryFine.status.in_(OUTSTANDING_FINE_STATUSES)
        ).order_by(LibraryFine.fine_id.asc()).all()

    def total_outstanding(self, student_id: int) -> Decimal:
        return sum((to_money(f.balance) for f in self.outstanding_for_student(student_id)), ZERO)

    # Opening fines

    def open_or_update_overdue_fine(self, circulation: Circulation, days_overdue: int,
                                    daily_rate=None) -> Optional[LibraryFine]:
        """Create the overdue fine of a circulation or recompute it for the current days overdue.

        Same ``days_overdue`` gives the same fine; more days give a larger one. The
        amount never goes down, so a renewal that moves the due date keeps what
        already accrued."""
        rate = to_money(daily_rate if daily_rate is not None else self.policy.daily_fine_rate)
        amount = to_money(Decimal(max(days_overdue, 0)) * rate)
        fine = self.find(circulation.circulation_id, FineReason.OVERDUE, lock=True)

        if fine is None:
            if amount <= ZERO:
                return None
            fine = LibraryFine(
                circulation_id=circulation.circulation_id,
                student_id=circulation.student_id,
                fine_amount=amount,
                paid_amount=ZERO,
                waived_amount=ZERO,
                balance=amount,
                fine_reason=FineReason.OVERDUE,
                days_overdue=days_overdue,
                daily_rate=rate,
                status=FineStatus.PENDING,
            )
            self.db.add(fine)
            self._queue_fine_notice(fine)
            logger.info(
                f"Overdue fine opened for circulation {circulation.circulation_id}: "
                f"{days_overdue} days x {rate} = {amount}"
            )
        elif amount > to_money(fine.fine_amount):
            fine.fine_amount = amount
            fine.days_overdue = days_overdue
            fine.daily_rate = rate
            logger.info(f"Overdue fine {fine.fine_id} recomputed: {days_overdue} days, amount {amount}")

        self._recompute(fine)
        circulation.fine = fine.fine_amount
        self.db.flush()
        self._sync_circulation(circulation)
        return fine

    def open_lost_fine(self, circulation: Circulation, price) -> Optional[LibraryFine]:
        """One-shot fine of ``lost_book_fine_multiplier`` times the book price."""
        amount = to_money(to_money(price) * self.policy.lost_book_fine_multiplier)
        if amount <= ZERO:
            logger.warning(f"Book {circulation.book_id} has no price, no lost-book fine for circulation {circulation.circulation_id}")
            return None
        return self._open_fixed_fine(circulation, FineReason.LOST, amount)

    def open_damaged_fine(self, circulation: Circulation) -> LibraryFine:
        """One-shot flat fee for a book returned damaged."""
        return self._open_fixed_fine(circulation, FineReason.DAMAGED, to_money(self.policy.damaged_book_fine))

    def _open_fixed_fine(self, circulation: Circulation, reason: FineReason, amount: Decimal) -> LibraryFine:
        fine = self.find(circulation.circulation_id, reason)
        if fine is not None:
            return fine
        fine = LibraryFine(
            circulation_id=circulation.circulation_id,
            student_id=circulation.student_id,
            fine_amount=amount,
            paid_amount=ZERO,
            waived_amount=ZERO,
            balance=amount,
            fine_reason=reason,
            status=FineStatus.PENDING,
        )
        self.db.add(fine)
        self.db.flush()
        self._sync_circulation(circulation)
        self._queue_fine_notice(fine)
        logger.info(f"{reason.value.capitalize()} fine {fine.fine_id} opened for circulation {circulation.circulation_id}: {amount}")
        return fine

    # Settlement

    def record_payment(self, fine_id: int, amount, method: str, transaction_id: Optional[str] = None,
                       recorded_by: Optional[int] = None, now=None) -> LibraryFine:
        now = now or now_local()
        fine = self._lock(fine_id)
        amount = self._check_amount(fine, amount)

        fine.paid_amount = to_money(fine.paid_amount) + amount
        fine.last_settlement = SettlementKind.PAYMENT
        fine.payment_method = method
        fine.transaction_id = transaction_id
        fine.paid_date = now
        self.db.add(FinePayment(
            fine_id=fine.fine_id,
            kind=SettlementKind.PAYMENT,
            amount=amount,
            method=method,
            transaction_id=transaction_id,
            recorded_by=recorded_by,
        ))
        self._recompute(fine)
        self.db.flush()
        self._sync_circulation(fine.circulation)

        balance = to_money(fine.balance)
        if balance == ZERO:
            message = f"Payment of {self.policy.currency} {amount:.2f} received. Your fine has been cleared."
        else:
            message = f"Payment of {self.policy.currency} {amount:.2f} received. Remaining balance: {self.policy.currency} {balance:.2f}."
        self.outbox.queue(
            fine.student_id, "Fine Payment Received", message,
            data={"fineId": fine.fine_id, "paidAmount": amount, "balance": balance},
            level="success",
        )
        logger.info(f"Payment of {amount} recorded on fine {fine.fine_id} via {method}, balance {balance}")
        return fine

    def waive(self, fine_id: int, amount, waived_by: int, reason: str, now=None) -> LibraryFine:
        now = now or now_local()
        fine = self._lock(fine_id)
        amount = self._check_amount(fine, amount)

        fine.waived_amount = to_money(fine.waived_amount) + amount
        fine.last_settlement = SettlementKind.WAIVER
        fine.waived_by = waived_by
        fine.waived_reason = reason
        fine.waived_date = now
        self.db.add(FinePayment(
            fine_id=fine.fine_id,
            kind=SettlementKind.WAIVER,
            amount=amount,
            recorded_by=waived_by,
            reason=reason,
        ))
        self._recompute(fine)
        self.db.flush()
        self._sync_circulation(fine.circulation)

        self.outbox.queue(
            fine.student_id, "Fine Waived",
            f"A fine of {self.policy.currency} {amount:.2f} has been waived. Reason: {reason}",
            data={"fineId": fine.fine_id, "waivedAmount": amount, "reason": reason},
        )
        logger.info(f"Waiver of {amount} applied to fine {fine.fine_id} by user {waived_by}")
        return fine

    # Internals

    @staticmethod
    def _check_amount(fine: LibraryFine, amount) -> Decimal:
        amount = to_money(amount)
        if amount <= ZERO:
            raise InvalidAmount("Amount must be greater than zero")
        if amount > to_money(fine.balance):
            raise ExceedsBalance(f"Amount {amount} exceeds the outstanding balance {to_money(fine.balance)}")
        return amount

    @staticmethod
    def _recompute(fine: LibraryFine):
        paid = to_money(fine.paid_amount)
        waived = to_money(fine.waived_amount)
        balance = to_money(fine.fine_amount) - paid - waived
        fine.status = derive_fine_status(balance, paid, waived, fine.last_settlement)
        fine.balance = balance

    def _sync_circulation(self, circulation: Optional[Circulation]):
        if circulation is None:
            return
        fines = self.db.query(LibraryFine).filter(
            LibraryFine.circulation_id == circulation.circulation_id
        ).all()
        circulation.fine_paid = bool(fines) and all(to_money(f.balance) == ZERO for f in fines)

    def _queue_fine_notice(self, fine: LibraryFine):
        amount = to_money(fine.fine_amount)
        self.outbox.queue(
            fine.student_id,
            "Library Fine Generated",
            f"A fine of {self.policy.currency} {amount:.2f} has been generated for "
            f"{REASON_TEXT[fine.fine_reason]}. Please pay at the library.",
            data={"fineAmount": amount, "reason": fine.fine_reason.value},
            level="warning",
        )
