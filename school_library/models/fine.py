from sqlalchemy import Column, String, DateTime, Integer, Numeric, Text, ForeignKey, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from school_library.database import Base
from school_library.models.enums import FineReason, FineStatus, SettlementKind, enum_column_type
from school_library.utils.timezone import to_local

class LibraryFine(Base):
    """Monetary penalty for an overdue, lost or damaged book. Only payments and waivers mutate it."""
    __tablename__ = "library_fine"

    fine_id = Column(Integer, primary_key=True, autoincrement=True)
    circulation_id = Column(Integer, ForeignKey("circulation.circulation_id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("student.student_id", ondelete="RESTRICT"), nullable=False)
    fine_amount = Column(Numeric(10, 2), nullable=False)
    paid_amount = Column(Numeric(10, 2), default=0, nullable=False)
    waived_amount = Column(Numeric(10, 2), default=0, nullable=False)
    balance = Column(Numeric(10, 2), nullable=False)
    fine_reason = Column(enum_column_type(FineReason, "fine_reason"), nullable=False)
    days_overdue = Column(Integer, nullable=True)
    daily_rate = Column(Numeric(10, 2), nullable=True)
    status = Column(enum_column_type(FineStatus, "fine_status"), default=FineStatus.PENDING, nullable=False)
    last_settlement = Column(enum_column_type(SettlementKind, "fine_last_settlement"), nullable=True)
    payment_method = Column(String(50), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    waived_by = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True)
    waived_reason = Column(Text, nullable=True)
    waived_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    circulation = relationship("Circulation", back_populates="fines")
    payments = relationship("FinePayment", back_populates="fine", order_by="FinePayment.payment_id")

    __table_args__ = (
        UniqueConstraint("circulation_id", "fine_reason", name="uq_fine_circulation_reason"),
        CheckConstraint("balance >= 0", name="chk_fine_balance"),
        Index("ix_fine_student_status", "student_id", "status"),
    )

    def to_dict(self):
        return {
            "id": str(self.fine_id),
            "circulationId": str(self.circulation_id),
            "studentId": str(self.student_id),
            "fineAmount": float(self.fine_amount),
            "paidAmount": float(self.paid_amount or 0),
            "waivedAmount": float(self.waived_amount or 0),
            "balance": float(self.balance),
            "reason": self.fine_reason.value if self.fine_reason else None,
            "daysOverdue": self.days_overdue,
            "dailyRate": float(self.daily_rate) if self.daily_rate is not None else None,
            "status": self.status.value if self.status else None,
            "paymentMethod": self.payment_method,
            "transactionId": self.transaction_id,
            "paidDate": to_local(self.paid_date).isoformat() if self.paid_date else None,
            "waivedBy": str(self.waived_by) if self.waived_by else None,
            "waivedReason": self.waived_reason,
            "waivedDate": to_local(self.waived_date).isoformat() if self.waived_date else None,
            "payments": [p.to_dict() for p in self.payments],
        }

class FinePayment(Base):
    """Append-only audit entry for each payment or waiver applied to a fine."""
    __tablename__ = "fine_payment"

    payment_id = Column(Integer, primary_key=True, autoincrement=True)
    fine_id = Column(Integer, ForeignKey("library_fine.fine_id", ondelete="RESTRICT"), nullable=False, index=True)
    kind = Column(enum_column_type(SettlementKind, "fine_payment_kind"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(50), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    recorded_by = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    fine = relationship("LibraryFine", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fine_payment_amount"),
    )

    def to_dict(self):
        return {
            "id": str(self.payment_id),
            "fineId": str(self.fine_id),
            "kind": self.kind.value if self.kind else None,
            "amount": float(self.amount),
            "method": self.method,
            "transactionId": self.transaction_id,
            "recordedBy": str(self.recorded_by) if self.recorded_by else None,
            "reason": self.reason,
        }
