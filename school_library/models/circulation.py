from sqlalchemy import Column, String, DateTime, Integer, Numeric, Boolean, Text, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from school_library.database import Base
from school_library.models.enums import (
    BookCondition, CirculationStatus, ACTIVE_CIRCULATION_STATUSES, enum_column_type
)
from school_library.utils.timezone import to_local, whole_days_between

class Circulation(Base):
    """One issue-to-return lifecycle of a book copy. Rows are never deleted."""
    __tablename__ = "circulation"

    circulation_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("book.book_id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("student.student_id", ondelete="RESTRICT"), nullable=False, index=True)
    issue_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    return_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(enum_column_type(CirculationStatus, "circulation_status"), default=CirculationStatus.BORROWED, nullable=False)
    renewal_count = Column(Integer, default=0, nullable=False)
    max_renewals = Column(Integer, default=2, nullable=False)
    condition_on_issue = Column(enum_column_type(BookCondition, "condition_on_issue"), default=BookCondition.GOOD, nullable=False)
    condition_on_return = Column(enum_column_type(BookCondition, "condition_on_return"), nullable=True)
    fine = Column(Numeric(10, 2), default=0, nullable=False)
    fine_paid = Column(Boolean, default=False, nullable=False)
    issued_by = Column(Integer, ForeignKey("user.user_id", ondelete="RESTRICT"), nullable=False)
    returned_by = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True)
    remarks = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    book = relationship("Book", back_populates="circulations")
    student = relationship("Student", back_populates="circulations")
    fines = relationship("LibraryFine", back_populates="circulation")

    __table_args__ = (
        CheckConstraint("due_date > issue_date", name="chk_circulation_due_after_issue"),
        CheckConstraint("renewal_count >= 0 AND renewal_count <= max_renewals", name="chk_circulation_renewals"),
        Index("ix_circulation_book_status", "book_id", "status"),
        Index("ix_circulation_student_status", "student_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CIRCULATION_STATUSES

    def days_overdue(self, now) -> int:
        """Whole days past the due date; 0 once the loan is closed."""
        if self.return_date is not None or self.status in (CirculationStatus.RETURNED, CirculationStatus.LOST):
            return 0
        return max(0, whole_days_between(self.due_date, now))

    def effective_status(self, now) -> CirculationStatus:
        """Stored status, with outstanding past-due loans reported as overdue."""
        if self.is_active and self.days_overdue(now) > 0:
            return CirculationStatus.OVERDUE
        return self.status

    def to_dict(self, now=None):
        data = {
            "id": str(self.circulation_id),
            "bookId": str(self.book_id),
            "studentId": str(self.student_id),
            "issueDate": to_local(self.issue_date).isoformat() if self.issue_date else None,
            "dueDate": to_local(self.due_date).isoformat() if self.due_date else None,
            "returnDate": to_local(self.return_date).isoformat() if self.return_date else None,
            "status": self.status.value if self.status else None,
            "renewalCount": self.renewal_count,
            "maxRenewals": self.max_renewals,
            "conditionOnIssue": self.condition_on_issue.value if self.condition_on_issue else None,
            "conditionOnReturn": self.condition_on_return.value if self.condition_on_return else None,
            "fine": float(self.fine or 0),
            "finePaid": self.fine_paid,
            "issuedBy": str(self.issued_by) if self.issued_by else None,
            "returnedBy": str(self.returned_by) if self.returned_by else None,
            "remarks": self.remarks,
            "book": self.book.to_dict() if self.book else None,
        }
        if now is not None:
            data["daysOverdue"] = self.days_overdue(now)
            data["status"] = self.effective_status(now).value
        return data
