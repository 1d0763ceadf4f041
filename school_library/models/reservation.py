from sqlalchemy import Column, DateTime, Integer, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from school_library.database import Base
from school_library.models.enums import ReservationStatus, ACTIVE_RESERVATION_STATUSES, enum_column_type
from school_library.utils.timezone import to_local

class Reservation(Base):
    """A student's standing request for a book with no free copy."""
    __tablename__ = "reservation"

    reservation_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("book.book_id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("student.student_id", ondelete="CASCADE"), nullable=False, index=True)
    reservation_date = Column(DateTime(timezone=True), nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(enum_column_type(ReservationStatus, "reservation_status"), default=ReservationStatus.PENDING, nullable=False)
    # Dense 1..N among pending reservations of the book, cleared on leaving the queue
    queue_position = Column(Integer, nullable=True)
    available_date = Column(DateTime(timezone=True), nullable=True)
    fulfilled_date = Column(DateTime(timezone=True), nullable=True)
    cancelled_date = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    book = relationship("Book", back_populates="reservations")
    student = relationship("Student", back_populates="reservations")

    __table_args__ = (
        Index("ix_reservation_book_status", "book_id", "status"),
        Index("ix_reservation_student_status", "student_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RESERVATION_STATUSES

    def to_dict(self):
        def _iso(value):
            return to_local(value).isoformat() if value else None

        return {
            "id": str(self.reservation_id),
            "bookId": str(self.book_id),
            "studentId": str(self.student_id),
            "reservationDate": _iso(self.reservation_date),
            "expiryDate": _iso(self.expiry_date),
            "status": self.status.value if self.status else None,
            "queuePosition": self.queue_position,
            "availableDate": _iso(self.available_date),
            "fulfilledDate": _iso(self.fulfilled_date),
            "cancelledDate": _iso(self.cancelled_date),
            "cancelReason": self.cancel_reason,
            "book": self.book.to_dict() if self.book else None,
        }
