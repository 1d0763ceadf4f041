from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from school_library.schemas.book import BookResponse

class ReserveRequest(BaseModel):
    book_id: int
    # Required for staff, students always reserve for themselves
    student_id: Optional[int] = None

class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

class ReservationResponse(BaseModel):
    id: str
    bookId: str
    studentId: str
    reservationDate: datetime
    expiryDate: datetime
    status: str
    queuePosition: Optional[int] = None
    availableDate: Optional[datetime] = None
    fulfilledDate: Optional[datetime] = None
    cancelledDate: Optional[datetime] = None
    cancelReason: Optional[str] = None
    book: Optional[BookResponse] = None

    class Config:
        from_attributes = True
