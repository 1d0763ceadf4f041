from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from school_library.models.enums import BookCondition
from school_library.schemas.book import BookResponse

class IssueRequest(BaseModel):
    book_id: int
    student_id: int
    due_date: Optional[datetime] = None
    condition: BookCondition = BookCondition.GOOD

class ReturnRequest(BaseModel):
    condition: Optional[BookCondition] = None

class CirculationResponse(BaseModel):
    id: str
    bookId: str
    studentId: str
    issueDate: datetime
    dueDate: datetime
    returnDate: Optional[datetime] = None
    status: str
    renewalCount: int
    maxRenewals: int
    conditionOnIssue: Optional[str] = None
    conditionOnReturn: Optional[str] = None
    fine: float
    finePaid: bool
    issuedBy: Optional[str] = None
    returnedBy: Optional[str] = None
    remarks: Optional[str] = None
    daysOverdue: Optional[int] = None
    book: Optional[BookResponse] = None

    class Config:
        from_attributes = True

class BorrowingLimitResponse(BaseModel):
    canBorrow: bool
    currentCount: int
    limit: int
    remaining: int
