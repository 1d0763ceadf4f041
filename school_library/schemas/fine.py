from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

class PaymentRequest(BaseModel):
    amount: Decimal
    method: str = Field("cash", min_length=1, max_length=50)
    transaction_id: Optional[str] = Field(None, max_length=100)

class WaiverRequest(BaseModel):
    amount: Decimal
    reason: str = Field(..., min_length=1)

class FinePaymentResponse(BaseModel):
    id: str
    fineId: str
    kind: str
    amount: float
    method: Optional[str] = None
    transactionId: Optional[str] = None
    recordedBy: Optional[str] = None
    reason: Optional[str] = None

    class Config:
        from_attributes = True

class FineResponse(BaseModel):
    id: str
    circulationId: str
    studentId: str
    fineAmount: float
    paidAmount: float
    waivedAmount: float
    balance: float
    reason: str
    daysOverdue: Optional[int] = None
    dailyRate: Optional[float] = None
    status: str
    paymentMethod: Optional[str] = None
    transactionId: Optional[str] = None
    paidDate: Optional[datetime] = None
    waivedBy: Optional[str] = None
    waivedReason: Optional[str] = None
    waivedDate: Optional[datetime] = None
    payments: List[FinePaymentResponse] = []

    class Config:
        from_attributes = True

class OutstandingFinesResponse(BaseModel):
    studentId: str
    fines: List[FineResponse]
    totalOutstanding: float
    currency: str
