from .book import BookBase, BookCreate, BookStatusUpdate, BookResponse, BookListResponse
from .circulation import IssueRequest, ReturnRequest, CirculationResponse, BorrowingLimitResponse
from .reservation import ReserveRequest, CancelRequest, ReservationResponse
from .fine import PaymentRequest, WaiverRequest, FinePaymentResponse, FineResponse, OutstandingFinesResponse

__all__ = [
    "BookBase", "BookCreate", "BookStatusUpdate", "BookResponse", "BookListResponse",
    "IssueRequest", "ReturnRequest", "CirculationResponse", "BorrowingLimitResponse",
    "ReserveRequest", "CancelRequest", "ReservationResponse",
    "PaymentRequest", "WaiverRequest", "FinePaymentResponse", "FineResponse", "OutstandingFinesResponse",
]
