from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal
from school_library.models.enums import BookStatus

class BookBase(BaseModel):
    isbn: Optional[str] = Field(None, max_length=20)
    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    category: Optional[str] = None
    language: str = "English"
    location: Optional[str] = None
    description: Optional[str] = None

class BookCreate(BookBase):
    accession_number: str = Field(..., min_length=1, max_length=50)
    copies: int = Field(1, ge=1)
    price: Optional[Decimal] = Field(None, ge=0)

class BookStatusUpdate(BaseModel):
    # lost/withdrawn to flag the book, null to clear the flag
    status: Optional[BookStatus] = None

class BookResponse(BaseModel):
    id: str
    accessionNumber: str
    isbn: Optional[str] = None
    title: str
    author: str
    publisher: Optional[str] = None
    publicationYear: Optional[int] = None
    category: Optional[str] = None
    language: Optional[str] = None
    price: Optional[float] = None
    location: Optional[str] = None
    description: Optional[str] = None
    copies: int
    availableCopies: int
    status: str

    class Config:
        from_attributes = True

class BookListResponse(BaseModel):
    books: List[BookResponse]
    total: int
    page: int
    limit: int
