from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from school_library.models.enums import BookStatus
from school_library.models.user import User
from school_library.services.auth import get_current_user, require_staff
from school_library.services.library import LibraryService, get_library
from school_library.schemas.book import BookCreate, BookStatusUpdate, BookResponse, BookListResponse
from school_library.schemas.reservation import ReservationResponse

router = APIRouter(prefix="/api/library/books", tags=["Library Books"])

@router.get("", response_model=BookListResponse)
def get_books(
    search: Optional[str] = Query(None, description="Search by title, author, accession number or ISBN"),
    category: Optional[str] = Query(None, description="Filter by category"),
    book_status: Optional[BookStatus] = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Get list of books with optional search and filter."""
    books, total = library.search_books(search, category, book_status, page, limit)
    return BookListResponse(
        books=[BookResponse.model_validate(book.to_dict()) for book in books],
        total=total,
        page=page,
        limit=limit,
    )

@router.get("/{book_id}", response_model=BookResponse)
def get_book(
    book_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Get book details by ID."""
    return BookResponse.model_validate(library.get_book(book_id).to_dict())

@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
def create_book(
    book_data: BookCreate,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Register a new acquisition. All copies start on the shelf."""
    details = book_data.model_dump(exclude={"accession_number", "title", "author", "copies", "price"})
    book = library.add_book(
        book_data.accession_number,
        book_data.title,
        book_data.author,
        copies=book_data.copies,
        price=book_data.price,
        **details
    )
    return BookResponse.model_validate(book.to_dict())

@router.patch("/{book_id}/status", response_model=BookResponse)
def update_book_status(
    book_id: int,
    update: BookStatusUpdate,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Flag a book lost or withdrawn, or clear the flag with a null status."""
    book = library.flag_book(book_id, update.status)
    return BookResponse.model_validate(book.to_dict())

@router.get("/{book_id}/reservations", response_model=List[ReservationResponse])
def get_book_queue(
    book_id: int,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Pending reservations of a book in queue order."""
    return [ReservationResponse.model_validate(r.to_dict()) for r in library.book_queue(book_id)]
