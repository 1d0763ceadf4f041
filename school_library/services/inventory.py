import logging
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy import or_
from sqlalchemy.orm import Session
from school_library.models.book import Book
from school_library.models.enums import BookStatus, HELD_BOOK_STATUSES
from school_library.services.exceptions import (
    BookNotFound, NotAvailable, OverCapacity, InvalidBookStatus
)

logger = logging.getLogger(__name__)


class InventoryStore:
    """Owns book records and their available-copy counts.

    ``available_copies`` is only ever changed through ``decrement_available``,
    ``increment_available`` and ``write_off_copy``. Callers that mutate a book
    must hold its row lock (``lock_book``) for the rest of the transaction."""

    def __init__(self, db: Session):
        self.db = db

    def get_book(self, book_id: int) -> Book:
        book = self.db.query(Book).filter(Book.book_id == book_id).first()
        if not book:
            raise BookNotFound(book_id)
        return book

    def lock_book(self, book_id: int) -> Book:
        """Load the book with a row lock (SELECT ... FOR UPDATE) held until commit/rollback."""
        book = (
            self.db.query(Book)
            .filter(Book.book_id == book_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not book:
            raise BookNotFound(book_id)
        return book

    def add_book(self, accession_number: str, title: str, author: str, copies: int = 1,
                 price: Optional[Decimal] = None, **details) -> Book:
        """Register an acquisition; every copy starts on the shelf."""
        if copies < 1:
            raise InvalidBookStatus("A book must be acquired with at least one copy")
        book = Book(
            accession_number=accession_number,
            title=title,
            author=author,
            copies=copies,
            available_copies=copies,
            price=price,
            status=BookStatus.AVAILABLE,
            **details
        )
        self.db.add(book)
        self.db.flush()
        logger.info(f"Book {book.book_id} ({accession_number}) added with {copies} copies")
        return book

    def search_books(self, search: Optional[str] = None, category: Optional[str] = None,
                     status: Optional[BookStatus] = None, page: int = 1, limit: int = 20) -> Tuple[List[Book], int]:
        query = self.db.query(Book)

        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(
                    Book.title.ilike(search_term),
                    Book.author.ilike(search_term),
                    Book.accession_number.ilike(search_term),
                    Book.isbn.ilike(search_term)
                )
            )
        if category:
            query = query.filter(Book.category == category)
        if status:
            query = query.filter(Book.status == status)

        total = query.count()
        books = query.order_by(Book.title).offset((max(page, 1) - 1) * limit).limit(limit).all()
        return books, total

    def is_available(self, book_id: int) -> bool:
        book = self.get_book(book_id)
        return self._is_available(book)

    @staticmethod
    def _is_available(book: Book) -> bool:
        return book.available_copies > 0 and book.status == BookStatus.AVAILABLE

    @staticmethod
    def _recompute_status(book: Book):
        if book.status in HELD_BOOK_STATUSES:
            return
        book.status = BookStatus.AVAILABLE if book.available_copies > 0 else BookStatus.BORROWED

    def decrement_available(self, book_id: int) -> Book:
        book = self.lock_book(book_id)
        if book.available_copies == 0:
            raise NotAvailable(f"No copies of book {book_id} are on the shelf")
        book.available_copies -= 1
        self._recompute_status(book)
        self.db.flush()
        return book

    def increment_available(self, book_id: int) -> Book:
        book = self.lock_book(book_id)
        if book.available_copies >= book.copies:
            raise OverCapacity(f"All {book.copies} copies of book {book_id} are already on the shelf")
        book.available_copies += 1
        self._recompute_status(book)
        self.db.flush()
        return book

    def write_off_copy(self, book_id: int) -> Book:
        """An issued copy was lost: it leaves the stock without coming back to the shelf."""
        book = self.lock_book(book_id)
        if book.copies <= book.available_copies:
            raise OverCapacity(f"Book {book_id} has no issued copy to write off")
        book.copies -= 1
        if book.copies == 0:
            book.status = BookStatus.LOST
        else:
            self._recompute_status(book)
        self.db.flush()
        logger.info(f"Copy of book {book_id} written off, {book.copies} copies remain")
        return book

    def flag_status(self, book_id: int, status: Optional[BookStatus]) -> Book:
        """Set a staff flag (lost/withdrawn) or clear it with ``None`` and recompute from the copy count."""
        if status is not None and status not in HELD_BOOK_STATUSES:
            raise InvalidBookStatus(
                f"Only {', '.join(s.value for s in HELD_BOOK_STATUSES)} can be set directly"
            )
        book = self.lock_book(book_id)
        if status is None and book.copies == 0:
            # Every copy was written off, nothing left to put back into circulation
            book.status = BookStatus.LOST
        elif status is None:
            book.status = BookStatus.AVAILABLE if book.available_copies > 0 else BookStatus.BORROWED
        else:
            book.status = status
        self.db.flush()
        logger.info(f"Book {book_id} status set to {book.status.value}")
        return book
