from .user import User, Student
from .book import Book
from .circulation import Circulation
from .reservation import Reservation
from .fine import LibraryFine, FinePayment

__all__ = [
    "User",
    "Student",
    "Book",
    "Circulation",
    "Reservation",
    "LibraryFine",
    "FinePayment",
]
