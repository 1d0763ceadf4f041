from sqlalchemy import Column, String, DateTime, Integer, Numeric, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from school_library.database import Base
from school_library.models.enums import BookStatus, enum_column_type

class Book(Base):
    __tablename__ = "book"

    book_id = Column(Integer, primary_key=True, autoincrement=True)
    accession_number = Column(String(50), unique=True, nullable=False, index=True)
    isbn = Column(String(20), nullable=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    publisher = Column(String(255), nullable=True)
    publication_year = Column(Integer, nullable=True)
    category = Column(String(100), nullable=True)
    language = Column(String(50), default='English', nullable=False)
    price = Column(Numeric(10, 2), nullable=True)
    location = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    copies = Column(Integer, default=1, nullable=False)
    available_copies = Column(Integer, default=1, nullable=False)
    status = Column(enum_column_type(BookStatus, "book_status"), default=BookStatus.AVAILABLE, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    circulations = relationship("Circulation", back_populates="book")
    reservations = relationship("Reservation", back_populates="book")

    __table_args__ = (
        CheckConstraint("copies >= 0", name="chk_book_copies"),
        CheckConstraint("available_copies >= 0 AND available_copies <= copies", name="chk_book_available_copies"),
    )

    def to_dict(self):
        return {
            "id": str(self.book_id),
            "accessionNumber": self.accession_number,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "publicationYear": self.publication_year,
            "category": self.category,
            "language": self.language,
            "price": float(self.price) if self.price is not None else None,
            "location": self.location,
            "description": self.description,
            "copies": self.copies,
            "availableCopies": self.available_copies,
            "status": self.status.value if self.status else None,
        }
