from sqlalchemy import Column, String, DateTime, Integer, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from school_library.database import Base
from school_library.models.enums import UserRole, STAFF_ROLES, enum_column_type

class User(Base):
    """Account record owned by the school identity service; staff ids appear here as issuers."""
    __tablename__ = "user"

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    user_fname = Column(String(100), nullable=False)
    user_lname = Column(String(100), nullable=False)
    user_email = Column(String(255), unique=True, nullable=False, index=True)
    user_role = Column(enum_column_type(UserRole, "user_role"), default=UserRole.STUDENT, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_staff(self) -> bool:
        return self.user_role in STAFF_ROLES

    def to_dict(self):
        return {
            "id": str(self.user_id),
            "name": f"{self.user_fname} {self.user_lname}",
            "email": self.user_email,
            "role": self.user_role.value if self.user_role else None,
        }

class Student(Base):
    """Student record owned by the school's student module; read here only for identity lookup."""
    __tablename__ = "student"

    student_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True, index=True)
    student_code = Column(String(50), unique=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User")
    circulations = relationship("Circulation", back_populates="student")
    reservations = relationship("Reservation", back_populates="student")

    def to_dict(self):
        return {
            "id": str(self.student_id),
            "userId": str(self.user_id) if self.user_id else None,
            "code": self.student_code,
            "name": f"{self.first_name} {self.last_name}",
        }
