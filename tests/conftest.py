import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ["MQTT_ENABLED"] = "false"
os.environ["SWEEP_INTERVAL_MINUTES"] = "0"

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

import school_library.models  # noqa: F401
from school_library.config import settings
from school_library.database import Base, SessionLocal, engine
from school_library.models.enums import UserRole
from school_library.models.user import User, Student
from school_library.services.library import LibraryService
from school_library.utils.timezone import LOCAL_TZ

T0 = LOCAL_TZ.localize(datetime(2025, 3, 3, 10, 0))


def at(days=0, hours=0):
    """Clock reading ``days`` after the first issue of a test."""
    return T0 + timedelta(days=days, hours=hours)


class RecordingSink:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, title, message, data=None, category="library", level="info"):
        self.sent.append({"user_id": user_id, "title": title, "message": message, "data": data or {}, "level": level})

    def titles(self):
        return [n["title"] for n in self.sent]


class FailingSink:
    def __init__(self):
        self.calls = 0

    def notify(self, *args, **kwargs):
        self.calls += 1
        raise ConnectionError("broker unreachable")


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def library(db, sink):
    return LibraryService(db, sink=sink, policy=settings)


@pytest.fixture
def staff(db):
    user = User(user_fname="Sita", user_lname="Karki", user_email="librarian@school.edu.np", user_role=UserRole.LIBRARIAN)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def students(db):
    """Four students, each with a linked account."""
    created = []
    for i in range(1, 5):
        user = User(user_fname=f"Student{i}", user_lname="Test", user_email=f"student{i}@school.edu.np", user_role=UserRole.STUDENT)
        db.add(user)
        db.flush()
        student = Student(user_id=user.user_id, student_code=f"S-{i:03d}", first_name=f"Student{i}", last_name="Test")
        db.add(student)
        created.append(student)
    db.commit()
    return created


@pytest.fixture
def make_book(library):
    counter = {"n": 0}

    def _make(copies=1, price=Decimal("250.00"), title=None):
        counter["n"] += 1
        n = counter["n"]
        return library.add_book(f"ACC-{n:04d}", title or f"Book {n}", "Test Author", copies=copies, price=price,
                                category="Fiction")
    return _make
