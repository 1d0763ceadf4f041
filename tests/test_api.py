import pytest
from fastapi.testclient import TestClient

from school_library.main import app
from school_library.services.auth import create_access_token
from conftest import at


@pytest.fixture
def client():
    return TestClient(app)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.user_id)})}"}


@pytest.fixture
def staff_headers(staff):
    return auth(staff)


@pytest.fixture
def student_headers(students, db):
    return auth(students[1].user)


def create_book(client, headers, accession="ACC-100", copies=1):
    response = client.post("/api/library/books", headers=headers, json={
        "accession_number": accession,
        "title": "Palpasa Cafe",
        "author": "Narayan Wagle",
        "copies": copies,
        "price": "450.00",
        "category": "Fiction",
    })
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/api/health").json() == {"status": "healthy"}


def test_requires_token(client):
    assert client.get("/api/library/books").status_code == 401


def test_students_cannot_issue(client, student_headers, staff_headers, students):
    book = create_book(client, staff_headers)
    response = client.post("/api/library/circulations", headers=student_headers, json={
        "book_id": int(book["id"]), "student_id": students[1].student_id
    })
    assert response.status_code == 403


def test_issue_and_return_flow(client, staff_headers, students):
    book = create_book(client, staff_headers)
    assert book["availableCopies"] == 1

    response = client.post("/api/library/circulations", headers=staff_headers, json={
        "book_id": int(book["id"]), "student_id": students[0].student_id
    })
    assert response.status_code == 201
    circulation = response.json()
    assert circulation["status"] == "borrowed"
    assert circulation["daysOverdue"] == 0
    assert circulation["book"]["availableCopies"] == 0

    response = client.post(f"/api/library/circulations/{circulation['id']}/return", headers=staff_headers,
                           json={"condition": "good"})
    assert response.status_code == 200
    assert response.json()["status"] == "returned"
    assert client.get(f"/api/library/books/{book['id']}", headers=staff_headers).json()["availableCopies"] == 1


def test_library_errors_map_to_status_and_code(client, staff_headers, students):
    book = create_book(client, staff_headers)
    payload = {"book_id": int(book["id"]), "student_id": students[0].student_id}
    client.post("/api/library/circulations", headers=staff_headers, json=payload)

    response = client.post("/api/library/circulations", headers=staff_headers,
                           json={**payload, "student_id": students[1].student_id})
    assert response.status_code == 409
    assert response.json()["code"] == "book_unavailable"

    response = client.get("/api/library/circulations/999", headers=staff_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "circulation_not_found"


def test_student_reserves_for_self_and_cancels(client, staff_headers, student_headers, students):
    book = create_book(client, staff_headers)
    client.post("/api/library/circulations", headers=staff_headers, json={
        "book_id": int(book["id"]), "student_id": students[0].student_id
    })

    response = client.post("/api/library/reservations", headers=student_headers, json={"book_id": int(book["id"])})
    assert response.status_code == 201
    reservation = response.json()
    assert reservation["studentId"] == str(students[1].student_id)
    assert reservation["queuePosition"] == 1

    queue = client.get(f"/api/library/books/{book['id']}/reservations", headers=staff_headers).json()
    assert [r["id"] for r in queue] == [reservation["id"]]

    response = client.post(f"/api/library/reservations/{reservation['id']}/cancel", headers=student_headers,
                           json={"reason": "Bought my own copy"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


def test_student_cannot_read_other_records(client, student_headers, students):
    response = client.get(f"/api/library/fines/students/{students[0].student_id}", headers=student_headers)
    assert response.status_code == 403


def test_fine_payment_endpoints(client, staff_headers, library, make_book, students, staff):
    book = make_book()
    circulation = library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    library.return_book(circulation.circulation_id, staff.user_id, now=at(18))
    fine_id = library.student_fines(students[0].student_id)[0].fine_id

    response = client.post(f"/api/library/fines/{fine_id}/payments", headers=staff_headers,
                           json={"amount": "25.00", "method": "cash"})
    assert response.status_code == 400
    assert response.json()["code"] == "exceeds_balance"

    response = client.post(f"/api/library/fines/{fine_id}/payments", headers=staff_headers,
                           json={"amount": "15.00", "method": "cash"})
    assert response.json()["status"] == "partial"

    response = client.post(f"/api/library/fines/{fine_id}/waivers", headers=staff_headers,
                           json={"amount": "5.00", "reason": "Library closed one day"})
    assert response.json()["status"] == "waived"
    assert response.json()["balance"] == 0
    assert [p["kind"] for p in response.json()["payments"]] == ["payment", "waiver"]

    outstanding = client.get(f"/api/library/fines/students/{students[0].student_id}/outstanding",
                             headers=staff_headers).json()
    assert outstanding["totalOutstanding"] == 0
    assert outstanding["currency"] == "NPR"


def test_maintenance_sweeps(client, staff_headers, student_headers):
    assert client.post("/api/library/maintenance/overdue-sweep", headers=staff_headers).json() == {"refreshed": 0}
    assert client.post("/api/library/maintenance/reservation-sweep", headers=staff_headers).json() == {"expired": 0}
    assert client.post("/api/library/maintenance/overdue-sweep", headers=student_headers).status_code == 403
