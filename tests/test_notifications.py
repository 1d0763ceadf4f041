import json
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from school_library.config import settings
from school_library.models.enums import ReservationStatus
from school_library.models.user import Student
from school_library.services.exceptions import DuplicateReservation
from school_library.services.library import LibraryService
from school_library.services.notifications import MQTTNotificationService, NotificationOutbox
from conftest import FailingSink, at


@pytest.fixture
def borrowed_book(library, make_book, students, staff):
    book = make_book(copies=1)
    circulation = library.issue(book.book_id, students[0].student_id, staff.user_id, now=at(0))
    return book, circulation


def test_reservation_notifies_student_account(library, sink, borrowed_book, students):
    book, _ = borrowed_book
    library.reserve(book.book_id, students[1].student_id, now=at(1))

    assert sink.titles() == ["Book Reservation Confirmed"]
    assert sink.sent[0]["user_id"] == students[1].user_id
    assert sink.sent[0]["data"]["queuePosition"] == 1
    assert sink.sent[0]["data"]["studentId"] == students[1].student_id


def test_rejected_operation_sends_nothing(library, sink, borrowed_book, students):
    book, _ = borrowed_book
    library.reserve(book.book_id, students[1].student_id, now=at(1))
    sink.sent.clear()

    with pytest.raises(DuplicateReservation):
        library.reserve(book.book_id, students[1].student_id, now=at(2))
    assert sink.sent == []
    assert len(library.outbox) == 0


def test_return_notifies_fine_and_promotion(library, sink, borrowed_book, students, staff):
    book, circulation = borrowed_book
    library.reserve(book.book_id, students[1].student_id, now=at(1))
    sink.sent.clear()

    library.return_book(circulation.circulation_id, staff.user_id, now=at(16))

    assert sorted(sink.titles()) == ["Library Fine Generated", "Reserved Book Available"]
    levels = {n["title"]: n["level"] for n in sink.sent}
    assert levels["Reserved Book Available"] == "success"
    assert levels["Library Fine Generated"] == "warning"


def test_delivery_failure_does_not_undo_operation(db, borrowed_book, students):
    book, _ = borrowed_book
    failing = FailingSink()
    library = LibraryService(db, sink=failing, policy=settings)

    reservation = library.reserve(book.book_id, students[1].student_id, now=at(1))

    assert failing.calls == 1
    db.rollback()
    assert library.get_reservation(reservation.reservation_id).status == ReservationStatus.PENDING


def test_students_without_account_are_skipped(db, library, sink, borrowed_book):
    book, _ = borrowed_book
    walk_in = Student(student_code="S-999", first_name="Walk", last_name="In")
    db.add(walk_in)
    db.commit()

    library.reserve(book.book_id, walk_in.student_id, now=at(1))
    assert sink.sent == []


def test_outbox_discard(db, sink):
    outbox = NotificationOutbox(db, sink)
    outbox.queue(1, "Title", "Message")
    assert len(outbox) == 1
    outbox.discard()
    outbox.flush()
    assert sink.sent == []


def test_mqtt_sink_publishes_json_to_user_topic():
    service = MQTTNotificationService()
    service.client = MagicMock()
    service.client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
    service.is_connected = True

    service.notify(7, "Fine Waived", "A fine has been waived.", data={"fineId": 3}, level="info")

    topic, payload = service.client.publish.call_args[0]
    assert topic == "school/library/notifications/7"
    body = json.loads(payload)
    assert body["userId"] == 7
    assert body["title"] == "Fine Waived"
    assert body["category"] == "library"
    assert body["data"] == {"fineId": 3}
    assert service.client.publish.call_args[1]["qos"] == settings.mqtt_qos


def test_mqtt_sink_drops_when_disconnected():
    service = MQTTNotificationService()
    service.client = MagicMock()
    service.is_connected = False

    service.notify(7, "Title", "Message")
    service.client.publish.assert_not_called()


def test_mqtt_connect_skipped_when_disabled():
    service = MQTTNotificationService()
    service.connect()
    assert service.client is None
    assert not service.is_running()
