from datetime import datetime

from app.src.db import Attendance
from app.src.constants import TMZ_PRIMARY
from conftest import STAFF_EMAIL

URL_VALIDATE = "/staff/ticket/validate"
URL_MARK = "/staff/attendance/mark"


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "OK"


def test_valid_ticket_for_today(client, world):
    res = client.post(URL_VALIDATE, json={"qrCode": "QR-TODAY-1"})
    assert res.status_code == 200
    body = res.json()
    assert body["valid"] is True
    assert body["alreadyMarked"] is False
    assert body["message"] == "Ticket is valid and ready for attendance marking"
    assert body["booking"]["id"] == world.anuToday.id
    assert body["booking"]["trip_date"] == "2025-11-05"
    assert body["student"]["roll_number"] == "TMS0001"
    assert body["route"]["route_number"] == "R-01"


def test_ticket_for_another_day(client, world):
    res = client.post(URL_VALIDATE, json={"qrCode": "QR-TOMORROW-1"})
    assert res.status_code == 200
    body = res.json()
    assert body["valid"] is False
    assert body["error"] == "WRONG_DATE"
    assert body["ticketDate"] == "2025-11-06"
    assert body["currentDate"] == "2025-11-05"


def test_today_follows_service_timezone(client, clock, world):
    # 23:30 UTC on the 5th is already the morning of the 6th in the service timezone
    clock.now = datetime(2025, 11, 5, 23, 30, tzinfo=TMZ_PRIMARY)

    res = client.post(URL_VALIDATE, json={"qrCode": "QR-TOMORROW-1"})
    assert res.json()["valid"] is True

    res = client.post(URL_VALIDATE, json={"qrCode": "QR-TODAY-1"})
    assert res.json()["error"] == "WRONG_DATE"


def test_unknown_and_cancelled_tickets(client, world):
    res = client.post(URL_VALIDATE, json={"qrCode": "QR-DOES-NOT-EXIST"})
    assert res.status_code == 200
    assert res.json()["valid"] is False
    assert res.json()["error"] == "NOT_FOUND"

    res = client.post(URL_VALIDATE, json={"qrCode": "QR-CANCELLED-4"})
    assert res.status_code == 200
    assert res.json()["valid"] is False
    assert res.json()["error"] == "BOOKING_CANCELLED"
    assert res.json()["status"] == "cancelled"


def test_qr_code_is_required(client, world):
    for body in ({}, {"qrCode": "   "}):
        res = client.post(URL_VALIDATE, json=body)
        assert res.status_code == 400
        assert res.json() == {
            "success": False,
            "error": "QR_CODE_REQUIRED",
            "message": "QR code is required",
        }


def test_validation_reports_existing_mark(client, world):
    res = client.post(URL_MARK, json={"qrCode": "QR-TODAY-1", "staffEmail": STAFF_EMAIL})
    assert res.status_code == 201

    res = client.post(URL_VALIDATE, json={"qrCode": "QR-TODAY-1"})
    body = res.json()
    assert body["valid"] is True
    assert body["alreadyMarked"] is True
    assert body["markedBy"] == STAFF_EMAIL
    assert body["attendanceStatus"] == "present"
    assert body["markedAt"] is not None


def test_validation_has_no_side_effects(client, session, world):
    for _ in range(3):
        assert client.post(URL_VALIDATE, json={"qrCode": "QR-TODAY-1"}).status_code == 200
    assert session.query(Attendance).count() == 0
