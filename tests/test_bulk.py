from app.src.db import Attendance
from app.src.constants import BULK_ABSENT_NOTE
from conftest import STAFF_EMAIL

URL_BULK = "/staff/attendance/bulk"
URL_MARK = "/staff/attendance/mark"
URL_OVERVIEW = "/staff/attendance/overview"


def bulk(client, action, routeId, **kwargs):
    body = {"action": action, "routeId": routeId, "date": "2025-11-05", "staffEmail": STAFF_EMAIL}
    body.update(kwargs)
    return client.post(URL_BULK, json=body)


def test_mark_all_absent_skips_scanned(client, session, world, events):
    res = client.post(URL_MARK, json={"qrCode": "QR-TODAY-1", "staffEmail": STAFF_EMAIL})
    assert res.status_code == 201

    res = bulk(client, "mark_all_absent", world.route.id)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "Marked 2 students as absent"
    assert body["marked_count"] == 2
    assert {s["roll_number"] for s in body["students"]} == {"TMS0002", "TMS0003"}
    assert "errors" not in body

    records = {r.booking_id: r for r in session.query(Attendance).all()}
    assert len(records) == 3
    assert records[world.anuToday.id].status == "present"
    assert records[world.anuToday.id].attendance_method == "qr_scan"
    for booking in (world.rahulToday, world.fathimaToday):
        assert records[booking.id].status == "absent"
        assert records[booking.id].attendance_method == "bulk_mark"
        assert records[booking.id].marked_absent_by == STAFF_EMAIL
        assert records[booking.id].notes == BULK_ABSENT_NOTE
    assert world.meeraCancelled.id not in records
    assert events[-1]["marked_count"] == 2


def test_mark_all_absent_twice(client, session, world, events):
    assert bulk(client, "mark_all_absent", world.route.id).json()["marked_count"] == 3

    res = bulk(client, "mark_all_absent", world.route.id)
    assert res.status_code == 200
    assert res.json()["marked_count"] == 0
    assert res.json()["message"] == "All students already have attendance marked"
    assert session.query(Attendance).count() == 3
    assert len(events) == 1


def test_mark_selected_reports_failures(client, session, world):
    bookingIds = [
        world.rahulToday.id,
        world.joToday.id,
        9999,
        world.anuTomorrow.id,
        world.meeraCancelled.id,
    ]
    res = bulk(client, "mark_selected_present", world.route.id, bookingIds=bookingIds)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["marked_count"] == 1
    assert body["failed_count"] == 4
    assert body["students"] == [{"name": "Rahul Das", "roll_number": "TMS0002"}]
    errors = {e["bookingId"]: e["error"] for e in body["errors"]}
    assert errors == {
        world.joToday.id: "Booking is not on this route",
        9999: "Booking not found",
        world.anuTomorrow.id: "Booking is not for this date",
        world.meeraCancelled.id: "Booking has been cancelled",
    }
    assert session.query(Attendance).one().status == "present"


def test_mark_selected_absent_updates_existing(client, session, world):
    client.post(URL_MARK, json={"qrCode": "QR-TODAY-2", "staffEmail": STAFF_EMAIL})

    res = bulk(client, "mark_selected_absent", world.route.id, bookingIds=[world.rahulToday.id])
    assert res.json()["marked_count"] == 1

    record = session.query(Attendance).one()
    assert record.status == "absent"
    assert record.attendance_method == "bulk_mark"


def test_bulk_guards(client, world):
    res = bulk(client, "mark_selected_present", world.route.id)
    assert res.status_code == 400
    assert res.json()["error"] == "VALIDATION_ERROR"

    res = bulk(client, "mark_all_absent", world.otherRoute.id)
    assert res.status_code == 403
    assert res.json()["error"] == "NOT_AUTHORIZED"

    res = bulk(client, "mark_all_absent", world.route.id, staffEmail=None)
    assert res.status_code == 400
    assert res.json()["error"] == "STAFF_INFO_REQUIRED"

    res = bulk(client, "mark_everyone_late", world.route.id)
    assert res.status_code == 400


def test_attendance_overview(client, world):
    client.post(URL_MARK, json={"qrCode": "QR-TODAY-1", "staffEmail": STAFF_EMAIL})
    bulk(client, "mark_selected_absent", world.route.id, bookingIds=[world.fathimaToday.id])

    res = client.get(URL_OVERVIEW, params={"routeId": world.route.id, "staffEmail": STAFF_EMAIL})
    assert res.status_code == 200
    body = res.json()
    assert body["date"] == "2025-11-05"
    assert body["stats"] == {
        "total_bookings": 3,
        "present": 1,
        "absent": 1,
        "not_marked": 1,
        "attendance_rate": 33,
    }
    assert body["byStop"]["North Gate"] == {"total": 2, "present": 1, "absent": 0, "not_marked": 1}
    assert body["byStop"]["Library Junction"]["absent"] == 1
    statuses = {s["roll_number"]: s["status"] for s in body["students"]}
    assert statuses == {"TMS0001": "present", "TMS0002": "not_marked", "TMS0003": "absent"}

    res = client.get(
        URL_OVERVIEW, params={"routeId": world.otherRoute.id, "staffEmail": STAFF_EMAIL}
    )
    assert res.status_code == 403
