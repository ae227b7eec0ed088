import argparse
from http import HTTPStatus
from requests import get, post
from datetime import datetime, time, timedelta

from app.src.enums import AttendanceStatus
from app.src.functions import serviceDate
from app.src.constants import TMZ_SECONDARY
from app.src.urls import (
    URL_ASSIGNED_ROUTE,
    URL_ATTENDANCE_OVERVIEW,
    URL_ATTENDANCE_PRESENCE,
    URL_ATTENDANCE_SCAN,
    URL_ROUTE_BOOKING,
    URL_TICKET_VALIDATION,
)
from app.src.db import (
    Booking,
    Route,
    Schedule,
    Staff,
    StaffRouteAssignment,
    Student,
    sessionMaker,
    engine,
    ORMbase,
)

STAFF_EMAIL = "driver@tms.example.com"
QR_CODE = "TMS-DEMO-0001"


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    session = sessionMaker()
    ORMbase.metadata.drop_all(engine)
    session.commit()
    print("* All tables deleted")
    session.close()


def createTables():
    session = sessionMaker()
    ORMbase.metadata.create_all(engine)
    session.commit()
    print("* All tables created")
    session.close()


def initDB():
    session = sessionMaker()
    today = serviceDate(datetime.now(TMZ_SECONDARY))

    route = Route(
        route_number="R-01",
        route_name="Campus - City Center",
        start_location="Main Campus",
        end_location="City Center",
        departure_time=time(7, 30),
    )
    session.add(route)
    session.flush()

    staff = Staff(email=STAFF_EMAIL, full_name="Demo driver")
    session.add(staff)
    session.add(StaffRouteAssignment(staff_email=STAFF_EMAIL, route_id=route.id))
    print("* Created route and staff assignment")

    schedules = []
    for offset in range(2):
        schedule = Schedule(
            route_id=route.id,
            schedule_date=today + timedelta(days=offset),
            departure_time=route.departure_time,
            available_seats=40,
        )
        session.add(schedule)
        schedules.append(schedule)
    session.flush()
    print("* Created schedules for today and tomorrow")

    students = [
        Student(
            student_name=name,
            roll_number=f"TMS{index:04d}",
            email=f"student{index}@tms.example.com",
            transport_enrolled=True,
            allocated_route_id=route.id,
            boarding_stop=stop,
        )
        for index, (name, stop) in enumerate(
            [
                ("Anu Mohan", "North Gate"),
                ("Rahul Das", "North Gate"),
                ("Fathima Nazar", "Library Junction"),
            ],
            start=1,
        )
    ]
    session.add_all(students)
    session.flush()

    # Only the first two students book today, the third is left for reminders
    for index, student in enumerate(students[:2], start=1):
        session.add(
            Booking(
                student_id=student.id,
                route_id=route.id,
                schedule_id=schedules[0].id,
                trip_date=today,
                boarding_stop=student.boarding_stop,
                seat_number=str(index),
                booking_reference=f"BK-{today:%Y%m%d}-{index:03d}",
                qr_code=QR_CODE if index == 1 else f"TMS-DEMO-{index:04d}",
            )
        )
    session.commit()
    print("* Created students and bookings")
    session.close()


def GET(URL: str, status_code: int = HTTPStatus.OK, **kwargs):
    response = get(URL, **kwargs)
    assert response.status_code == status_code, response.text
    return response


def POST(URL: str, status_code: int = HTTPStatus.OK, **kwargs):
    response = post(URL, **kwargs)
    assert response.status_code == status_code, response.text
    return response


def testDB():
    # Base URL
    BASE_URL = "http://127.0.0.1:8080/staff"

    routes = GET(BASE_URL + URL_ASSIGNED_ROUTE, params={"staffEmail": STAFF_EMAIL})
    routeId = routes.json()["routes"][0]["routeId"]
    print(f"* Staff is assigned to route {routeId}")

    validation = POST(BASE_URL + URL_TICKET_VALIDATION, json={"qrCode": QR_CODE})
    print(f"* Ticket validation: {validation.json()['message']}")

    POST(
        BASE_URL + URL_ATTENDANCE_SCAN,
        json={"qrCode": QR_CODE, "staffEmail": STAFF_EMAIL},
        status_code=HTTPStatus.CREATED,
    )
    print("* Marked attendance by scan")

    POST(
        BASE_URL + URL_ATTENDANCE_SCAN,
        json={"qrCode": QR_CODE, "staffEmail": STAFF_EMAIL},
        status_code=HTTPStatus.CONFLICT,
    )
    print("* Second scan rejected")

    bookings = GET(
        BASE_URL + URL_ROUTE_BOOKING,
        params={"routeId": routeId, "staffEmail": STAFF_EMAIL},
    )
    bookingId = bookings.json()["bookings"][-1]["bookingId"]
    POST(
        BASE_URL + URL_ATTENDANCE_PRESENCE,
        json={
            "bookingId": bookingId,
            "status": AttendanceStatus.ABSENT.value,
            "staffEmail": STAFF_EMAIL,
        },
    )
    print("* Marked the second student absent")

    overview = GET(
        BASE_URL + URL_ATTENDANCE_OVERVIEW,
        params={"routeId": routeId, "staffEmail": STAFF_EMAIL},
    )
    print(f"* Attendance overview: {overview.json()['stats']}")


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    # remove tables
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    parser.add_argument("-test", action="store_true", help="exercise the running server")
    args = parser.parse_args()

    if args.cr:
        createTables()
    if args.init:
        initDB()
    if args.test:
        testDB()
    if args.rm:
        removeTables()
