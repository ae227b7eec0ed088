from datetime import date, datetime
from typing import Callable
from fastapi import Request
from sqlalchemy.orm.session import Session

from app.src import schemas
from app.src.push import PushGateway
from app.src.constants import TMZ_SECONDARY
from app.src.db import (
    Attendance,
    Booking,
    Route,
    Schedule,
    StaffRouteAssignment,
    Student,
)


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
            - app_id (int): Application ID from app state.
    """
    return schemas.RequestInfo(
        method=request.method,
        path=request.url.path,
        app_id=request.scope["app"].state.id,
    )


def currentTime() -> datetime:
    """Current time in the service timezone, the clock "today" is read from."""
    return datetime.now(TMZ_SECONDARY)


def clock() -> Callable[[], datetime]:
    """Source of timestamps taken after the request started, such as run completion."""
    return currentTime


def pushGateway() -> PushGateway:
    """Gateway used to deliver push notifications."""
    return PushGateway()


def ticket(session: Session, qrCode: str):
    """
    Resolve a scannable code to its booking with student, route and schedule.

    Returns:
        tuple | None: (Booking, Student, Route, Schedule) or None if no booking
        carries the code. The schedule may be None.
    """
    return (
        session.query(Booking, Student, Route, Schedule)
        .join(Student, Student.id == Booking.student_id)
        .join(Route, Route.id == Booking.route_id)
        .outerjoin(Schedule, Schedule.id == Booking.schedule_id)
        .filter(Booking.qr_code == qrCode)
        .first()
    )


def attendance(session: Session, bookingId: int, tripDate: date) -> Attendance | None:
    """Fetch the attendance row of a booking for a trip date."""
    return (
        session.query(Attendance)
        .filter(Attendance.booking_id == bookingId)
        .filter(Attendance.trip_date == tripDate)
        .first()
    )


def assignedRoutes(session: Session, email: str) -> list:
    """
    Fetch the active route assignments of a staff member.

    Returns:
        list: (StaffRouteAssignment, Route) rows ordered by route number.
    """
    return (
        session.query(StaffRouteAssignment, Route)
        .join(Route, Route.id == StaffRouteAssignment.route_id)
        .filter(StaffRouteAssignment.staff_email == email)
        .filter(StaffRouteAssignment.is_active.is_(True))
        .order_by(Route.route_number.asc())
        .all()
    )
