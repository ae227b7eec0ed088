from datetime import date, datetime, time
from datetime import date as Date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.src.db import sessionMaker
from app.src import attendance, exceptions, getters, validators
from app.src.functions import makeExceptionResponses, serviceDate
from app.src.urls import URL_ASSIGNED_ROUTE, URL_ROUTE_BOOKING

route_staff = APIRouter()


## Output Schema
class AssignedRouteSchema(BaseModel):
    assignmentId: int
    routeId: int
    route_number: str
    route_name: str
    start_location: Optional[str]
    end_location: Optional[str]
    departure_time: Optional[time]
    status: str
    assigned_at: Optional[datetime]


class AssignedRoutesSchema(BaseModel):
    success: bool = True
    staffEmail: str
    routes: List[AssignedRouteSchema]


class RouteBookingSchema(BaseModel):
    bookingId: int
    studentId: int
    student_name: str
    roll_number: str
    boarding_stop: Optional[str]
    seat_number: Optional[str]
    booking_status: str
    attendance_status: str


class RouteBookingsSchema(BaseModel):
    success: bool = True
    routeId: int
    date: date
    bookings: List[RouteBookingSchema]


## Query Params
class AssignedQueryParams(BaseModel):
    staffEmail: str = Field(Query())


class BookingQueryParams(BaseModel):
    routeId: int = Field(Query())
    staffEmail: str = Field(Query())
    date: Optional[Date] = Field(Query(default=None))


## API endpoints [Staff]
@route_staff.get(
    URL_ASSIGNED_ROUTE,
    tags=["Staff Route"],
    response_model=AssignedRoutesSchema,
    description="""
    List the routes a staff member holds an active assignment for.
    The email is matched lower-cased and trimmed.
    """,
)
async def fetch_assigned_routes(qParam: AssignedQueryParams = Depends()):
    try:
        session = sessionMaker()
        email = validators.normalizeEmail(qParam.staffEmail)
        routes = [
            {
                "assignmentId": assignment.id,
                "routeId": route.id,
                "route_number": route.route_number,
                "route_name": route.route_name,
                "start_location": route.start_location,
                "end_location": route.end_location,
                "departure_time": route.departure_time,
                "status": route.status,
                "assigned_at": assignment.assigned_at,
            }
            for assignment, route in getters.assignedRoutes(session, email)
        ]
        return {"success": True, "staffEmail": email, "routes": routes}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_staff.get(
    URL_ROUTE_BOOKING,
    tags=["Staff Route"],
    response_model=RouteBookingsSchema,
    responses=makeExceptionResponses([exceptions.NotAuthorized()]),
    description="""
    List the confirmed or completed bookings of a route for a date, today by default,
    with the attendance status of each.
    The staff member must hold an active assignment for the route.
    """,
)
async def fetch_route_bookings(
    qParam: BookingQueryParams = Depends(),
    currentTime: datetime = Depends(getters.currentTime),
):
    try:
        session = sessionMaker()
        validators.routeAssignment(session, qParam.staffEmail, qParam.routeId)
        tripDate = qParam.date or serviceDate(currentTime)
        bookings = [
            {
                "bookingId": booking.id,
                "studentId": student.id,
                "student_name": student.student_name,
                "roll_number": student.roll_number,
                "boarding_stop": booking.boarding_stop,
                "seat_number": booking.seat_number,
                "booking_status": booking.status,
                "attendance_status": record.status if record else "not_marked",
            }
            for booking, student, record in attendance.routeBookings(
                session, qParam.routeId, tripDate
            )
        ]
        return {
            "success": True,
            "routeId": qParam.routeId,
            "date": tripDate,
            "bookings": bookings,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
