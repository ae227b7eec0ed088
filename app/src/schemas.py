from datetime import date, datetime, time
from typing import Literal, Optional, Union
from pydantic import BaseModel


class RequestInfo(BaseModel):
    method: str
    path: str
    app_id: int


class HealthStatus(BaseModel):
    status: str
    version: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: Optional[str] = None


## Ticket context
class BookingInfo(BaseModel):
    id: int
    trip_date: date
    boarding_stop: Optional[str] = None
    seat_number: Optional[str] = None
    status: str
    booking_reference: Optional[str] = None


class StudentInfo(BaseModel):
    id: int
    student_name: str
    roll_number: str
    email: Optional[str] = None
    mobile: Optional[str] = None


class RouteInfo(BaseModel):
    id: int
    route_number: str
    route_name: str
    departure_time: Optional[time] = None


## Ticket validation results
class TicketNotFound(BaseModel):
    valid: Literal[False] = False
    error: Literal["NOT_FOUND"] = "NOT_FOUND"
    message: str = "Invalid QR code - booking not found"


class TicketCancelled(BaseModel):
    valid: Literal[False] = False
    error: Literal["BOOKING_CANCELLED"] = "BOOKING_CANCELLED"
    message: str = "This booking has been cancelled"
    status: str


class TicketWrongDate(BaseModel):
    valid: Literal[False] = False
    error: Literal["WRONG_DATE"] = "WRONG_DATE"
    message: str
    ticketDate: date
    currentDate: date


class TicketAlreadyMarked(BaseModel):
    valid: Literal[True] = True
    alreadyMarked: Literal[True] = True
    message: str = "Attendance already marked for this student today"
    markedAt: Optional[datetime] = None
    markedBy: Optional[str] = None
    attendanceStatus: str
    booking: BookingInfo
    student: StudentInfo
    route: RouteInfo


class TicketValid(BaseModel):
    valid: Literal[True] = True
    alreadyMarked: Literal[False] = False
    message: str = "Ticket is valid and ready for attendance marking"
    booking: BookingInfo
    student: StudentInfo
    route: RouteInfo


TicketValidation = Union[
    TicketNotFound, TicketCancelled, TicketWrongDate, TicketAlreadyMarked, TicketValid
]


## Attendance results
class AttendanceRecord(BaseModel):
    id: int
    bookingId: int
    studentId: int
    studentName: Optional[str] = None
    rollNumber: Optional[str] = None
    routeId: int
    routeNumber: Optional[str] = None
    boardingStop: Optional[str] = None
    boardingTime: Optional[datetime] = None
    markedBy: Optional[str] = None
    method: str
    status: str


class MarkedStudent(BaseModel):
    name: str
    roll_number: str


class BulkItemError(BaseModel):
    bookingId: int
    error: str


class BulkMarkResult(BaseModel):
    success: bool = True
    message: str
    marked_count: int
    failed_count: int = 0
    students: list[MarkedStudent] = []
    errors: Optional[list[BulkItemError]] = None


## Scheduler results
class RunOutcome(BaseModel):
    status: Literal["skipped", "completed", "failed"]
    runId: Optional[int] = None
    lastRun: Optional[datetime] = None
    alreadyRunning: bool = False
    summary: Optional[dict] = None
    details: Optional[list | dict] = None
    error: Optional[str] = None
