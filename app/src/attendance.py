"""
Ticket validation and attendance marking.

Every write path goes through the (booking_id, trip_date) unique constraint
of the attendance table, so two staff members scanning the same ticket at
the same moment end up with one row and one ALREADY_MARKED answer.
"""

import logging
from datetime import date, datetime
from sqlalchemy import and_, exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.session import Session

from app.src import exceptions, getters, schemas, validators
from app.src.constants import BULK_ABSENT_NOTE
from app.src.db import Attendance, Booking, Route, Student
from app.src.enums import AttendanceMethod, AttendanceStatus, BookingStatus

logger = logging.getLogger("Attendance")

MARKABLE_BOOKINGS = [BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def ticketContext(booking: Booking, student: Student, route: Route) -> dict:
    return {
        "booking": schemas.BookingInfo(
            id=booking.id,
            trip_date=booking.trip_date,
            boarding_stop=booking.boarding_stop,
            seat_number=booking.seat_number,
            status=booking.status,
            booking_reference=booking.booking_reference,
        ),
        "student": schemas.StudentInfo(
            id=student.id,
            student_name=student.student_name,
            roll_number=student.roll_number,
            email=student.email,
            mobile=student.mobile,
        ),
        "route": schemas.RouteInfo(
            id=route.id,
            route_number=route.route_number,
            route_name=route.route_name,
            departure_time=route.departure_time,
        ),
    }


def markedAt(attendance: Attendance) -> datetime | None:
    if attendance.status == AttendanceStatus.ABSENT:
        return attendance.marked_absent_at
    return attendance.scanned_at or attendance.boarding_time


def markedBy(attendance: Attendance) -> str | None:
    if attendance.status == AttendanceStatus.ABSENT:
        return attendance.marked_absent_by
    return attendance.scanned_by


def existingMark(attendance: Attendance) -> dict:
    return {
        "id": attendance.id,
        "status": attendance.status,
        "method": attendance.attendance_method,
        "markedAt": markedAt(attendance),
        "markedBy": markedBy(attendance),
    }


def attendanceRecord(
    attendance: Attendance, student: Student, route: Route | None = None
) -> schemas.AttendanceRecord:
    return schemas.AttendanceRecord(
        id=attendance.id,
        bookingId=attendance.booking_id,
        studentId=attendance.student_id,
        studentName=student.student_name,
        rollNumber=student.roll_number,
        routeId=attendance.route_id,
        routeNumber=route.route_number if route else None,
        boardingStop=attendance.boarding_stop,
        boardingTime=attendance.boarding_time,
        markedBy=markedBy(attendance),
        method=attendance.attendance_method,
        status=attendance.status,
    )


def applyMark(
    session: Session,
    booking: Booking,
    status: AttendanceStatus,
    markerEmail: str,
    method: AttendanceMethod,
    now: datetime,
    notes: str | None = None,
) -> Attendance:
    """
    Update the attendance row of the booking's trip date, or stage a new one.

    Nothing is committed here.
    """
    attendance = getters.attendance(session, booking.id, booking.trip_date)
    if attendance is None:
        attendance = Attendance(
            booking_id=booking.id,
            student_id=booking.student_id,
            route_id=booking.route_id,
            schedule_id=booking.schedule_id,
            trip_date=booking.trip_date,
            boarding_stop=booking.boarding_stop,
            qr_code=booking.qr_code,
            booking_reference=booking.booking_reference,
        )
        session.add(attendance)

    attendance.status = status.value
    attendance.attendance_method = method.value
    if status == AttendanceStatus.PRESENT:
        attendance.scanned_at = now
        attendance.scanned_by = markerEmail
        if attendance.boarding_time is None:
            attendance.boarding_time = now
    else:
        attendance.marked_absent_at = now
        attendance.marked_absent_by = markerEmail
    if notes is not None:
        attendance.notes = notes
    return attendance


def saveMark(
    session: Session,
    booking: Booking,
    status: AttendanceStatus,
    markerEmail: str,
    method: AttendanceMethod,
    now: datetime,
    notes: str | None = None,
) -> Attendance:
    """Insert-or-update the attendance of a booking and commit it."""
    try:
        attendance = applyMark(session, booking, status, markerEmail, method, now, notes)
        session.commit()
    except IntegrityError:
        # A concurrent insert won, update the row it created
        session.rollback()
        attendance = applyMark(session, booking, status, markerEmail, method, now, notes)
        session.commit()
    return attendance


def routeBookings(session: Session, routeId: int, tripDate: date) -> list:
    """
    Fetch the markable bookings of a route and date with their attendance.

    Returns:
        list: (Booking, Student, Attendance | None) rows ordered by stop and name.
    """
    return (
        session.query(Booking, Student, Attendance)
        .join(Student, Student.id == Booking.student_id)
        .outerjoin(
            Attendance,
            and_(
                Attendance.booking_id == Booking.id,
                Attendance.trip_date == Booking.trip_date,
            ),
        )
        .filter(Booking.route_id == routeId)
        .filter(Booking.trip_date == tripDate)
        .filter(Booking.status.in_(MARKABLE_BOOKINGS))
        .order_by(Booking.boarding_stop.asc(), Student.student_name.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Ticket validation
# ---------------------------------------------------------------------------
def validateTicket(
    session: Session, qrCode: str | None, today: date
) -> schemas.TicketValidation:
    """
    Resolve a scanned code and tell whether it can be marked today.

    Read-only. Checks run in a fixed order: unknown code, cancelled booking,
    trip date other than `today`, existing attendance. An existing mark is a
    valid result so that scanning stays idempotent.

    Raises:
        exceptions.QRCodeRequired: If the code is empty.
    """
    if qrCode is None or not qrCode.strip():
        raise exceptions.QRCodeRequired()

    row = getters.ticket(session, qrCode.strip())
    if row is None:
        return schemas.TicketNotFound()
    booking, student, route, _ = row

    if booking.status == BookingStatus.CANCELLED:
        return schemas.TicketCancelled(status=booking.status)
    if booking.trip_date != today:
        return schemas.TicketWrongDate(
            message=f"This ticket is for {booking.trip_date}, not today ({today})",
            ticketDate=booking.trip_date,
            currentDate=today,
        )

    context = ticketContext(booking, student, route)
    attendance = getters.attendance(session, booking.id, booking.trip_date)
    if attendance is not None:
        return schemas.TicketAlreadyMarked(
            markedAt=markedAt(attendance),
            markedBy=markedBy(attendance),
            attendanceStatus=attendance.status,
            **context,
        )
    return schemas.TicketValid(**context)


# ---------------------------------------------------------------------------
# Attendance marking
# ---------------------------------------------------------------------------
def markAttendance(
    session: Session,
    qrCode: str | None,
    staffId: int | None,
    staffEmail: str | None,
    location: dict | None,
    today: date,
    now: datetime,
) -> schemas.AttendanceRecord:
    """
    Mark the holder of a scanned ticket present.

    Args:
        session (Session): Active SQLAlchemy session.
        qrCode (str | None): Scanned code.
        staffId (int | None): Id of the marking staff member.
        staffEmail (str | None): Email of the marking staff member, preferred over the id.
        location (dict | None): Optional scan geolocation (lat, lng, accuracy, timestamp).
        today (date): Service-timezone date of the scan.
        now (datetime): Time of the scan.

    Returns:
        schemas.AttendanceRecord: The attendance row that was created.

    Raises:
        exceptions.QRCodeRequired, exceptions.StaffInfoRequired,
        exceptions.TicketNotFound, exceptions.BookingCancelled,
        exceptions.NotAuthorized, exceptions.WrongDate,
        exceptions.AlreadyMarked
    """
    if qrCode is None or not qrCode.strip():
        raise exceptions.QRCodeRequired()
    if staffId is None and (staffEmail is None or not staffEmail.strip()):
        raise exceptions.StaffInfoRequired()

    row = getters.ticket(session, qrCode.strip())
    if row is None:
        raise exceptions.TicketNotFound()
    booking, student, route, _ = row
    if booking.status == BookingStatus.CANCELLED:
        raise exceptions.BookingCancelled()

    markerEmail = validators.staffEmail(session, (staffEmail or "").strip() or staffId)
    validators.routeAssignment(session, markerEmail, booking.route_id)

    if booking.trip_date != today:
        raise exceptions.WrongDate(booking.trip_date, today)

    existing = getters.attendance(session, booking.id, booking.trip_date)
    if existing is not None:
        raise exceptions.AlreadyMarked(existingMark(existing))

    attendance = Attendance(
        booking_id=booking.id,
        student_id=booking.student_id,
        route_id=booking.route_id,
        schedule_id=booking.schedule_id,
        trip_date=booking.trip_date,
        boarding_stop=booking.boarding_stop,
        status=AttendanceStatus.PRESENT.value,
        boarding_time=now,
        scanned_at=now,
        scanned_by=markerEmail,
        attendance_method=AttendanceMethod.QR_SCAN.value,
        scan_location=location,
        qr_code=booking.qr_code,
        booking_reference=booking.booking_reference,
    )
    session.add(attendance)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = getters.attendance(session, booking.id, booking.trip_date)
        if existing is None:
            raise
        raise exceptions.AlreadyMarked(existingMark(existing))

    logger.info(f"Booking {booking.id} marked present by {markerEmail}")
    return attendanceRecord(attendance, student, route)


def markPresence(
    session: Session,
    bookingId: int,
    status: AttendanceStatus,
    staffEmail: str | None,
    notes: str | None,
    now: datetime,
) -> schemas.AttendanceRecord:
    """
    Manually mark one booking present or absent.

    Unlike scanning, a manual mark overwrites the status of an existing
    row for the booking's trip date.
    """
    if staffEmail is None or not staffEmail.strip():
        raise exceptions.StaffInfoRequired()
    row = (
        session.query(Booking, Student, Route)
        .join(Student, Student.id == Booking.student_id)
        .join(Route, Route.id == Booking.route_id)
        .filter(Booking.id == bookingId)
        .first()
    )
    if row is None:
        raise exceptions.BookingNotFound()
    booking, student, route = row

    markerEmail = validators.normalizeEmail(staffEmail)
    validators.routeAssignment(session, markerEmail, booking.route_id)
    if booking.status == BookingStatus.CANCELLED:
        raise exceptions.BookingCancelled()

    attendance = saveMark(
        session, booking, status, markerEmail, AttendanceMethod.MANUAL_ENTRY, now, notes
    )
    return attendanceRecord(attendance, student, route)


# ---------------------------------------------------------------------------
# Bulk marking
# ---------------------------------------------------------------------------
def bulkMarkAbsent(
    session: Session, routeId: int, tripDate: date, markerEmail: str, now: datetime
) -> schemas.BulkMarkResult:
    """
    Mark every unmarked booking of a route and date absent.

    Only bookings without an attendance row are touched, and all rows are
    inserted in one batch. If a scan lands between the read and the insert
    the whole batch is rolled back and reported as a conflict.

    Raises:
        exceptions.BulkConflict: If a concurrent mark violated the unique constraint.
    """
    hasAttendance = exists().where(
        and_(Attendance.booking_id == Booking.id, Attendance.trip_date == tripDate)
    )
    unmarked = (
        session.query(Booking, Student)
        .join(Student, Student.id == Booking.student_id)
        .filter(Booking.route_id == routeId)
        .filter(Booking.trip_date == tripDate)
        .filter(Booking.status.in_(MARKABLE_BOOKINGS))
        .filter(~hasAttendance)
        .order_by(Booking.id.asc())
        .all()
    )
    if not unmarked:
        return schemas.BulkMarkResult(
            message="All students already have attendance marked", marked_count=0
        )

    records = [
        Attendance(
            booking_id=booking.id,
            student_id=booking.student_id,
            route_id=booking.route_id,
            schedule_id=booking.schedule_id,
            trip_date=booking.trip_date,
            boarding_stop=booking.boarding_stop,
            status=AttendanceStatus.ABSENT.value,
            marked_absent_at=now,
            marked_absent_by=markerEmail,
            attendance_method=AttendanceMethod.BULK_MARK.value,
            qr_code=booking.qr_code,
            booking_reference=booking.booking_reference,
            notes=BULK_ABSENT_NOTE,
        )
        for booking, _ in unmarked
    ]
    session.add_all(records)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise exceptions.BulkConflict()

    logger.info(
        f"Marked {len(records)} bookings absent on route {routeId} for {tripDate}"
    )
    return schemas.BulkMarkResult(
        message=f"Marked {len(records)} students as absent",
        marked_count=len(records),
        students=[
            schemas.MarkedStudent(name=s.student_name, roll_number=s.roll_number)
            for _, s in unmarked
        ],
    )


def bulkMarkSelected(
    session: Session,
    bookingIds: list[int],
    status: AttendanceStatus,
    routeId: int,
    tripDate: date,
    markerEmail: str,
    now: datetime,
) -> schemas.BulkMarkResult:
    """
    Mark the given bookings present or absent, one at a time.

    Each booking commits on its own. A booking that is missing, belongs to
    another route or date, is cancelled, or fails to save is reported in
    `errors` and does not stop the rest of the batch.
    """
    students, errors = [], []
    for bookingId in dict.fromkeys(bookingIds):
        try:
            row = (
                session.query(Booking, Student)
                .join(Student, Student.id == Booking.student_id)
                .filter(Booking.id == bookingId)
                .first()
            )
            if row is None:
                errors.append(schemas.BulkItemError(bookingId=bookingId, error="Booking not found"))
                continue
            booking, student = row
            if booking.route_id != routeId:
                errors.append(
                    schemas.BulkItemError(bookingId=bookingId, error="Booking is not on this route")
                )
                continue
            if booking.trip_date != tripDate:
                errors.append(
                    schemas.BulkItemError(bookingId=bookingId, error="Booking is not for this date")
                )
                continue
            if booking.status == BookingStatus.CANCELLED:
                errors.append(
                    schemas.BulkItemError(bookingId=bookingId, error="Booking has been cancelled")
                )
                continue

            saveMark(session, booking, status, markerEmail, AttendanceMethod.BULK_MARK, now)
            students.append(
                schemas.MarkedStudent(name=student.student_name, roll_number=student.roll_number)
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Marking booking {bookingId} failed: {e}")
            errors.append(schemas.BulkItemError(bookingId=bookingId, error="Database operation failed"))

    return schemas.BulkMarkResult(
        success=len(students) > 0 or not errors,
        message=f"Marked {len(students)} students as {status.value}",
        marked_count=len(students),
        failed_count=len(errors),
        students=students,
        errors=errors or None,
    )


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------
def attendanceOverview(session: Session, routeId: int, tripDate: date) -> dict:
    """
    Summarize attendance of a route for a date.

    Returns:
        dict: `stats` (total_bookings, present, absent, not_marked,
        attendance_rate in percent), `students` and `byStop` breakdown.
    """
    students, byStop = [], {}
    stats = {"total_bookings": 0, "present": 0, "absent": 0, "not_marked": 0}
    for booking, student, attendance in routeBookings(session, routeId, tripDate):
        status = attendance.status if attendance else "not_marked"
        stats["total_bookings"] += 1
        stats[status] += 1

        stop = booking.boarding_stop or "Unknown"
        stopStats = byStop.setdefault(
            stop, {"total": 0, "present": 0, "absent": 0, "not_marked": 0}
        )
        stopStats["total"] += 1
        stopStats[status] += 1

        students.append(
            {
                "bookingId": booking.id,
                "studentId": student.id,
                "name": student.student_name,
                "roll_number": student.roll_number,
                "boarding_stop": booking.boarding_stop,
                "seat_number": booking.seat_number,
                "status": status,
                "markedAt": markedAt(attendance) if attendance else None,
                "markedBy": markedBy(attendance) if attendance else None,
                "method": attendance.attendance_method if attendance else None,
            }
        )

    total = stats["total_bookings"]
    stats["attendance_rate"] = round(stats["present"] * 100 / total) if total else 0
    return {"stats": stats, "students": students, "byStop": byStop}
