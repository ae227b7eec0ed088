from datetime import date, datetime
from datetime import date as Date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.src.db import sessionMaker
from app.src import attendance, exceptions, getters, schemas, validators
from app.src.loggers import logEvent
from app.src.enums import AttendanceStatus, BulkAction
from app.src.functions import (
    enumStr,
    makeExceptionResponses,
    serviceDate,
    storageTime,
)
from app.src.urls import (
    URL_ATTENDANCE_SCAN,
    URL_ATTENDANCE_PRESENCE,
    URL_ATTENDANCE_BULK,
    URL_ATTENDANCE_OVERVIEW,
)

route_staff = APIRouter()


## Output Schema
class MarkAttendanceSchema(BaseModel):
    success: bool = True
    message: str
    attendance: schemas.AttendanceRecord


class OverviewSchema(BaseModel):
    success: bool = True
    routeId: int
    date: date
    stats: dict
    students: List[dict]
    byStop: dict


## Input Forms
class ScanLocation(BaseModel):
    lat: float
    lng: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


class ScanForm(BaseModel):
    qrCode: Optional[str] = None
    staffId: Optional[int] = None
    staffEmail: Optional[str] = None
    location: Optional[ScanLocation] = None


class PresenceForm(BaseModel):
    bookingId: int
    status: AttendanceStatus = Field(description=enumStr(AttendanceStatus))
    staffEmail: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1024)


class BulkForm(BaseModel):
    action: BulkAction = Field(description=enumStr(BulkAction))
    routeId: int
    date: date
    staffEmail: Optional[str] = None
    bookingIds: Optional[List[int]] = None


## Query Params
class OverviewQueryParams(BaseModel):
    routeId: int = Field(Query())
    date: Optional[Date] = Field(Query(default=None))
    staffEmail: str = Field(Query())


## API endpoints [Staff]
@route_staff.post(
    URL_ATTENDANCE_SCAN,
    tags=["Attendance"],
    response_model=MarkAttendanceSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.QRCodeRequired(),
            exceptions.StaffInfoRequired(),
            exceptions.TicketNotFound(),
            exceptions.BookingCancelled(),
            exceptions.NotAuthorized(),
            exceptions.WrongDate("2025-11-04", "2025-11-05"),
            exceptions.AlreadyMarked({}),
            exceptions.DatabaseError(),
        ]
    ),
    description="""
    Mark the holder of a scanned ticket present.
    Requires the QR code and the staff id or email of the marker.
    The marker must hold an active assignment for the booking's route.
    The ticket must be for today, and not yet marked.
    A second scan of the same ticket on the same day answers 409 ALREADY_MARKED with the existing record,
    also when both scans race each other.
    The optional location (lat, lng, accuracy, timestamp) is stored with the record.
    Log the marking with the staff identity.
    """,
)
async def mark_attendance(
    fParam: ScanForm,
    currentTime: datetime = Depends(getters.currentTime),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        record = attendance.markAttendance(
            session,
            fParam.qrCode,
            fParam.staffId,
            fParam.staffEmail,
            fParam.location.model_dump(mode="json") if fParam.location else None,
            serviceDate(currentTime),
            storageTime(currentTime),
        )

        attendanceData = jsonable_encoder(record)
        logEvent(request_info, attendanceData, record.markedBy)
        return {
            "success": True,
            "message": "Attendance marked successfully",
            "attendance": attendanceData,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_staff.post(
    URL_ATTENDANCE_PRESENCE,
    tags=["Attendance"],
    response_model=MarkAttendanceSchema,
    responses=makeExceptionResponses(
        [
            exceptions.StaffInfoRequired(),
            exceptions.BookingNotFound(),
            exceptions.NotAuthorized(),
            exceptions.BookingCancelled(),
        ]
    ),
    description="""
    Manually mark one booking present or absent (manual entry).
    The staff member must hold an active assignment for the booking's route.
    Updates the existing record of the booking's trip date, or creates it.
    Log the marking with the staff identity.
    """,
)
async def mark_presence(
    fParam: PresenceForm,
    currentTime: datetime = Depends(getters.currentTime),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        record = attendance.markPresence(
            session,
            fParam.bookingId,
            fParam.status,
            fParam.staffEmail,
            fParam.notes,
            storageTime(currentTime),
        )

        attendanceData = jsonable_encoder(record)
        logEvent(request_info, attendanceData, record.markedBy)
        return {
            "success": True,
            "message": f"Student marked {fParam.status.value}",
            "attendance": attendanceData,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_staff.post(
    URL_ATTENDANCE_BULK,
    tags=["Attendance"],
    response_model=schemas.BulkMarkResult,
    response_model_exclude_none=True,
    responses=makeExceptionResponses(
        [
            exceptions.StaffInfoRequired(),
            exceptions.NotAuthorized(),
            exceptions.MissingParameter("bookingIds"),
            exceptions.BulkConflict(),
        ]
    ),
    description="""
    Mark attendance of several bookings of a route and date at once.
    The staff member must hold an active assignment for the route.

    Actions:
        mark_all_absent: every confirmed or completed booking without attendance is marked absent in one batch.
            Existing records are never touched. Answers 409 CONFLICT, with nothing inserted, when a scan races the batch.
        mark_selected_present, mark_selected_absent: each listed booking is updated or created one by one.
            Failing bookings are reported in `errors` and do not stop the batch.
    """,
)
async def bulk_mark_attendance(
    fParam: BulkForm,
    currentTime: datetime = Depends(getters.currentTime),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        if fParam.staffEmail is None or not fParam.staffEmail.strip():
            raise exceptions.StaffInfoRequired()
        markerEmail = validators.normalizeEmail(fParam.staffEmail)
        validators.routeAssignment(session, markerEmail, fParam.routeId)

        now = storageTime(currentTime)
        if fParam.action == BulkAction.MARK_ALL_ABSENT:
            result = attendance.bulkMarkAbsent(
                session, fParam.routeId, fParam.date, markerEmail, now
            )
        else:
            if not fParam.bookingIds:
                raise exceptions.MissingParameter("bookingIds")
            targetStatus = (
                AttendanceStatus.PRESENT
                if fParam.action == BulkAction.MARK_SELECTED_PRESENT
                else AttendanceStatus.ABSENT
            )
            result = attendance.bulkMarkSelected(
                session,
                fParam.bookingIds,
                targetStatus,
                fParam.routeId,
                fParam.date,
                markerEmail,
                now,
            )

        if result.marked_count:
            logEvent(
                request_info,
                {
                    "action": fParam.action.value,
                    "routeId": fParam.routeId,
                    "date": fParam.date.isoformat(),
                    "marked_count": result.marked_count,
                },
                markerEmail,
            )
        return result
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_staff.get(
    URL_ATTENDANCE_OVERVIEW,
    tags=["Attendance"],
    response_model=OverviewSchema,
    responses=makeExceptionResponses([exceptions.NotAuthorized()]),
    description="""
    Attendance overview of a route for a date, today by default.
    The staff member must hold an active assignment for the route.
    Lists each confirmed or completed booking with its status (present, absent or not_marked),
    the totals with the attendance rate in percent, and a breakdown by boarding stop.
    """,
)
async def attendance_overview(
    qParam: OverviewQueryParams = Depends(),
    currentTime: datetime = Depends(getters.currentTime),
):
    try:
        session = sessionMaker()
        validators.routeAssignment(session, qParam.staffEmail, qParam.routeId)
        tripDate = qParam.date or serviceDate(currentTime)
        overview = attendance.attendanceOverview(session, qParam.routeId, tripDate)
        return {"success": True, "routeId": qParam.routeId, "date": tripDate, **overview}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
