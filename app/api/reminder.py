from datetime import date, datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.src.db import sessionMaker
from app.src import exceptions, getters, reminders, validators
from app.src.loggers import logEvent
from app.src.push import PushGateway
from app.src.constants import SCHEDULER_SECRET_KEY
from app.src.enums import NotificationResponse
from app.src.functions import (
    enumStr,
    makeExceptionResponses,
    serviceDate,
    storageTime,
)
from app.src.urls import URL_BOOKING_REMINDER, URL_NOTIFICATION_RESPONSE

route_scheduler = APIRouter()


## Input Forms
class ReminderForm(BaseModel):
    schedulerKey: Optional[str] = None
    targetDate: Optional[date] = None
    testMode: bool = False


class ResponseForm(BaseModel):
    schedulerKey: Optional[str] = None
    notificationId: int
    studentId: int
    action: NotificationResponse = Field(description=enumStr(NotificationResponse))


## Query Params
class ReminderQueryParams(BaseModel):
    targetDate: Optional[date] = Field(Query(default=None))


## API endpoints [Scheduler]
@route_scheduler.get(
    URL_BOOKING_REMINDER,
    tags=["Booking Reminder"],
    description="""
    Preview the booking reminders that would be sent for a date, tomorrow by default.
    A reminder is due for every transport-enrolled student with an allocated route
    whose route has a bookable schedule on that date and who holds no
    confirmed or completed booking on it.
    Nothing is stored or pushed.
    """,
)
async def preview_booking_reminders(
    qParam: ReminderQueryParams = Depends(),
    currentTime: datetime = Depends(getters.currentTime),
):
    try:
        session = sessionMaker()
        targetDate = qParam.targetDate or serviceDate(currentTime) + timedelta(days=1)
        candidates = reminders.reminderCandidates(session, targetDate)
        return jsonable_encoder({"success": True, **candidates})
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_scheduler.post(
    URL_BOOKING_REMINDER,
    tags=["Booking Reminder"],
    responses=makeExceptionResponses([exceptions.InvalidSchedulerKey()]),
    description="""
    Send the booking reminders of a date, tomorrow by default, right away.
    Requires the scheduler key.
    Each due reminder is stored as a notification and pushed to the student's active subscriptions.
    In test mode the reminders are only counted.
    The run is not tracked, repeated calls send again.
    """,
)
async def send_booking_reminders(
    fParam: ReminderForm,
    currentTime: datetime = Depends(getters.currentTime),
    gateway: PushGateway = Depends(getters.pushGateway),
    request_info=Depends(getters.requestInfo),
):
    try:
        validators.schedulerKey(fParam.schedulerKey, SCHEDULER_SECRET_KEY)
        session = sessionMaker()
        targetDate = fParam.targetDate or serviceDate(currentTime) + timedelta(days=1)
        result = reminders.sendReminders(
            session,
            gateway,
            targetDate,
            storageTime(currentTime),
            testMode=fParam.testMode,
        )

        if not fParam.testMode:
            logEvent(request_info, {"date": targetDate.isoformat(), **result["summary"]})
        return jsonable_encoder(
            {
                "success": True,
                "message": "Booking reminders processed",
                "date": targetDate,
                **result,
            }
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        if "session" in locals():
            session.close()


@route_scheduler.post(
    URL_NOTIFICATION_RESPONSE,
    tags=["Booking Reminder"],
    responses=makeExceptionResponses(
        [exceptions.InvalidSchedulerKey(), exceptions.NotificationNotFound()]
    ),
    description="""
    Record the action a student took on a reminder push message.
    Requires the scheduler key, the push service relays the answer on the student's behalf.
    The notification must be addressed to the given student.
    Any answer, viewing included, stops the 18:00 follow-up for that trip.
    """,
)
async def record_notification_response(
    fParam: ResponseForm,
    currentTime: datetime = Depends(getters.currentTime),
    request_info=Depends(getters.requestInfo),
):
    try:
        validators.schedulerKey(fParam.schedulerKey, SCHEDULER_SECRET_KEY)
        session = sessionMaker()
        notification = reminders.recordResponse(
            session,
            fParam.notificationId,
            fParam.studentId,
            fParam.action,
            storageTime(currentTime),
        )

        logEvent(
            request_info,
            {
                "notificationId": notification.id,
                "studentId": notification.student_id,
                "response": notification.user_response,
            },
        )
        return {
            "success": True,
            "notificationId": notification.id,
            "action": notification.user_response,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        if "session" in locals():
            session.close()
