from datetime import date, datetime, timedelta
from datetime import date as Date
from typing import Callable, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.src.db import sessionMaker
from app.src import exceptions, getters, reminders, schemas, validators
from app.src.loggers import logEvent
from app.src.push import PushGateway
from app.src.enums import SchedulerAction, SchedulerType
from app.src.functions import makeExceptionResponses, serviceDate, storageTime
from app.src.run_tracker import (
    SchedulerRunTracker,
    daySummary,
    recommendations,
    slotStatuses,
    statistics,
)
from app.src.constants import (
    SCHEDULER_SECRET_KEY,
    SLOT_FIRST_PASS,
    SLOT_FOLLOW_UP,
    TMZ_SECONDARY,
)
from app.src.urls import (
    URL_DAILY_SCHEDULER,
    URL_REMINDER_SCHEDULER,
    URL_SCHEDULER_STATUS,
)

route_scheduler = APIRouter()


## Output Schema
class SchedulerResultSchema(BaseModel):
    summary: Optional[dict] = None
    details: Optional[list | dict] = None
    error: Optional[str] = None


class SchedulerRunSchema(BaseModel):
    success: bool
    skipped: bool = False
    message: str
    timeSlot: Optional[str] = None
    runId: Optional[int] = None
    lastRun: Optional[datetime] = None
    result: Optional[SchedulerResultSchema] = None


class SchedulerTestSchema(BaseModel):
    success: bool
    message: str
    result: SchedulerRunSchema


## Input Forms
class DailySchedulerForm(BaseModel):
    schedulerKey: Optional[str] = None
    targetDate: Optional[date] = None
    timeSlot: Optional[str] = None
    dryRun: bool = False
    force: bool = False


class ReminderSchedulerForm(BaseModel):
    schedulerKey: Optional[str] = None
    targetDate: Optional[date] = None
    dryRun: bool = False
    force: bool = False


class SchedulerTestForm(BaseModel):
    action: Optional[str] = None
    timeSlot: str = SLOT_FIRST_PASS
    schedulerKey: Optional[str] = None


## Query Params
class StatusQueryParams(BaseModel):
    date: Optional[Date] = Field(Query(default=None))
    detailed: bool = Field(Query(default=False))


# Functions
def runResponse(outcome: schemas.RunOutcome, name: str, timeSlot: str | None) -> dict:
    response = {
        "success": outcome.status != "failed",
        "skipped": outcome.status == "skipped",
        "timeSlot": timeSlot,
        "runId": outcome.runId,
    }
    if outcome.status == "skipped":
        response["lastRun"] = outcome.lastRun
        response["message"] = (
            f"{name} is already running"
            if outcome.alreadyRunning
            else f"{name} already completed today"
        )
    elif outcome.status == "completed":
        response["message"] = f"{name} completed"
        response["result"] = {
            "summary": outcome.summary,
            "details": outcome.details,
            "error": None,
        }
    else:
        response["message"] = f"{name} failed"
        response["result"] = {"summary": None, "details": None, "error": outcome.error}
    return response


def runDailyScheduler(
    session: Session,
    gateway: PushGateway,
    timeSlot: str | None,
    targetDate: date | None,
    dryRun: bool,
    force: bool,
    currentTime: datetime,
    clock: Callable[[], datetime] = getters.currentTime,
) -> dict:
    """
    Run the booking reminder job for a daily slot, at most once unless forced.

    The slot defaults to the one of the current hour. The 18:00 slot is
    always forced. The reminder date defaults to tomorrow. `clock` stamps
    the completion of the run.
    """
    localTime = currentTime.astimezone(TMZ_SECONDARY)
    slot = validators.timeSlot(timeSlot, localTime)
    force = force or slot == SLOT_FOLLOW_UP
    today = localTime.date()
    targetDate = targetDate or today + timedelta(days=1)
    now = storageTime(currentTime)

    tracker = SchedulerRunTracker(
        session,
        SchedulerType.BOOKING_REMINDERS,
        slot,
        clock=lambda: storageTime(clock()),
    )
    outcome = tracker.execute(
        lambda s: reminders.runDailySlot(s, gateway, slot, targetDate, dryRun, now),
        today,
        targetDate,
        dryRun,
        force,
        now,
    )
    return runResponse(outcome, f"Daily scheduler {slot}", slot)


## API endpoints [Scheduler]
@route_scheduler.post(
    URL_DAILY_SCHEDULER,
    tags=["Scheduler"],
    response_model=SchedulerRunSchema,
    response_model_exclude_none=True,
    responses=makeExceptionResponses(
        [exceptions.InvalidSchedulerKey(), exceptions.InvalidTimeSlot()]
    ),
    description="""
    Run the daily booking reminder scheduler for a time slot (17:00 or 18:00).
    Requires the scheduler key, checked before anything is read or written.
    The slot defaults to the current hour, any other hour is rejected.
    A slot that already completed today is skipped unless `force` is set.
    The 18:00 slot is always forced.
    The reminder date defaults to tomorrow.
    Unless dry running, 17:00 purges reminders older than 30 days and
    18:00 follows up on reminders of the last 2 hours nobody answered (at most 100).
    A failing job is recorded as a failed run and answered with `success` false.
    """,
)
async def run_daily_scheduler(
    fParam: DailySchedulerForm,
    currentTime: datetime = Depends(getters.currentTime),
    clock=Depends(getters.clock),
    gateway: PushGateway = Depends(getters.pushGateway),
    request_info=Depends(getters.requestInfo),
):
    try:
        validators.schedulerKey(fParam.schedulerKey, SCHEDULER_SECRET_KEY)
        session = sessionMaker()
        response = runDailyScheduler(
            session,
            gateway,
            fParam.timeSlot,
            fParam.targetDate,
            fParam.dryRun,
            fParam.force,
            currentTime,
            clock,
        )
        if not response["skipped"]:
            logEvent(
                request_info,
                {"runId": response["runId"], "success": response["success"]},
                SchedulerType.BOOKING_REMINDERS.value,
            )
        return response
    except Exception as e:
        exceptions.handle(e)
    finally:
        if "session" in locals():
            session.close()


@route_scheduler.post(
    URL_REMINDER_SCHEDULER,
    tags=["Scheduler"],
    response_model=SchedulerRunSchema,
    response_model_exclude_none=True,
    responses=makeExceptionResponses([exceptions.InvalidSchedulerKey()]),
    description="""
    Run the booking reminder scheduler without a time slot, once per day unless forced.
    Requires the scheduler key.
    The reminder date defaults to tomorrow.
    Unless dry running, purges reminder notifications older than 30 days
    and push subscriptions inactive for 30 days.
    """,
)
async def run_reminder_scheduler(
    fParam: ReminderSchedulerForm,
    currentTime: datetime = Depends(getters.currentTime),
    clock=Depends(getters.clock),
    gateway: PushGateway = Depends(getters.pushGateway),
    request_info=Depends(getters.requestInfo),
):
    try:
        validators.schedulerKey(fParam.schedulerKey, SCHEDULER_SECRET_KEY)
        session = sessionMaker()
        today = serviceDate(currentTime)
        targetDate = fParam.targetDate or today + timedelta(days=1)
        now = storageTime(currentTime)

        tracker = SchedulerRunTracker(
            session,
            SchedulerType.BOOKING_REMINDERS,
            clock=lambda: storageTime(clock()),
        )
        outcome = tracker.execute(
            lambda s: reminders.runReminderScheduler(
                s, gateway, targetDate, fParam.dryRun, now
            ),
            today,
            targetDate,
            fParam.dryRun,
            fParam.force,
            now,
        )
        response = runResponse(outcome, "Booking reminder scheduler", None)
        if not response["skipped"]:
            logEvent(
                request_info,
                {"runId": response["runId"], "success": response["success"]},
                SchedulerType.BOOKING_REMINDERS.value,
            )
        return response
    except Exception as e:
        exceptions.handle(e)
    finally:
        if "session" in locals():
            session.close()


@route_scheduler.get(
    URL_SCHEDULER_STATUS,
    tags=["Scheduler"],
    description="""
    Status of the daily reminder scheduler for a date, today by default.
    Reports the latest run of each slot (`not_run` when absent), whether each
    slot should run now, the next scheduled run and a summary of the day.
    With `detailed`, adds statistics of the last 7 days.
    """,
)
async def fetch_scheduler_status(
    qParam: StatusQueryParams = Depends(),
    currentTime: datetime = Depends(getters.currentTime),
):
    try:
        session = sessionMaker()
        localTime = currentTime.astimezone(TMZ_SECONDARY)
        runDate = qParam.date or localTime.date()
        day = slotStatuses(session, SchedulerType.BOOKING_REMINDERS, runDate)
        status = {
            "date": runDate,
            "status": day["status"],
            "recommendations": recommendations(day["runs"], localTime),
            "statistics": None,
            "summary": daySummary(day["runs"]),
        }
        if qParam.detailed:
            status["statistics"] = statistics(
                session, SchedulerType.BOOKING_REMINDERS, localTime.date()
            )
        return jsonable_encoder(status)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_scheduler.post(
    URL_SCHEDULER_STATUS,
    tags=["Scheduler"],
    response_model=SchedulerTestSchema,
    response_model_exclude_none=True,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidSchedulerKey(),
            exceptions.InvalidAction(),
            exceptions.InvalidTimeSlot(),
        ]
    ),
    description="""
    Manually test the daily scheduler for a slot (`action` must be `test`).
    Requires the scheduler key.
    Runs the slot as a forced dry run: nothing is stored or pushed besides the run record.
    `success` is false when the job itself failed.
    """,
)
async def test_scheduler(
    fParam: SchedulerTestForm,
    currentTime: datetime = Depends(getters.currentTime),
    clock=Depends(getters.clock),
    gateway: PushGateway = Depends(getters.pushGateway),
):
    try:
        validators.schedulerKey(fParam.schedulerKey, SCHEDULER_SECRET_KEY)
        if fParam.action != SchedulerAction.TEST.value:
            raise exceptions.InvalidAction()
        session = sessionMaker()
        result = runDailyScheduler(
            session, gateway, fParam.timeSlot, None, True, True, currentTime, clock
        )
        return {
            "success": result["success"],
            "message": f"Test completed for {fParam.timeSlot}",
            "result": result,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        if "session" in locals():
            session.close()
