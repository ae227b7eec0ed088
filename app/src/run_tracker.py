"""
Run-once tracking of recurring scheduler jobs.

Each execution of a job for a (scheduler type, run date, time slot) key is
recorded as a `scheduler_run` row which moves from `running` to
`completed` or `failed`. Before starting, the tracker refuses to run a key
that already completed, or that is currently running, unless forced. The
check and the insert of the `running` row happen under a Redis mutex of the
key so two triggers racing on the same key cannot both pass the check.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm.session import Session

from app.src import schemas
from app.src.db import SchedulerRun
from app.src.enums import RunStatus, SchedulerType
from app.src.redis import acquireLock, releaseLock
from app.src.constants import (
    SCHEDULER_RUN_STALE_AFTER,
    SCHEDULER_STATISTICS_DAYS,
    TIME_SLOTS,
    TMZ_PRIMARY,
)

logger = logging.getLogger("Scheduler")


class SchedulerRunTracker:
    """
    Tracks executions of one scheduler job and slot.

    Args:
        session (Session): Active SQLAlchemy session. The tracker commits on it.
        schedulerType (SchedulerType): Job being tracked.
        timeSlot (str | None): Slot of slot-aware jobs, None for slot-less ones.
        staleAfter (int): Seconds after which a `running` row no longer blocks a run.
        clock (Callable): Returns the time written to `completed_at`.
    """

    def __init__(
        self,
        session: Session,
        schedulerType: SchedulerType,
        timeSlot: str | None = None,
        staleAfter: int = SCHEDULER_RUN_STALE_AFTER,
        clock: Callable[[], datetime] = lambda: datetime.now(TMZ_PRIMARY),
    ):
        self.session = session
        self.schedulerType = schedulerType
        self.timeSlot = timeSlot
        self.staleAfter = staleAfter
        self.clock = clock

    def lockKey(self, runDate: date) -> str:
        return f"{self.schedulerType.value}:{runDate.isoformat()}:{self.timeSlot or 'all'}"

    def runs(self, runDate: date):
        query = (
            self.session.query(SchedulerRun)
            .filter(SchedulerRun.scheduler_type == self.schedulerType.value)
            .filter(SchedulerRun.run_date == runDate)
        )
        if self.timeSlot is None:
            return query.filter(SchedulerRun.time_slot.is_(None))
        return query.filter(SchedulerRun.time_slot == self.timeSlot)

    def lastCompleted(self, runDate: date) -> SchedulerRun | None:
        return (
            self.runs(runDate)
            .filter(SchedulerRun.status == RunStatus.COMPLETED.value)
            .order_by(SchedulerRun.id.desc())
            .first()
        )

    def activeRun(self, runDate: date, currentTime: datetime) -> SchedulerRun | None:
        cutoff = currentTime - timedelta(seconds=self.staleAfter)
        return (
            self.runs(runDate)
            .filter(SchedulerRun.status == RunStatus.RUNNING.value)
            .filter(SchedulerRun.started_at >= cutoff)
            .order_by(SchedulerRun.id.desc())
            .first()
        )

    def begin(
        self,
        runDate: date,
        targetDate: date | None,
        dryRun: bool,
        force: bool,
        currentTime: datetime,
    ) -> tuple[SchedulerRun | None, schemas.RunOutcome | None]:
        """
        Insert the `running` row of a new execution, unless it must be skipped.

        Returns:
            tuple: (run, None) when the job may proceed, or (None, outcome)
            with a `skipped` outcome naming the run that blocked it.
        """
        lock = None
        try:
            lock = acquireLock(SchedulerRun.__tablename__, self.lockKey(runDate))
            if not force:
                completed = self.lastCompleted(runDate)
                if completed is not None:
                    return None, schemas.RunOutcome(
                        status="skipped", runId=completed.id, lastRun=completed.completed_at
                    )
                running = self.activeRun(runDate, currentTime)
                if running is not None:
                    return None, schemas.RunOutcome(
                        status="skipped",
                        runId=running.id,
                        lastRun=running.started_at,
                        alreadyRunning=True,
                    )

            run = SchedulerRun(
                scheduler_type=self.schedulerType.value,
                run_date=runDate,
                time_slot=self.timeSlot,
                target_date=targetDate,
                status=RunStatus.RUNNING.value,
                dry_run=dryRun,
                started_at=currentTime,
            )
            self.session.add(run)
            self.session.commit()
            return run, None
        finally:
            releaseLock(lock)

    def finish(
        self, run: SchedulerRun, summary: dict | None = None, error: str | None = None
    ) -> SchedulerRun:
        run.status = RunStatus.FAILED.value if error else RunStatus.COMPLETED.value
        run.completed_at = self.clock()
        run.result_summary = jsonable_encoder(summary) if summary is not None else None
        run.error_details = error
        self.session.commit()
        return run

    def execute(
        self,
        job: Callable[[Session], dict],
        runDate: date,
        targetDate: date | None,
        dryRun: bool,
        force: bool,
        currentTime: datetime,
    ) -> schemas.RunOutcome:
        """
        Run `job` at most once per key unless forced, recording the outcome.

        The job receives the session and returns a dict with `summary` and
        optional `details`. Any exception raised by the job marks the run
        failed and is reported in the outcome instead of propagating.
        """
        run, skipped = self.begin(runDate, targetDate, dryRun, force, currentTime)
        if skipped is not None:
            logger.info(
                f"Skipped {self.lockKey(runDate)}, blocked by run {skipped.runId}"
            )
            return skipped

        try:
            result = job(self.session)
        except Exception as e:
            self.session.rollback()
            logger.exception(f"Scheduler run {run.id} failed")
            error = str(e) or type(e).__name__
            self.finish(run, error=error)
            return schemas.RunOutcome(status="failed", runId=run.id, error=error)

        self.finish(run, summary=result["summary"])
        logger.info(f"Scheduler run {run.id} completed")
        return schemas.RunOutcome(
            status="completed",
            runId=run.id,
            summary=jsonable_encoder(result["summary"]),
            details=jsonable_encoder(result.get("details")),
        )


# ---------------------------------------------------------------------------
# Status reporting
# ---------------------------------------------------------------------------
def sentCount(run: SchedulerRun, key: str = "notificationsSent") -> int:
    return (run.result_summary or {}).get(key) or 0


def slotStatuses(session: Session, schedulerType: SchedulerType, runDate: date) -> dict:
    """
    Report the latest run of each daily slot on `runDate`.

    Returns:
        dict: `runs` (all rows of the day) and `status` (one entry per slot,
        `not_run` when the slot has no row).
    """
    runs = (
        session.query(SchedulerRun)
        .filter(SchedulerRun.scheduler_type == schedulerType.value)
        .filter(SchedulerRun.run_date == runDate)
        .order_by(SchedulerRun.id.asc())
        .all()
    )
    status = []
    for slot in TIME_SLOTS.values():
        slotRuns = [run for run in runs if run.time_slot == slot]
        run = slotRuns[-1] if slotRuns else None
        status.append(
            {
                "timeSlot": slot,
                "status": run.status if run else "not_run",
                "lastRun": run.completed_at if run else None,
                "startedAt": run.started_at if run else None,
                "notificationsSent": sentCount(run) if run else 0,
                "notificationsFailed": sentCount(run, "notificationsFailed") if run else 0,
                "error": run.error_details if run else None,
                "dryRun": run.dry_run if run else False,
            }
        )
    return {"runs": runs, "status": status}


def nextScheduledRun(hour: int) -> str:
    if hour < 17:
        return "Today at 5:00 PM"
    if hour < 18:
        return "Today at 6:00 PM"
    return "Tomorrow at 5:00 PM"


def recommendations(runs: list[SchedulerRun], currentTime: datetime) -> dict:
    completedSlots = {
        run.time_slot for run in runs if run.status == RunStatus.COMPLETED.value
    }
    hour = currentTime.hour
    return {
        "shouldRun5PM": hour >= 17 and "17:00" not in completedSlots,
        "shouldRun6PM": hour >= 18 and "18:00" not in completedSlots,
        "nextScheduledRun": nextScheduledRun(hour),
    }


def daySummary(runs: list[SchedulerRun]) -> dict:
    return {
        "totalRuns": len(runs),
        "completedRuns": len([r for r in runs if r.status == RunStatus.COMPLETED.value]),
        "totalNotificationsSent": sum(sentCount(r) for r in runs),
    }


def statistics(
    session: Session,
    schedulerType: SchedulerType,
    today: date,
    days: int = SCHEDULER_STATISTICS_DAYS,
) -> dict:
    """
    Aggregate runs of the last `days` days.

    `avgResponseTime` is the mean wall-clock duration, in whole seconds, of
    completed runs.
    """
    runs = (
        session.query(SchedulerRun)
        .filter(SchedulerRun.scheduler_type == schedulerType.value)
        .filter(SchedulerRun.run_date >= today - timedelta(days=days))
        .all()
    )
    completed = [r for r in runs if r.status == RunStatus.COMPLETED.value]
    durations = [
        (r.completed_at - r.started_at).total_seconds()
        for r in completed
        if r.started_at is not None and r.completed_at is not None
    ]
    return {
        "totalRuns": len(runs),
        "successfulRuns": len(completed),
        "failedRuns": len([r for r in runs if r.status == RunStatus.FAILED.value]),
        "totalNotificationsSent": sum(sentCount(r) for r in runs),
        "avgResponseTime": round(sum(durations) / len(durations)) if durations else 0,
    }
