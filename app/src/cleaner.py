import datetime, logging
from sqlalchemy.orm import Session
from sqlalchemy import delete, update

from app.src.db import sessionMaker, Notification, PushSubscription, SchedulerRun
from app.src.enums import NotificationType, RunStatus
from app.src.constants import (
    NOTIFICATION_RETENTION_DAYS,
    SUBSCRIPTION_RETENTION_DAYS,
    SCHEDULER_RUN_STALE_AFTER,
)

logger = logging.getLogger("Cleaner")


def removeOldNotifications(
    session: Session,
    currentTime: datetime.datetime,
    notificationTypes: list[NotificationType] | None = None,
    days: int = NOTIFICATION_RETENTION_DAYS,
) -> int:
    """Delete reminder notifications created more than `days` ago."""
    if notificationTypes is None:
        notificationTypes = list(NotificationType)
    cutoff = currentTime - datetime.timedelta(days=days)
    result = session.execute(
        delete(Notification)
        .where(Notification.created_on < cutoff)
        .where(Notification.notification_type.in_([t.value for t in notificationTypes]))
    )
    session.commit()
    deletedCount = result.rowcount
    logger.info(f"Removed {deletedCount} notifications older than {days} days")
    return deletedCount


def removeInactiveSubscriptions(
    session: Session,
    currentTime: datetime.datetime,
    days: int = SUBSCRIPTION_RETENTION_DAYS,
) -> int:
    """Delete push subscriptions that went inactive more than `days` ago."""
    cutoff = currentTime - datetime.timedelta(days=days)
    lastTouched = PushSubscription.updated_on
    result = session.execute(
        delete(PushSubscription)
        .where(PushSubscription.is_active.is_(False))
        .where(
            (lastTouched < cutoff)
            | (lastTouched.is_(None) & (PushSubscription.created_on < cutoff))
        )
    )
    session.commit()
    deletedCount = result.rowcount
    logger.info(f"Removed {deletedCount} inactive push subscriptions")
    return deletedCount


def failStaleRuns(
    session: Session,
    currentTime: datetime.datetime,
    staleAfter: int = SCHEDULER_RUN_STALE_AFTER,
) -> int:
    """Mark scheduler runs stuck in running state as failed."""
    cutoff = currentTime - datetime.timedelta(seconds=staleAfter)
    result = session.execute(
        update(SchedulerRun)
        .where(SchedulerRun.status == RunStatus.RUNNING.value)
        .where(SchedulerRun.started_at < cutoff)
        .values(
            status=RunStatus.FAILED.value,
            completed_at=currentTime,
            error_details="Run did not finish, marked failed by cleaner",
        )
    )
    session.commit()
    updatedCount = result.rowcount
    logger.info(f"Marked {updatedCount} stale scheduler runs as failed")
    return updatedCount


def main():
    logging.basicConfig(level=logging.INFO)
    currentTime = datetime.datetime.now(datetime.timezone.utc)
    try:
        with sessionMaker() as session:
            removeOldNotifications(session, currentTime)
            removeInactiveSubscriptions(session, currentTime)
            failStaleRuns(session, currentTime)
    except Exception:
        logger.exception("cleaner.py failed")


if __name__ == "__main__":
    main()
