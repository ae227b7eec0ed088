from redis import Redis
from typing import Optional
from redis.lock import Lock

from app.src import exceptions
from app.src.constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    MUTEX_LOCK_TIMEOUT,
    MUTEX_LOCK_MAX_WAIT_TIME,
)

redisClient = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    decode_responses=True,
)


def lockName(resource: str, key: Optional[str] = None) -> str:
    if key is None:
        return f"lock:{resource}"
    return f"lock:{resource}:{key}"


def acquireLock(
    resource: str,
    key: Optional[str] = None,
    timeOut: int = MUTEX_LOCK_TIMEOUT,
    blockingTimeOut: int = MUTEX_LOCK_MAX_WAIT_TIME,
) -> Lock:
    """
    Block until the mutex of a resource, or of one key within it, is ours.

    Scheduler runs lock `scheduler_run` with the key
    `<type>:<run date>:<slot>`, ex:- "booking_reminders:2025-11-05:17:00",
    so triggers of different slots never wait on each other.

    Args:
        resource (str): Table or resource the mutex protects.
        key (Optional[str]): Narrows the mutex to one key of the resource.
        timeOut (int): Seconds after which Redis expires an unreleased lock.
        blockingTimeOut (int): Seconds to wait before giving up.

    Raises:
        exceptions.LockAcquireTimeout: If the wait ran out.
        exceptions.RedisDBError: If Redis cannot be reached.
    """
    try:
        lock = redisClient.lock(lockName(resource, key), timeout=timeOut)
        if not lock.acquire(blocking=True, blocking_timeout=blockingTimeOut):
            raise exceptions.LockAcquireTimeout()
        return lock
    except Exception as e:
        exceptions.handle(e)


def releaseLock(lock: Optional[Lock]) -> None:
    """Release a lock taken by `acquireLock`, if this client still owns it."""
    if lock is None:
        return
    if lock.locked() and lock.owned():
        lock.release()
