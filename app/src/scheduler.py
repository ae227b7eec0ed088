import time
import logging
import requests
from datetime import date, datetime
from http import HTTPStatus

from app.src.urls import URL_SCHEDULER_APP, URL_DAILY_SCHEDULER
from app.src.constants import (
    SCHEDULER_BASE_URL,
    SCHEDULER_REQUEST_TIMEOUT,
    SCHEDULER_SECRET_KEY,
    TIME_SLOTS,
    TMZ_SECONDARY,
)

logger = logging.getLogger("Scheduler")

BASE_URL = SCHEDULER_BASE_URL + URL_SCHEDULER_APP


def triggerDailyScheduler(timeSlot: str) -> bool:
    """Ask the server to run the daily reminder scheduler for a slot."""
    response = requests.post(
        BASE_URL + URL_DAILY_SCHEDULER,
        json={"schedulerKey": SCHEDULER_SECRET_KEY, "timeSlot": timeSlot},
        timeout=SCHEDULER_REQUEST_TIMEOUT,
    )
    if response.status_code != HTTPStatus.OK:
        logger.error(
            f" Daily scheduler {timeSlot} failed: {response.status_code}, {response.text}"
        )
        return False
    result = response.json()
    if result.get("skipped"):
        logger.info(f" Daily scheduler {timeSlot} already ran today")
    else:
        logger.info(f" Daily scheduler {timeSlot} finished: {result.get('message')}")
    return True


def runScheduler():
    triggered: set[tuple[date, str]] = set()
    while True:
        try:
            now = datetime.now(TMZ_SECONDARY)
            timeSlot = TIME_SLOTS.get(now.hour)
            if timeSlot is not None and (now.date(), timeSlot) not in triggered:
                if triggerDailyScheduler(timeSlot):
                    triggered.add((now.date(), timeSlot))
        except Exception:
            logger.exception("Scheduler loop failed")
        finally:
            time.sleep(60)


def main():
    logging.basicConfig(level=logging.INFO)
    if not SCHEDULER_SECRET_KEY:
        logger.error("SCHEDULER_SECRET_KEY is not set, refusing to start")
        return
    try:
        runScheduler()
    except Exception:
        logger.exception("scheduler.py failed")


if __name__ == "__main__":
    main()
