"""
Client of the push notification gateway.

Web push delivery itself happens outside this service: each message is posted
as JSON to `PUSH_GATEWAY_URL` together with the target subscription. A gateway
answer of 404 or 410 means the subscription is gone and it is deactivated.
"""

import logging
import requests
from http import HTTPStatus
from sqlalchemy.orm.session import Session

from app.src.constants import PUSH_GATEWAY_URL, PUSH_GATEWAY_TIMEOUT
from app.src.db import PushSubscription

logger = logging.getLogger("Push")

GONE_STATUSES = [HTTPStatus.GONE, HTTPStatus.NOT_FOUND]


def skipped(reason: str) -> dict:
    return {
        "success": True,
        "sent": False,
        "sentCount": 0,
        "failedCount": 0,
        "error": reason,
    }


class PushGateway:
    def __init__(
        self, url: str | None = PUSH_GATEWAY_URL, timeout: int = PUSH_GATEWAY_TIMEOUT
    ):
        self.url = url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def send(self, subscription: PushSubscription, payload: dict) -> str:
        """
        Post one push message for one subscription.

        Returns:
            str: "sent", "gone" (subscription no longer exists) or "failed".
        """
        body = {
            "subscription": {
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh_key, "auth": subscription.auth_key},
            },
            "payload": payload,
        }
        try:
            response = requests.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Push to subscription {subscription.id} failed: {e}")
            return "failed"
        if response.status_code in GONE_STATUSES:
            return "gone"
        if response.ok:
            return "sent"
        logger.warning(
            f"Push to subscription {subscription.id} rejected: {response.status_code}"
        )
        return "failed"


def notifyStudent(
    session: Session, gateway: PushGateway, studentId: int, payload: dict
) -> dict:
    """
    Push a message to every active subscription of a student.

    Gone subscriptions are deactivated in the session but not committed.

    Returns:
        dict: `success`, `sent`, `sentCount`, `failedCount` and `error`.
        A student without subscriptions, or a disabled gateway, is a
        success that sent nothing.
    """
    if not gateway.enabled:
        return skipped("Push gateway not configured")

    subscriptions = (
        session.query(PushSubscription)
        .filter(PushSubscription.student_id == studentId)
        .filter(PushSubscription.is_active.is_(True))
        .all()
    )
    if not subscriptions:
        return skipped("No active subscriptions")

    sentCount = failedCount = 0
    for subscription in subscriptions:
        outcome = gateway.send(subscription, payload)
        if outcome == "sent":
            sentCount += 1
            continue
        failedCount += 1
        if outcome == "gone":
            subscription.is_active = False

    return {
        "success": sentCount > 0,
        "sent": sentCount > 0,
        "sentCount": sentCount,
        "failedCount": failedCount,
        "error": f"{failedCount} notifications failed" if failedCount else None,
    }
