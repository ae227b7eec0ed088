import pytest
import requests
from datetime import datetime, timedelta

from app.src import cleaner, exceptions, push, reminders
from app.src.db import Notification, PushSubscription, SchedulerRun
from app.src.enums import NotificationResponse, NotificationType, RunStatus, SchedulerType
from app.src.constants import TMZ_PRIMARY
from conftest import TODAY, TOMORROW

NOW = datetime(2025, 11, 5, 11, 35, tzinfo=TMZ_PRIMARY)
URL_REMINDER = "/scheduler/notification/booking-reminder"


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.ok = status_code < 400


def test_candidates(session, world):
    result = reminders.reminderCandidates(session, TOMORROW)
    assert result["totalSchedules"] == 1
    # Meera is not enrolled, so only the three riders of R-01 count
    assert result["totalStudents"] == 3
    assert result["remindersGenerated"] == 2
    assert {r["studentId"] for r in result["reminders"]} == {world.rahul.id, world.fathima.id}
    rahul = next(r for r in result["reminders"] if r["studentId"] == world.rahul.id)
    assert rahul["departureTime"] == "07:30"
    assert rahul["boardingStop"] == "North Gate"
    assert rahul["routeName"] == "Campus Express"


def test_no_candidates_without_bookable_schedule(session, world):
    world.tomorrowSchedule.booking_enabled = False
    session.commit()
    assert reminders.reminderCandidates(session, TOMORROW)["remindersGenerated"] == 0

    world.tomorrowSchedule.booking_enabled = True
    world.tomorrowSchedule.booked_seats = 40
    session.commit()
    assert reminders.reminderCandidates(session, TOMORROW)["totalSchedules"] == 0


def test_send_reminders_pushes_to_subscriptions(session, world, gateway):
    result = reminders.sendReminders(session, gateway, TOMORROW, NOW)
    assert result["summary"] == {
        "totalReminders": 2,
        "notificationsSent": 2,
        "notificationsFailed": 0,
        "testMode": False,
    }
    endpoint, payload = gateway.calls[0]
    assert endpoint == "https://push.example/rahul"
    assert payload["title"] == "Bus Booking Reminder"
    assert payload["data"]["scheduleDate"] == "2025-11-06"

    sent = {n.student_id: n.push_sent for n in session.query(Notification).all()}
    assert sent == {world.rahul.id: True, world.fathima.id: False}


def test_gone_subscription_is_deactivated(session, world, gateway):
    gateway.outcomes["https://push.example/rahul"] = "gone"
    result = reminders.sendReminders(session, gateway, TOMORROW, NOW)
    assert result["summary"]["notificationsFailed"] == 1

    subscription = session.query(PushSubscription).one()
    assert subscription.is_active is False


def test_test_mode_only_counts(session, world, gateway):
    result = reminders.sendReminders(session, gateway, TOMORROW, NOW, testMode=True)
    assert result["summary"]["notificationsSent"] == 2
    assert result["summary"]["testMode"] is True
    assert gateway.calls == []
    assert session.query(Notification).count() == 0


def test_follow_ups_skip_answered_and_old(session, world, gateway):
    reminders.sendReminders(session, gateway, TOMORROW, NOW - timedelta(hours=3))
    reminders.sendReminders(session, gateway, TOMORROW, NOW)
    answered = (
        session.query(Notification)
        .filter(Notification.student_id == world.rahul.id)
        .filter(Notification.created_on >= NOW)
        .one()
    )
    reminders.recordResponse(
        session, answered.id, world.rahul.id, NotificationResponse.CONFIRM, NOW
    )

    result = reminders.sendFollowUps(session, gateway, TOMORROW, NOW + timedelta(minutes=60))
    assert result == {"recipients": 1, "sent": 1, "failed": 0}
    followUp = (
        session.query(Notification)
        .filter(Notification.notification_type == NotificationType.BOOKING_FOLLOW_UP.value)
        .one()
    )
    assert followUp.student_id == world.fathima.id
    assert followUp.title == "Last Chance - Confirm Your Bus Booking"
    assert followUp.details["urgency"] == "high"


def test_follow_ups_once_per_recipient(session, world, gateway, monkeypatch):
    reminders.sendReminders(session, gateway, TOMORROW, NOW)
    reminders.sendReminders(session, gateway, TOMORROW, NOW + timedelta(minutes=30))

    result = reminders.sendFollowUps(session, gateway, TOMORROW, NOW + timedelta(minutes=60))
    assert result == {"recipients": 2, "sent": 2, "failed": 0}

    monkeypatch.setattr(reminders, "MAX_FOLLOW_UP_RECIPIENTS", 1)
    result = reminders.sendFollowUps(session, gateway, TOMORROW, NOW + timedelta(minutes=60))
    assert result["recipients"] == 1


def test_response_must_match_student(session, world, gateway):
    reminders.sendReminders(session, gateway, TOMORROW, NOW)
    notification = (
        session.query(Notification)
        .filter(Notification.student_id == world.rahul.id)
        .one()
    )
    with pytest.raises(exceptions.NotificationNotFound):
        reminders.recordResponse(
            session, notification.id, world.fathima.id, NotificationResponse.VIEW, NOW
        )
    answered = reminders.recordResponse(
        session, notification.id, world.rahul.id, NotificationResponse.VIEW, NOW
    )
    assert answered.user_response == "view"

def test_gateway_send(monkeypatch, world):
    gateway = push.PushGateway(url="https://gateway.example/send", timeout=3)
    subscription = PushSubscription(id=1, endpoint="https://push.example/x", p256dh_key="k", auth_key="a")
    posted = []

    def post(url, json, timeout):
        posted.append((url, json, timeout))
        return FakeResponse(status)

    monkeypatch.setattr(requests, "post", post)
    for status, expected in ((201, "sent"), (410, "gone"), (404, "gone"), (500, "failed")):
        assert gateway.send(subscription, {"title": "Hi"}) == expected
    assert posted[0][1]["subscription"]["keys"] == {"p256dh": "k", "auth": "a"}
    assert posted[0][2] == 3

    def unreachable(url, json, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", unreachable)
    assert gateway.send(subscription, {"title": "Hi"}) == "failed"


def test_disabled_gateway_skips_push(session, world):
    result = push.notifyStudent(session, push.PushGateway(url=None), world.rahul.id, {})
    assert result["success"] is True
    assert result["sent"] is False
    assert result["error"] == "Push gateway not configured"


def test_cleaner(session, world, gateway):
    reminders.sendReminders(session, gateway, TOMORROW, NOW - timedelta(days=31))
    reminders.sendReminders(session, gateway, TOMORROW, NOW)
    assert cleaner.removeOldNotifications(session, NOW) == 2
    assert session.query(Notification).count() == 2

    session.add(
        SchedulerRun(
            scheduler_type=SchedulerType.BOOKING_REMINDERS.value,
            run_date=TODAY,
            time_slot="17:00",
            status=RunStatus.RUNNING.value,
            started_at=NOW - timedelta(hours=2),
        )
    )
    session.commit()
    assert cleaner.failStaleRuns(session, NOW) == 1
    session.expire_all()
    assert session.query(SchedulerRun).one().status == RunStatus.FAILED.value


@pytest.mark.parametrize("testMode", [True, False])
def test_reminder_endpoints(client, session, world, schedulerKey, testMode):
    res = client.get(URL_REMINDER)
    assert res.status_code == 200
    assert res.json()["date"] == "2025-11-06"
    assert res.json()["remindersGenerated"] == 2

    assert client.post(URL_REMINDER, json={"testMode": testMode}).status_code == 401

    res = client.post(URL_REMINDER, json={"schedulerKey": schedulerKey, "testMode": testMode})
    assert res.status_code == 200
    assert res.json()["summary"]["totalReminders"] == 2
    assert session.query(Notification).count() == (0 if testMode else 2)
