from collections import Counter
from datetime import datetime, timedelta

from app.api import scheduler
from app.src import reminders
from app.src.db import Notification, SchedulerRun
from app.src.enums import NotificationType, RunStatus, SchedulerType
from app.src.constants import TMZ_PRIMARY, TMZ_SECONDARY
from conftest import TODAY

URL_DAILY = "/scheduler/notification/daily"
URL_LEGACY = "/scheduler/notification/reminder"
URL_STATUS = "/scheduler/notification/status"
URL_RESPONSE = "/scheduler/notification/response"

FIVE_PM = datetime(2025, 11, 5, 17, 5, tzinfo=TMZ_SECONDARY)
SIX_PM = datetime(2025, 11, 5, 18, 5, tzinfo=TMZ_SECONDARY)


def test_key_is_checked_first(client, session, world, schedulerKey, clock):
    clock.now = FIVE_PM
    for body in ({}, {"schedulerKey": "wrong"}, {"schedulerKey": schedulerKey.upper()}):
        res = client.post(URL_DAILY, json=body)
        assert res.status_code == 401
        assert res.json()["error"] == "UNAUTHORIZED"
    assert session.query(SchedulerRun).count() == 0


def test_unset_secret_rejects_everything(client, world, monkeypatch, clock):
    clock.now = FIVE_PM
    monkeypatch.setattr(scheduler, "SCHEDULER_SECRET_KEY", None)
    res = client.post(URL_DAILY, json={"schedulerKey": None})
    assert res.status_code == 401


def test_outside_slot_hours(client, session, world, schedulerKey):
    res = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert res.status_code == 400
    assert res.json()["error"] == "INVALID_TIME_SLOT"
    assert session.query(SchedulerRun).count() == 0


def test_first_slot_runs_once(client, session, world, schedulerKey, clock, gateway, events):
    clock.now = FIVE_PM
    res = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["skipped"] is False
    assert body["timeSlot"] == "17:00"
    summary = body["result"]["summary"]
    assert summary["date"] == "2025-11-06"
    assert summary["totalReminders"] == 2
    assert summary["notificationsSent"] == 2
    assert summary["notificationsRemoved"] == 0
    assert len(gateway.calls) == 1
    assert session.query(Notification).count() == 2
    assert events[-1]["_actor"] == SchedulerType.BOOKING_REMINDERS.value

    again = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert again.status_code == 200
    assert again.json()["skipped"] is True
    assert again.json()["runId"] == body["runId"]
    assert again.json()["message"] == "Daily scheduler 17:00 already completed today"
    assert session.query(Notification).count() == 2
    assert len(gateway.calls) == 1

    forced = client.post(URL_DAILY, json={"schedulerKey": schedulerKey, "force": True})
    assert forced.json()["skipped"] is False
    assert session.query(SchedulerRun).count() == 2


def followUpsPerStudent(session):
    return Counter(
        n.student_id
        for n in session.query(Notification)
        .filter(Notification.notification_type == NotificationType.BOOKING_FOLLOW_UP.value)
        .all()
    )


def test_follow_up_slot_always_runs(client, session, world, schedulerKey, clock, gateway):
    clock.now = FIVE_PM
    client.post(URL_DAILY, json={"schedulerKey": schedulerKey})

    clock.now = SIX_PM
    gateway.calls.clear()
    first = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert first.json()["skipped"] is False
    assert first.json()["timeSlot"] == "18:00"

    # Both slots reminded the same two students, each is followed up once
    followUps = first.json()["result"]["summary"]["followUps"]
    assert followUps == {"recipients": 2, "sent": 2, "failed": 0}
    assert followUpsPerStudent(session) == {world.rahul.id: 1, world.fathima.id: 1}
    # Rahul gets the 18:00 reminder and a single follow-up
    assert len(gateway.calls) == 2

    second = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert second.json()["skipped"] is False
    assert followUpsPerStudent(session) == {world.rahul.id: 2, world.fathima.id: 2}
    assert session.query(SchedulerRun).filter(SchedulerRun.time_slot == "18:00").count() == 2


def test_answered_reminder_gets_no_follow_up(client, session, world, schedulerKey, clock):
    clock.now = FIVE_PM
    client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    reminder = (
        session.query(Notification)
        .filter(Notification.student_id == world.rahul.id)
        .one()
    )
    res = client.post(
        URL_RESPONSE,
        json={
            "schedulerKey": schedulerKey,
            "notificationId": reminder.id,
            "studentId": world.rahul.id,
            "action": "decline",
        },
    )
    assert res.status_code == 200
    assert res.json() == {"success": True, "notificationId": reminder.id, "action": "decline"}

    clock.now = SIX_PM
    res = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert res.json()["result"]["summary"]["followUps"]["recipients"] == 1
    assert followUpsPerStudent(session) == {world.fathima.id: 1}


def test_response_errors(client, session, world, schedulerKey, clock):
    clock.now = FIVE_PM
    client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    reminder = (
        session.query(Notification)
        .filter(Notification.student_id == world.rahul.id)
        .one()
    )
    body = {"notificationId": reminder.id, "studentId": world.rahul.id, "action": "view"}

    assert client.post(URL_RESPONSE, json=body).status_code == 401

    res = client.post(URL_RESPONSE, json={**body, "schedulerKey": schedulerKey, "action": "maybe"})
    assert res.status_code == 400
    assert res.json()["error"] == "VALIDATION_ERROR"

    res = client.post(
        URL_RESPONSE,
        json={**body, "schedulerKey": schedulerKey, "studentId": world.fathima.id},
    )
    assert res.status_code == 404
    assert res.json()["error"] == "NOT_FOUND"

    session.expire_all()
    assert session.get(Notification, reminder.id).user_response is None


def test_completion_time_uses_request_clock(client, session, world, schedulerKey, clock):
    clock.now = FIVE_PM
    res = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    run = session.get(SchedulerRun, res.json()["runId"])
    assert run.completed_at == run.started_at


def test_failing_job_reports_failure(client, session, world, schedulerKey, clock, monkeypatch):
    clock.now = FIVE_PM

    def explode(*args, **kwargs):
        raise RuntimeError("push gateway exploded")

    monkeypatch.setattr(reminders, "runDailySlot", explode)
    res = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is False
    assert body["result"]["error"] == "push gateway exploded"

    run = session.query(SchedulerRun).one()
    assert run.status == RunStatus.FAILED.value
    assert run.error_details == "push gateway exploded"


def test_recent_running_row_skips(client, session, world, schedulerKey, clock):
    clock.now = FIVE_PM
    session.add(
        SchedulerRun(
            scheduler_type=SchedulerType.BOOKING_REMINDERS.value,
            run_date=TODAY,
            time_slot="17:00",
            status=RunStatus.RUNNING.value,
            started_at=FIVE_PM.astimezone(TMZ_PRIMARY) - timedelta(minutes=3),
        )
    )
    session.commit()

    res = client.post(URL_DAILY, json={"schedulerKey": schedulerKey})
    assert res.json()["skipped"] is True
    assert res.json()["message"] == "Daily scheduler 17:00 is already running"


def test_dry_run_stores_nothing(client, session, world, schedulerKey, clock, gateway):
    clock.now = FIVE_PM
    res = client.post(
        URL_DAILY, json={"schedulerKey": schedulerKey, "dryRun": True, "targetDate": "2025-11-06"}
    )
    summary = res.json()["result"]["summary"]
    assert summary["dryRun"] is True
    assert summary["totalReminders"] == 2
    assert "notificationsRemoved" not in summary
    assert gateway.calls == []
    assert session.query(Notification).count() == 0
    assert session.query(SchedulerRun).one().dry_run is True


def test_legacy_scheduler(client, session, world, schedulerKey):
    res = client.post(URL_LEGACY, json={"schedulerKey": schedulerKey})
    assert res.status_code == 200
    body = res.json()
    assert body["skipped"] is False
    assert "timeSlot" not in body
    assert body["result"]["summary"]["subscriptionsRemoved"] == 0

    again = client.post(URL_LEGACY, json={"schedulerKey": schedulerKey})
    assert again.json()["skipped"] is True
    assert session.query(SchedulerRun).one().time_slot is None

    assert client.post(URL_LEGACY, json={}).status_code == 401


def test_status_report(client, world, schedulerKey, clock):
    clock.now = FIVE_PM
    client.post(URL_DAILY, json={"schedulerKey": schedulerKey})

    res = client.get(URL_STATUS)
    assert res.status_code == 200
    body = res.json()
    assert body["date"] == "2025-11-05"
    status = {s["timeSlot"]: s["status"] for s in body["status"]}
    assert status == {"17:00": "completed", "18:00": "not_run"}
    assert body["recommendations"]["nextScheduledRun"] == "Today at 6:00 PM"
    assert body["summary"]["totalNotificationsSent"] == 2
    assert body["statistics"] is None

    res = client.get(URL_STATUS, params={"detailed": True})
    assert res.json()["statistics"]["successfulRuns"] == 1

    res = client.get(URL_STATUS, params={"date": "2025-11-04"})
    assert res.json()["summary"]["totalRuns"] == 0


def test_manual_test_trigger(client, session, world, schedulerKey, gateway):
    res = client.post(
        URL_STATUS, json={"action": "test", "timeSlot": "18:00", "schedulerKey": schedulerKey}
    )
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Test completed for 18:00"
    assert body["result"]["result"]["summary"]["dryRun"] is True
    assert gateway.calls == []
    assert session.query(Notification).count() == 0

    res = client.post(URL_STATUS, json={"action": "run", "schedulerKey": schedulerKey})
    assert res.status_code == 400
    assert res.json()["error"] == "VALIDATION_ERROR"

    res = client.post(URL_STATUS, json={"action": "test"})
    assert res.status_code == 401


def test_test_trigger_reports_failed_job(client, session, world, schedulerKey, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("push gateway exploded")

    monkeypatch.setattr(reminders, "runDailySlot", explode)
    res = client.post(URL_STATUS, json={"action": "test", "schedulerKey": schedulerKey})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is False
    assert body["result"]["success"] is False
    assert body["result"]["result"]["error"] == "push gateway exploded"
    assert session.query(SchedulerRun).one().status == RunStatus.FAILED.value
