"""
Booking reminder job.

Students enrolled in transport who have not booked the next day's trip on
their allocated route get a notification record and a push message. The
daily scheduler runs this job at the 17:00 and 18:00 slots; the 18:00 slot
additionally follows up on reminders nobody has answered yet.
"""

import logging
from datetime import date, datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.session import Session

from app.src import cleaner, exceptions
from app.src.push import PushGateway, notifyStudent
from app.src.db import Booking, Notification, Route, Schedule, Student
from app.src.enums import (
    BookingStatus,
    NotificationResponse,
    NotificationType,
    RouteStatus,
    ScheduleStatus,
)
from app.src.constants import (
    FOLLOW_UP_WINDOW,
    MAX_FOLLOW_UP_RECIPIENTS,
    SLOT_FIRST_PASS,
    SLOT_FOLLOW_UP,
)

logger = logging.getLogger("Reminders")

SLOT_NOTIFICATIONS = {
    SLOT_FIRST_PASS: {
        "title": "Bus Booking Reminder - Tomorrow",
        "urgency": "normal",
        "priority": "high",
        "followUp": False,
    },
    SLOT_FOLLOW_UP: {
        "title": "Last Chance - Confirm Your Bus Booking",
        "urgency": "high",
        "priority": "urgent",
        "followUp": True,
    },
}
DEFAULT_NOTIFICATION = {
    "title": "Bus Booking Reminder",
    "urgency": "normal",
    "priority": "high",
    "followUp": False,
}

BOOKED_STATUSES = [BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value]


def notificationConfig(timeSlot: str | None) -> dict:
    return dict(SLOT_NOTIFICATIONS.get(timeSlot, DEFAULT_NOTIFICATION))


def formatTime(value) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------
def reminderCandidates(session: Session, targetDate: date) -> dict:
    """
    Compute who should be reminded to book a trip on `targetDate`.

    A schedule qualifies when it is scheduled, open for booking by the
    student and the admin, has free seats and runs on an active route. A
    student qualifies for a schedule when enrolled in transport, allocated
    to its route and not already holding a booking for that schedule or
    route on that date.

    Returns:
        dict: `date`, `totalSchedules`, `totalStudents`, `remindersGenerated`
        and the `reminders` list.
    """
    schedules = (
        session.query(Schedule, Route)
        .join(Route, Route.id == Schedule.route_id)
        .filter(Schedule.schedule_date == targetDate)
        .filter(Schedule.status == ScheduleStatus.SCHEDULED.value)
        .filter(Schedule.booking_enabled.is_(True))
        .filter(Schedule.admin_scheduling_enabled.is_(True))
        .filter(Route.status == RouteStatus.ACTIVE.value)
        .filter(Schedule.available_seats > Schedule.booked_seats)
        .order_by(Schedule.id.asc())
        .all()
    )
    result = {
        "date": targetDate,
        "totalSchedules": len(schedules),
        "totalStudents": 0,
        "remindersGenerated": 0,
        "reminders": [],
    }
    if not schedules:
        return result

    routeIds = {schedule.route_id for schedule, _ in schedules}
    students = (
        session.query(Student)
        .filter(Student.transport_enrolled.is_(True))
        .filter(Student.allocated_route_id.in_(routeIds))
        .order_by(Student.id.asc())
        .all()
    )
    result["totalStudents"] = len(students)

    bookings = (
        session.query(Booking.student_id, Booking.schedule_id, Booking.route_id)
        .filter(Booking.trip_date == targetDate)
        .filter(Booking.status.in_(BOOKED_STATUSES))
        .all()
    )
    bookedSchedules = {(b.student_id, b.schedule_id) for b in bookings}
    bookedRoutes = {(b.student_id, b.route_id) for b in bookings}

    for student in students:
        for schedule, route in schedules:
            if schedule.route_id != student.allocated_route_id:
                continue
            if (student.id, schedule.id) in bookedSchedules:
                continue
            if (student.id, schedule.route_id) in bookedRoutes:
                continue
            result["reminders"].append(
                {
                    "studentId": student.id,
                    "scheduleId": schedule.id,
                    "routeId": route.id,
                    "routeName": route.route_name,
                    "scheduleDate": schedule.schedule_date,
                    "departureTime": formatTime(
                        schedule.departure_time or route.departure_time
                    ),
                    "boardingStop": student.boarding_stop or "Default Stop",
                }
            )
    result["remindersGenerated"] = len(result["reminders"])
    return result


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def reminderMessage(reminder: dict) -> str:
    scheduleDate = reminder["scheduleDate"].strftime("%A, %d %B %Y")
    return (
        f"Your trip on {reminder['routeName']} is on {scheduleDate} at "
        f"{reminder['departureTime']}. Tap to confirm your booking!"
    )


def pushPayload(notification: Notification, reminder: dict) -> dict:
    return {
        "title": notification.title,
        "body": notification.message,
        "tag": f"{notification.notification_type}-{reminder['scheduleId']}",
        "requireInteraction": True,
        "data": {
            "type": notification.notification_type,
            "notificationId": notification.id,
            "scheduleId": reminder["scheduleId"],
            "scheduleDate": reminder["scheduleDate"].isoformat(),
            "departureTime": reminder["departureTime"],
            "routeName": reminder["routeName"],
            "boardingStop": reminder["boardingStop"],
        },
    }


def dispatch(
    session: Session,
    gateway: PushGateway,
    reminder: dict,
    notificationType: NotificationType,
    config: dict,
    message: str,
    currentTime: datetime,
) -> dict:
    """Store one notification, push it, and commit."""
    notification = Notification(
        student_id=reminder["studentId"],
        schedule_id=reminder["scheduleId"],
        notification_type=notificationType.value,
        title=config["title"],
        message=message,
        target_date=reminder["scheduleDate"],
        details={
            "routeId": reminder["routeId"],
            "routeName": reminder["routeName"],
            "departureTime": reminder["departureTime"],
            "boardingStop": reminder["boardingStop"],
            "urgency": config["urgency"],
            "priority": config["priority"],
            "followUp": config["followUp"],
        },
        created_on=currentTime,
    )
    session.add(notification)
    session.flush()
    pushResult = notifyStudent(
        session, gateway, reminder["studentId"], pushPayload(notification, reminder)
    )
    notification.push_sent = pushResult["sent"]
    session.commit()
    return {
        "studentId": reminder["studentId"],
        "scheduleId": reminder["scheduleId"],
        "notificationId": notification.id,
        "success": pushResult["success"],
        "pushSent": pushResult["sent"],
        "error": pushResult["error"],
    }


def sendReminders(
    session: Session,
    gateway: PushGateway,
    targetDate: date,
    currentTime: datetime,
    testMode: bool = False,
    config: dict | None = None,
) -> dict:
    """
    Send booking reminders for `targetDate`.

    In test mode candidates are computed and counted but nothing is stored
    or pushed. A failing reminder is counted and never stops the batch.

    Returns:
        dict: `summary` (totalReminders, notificationsSent,
        notificationsFailed, testMode) and per-reminder `results`.
    """
    config = config or dict(DEFAULT_NOTIFICATION)
    reminders = reminderCandidates(session, targetDate)["reminders"]
    sent = failed = 0
    results = []
    for reminder in reminders:
        if testMode:
            results.append(
                {
                    "studentId": reminder["studentId"],
                    "scheduleId": reminder["scheduleId"],
                    "success": True,
                    "pushSent": False,
                    "testMode": True,
                }
            )
            sent += 1
            continue
        try:
            result = dispatch(
                session,
                gateway,
                reminder,
                NotificationType.BOOKING_REMINDER,
                config,
                reminderMessage(reminder),
                currentTime,
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Reminder for student {reminder['studentId']} failed: {e}")
            result = {
                "studentId": reminder["studentId"],
                "scheduleId": reminder["scheduleId"],
                "success": False,
                "error": "Failed to create notification record",
            }
        results.append(result)
        if result["success"]:
            sent += 1
        else:
            failed += 1

    logger.info(
        f"Booking reminders for {targetDate}: {len(reminders)} generated, "
        f"{sent} sent, {failed} failed"
    )
    return {
        "summary": {
            "totalReminders": len(reminders),
            "notificationsSent": sent,
            "notificationsFailed": failed,
            "testMode": testMode,
        },
        "results": results,
    }


def sendFollowUps(
    session: Session, gateway: PushGateway, targetDate: date, currentTime: datetime
) -> dict:
    """
    Follow up on reminders for `targetDate` that got no response.

    Only reminders created within FOLLOW_UP_WINDOW of `currentTime` are
    considered. A recipient is one (student, schedule) pair and gets a
    single follow-up however many reminders it received in the window; a
    pair that answered any of them is left alone. At most
    MAX_FOLLOW_UP_RECIPIENTS recipients are followed up.
    """
    windowStart = currentTime - timedelta(seconds=FOLLOW_UP_WINDOW)
    rows = (
        session.query(Notification, Schedule, Route, Student)
        .join(Student, Student.id == Notification.student_id)
        .join(Schedule, Schedule.id == Notification.schedule_id)
        .join(Route, Route.id == Schedule.route_id)
        .filter(Notification.notification_type == NotificationType.BOOKING_REMINDER.value)
        .filter(Notification.target_date == targetDate)
        .filter(Notification.created_on >= windowStart)
        .order_by(Notification.created_on.asc(), Notification.id.asc())
        .all()
    )
    answered = {
        (notification.student_id, notification.schedule_id)
        for notification, _, _, _ in rows
        if notification.user_response is not None
    }
    recipients = {}
    for notification, schedule, route, student in rows:
        pair = (student.id, schedule.id)
        if pair in answered or pair in recipients:
            continue
        if len(recipients) == MAX_FOLLOW_UP_RECIPIENTS:
            break
        recipients[pair] = (schedule, route, student)

    config = notificationConfig(SLOT_FOLLOW_UP)
    sent = failed = 0
    for schedule, route, student in recipients.values():
        reminder = {
            "studentId": student.id,
            "scheduleId": schedule.id,
            "routeId": route.id,
            "routeName": route.route_name,
            "scheduleDate": schedule.schedule_date,
            "departureTime": formatTime(schedule.departure_time or route.departure_time),
            "boardingStop": student.boarding_stop or "Default Stop",
        }
        try:
            result = dispatch(
                session,
                gateway,
                reminder,
                NotificationType.BOOKING_FOLLOW_UP,
                config,
                "Seats are still open for your trip. " + reminderMessage(reminder),
                currentTime,
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Follow-up for student {student.id} failed: {e}")
            failed += 1
            continue
        if result["success"]:
            sent += 1
        else:
            failed += 1

    logger.info(f"Follow-up reminders for {targetDate}: {len(recipients)} recipients")
    return {"recipients": len(recipients), "sent": sent, "failed": failed}


def recordResponse(
    session: Session,
    notificationId: int,
    studentId: int,
    response: NotificationResponse,
    currentTime: datetime,
) -> Notification:
    """
    Store a student's answer to a reminder or follow-up.

    Once answered, the (student, schedule) pair of the notification is no
    longer followed up. A later answer replaces the earlier one.

    Raises:
        exceptions.NotificationNotFound: If the notification does not exist
            or is addressed to another student.
    """
    notification = (
        session.query(Notification)
        .filter(Notification.id == notificationId)
        .filter(Notification.student_id == studentId)
        .first()
    )
    if notification is None:
        raise exceptions.NotificationNotFound()
    notification.user_response = response.value
    notification.updated_on = currentTime
    session.commit()
    logger.info(
        f"Student {studentId} answered notification {notificationId}: {response.value}"
    )
    return notification


# ---------------------------------------------------------------------------
# Scheduler jobs
# ---------------------------------------------------------------------------
def runDailySlot(
    session: Session,
    gateway: PushGateway,
    timeSlot: str,
    targetDate: date,
    dryRun: bool,
    currentTime: datetime,
) -> dict:
    """
    Job of the slot-aware daily scheduler.

    Sends the slot's reminders, then, unless dry running, purges old
    reminders at 17:00 or follows up on unanswered ones at 18:00.
    """
    reminderResult = sendReminders(
        session,
        gateway,
        targetDate,
        currentTime,
        testMode=dryRun,
        config=notificationConfig(timeSlot),
    )
    summary = {
        "date": targetDate,
        "timeSlot": timeSlot,
        "totalReminders": reminderResult["summary"]["totalReminders"],
        "notificationsSent": reminderResult["summary"]["notificationsSent"],
        "notificationsFailed": reminderResult["summary"]["notificationsFailed"],
        "dryRun": dryRun,
        "timestamp": currentTime,
    }
    if not dryRun:
        if timeSlot == SLOT_FIRST_PASS:
            summary["notificationsRemoved"] = cleaner.removeOldNotifications(
                session, currentTime, [NotificationType.BOOKING_REMINDER]
            )
        elif timeSlot == SLOT_FOLLOW_UP:
            summary["followUps"] = sendFollowUps(session, gateway, targetDate, currentTime)
    return {"summary": summary, "details": reminderResult["results"]}


def runReminderScheduler(
    session: Session,
    gateway: PushGateway,
    targetDate: date,
    dryRun: bool,
    currentTime: datetime,
) -> dict:
    """Job of the slot-less scheduler: reminders plus notification housekeeping."""
    reminderResult = sendReminders(
        session, gateway, targetDate, currentTime, testMode=dryRun
    )
    summary = {
        "date": targetDate,
        "totalReminders": reminderResult["summary"]["totalReminders"],
        "notificationsSent": reminderResult["summary"]["notificationsSent"],
        "notificationsFailed": reminderResult["summary"]["notificationsFailed"],
        "dryRun": dryRun,
        "timestamp": currentTime,
    }
    if not dryRun:
        summary["notificationsRemoved"] = cleaner.removeOldNotifications(session, currentTime)
        summary["subscriptionsRemoved"] = cleaner.removeInactiveSubscriptions(
            session, currentTime
        )
    return {"summary": summary, "details": reminderResult["results"]}
