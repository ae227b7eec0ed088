from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    create_engine,
    func,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.dialects.postgresql import JSONB

from app.src.constants import (
    PSQL_DB_DRIVER,
    PSQL_DB_HOST,
    PSQL_DB_PASSWORD,
    PSQL_DB_NAME,
    PSQL_DB_PORT,
    PSQL_DB_USERNAME,
)
from app.src.enums import (
    AttendanceStatus,
    AttendanceMethod,
    BookingStatus,
    RouteStatus,
    RunStatus,
    ScheduleStatus,
)


# Global DBMS variables
dbURL = f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}"
engine = create_engine(url=dbURL, echo=False)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ----------------------------------- General DB Models ---------------------------------------#
class Student(ORMbase):
    """
    Represents a student who may enroll in the college transport service.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the student.

        student_name (String(128)):
            Full name of the student.
            Must not be null.

        roll_number (String(32)):
            College roll number of the student.
            Must be unique and not null.

        email (String(256)):
            Email address of the student, used for notifications.

        mobile (String(32)):
            Contact number of the student.

        transport_enrolled (Boolean):
            Whether the student has enrolled for the transport service.
            Only enrolled students receive booking reminders.

        allocated_route_id (Integer):
            Route the student is allocated to.
            Set to NULL when the route is removed.

        boarding_stop (String(128)):
            Default boarding stop of the student on the allocated route.

        updated_on (DateTime):
            Timestamp automatically updated whenever the student record is modified.

        created_on (DateTime):
            Timestamp indicating when the student record was created.
    """

    __tablename__ = "student"

    id = Column(Integer, primary_key=True)
    student_name = Column(String(128), nullable=False)
    roll_number = Column(String(32), nullable=False, unique=True)
    email = Column(String(256))
    mobile = Column(String(32))
    transport_enrolled = Column(Boolean, nullable=False, default=False)
    allocated_route_id = Column(
        Integer, ForeignKey("route.id", ondelete="SET NULL"), index=True
    )
    boarding_stop = Column(String(128))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Staff(ORMbase):
    """
    Represents a staff member who scans tickets and marks attendance.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the staff member.

        email (String(256)):
            Email of the staff member, stored lower-cased and trimmed.
            Must be unique and not null.

        full_name (String(128)):
            Display name of the staff member.

        is_active (Boolean):
            Whether the staff account is active.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the record was created.
    """

    __tablename__ = "staff"

    id = Column(Integer, primary_key=True)
    email = Column(String(256), nullable=False, unique=True)
    full_name = Column(String(128))
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Route(ORMbase):
    """
    Represents a bus route operated by the transport department.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the route.

        route_number (String(16)):
            Public route number, ex:- "R12".
            Must be unique and not null.

        route_name (String(256)):
            Descriptive name of the route.
            ex:- Varkala -> Edava -> Kappil -> College

        start_location (String(128)):
            Name of the first stop of the route.

        end_location (String(128)):
            Name of the last stop of the route.

        departure_time (Time):
            Usual departure time of the route.

        status (String(16)):
            Route status, mapped from `RouteStatus`.
            Only active routes are offered for booking reminders.

        updated_on (DateTime):
            Timestamp automatically updated when the route record is modified.

        created_on (DateTime):
            Timestamp indicating when the route was initially created.
    """

    __tablename__ = "route"

    id = Column(Integer, primary_key=True)
    route_number = Column(String(16), nullable=False, unique=True)
    route_name = Column(String(256), nullable=False)
    start_location = Column(String(128))
    end_location = Column(String(128))
    departure_time = Column(Time)
    status = Column(String(16), nullable=False, default=RouteStatus.ACTIVE.value)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Schedule(ORMbase):
    """
    Represents one dated trip of a route that students can book.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the schedule.

        route_id (Integer):
            Foreign key referencing the route of the trip.
            Deletion of the route cascades to its schedules.

        schedule_date (Date):
            Calendar date of the trip.
            Unique together with `route_id`.

        departure_time (Time):
            Departure time of the trip.

        available_seats (Integer):
            Seats offered on the trip.

        booked_seats (Integer):
            Seats already booked.
            Reminders are only sent while seats remain.

        booking_enabled (Boolean):
            Whether students may book this trip.

        admin_scheduling_enabled (Boolean):
            Whether the transport admin has released this trip for booking.

        status (String(16)):
            Schedule status, mapped from `ScheduleStatus`.

        updated_on (DateTime):
            Timestamp automatically updated whenever the schedule is modified.

        created_on (DateTime):
            Timestamp when the schedule was created.
    """

    __tablename__ = "schedule"
    __table_args__ = (UniqueConstraint("route_id", "schedule_date"),)

    id = Column(Integer, primary_key=True)
    route_id = Column(
        Integer, ForeignKey("route.id", ondelete="CASCADE"), nullable=False
    )
    schedule_date = Column(Date, nullable=False, index=True)
    departure_time = Column(Time)
    available_seats = Column(Integer, nullable=False, default=0)
    booked_seats = Column(Integer, nullable=False, default=0)
    booking_enabled = Column(Boolean, nullable=False, default=True)
    admin_scheduling_enabled = Column(Boolean, nullable=False, default=True)
    status = Column(String(16), nullable=False, default=ScheduleStatus.SCHEDULED.value)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Booking(ORMbase):
    """
    Represents a student's reserved seat on one scheduled trip.

    A booking carries a unique scannable code (`qr_code`) which staff scan
    at boarding time. At most one `confirmed` booking may exist per
    student and schedule, enforced with a partial unique index.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the booking.

        student_id (Integer):
            Foreign key referencing the student who booked.
            Deletion of the student cascades to the booking.

        route_id (Integer):
            Foreign key referencing the route of the trip.

        schedule_id (Integer):
            Foreign key referencing the booked schedule.

        trip_date (Date):
            Date of the trip. Tickets are only valid on this date.

        boarding_stop (String(128)):
            Stop where the student boards.

        seat_number (String(16)):
            Allocated seat, if any.

        status (String(16)):
            Booking status, mapped from `BookingStatus`.
            Immutable once cancelled.

        payment_status (String(16)):
            Payment state reported by the payment flow.

        booking_reference (String(64)):
            Human readable booking reference.

        qr_code (String(256)):
            Opaque scannable code of the ticket.
            Must be unique and not null.

        updated_on (DateTime):
            Timestamp automatically updated whenever the booking is modified.

        created_on (DateTime):
            Timestamp indicating when the booking was created.
    """

    __tablename__ = "booking"
    __table_args__ = (
        Index(
            "uq_booking_confirmed_student_schedule",
            "student_id",
            "schedule_id",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
            sqlite_where=text("status = 'confirmed'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    student_id = Column(
        Integer, ForeignKey("student.id", ondelete="CASCADE"), nullable=False
    )
    route_id = Column(Integer, ForeignKey("route.id"), nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("schedule.id"), nullable=False)
    trip_date = Column(Date, nullable=False, index=True)
    boarding_stop = Column(String(128))
    seat_number = Column(String(16))
    status = Column(String(16), nullable=False, default=BookingStatus.CONFIRMED.value)
    payment_status = Column(String(16))
    booking_reference = Column(String(64))
    qr_code = Column(String(256), nullable=False, unique=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Attendance(ORMbase):
    """
    Represents the fact that a student boarded, or missed, a specific trip.

    The unique constraint on (`booking_id`, `trip_date`) is the guard that
    keeps marking idempotent: a second insert for the same booking and date
    fails at the storage layer, which callers report as ALREADY_MARKED.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the attendance record.

        booking_id (Integer):
            Foreign key referencing the booking.
            Deletion of the booking cascades to its attendance.

        student_id (Integer):
            Foreign key referencing the student.

        route_id (Integer):
            Foreign key referencing the route.

        schedule_id (Integer):
            Foreign key referencing the schedule.

        trip_date (Date):
            Date of the trip.

        boarding_stop (String(128)):
            Stop copied from the booking.

        status (String(16)):
            Mapped from `AttendanceStatus`.

        boarding_time (DateTime):
            When the student boarded. Set for present marks only.

        scanned_at (DateTime):
            When the record was marked present.

        scanned_by (String(256)):
            Email of the staff member who marked the student present.

        marked_absent_at (DateTime):
            When the record was marked absent.

        marked_absent_by (String(256)):
            Email of the staff member who marked the student absent.

        attendance_method (String(16)):
            Mapped from `AttendanceMethod`.

        scan_location (JSON):
            Optional geolocation of the scan: lat, lng, accuracy and timestamp.

        qr_code (String(256)):
            Code that was scanned, if any.

        booking_reference (String(64)):
            Booking reference copied from the booking.

        notes (TEXT):
            Free text note left by staff or by bulk marking.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the record was created.
    """

    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("booking_id", "trip_date"),)

    id = Column(Integer, primary_key=True)
    booking_id = Column(
        Integer, ForeignKey("booking.id", ondelete="CASCADE"), nullable=False
    )
    student_id = Column(Integer, ForeignKey("student.id"), nullable=False)
    route_id = Column(Integer, ForeignKey("route.id"), nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("schedule.id"))
    trip_date = Column(Date, nullable=False, index=True)
    boarding_stop = Column(String(128))
    status = Column(String(16), nullable=False, default=AttendanceStatus.PRESENT.value)
    boarding_time = Column(DateTime(timezone=True))
    scanned_at = Column(DateTime(timezone=True))
    scanned_by = Column(String(256))
    marked_absent_at = Column(DateTime(timezone=True))
    marked_absent_by = Column(String(256))
    attendance_method = Column(
        String(16), nullable=False, default=AttendanceMethod.QR_SCAN.value
    )
    scan_location = Column(JSONType)
    qr_code = Column(String(256))
    booking_reference = Column(String(64))
    notes = Column(TEXT)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class StaffRouteAssignment(ORMbase):
    """
    Authorization relation between a staff member and a route.

    Staff may only scan and mark attendance on routes with an active
    assignment. Emails are stored normalized (lower-cased, trimmed).
    """

    __tablename__ = "staff_route_assignment"
    __table_args__ = (UniqueConstraint("staff_email", "route_id"),)

    id = Column(Integer, primary_key=True)
    staff_email = Column(String(256), nullable=False, index=True)
    route_id = Column(
        Integer, ForeignKey("route.id", ondelete="CASCADE"), nullable=False
    )
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(DateTime(timezone=True), default=func.now())
    notes = Column(TEXT)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class SchedulerRun(ORMbase):
    """
    Audit and idempotency record of one execution of a recurring job.

    A row is inserted as `running` before any side effect and finalized as
    `completed` or `failed`. While a `completed` row exists for a
    (`scheduler_type`, `run_date`, `time_slot`) key the job is skipped
    unless forced, so several rows may share a key when runs are forced.

    Columns:
        id (Integer):
            Primary key.

        scheduler_type (String(64)):
            Name of the job, mapped from `SchedulerType`.

        run_date (Date):
            Service-timezone date on which the job ran.

        time_slot (String(8)):
            Slot of slot-aware jobs ("17:00", "18:00"). NULL otherwise.

        target_date (Date):
            Date the job worked on, ex:- the trip date reminders were sent for.

        status (String(16)):
            Mapped from `RunStatus`.

        dry_run (Boolean):
            Whether the job ran without real side effects.

        started_at (DateTime):
            When the row was inserted.

        completed_at (DateTime):
            When the job finished, successfully or not.

        result_summary (JSON):
            Counts reported by the job.

        error_details (TEXT):
            Error message of a failed run.
    """

    __tablename__ = "scheduler_run"
    __table_args__ = (Index("ix_scheduler_run_key", "scheduler_type", "run_date", "time_slot"),)

    id = Column(Integer, primary_key=True)
    scheduler_type = Column(String(64), nullable=False)
    run_date = Column(Date, nullable=False)
    time_slot = Column(String(8))
    target_date = Column(Date)
    status = Column(String(16), nullable=False, default=RunStatus.RUNNING.value)
    dry_run = Column(Boolean, nullable=False, default=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    result_summary = Column(JSONType)
    error_details = Column(TEXT)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Notification(ORMbase):
    """
    Represents a notification addressed to a student.

    Columns:
        id (Integer):
            Primary key.

        student_id (Integer):
            Foreign key referencing the addressed student.

        schedule_id (Integer):
            Schedule the notification is about, if any.

        notification_type (String(32)):
            Mapped from `NotificationType`.

        title (String(256)):
            Title shown to the student.

        message (TEXT):
            Body shown to the student.

        target_date (Date):
            Trip date the notification refers to.

        details (JSON):
            Free form payload (route, slot, urgency, follow-up flag).

        push_sent (Boolean):
            Whether a push message was delivered to at least one subscription.

        user_response (String(32)):
            Response of the student, NULL until they act on it.

        created_on (DateTime):
            Timestamp indicating when the notification was created.
    """

    __tablename__ = "notification"

    id = Column(Integer, primary_key=True)
    student_id = Column(
        Integer, ForeignKey("student.id", ondelete="CASCADE"), nullable=False
    )
    schedule_id = Column(Integer, ForeignKey("schedule.id", ondelete="SET NULL"))
    notification_type = Column(String(32), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    message = Column(TEXT, nullable=False)
    target_date = Column(Date, index=True)
    details = Column(JSONType)
    push_sent = Column(Boolean, nullable=False, default=False)
    user_response = Column(String(32))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class PushSubscription(ORMbase):
    """Web push subscription of a student's device."""

    __tablename__ = "push_subscription"

    id = Column(Integer, primary_key=True)
    student_id = Column(
        Integer, ForeignKey("student.id", ondelete="CASCADE"), nullable=False
    )
    endpoint = Column(TEXT, nullable=False, unique=True)
    p256dh_key = Column(TEXT)
    auth_key = Column(TEXT)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
