from enum import Enum, IntEnum


class AppID(IntEnum):
    STAFF = 1
    SCHEDULER = 2


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


class AttendanceMethod(str, Enum):
    QR_SCAN = "qr_scan"
    MANUAL_ENTRY = "manual_entry"
    BULK_MARK = "bulk_mark"


class BulkAction(str, Enum):
    MARK_ALL_ABSENT = "mark_all_absent"
    MARK_SELECTED_PRESENT = "mark_selected_present"
    MARK_SELECTED_ABSENT = "mark_selected_absent"


class RouteStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class SchedulerType(str, Enum):
    BOOKING_REMINDERS = "booking_reminders"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, Enum):
    BOOKING_REMINDER = "booking_reminder"
    BOOKING_FOLLOW_UP = "booking_follow_up"


class SchedulerAction(str, Enum):
    TEST = "test"


class NotificationResponse(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"
    VIEW = "view"
