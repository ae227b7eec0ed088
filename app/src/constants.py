"""
Application configuration and constants for the TMS Transport API Server.

This module centralizes environment-based configuration, scheduler slots,
retention windows, timezones, and other constants.

Configuration values can be overridden via environment variables.
"""

from os import environ
from zoneinfo import ZoneInfo


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "TMS Transport API Server"
API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# PostgreSQL configuration
# ---------------------------------------------------------------------------
PSQL_DB_DRIVER = environ.get("PSQL_DB_DRIVER", "postgresql")
PSQL_DB_USERNAME = environ.get("PSQL_DB_USERNAME", "postgres")
PSQL_DB_PORT = environ.get("PSQL_DB_PORT", "5432")
PSQL_DB_PASSWORD = environ.get("PSQL_DB_PASSWORD", "password")
PSQL_DB_HOST = environ.get("PSQL_DB_HOST", "localhost")
PSQL_DB_NAME = environ.get("PSQL_DB_NAME", "postgres")


# ---------------------------------------------------------------------------
# OpenObserve configuration
# ---------------------------------------------------------------------------
OPENOBSERVE_PROTOCOL = environ.get("OPENOBSERVE_PROTOCOL", "http")
OPENOBSERVE_HOST = environ.get("OPENOBSERVE_HOST", "localhost")
OPENOBSERVE_PORT = environ.get("OPENOBSERVE_PORT", "5080")
OPENOBSERVE_USERNAME = environ.get("OPENOBSERVE_USERNAME", "admin@tms.local")
OPENOBSERVE_PASSWORD = environ.get("OPENOBSERVE_PASSWORD", "password")
OPENOBSERVE_ORG = environ.get("OPENOBSERVE_ORG", "tms")
OPENOBSERVE_STREAM = environ.get("OPENOBSERVE_STREAM", "tms-transport-server")
OPENOBSERVE_TIMEOUT = 5  # Event delivery timeout (in seconds)


# ---------------------------------------------------------------------------
# Redis configuration
# ---------------------------------------------------------------------------
REDIS_HOST = environ.get("REDIS_HOST", "localhost")
REDIS_PORT = environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = environ.get("REDIS_PASSWORD", "password")


# ---------------------------------------------------------------------------
# Push gateway configuration
# ---------------------------------------------------------------------------
PUSH_GATEWAY_URL = environ.get("PUSH_GATEWAY_URL")  # Unset disables delivery
PUSH_GATEWAY_TIMEOUT = int(environ.get("PUSH_GATEWAY_TIMEOUT", "10"))  # In seconds


# ---------------------------------------------------------------------------
# Scheduler configuration
# ---------------------------------------------------------------------------
SCHEDULER_SECRET_KEY = environ.get("SCHEDULER_SECRET_KEY")  # Unset rejects every trigger
SCHEDULER_BASE_URL = environ.get("SCHEDULER_BASE_URL", "http://127.0.0.1:8080")
SCHEDULER_REQUEST_TIMEOUT = 60  # Runner request timeout (in seconds)
SCHEDULER_RUN_STALE_AFTER = 30 * 60  # Running rows older than this are stale (in seconds)
SCHEDULER_STATISTICS_DAYS = 7  # Window of the status statistics (in days)


# ---------------------------------------------------------------------------
# Daily reminder time slots
# ---------------------------------------------------------------------------
SLOT_FIRST_PASS = "17:00"
SLOT_FOLLOW_UP = "18:00"
TIME_SLOTS = {17: SLOT_FIRST_PASS, 18: SLOT_FOLLOW_UP}  # Hour -> slot


# ---------------------------------------------------------------------------
# Notification housekeeping
# ---------------------------------------------------------------------------
NOTIFICATION_RETENTION_DAYS = 30  # Reminder notifications are purged after this
SUBSCRIPTION_RETENTION_DAYS = 30  # Inactive push subscriptions are purged after this
FOLLOW_UP_WINDOW = 2 * 60 * 60  # Look-back window of follow-ups (in seconds)
MAX_FOLLOW_UP_RECIPIENTS = 100  # Follow-up recipients per run


# ---------------------------------------------------------------------------
# Attendance constants
# ---------------------------------------------------------------------------
BULK_ABSENT_NOTE = "Auto-marked absent - no scan recorded"


# ---------------------------------------------------------------------------
# Timezone constants
# ---------------------------------------------------------------------------
TMZ_PRIMARY = ZoneInfo("UTC")
TMZ_SECONDARY = ZoneInfo("Asia/Kolkata")


# ---------------------------------------------------------------------------
# Redis mutex lock constants
# ---------------------------------------------------------------------------
MUTEX_LOCK_TIMEOUT = 10  # Lock timeout (in seconds)
MUTEX_LOCK_MAX_WAIT_TIME = 60  # Max blocking wait time (in seconds)
