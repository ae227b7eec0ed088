"""
Validation and permission checks for the TMS Transport API.

This module centralizes guard logic such as:
- Staff identity resolution and staff-to-route assignment checks
- Scheduler secret key verification
- Scheduler time slot resolution

All guard functions raise appropriate exceptions from `app.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from datetime import datetime
from sqlalchemy.orm.session import Session

from app.src.db import Staff, StaffRouteAssignment
from app.src.constants import TIME_SLOTS
from app.src import exceptions


# ---------------------------------------------------------------------------
# Staff identity
# ---------------------------------------------------------------------------
def normalizeEmail(email: str | None) -> str | None:
    """Lower-case and trim an email, the form assignment rows are stored in."""
    if email is None:
        return None
    return email.strip().lower()


def staffEmail(session: Session, staffEmailOrId: str | int | None) -> str | None:
    """
    Resolve a staff identity to its normalized email.

    An identity containing `@` is treated as an email. Anything else is
    taken as a staff id and looked up in the staff table.

    Returns:
        str | None: The normalized email, or None if the id is unknown.
    """
    if staffEmailOrId is None:
        return None
    identity = str(staffEmailOrId).strip()
    if not identity:
        return None
    if "@" in identity:
        return normalizeEmail(identity)
    if not identity.isdigit():
        return None
    staff = session.query(Staff).filter(Staff.id == int(identity)).first()
    if staff is None:
        return None
    return normalizeEmail(staff.email)


# ---------------------------------------------------------------------------
# Route assignment
# ---------------------------------------------------------------------------
def isAssigned(session: Session, staffEmailOrId: str | int | None, routeId: int) -> bool:
    """
    Check whether a staff member holds an active assignment for a route.

    Args:
        session (Session): Active SQLAlchemy session.
        staffEmailOrId (str | int | None): Staff email or staff id.
        routeId (int): Route to check.

    Returns:
        bool: True only if an active assignment row exists.
    """
    email = staffEmail(session, staffEmailOrId)
    if email is None:
        return False
    assignment = (
        session.query(StaffRouteAssignment.id)
        .filter(StaffRouteAssignment.staff_email == email)
        .filter(StaffRouteAssignment.route_id == routeId)
        .filter(StaffRouteAssignment.is_active.is_(True))
        .first()
    )
    return assignment is not None


def routeAssignment(
    session: Session, staffEmailOrId: str | int | None, routeId: int
) -> bool:
    """
    Gate an action on the staff member's assignment to the route.

    Raises:
        exceptions.NotAuthorized: If no active assignment exists.
    """
    if not isAssigned(session, staffEmailOrId, routeId):
        raise exceptions.NotAuthorized()
    return True


# ---------------------------------------------------------------------------
# Scheduler guards
# ---------------------------------------------------------------------------
def schedulerKey(providedKey: str | None, secretKey: str | None) -> bool:
    """
    Verify the caller supplied scheduler key against the server secret.

    A missing key on either side is a rejection.

    Raises:
        exceptions.InvalidSchedulerKey: If the keys are absent or differ.
    """
    if not providedKey or not secretKey or providedKey != secretKey:
        raise exceptions.InvalidSchedulerKey()
    return True


def timeSlot(requestedSlot: str | None, currentTime: datetime) -> str:
    """
    Resolve the reminder slot of a daily scheduler invocation.

    The requested slot wins when given, otherwise the slot is inferred from
    the hour of `currentTime` (17 -> "17:00", 18 -> "18:00").

    Raises:
        exceptions.InvalidTimeSlot: If the slot is unknown or the hour maps to none.
    """
    if requestedSlot is not None:
        if requestedSlot not in TIME_SLOTS.values():
            raise exceptions.InvalidTimeSlot(
                f"Invalid time slot {requestedSlot}, expected one of "
                + ", ".join(TIME_SLOTS.values())
            )
        return requestedSlot
    slot = TIME_SLOTS.get(currentTime.hour)
    if slot is None:
        raise exceptions.InvalidTimeSlot()
    return slot
