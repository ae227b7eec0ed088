from datetime import date, datetime
from typing import List, Dict

from app.src import schemas
from app.src.constants import TMZ_PRIMARY, TMZ_SECONDARY
from app.src.exceptions import APIException


def makeExceptionResponses(exceptions: List[APIException]) -> Dict[int, dict]:
    """
    Build the OpenAPI `responses` of an endpoint from the errors it can raise.

    Errors sharing a status code are listed as separate examples of that
    code, each showing the envelope the client receives.

    Args:
        exceptions (List[APIException]): One instance of each possible error.

    Returns:
        Dict[int, dict]: Response specs keyed by status code.
    """
    responses = {}
    for exception in exceptions:
        examples = responses.setdefault(
            exception.status_code,
            {
                "model": schemas.ErrorResponse,
                "content": {"application/json": {"examples": {}}},
            },
        )["content"]["application/json"]["examples"]
        examples[type(exception).__name__] = {
            "summary": exception.detail,
            "value": exception.envelope(),
        }
    return responses


def enumStr(enumClass) -> str:
    """
    List the values of an enum for field descriptions.

    Example:
        >>> enumStr(AttendanceStatus)
        'present, absent'
    """
    return ", ".join(f"{x.value}" for x in enumClass)


def serviceDate(currentTime: datetime) -> date:
    """Calendar date of `currentTime` in the service timezone."""
    return currentTime.astimezone(TMZ_SECONDARY).date()


def storageTime(currentTime: datetime) -> datetime:
    """`currentTime` converted to the timezone timestamps are stored in."""
    return currentTime.astimezone(TMZ_PRIMARY)
