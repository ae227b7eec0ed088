from logging import getLogger
from requests import RequestException

from app.src import openobserve
from app.src.schemas import RequestInfo

logger = getLogger(__name__)


def logEvent(requestInfo: RequestInfo, data: dict, actor: str | None = None) -> None:
    """
    Log an event to OpenObserve with request and actor context.

    Args:
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): Additional event-specific details to include in the log.
        actor (str | None): Email of the staff member, or the name of the
            job, that caused the event.

    Notes:
        - Automatically attaches `_app_id`, `_method`, `_path` and `_actor`.
        - Delivery failures are logged and never fail the request.
    """
    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
        "_app_id": requestInfo.app_id,
    }
    if actor is not None:
        logDetails["_actor"] = actor

    logDetails.update(data)
    try:
        openobserve.logEvent(logDetails)
    except RequestException as e:
        logger.warning(f"Event delivery to OpenObserve failed: {e}")
