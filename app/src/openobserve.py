import base64, json, requests
from requests import Response

from app.src.constants import (
    OPENOBSERVE_HOST,
    OPENOBSERVE_ORG,
    OPENOBSERVE_PASSWORD,
    OPENOBSERVE_PORT,
    OPENOBSERVE_PROTOCOL,
    OPENOBSERVE_STREAM,
    OPENOBSERVE_TIMEOUT,
    OPENOBSERVE_USERNAME,
)

basicAuth = base64.b64encode(
    f"{OPENOBSERVE_USERNAME}:{OPENOBSERVE_PASSWORD}".encode("utf-8")
).decode("utf-8")
headers = {"Content-type": "application/json", "Authorization": f"Basic {basicAuth}"}

streamURL = (
    f"{OPENOBSERVE_PROTOCOL}://{OPENOBSERVE_HOST}:{OPENOBSERVE_PORT}"
    f"/api/{OPENOBSERVE_ORG}/{OPENOBSERVE_STREAM}/_json"
)


def logEvent(eventData: dict) -> Response:
    """
    Append one audit event to the OpenObserve stream.

    Dates and datetimes in the event are sent as strings. Connection errors
    and timeouts propagate as `requests.RequestException`.

    Example event:
        {
            "_method": "POST",
            "_path": "/staff/attendance/mark",
            "_app_id": 1,
            "_actor": "driver@college.edu",
            "bookingId": 42,
            "status": "present"
        }
    """
    return requests.post(
        streamURL,
        headers=headers,
        data=json.dumps(eventData, default=str),
        timeout=OPENOBSERVE_TIMEOUT,
    )
