from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from app.src.db import sessionMaker
from app.src import attendance, exceptions, getters
from app.src.functions import makeExceptionResponses, serviceDate
from app.src.urls import URL_TICKET_VALIDATION

route_staff = APIRouter()


## Input Forms
class ValidateForm(BaseModel):
    qrCode: Optional[str] = None


## API endpoints [Staff]
@route_staff.post(
    URL_TICKET_VALIDATION,
    tags=["Ticket"],
    responses=makeExceptionResponses(
        [exceptions.QRCodeRequired(), exceptions.DatabaseError()]
    ),
    description="""
    Validate a scanned ticket code without marking attendance.
    Always answers 200 once a code is given, with `valid` telling the outcome.
    Checks run in order: unknown code (NOT_FOUND), cancelled booking (BOOKING_CANCELLED),
    trip date other than today (WRONG_DATE, with `ticketDate` and `currentDate`),
    attendance already marked (valid, `alreadyMarked` true with `markedAt` and `markedBy`).
    Otherwise the ticket is valid and ready for marking.
    Has no side effects.
    """,
)
async def validate_ticket(
    fParam: ValidateForm,
    currentTime: datetime = Depends(getters.currentTime),
):
    try:
        session = sessionMaker()
        result = attendance.validateTicket(
            session, fParam.qrCode, serviceDate(currentTime)
        )
        return jsonable_encoder(result)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
