from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from app.api import (
    ticket,
    attendance,
    staff_route,
    scheduler,
    reminder,
)
from app.src import exceptions
from app.src.enums import AppID


# ------------------------------------------------------
# Create separate FastAPI apps for each caller domain
# ------------------------------------------------------
app_staff = FastAPI(title="Staff APP")
app_scheduler = FastAPI(title="Scheduler APP")

# Tag each app with its AppID
app_staff.state.id = AppID.STAFF
app_scheduler.state.id = AppID.SCHEDULER

# Every error leaves as {success: false, error, message}
for subApp in (app_staff, app_scheduler):
    subApp.add_exception_handler(
        exceptions.APIException, exceptions.apiExceptionHandler
    )
    subApp.add_exception_handler(
        RequestValidationError, exceptions.requestValidationHandler
    )


# ------------------------------------------------------
# Staff routers
# ------------------------------------------------------
app_staff.include_router(ticket.route_staff)
app_staff.include_router(attendance.route_staff)
app_staff.include_router(staff_route.route_staff)


# ------------------------------------------------------
# Scheduler routers
# ------------------------------------------------------
app_scheduler.include_router(scheduler.route_scheduler)
app_scheduler.include_router(reminder.route_scheduler)
