import pytest
from types import SimpleNamespace
from datetime import date, datetime, time, timedelta
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

import app.main as main
import app.src.db as db
from app.src import getters, openobserve, run_tracker
from app.api import reminder, scheduler
from app.api.controller import app_staff, app_scheduler
from app.src.constants import TMZ_SECONDARY
from app.src.enums import BookingStatus
from app.src.db import (
    Booking,
    PushSubscription,
    Route,
    Schedule,
    Staff,
    StaffRouteAssignment,
    Student,
)

TODAY = date(2025, 11, 5)
TOMORROW = TODAY + timedelta(days=1)
MORNING = datetime(2025, 11, 5, 8, 15, tzinfo=TMZ_SECONDARY)
STAFF_EMAIL = "driver@college.edu"
SCHEDULER_KEY = "test-scheduler-key"


class Clock:
    """Stand-in for the current time dependency."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeGateway:
    """Push gateway recording every message instead of posting it."""

    def __init__(self):
        self.enabled = True
        self.outcomes = {}
        self.calls = []

    def send(self, subscription, payload):
        self.calls.append((subscription.endpoint, payload))
        return self.outcomes.get(subscription.endpoint, "sent")


@pytest.fixture()
def engine(tmp_path):
    testEngine = create_engine(
        f"sqlite:///{tmp_path / 'tms_test.db'}",
        connect_args={"check_same_thread": False},
    )
    db.ORMbase.metadata.create_all(testEngine)
    db.sessionMaker.configure(bind=testEngine)
    yield testEngine
    db.sessionMaker.configure(bind=db.engine)
    testEngine.dispose()


@pytest.fixture()
def session(engine):
    session = db.sessionMaker()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def events(monkeypatch):
    sent = []
    monkeypatch.setattr(openobserve, "logEvent", lambda data: sent.append(data))
    return sent


@pytest.fixture(autouse=True)
def locks(monkeypatch):
    taken = []

    def acquireLock(resource, key=None):
        taken.append(f"lock:{resource}:{key}")
        return None

    monkeypatch.setattr(run_tracker, "acquireLock", acquireLock)
    monkeypatch.setattr(run_tracker, "releaseLock", lambda lock: None)
    return taken


@pytest.fixture()
def schedulerKey(monkeypatch):
    monkeypatch.setattr(scheduler, "SCHEDULER_SECRET_KEY", SCHEDULER_KEY)
    monkeypatch.setattr(reminder, "SCHEDULER_SECRET_KEY", SCHEDULER_KEY)
    return SCHEDULER_KEY


@pytest.fixture()
def clock():
    return Clock(MORNING)


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(engine, clock, gateway):
    for subApp in (app_staff, app_scheduler):
        subApp.dependency_overrides[getters.currentTime] = clock
        subApp.dependency_overrides[getters.clock] = lambda: clock
        subApp.dependency_overrides[getters.pushGateway] = lambda: gateway
    with TestClient(main.app) as c:
        yield c
    for subApp in (app_staff, app_scheduler):
        subApp.dependency_overrides.clear()


def addStudent(session, name, rollNumber, route=None, stop=None, enrolled=True):
    student = Student(
        student_name=name,
        roll_number=rollNumber,
        email=f"{rollNumber.lower()}@college.edu",
        transport_enrolled=enrolled,
        allocated_route_id=route.id if route else None,
        boarding_stop=stop,
    )
    session.add(student)
    session.flush()
    return student


def addBooking(session, student, schedule, qrCode, status=BookingStatus.CONFIRMED):
    booking = Booking(
        student_id=student.id,
        route_id=schedule.route_id,
        schedule_id=schedule.id,
        trip_date=schedule.schedule_date,
        boarding_stop=student.boarding_stop,
        seat_number=qrCode[-1],
        status=status.value,
        booking_reference=f"BK-{qrCode}",
        qr_code=qrCode,
    )
    session.add(booking)
    session.flush()
    return booking


@pytest.fixture()
def world(session):
    """
    Two routes with today's and tomorrow's schedules.

    The driver is assigned to R-01 only. On R-01 today Anu, Rahul and
    Fathima hold confirmed bookings and Meera a cancelled one. Anu has also
    booked tomorrow. Jo rides R-02.
    """
    route = Route(route_number="R-01", route_name="Campus Express", departure_time=time(7, 30))
    otherRoute = Route(route_number="R-02", route_name="Harbour Line", departure_time=time(7, 45))
    session.add_all([route, otherRoute])
    session.flush()

    staff = Staff(email=STAFF_EMAIL, full_name="Demo driver")
    session.add(staff)
    session.add(StaffRouteAssignment(staff_email=STAFF_EMAIL, route_id=route.id))

    today = Schedule(route_id=route.id, schedule_date=TODAY, available_seats=40)
    tomorrow = Schedule(route_id=route.id, schedule_date=TOMORROW, available_seats=40)
    otherToday = Schedule(route_id=otherRoute.id, schedule_date=TODAY, available_seats=40)
    session.add_all([today, tomorrow, otherToday])
    session.flush()

    anu = addStudent(session, "Anu Mohan", "TMS0001", route, "North Gate")
    rahul = addStudent(session, "Rahul Das", "TMS0002", route, "North Gate")
    fathima = addStudent(session, "Fathima Nazar", "TMS0003", route, "Library Junction")
    meera = addStudent(session, "Meera Nair", "TMS0004", route, "Library Junction", enrolled=False)
    jo = addStudent(session, "Jo Thomas", "TMS0005", otherRoute, "Harbour Gate")

    world = SimpleNamespace(
        route=route,
        otherRoute=otherRoute,
        staff=staff,
        todaySchedule=today,
        tomorrowSchedule=tomorrow,
        anu=anu,
        rahul=rahul,
        fathima=fathima,
        meera=meera,
        jo=jo,
        anuToday=addBooking(session, anu, today, "QR-TODAY-1"),
        rahulToday=addBooking(session, rahul, today, "QR-TODAY-2"),
        fathimaToday=addBooking(session, fathima, today, "QR-TODAY-3"),
        meeraCancelled=addBooking(
            session, meera, today, "QR-CANCELLED-4", BookingStatus.CANCELLED
        ),
        anuTomorrow=addBooking(session, anu, tomorrow, "QR-TOMORROW-1"),
        joToday=addBooking(session, jo, otherToday, "QR-OTHER-5"),
    )
    session.add(
        PushSubscription(
            student_id=rahul.id,
            endpoint="https://push.example/rahul",
            p256dh_key="p256dh",
            auth_key="auth",
        )
    )
    session.commit()
    return world
