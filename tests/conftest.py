import itertools
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app import create_app
from config import Config
from models import db
from models.booking import PENDING, Booking
from models.space import Space
from security.rbac import Role
from services.bookings import BookingLifecycle
from utils.auth_context import Principal

NOW = datetime(2025, 3, 1, 10, 0, 0)

CLIENT = Principal(id=1, role=Role.CLIENT)
OTHER_CLIENT = Principal(id=2, role=Role.CLIENT)
MANAGER = Principal(id=10, role=Role.MANAGER)
OTHER_MANAGER = Principal(id=11, role=Role.MANAGER)
ADMIN = Principal(id=99, role=Role.ADMIN)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Stands in for the Stripe gateway module; hands out unique intent ids."""

    def __init__(self):
        self.calls = []
        self.cancelled = []
        self.next_id = None
        self._ids = itertools.count(1)

    def create_payment_intent(self, amount, currency, metadata, description=None):
        self.calls.append({"amount": amount, "currency": currency, "metadata": metadata})
        intent_id = self.next_id or f"pi_test_{next(self._ids)}"
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def cancel_payment_intent(self, intent_id):
        self.cancelled.append(intent_id)


class BookingTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
    BOOKING_FEE_RATE = "0"
    ALLOW_BACK_TO_BACK_SLOTS = False
    CANCEL_CUTOFF_HOURS = 24
    BOOKING_RATE_LIMITS = {"client": 100, "manager": 200, "admin": None}
    BOOKING_RATE_WINDOW_SECONDS = 3600


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def app(clock):
    app = create_app(BookingTestConfig)
    app.config["CLOCK"] = clock
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def lifecycle(app, clock):
    return BookingLifecycle(clock=clock)


@pytest.fixture
def make_space(app):
    def _make(capacity=4, price="30.00", manager_id=MANAGER.id, is_active=True, name="Studio A"):
        space = Space(
            name=name,
            manager_id=manager_id,
            capacity=capacity,
            price_per_day=Decimal(price),
            is_active=is_active,
        )
        db.session.add(space)
        db.session.commit()
        return space
    return _make


@pytest.fixture
def space(make_space):
    return make_space()


@pytest.fixture
def add_booking(app):
    """Insert a booking row directly, bypassing the lifecycle checks."""
    def _add(space, user_id=CLIENT.id, start=date(2025, 3, 10), end=None, start_time=None, end_time=None,
             status=PENDING, people_count=1, total_price="30.00"):
        b = Booking(
            space_id=space.id,
            user_id=user_id,
            start_date=start,
            end_date=end or start,
            start_time=start_time,
            end_time=end_time,
            people_count=people_count,
            status=status,
            total_price=Decimal(total_price),
        )
        db.session.add(b)
        db.session.commit()
        return b
    return _add


def headers_for(principal, status=None):
    h = {"X-User-Id": str(principal.id), "X-User-Role": principal.role.value}
    if status:
        h["X-Account-Status"] = status
    return h
