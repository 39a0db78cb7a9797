"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from app import create_app
from config import Config
from models import db
from models.user import User, Role
from models.room import Room
from security.session import create_session
from services import bookings
from services.gateway import PaymentGateway, PaymentSession, VerificationResult
from services.errors import GatewayUnreachable, InvalidReference


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CREATE_TABLES = True
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    BOOKING_HOLD_MINUTES = 30
    CANCELLATION_FEE_PERCENT = 5
    CHECK_IN_HOUR = 14
    PAYMENT_CURRENCY = "ETB"


class FakeGateway(PaymentGateway):
    """In-memory checkout: tests decide when a session is paid or expired."""

    def __init__(self):
        self.sessions = {}
        self.refunds = []
        self.verify_calls = []
        self.fail_create = None
        self.unreachable = False
        self._seq = 0

    def create_session(self, booking_id, amount, currency, guest_contact):
        if self.fail_create is not None:
            raise self.fail_create
        self._seq += 1
        tx_ref = f"cs_test_{booking_id}_{self._seq}"
        self.sessions[tx_ref] = {
            "booking_id": booking_id,
            "amount": Decimal(amount),
            "currency": currency,
            "state": "open",
            "paid": None,
        }
        return PaymentSession(tx_ref=tx_ref, checkout_url=f"https://checkout.test/{tx_ref}",
                              amount=Decimal(amount), currency=currency)

    def pay(self, tx_ref, amount=None):
        s = self.sessions[tx_ref]
        s["state"] = "complete"
        s["paid"] = Decimal(amount) if amount is not None else s["amount"]

    def expire(self, tx_ref):
        self.sessions[tx_ref]["state"] = "expired"

    def verify(self, tx_ref):
        self.verify_calls.append(tx_ref)
        if self.unreachable:
            raise GatewayUnreachable()
        s = self.sessions.get(tx_ref)
        if s is None:
            raise InvalidReference()
        if s["state"] == "complete":
            return VerificationResult(True, s["paid"], "complete/paid", True)
        if s["state"] == "expired":
            return VerificationResult(False, None, "expired/unpaid", True)
        return VerificationResult(False, None, "open/unpaid", False)

    def refund(self, tx_ref, amount):
        if self.unreachable:
            raise GatewayUnreachable()
        self.refunds.append((tx_ref, Decimal(amount)))
        return f"re_{len(self.refunds)}"


# ============== app / database ==============

@pytest.fixture
def app():
    app = create_app(TestingConfig)
    app.extensions["payment_gateway"] = FakeGateway()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def client(app):
    return app.test_client()


# ============== people ==============

def _make_user(email, *role_names):
    user = User(email=email, first_name=email.split("@")[0].title(), last_name="Test")
    for name in role_names:
        role = Role.query.filter_by(name=name).first()
        user.roles.append(role)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def guest(app):
    return _make_user("abebe@example.com", "CUSTOMER")


@pytest.fixture
def other_guest(app):
    return _make_user("hanna@example.com", "CUSTOMER")


@pytest.fixture
def receptionist(app):
    return _make_user("front@example.com", "RECEPTIONIST")


@pytest.fixture
def login(app, client):
    """login(user) sets the session cookie the auth service would have issued."""
    def _login(user):
        token = create_session(user.id)
        client.set_cookie(app.config["AUTH_COOKIE_NAME"], token)
        return client
    return _login


# ============== rooms ==============

def _make_room(number, price, capacity=2, **kwargs):
    room = Room(room_number=number, type=kwargs.pop("type", "double"), price=Decimal(price),
                capacity=capacity, floor_number=1, **kwargs)
    db.session.add(room)
    db.session.commit()
    return room


@pytest.fixture
def room(app):
    return _make_room("101", "1200")


@pytest.fixture
def make_room(app):
    return _make_room


# ============== time ==============

@pytest.fixture
def booking_day():
    """'Now' for the March 2025 scenarios: a month before the stay."""
    return datetime(2025, 2, 1, 9, 0)


@pytest.fixture
def pending_booking(room, guest, gateway, booking_day):
    """Room 101, 2025-03-01 -> 2025-03-03, 2 guests, checkout session opened."""
    from datetime import date
    from services import reconciliation

    booking, _ = reconciliation.initiate_booking(guest, room.id, date(2025, 3, 1), date(2025, 3, 3), 2,
                                                 now=booking_day)
    return bookings.get_booking(booking.id)
