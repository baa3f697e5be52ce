from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from config import Config
from models import db
from models.customer import Customer
from models.service import Service
from models.service_center import ServiceCenter
from models.service_center_service import ServiceCenterService
from models.user import Role, User
from models.vehicle import Vehicle
from security.rbac import ADMIN, CUSTOMER, EMPLOYEE
from security.session import create_session
from utils.clock import today


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    CREATE_TABLES = True
    LOG_LEVEL = "DEBUG"
    NOTIFICATIONS_ENABLED = True
    SMTP_HOST = None
    TWILIO_ACCOUNT_SID = None
    TWILIO_AUTH_TOKEN = None
    TWILIO_FROM_NUMBER = None


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    app.extensions["notifier"].shutdown()
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def make_user(app):
    def _make(email, *roles, full_name="Test User", phone=None, customer=True):
        user = User(email=email, full_name=full_name, phone_number=phone)
        for name in roles:
            user.roles.append(Role.query.filter_by(name=name).one())
        db.session.add(user)
        db.session.flush()

        profile = None
        if customer:
            profile = Customer(user_id=user.id, city="Springfield")
            db.session.add(profile)
        db.session.commit()
        return user, profile
    return _make


@pytest.fixture
def login(app):
    """Returns a test client carrying a fresh session cookie for `user`."""
    def _login(user):
        client = app.test_client()
        client.set_cookie(app.config["AUTH_COOKIE_NAME"], create_session(user.id))
        return client
    return _login


@pytest.fixture
def world(app, make_user):
    alice, alice_profile = make_user("alice@example.com", CUSTOMER, full_name="Alice Driver", phone="+15550001")
    bob, bob_profile = make_user("bob@example.com", CUSTOMER, full_name="Bob Rider")
    employee, _ = make_user("emp@example.com", EMPLOYEE, full_name="Eve Mechanic", customer=False)
    admin, _ = make_user("admin@example.com", ADMIN, full_name="Ada Admin", customer=False)

    center = ServiceCenter(name="Downtown Auto", address="1 Main St", phone_number="555-0100")
    closed = ServiceCenter(name="Old Garage", address="9 Side Rd", phone_number="555-0199", is_active=False)
    oil = Service(name="Oil Change", base_price=Decimal("100.00"), estimated_duration_minutes=45)
    tyres = Service(name="Tyre Rotation", base_price=Decimal("60.00"), estimated_duration_minutes=30)
    detailing = Service(name="Detailing", base_price=Decimal("150.00"), estimated_duration_minutes=120)
    db.session.add_all([center, closed, oil, tyres, detailing])
    db.session.flush()

    oil_link = ServiceCenterService(service_center_id=center.id, service_id=oil.id, custom_price=Decimal("80.00"))
    tyres_link = ServiceCenterService(service_center_id=center.id, service_id=tyres.id)
    closed_link = ServiceCenterService(service_center_id=closed.id, service_id=oil.id)
    alice_car = Vehicle(customer_id=alice_profile.id, brand="Toyota", model="Corolla", year=2020, plate_number="ABC123")
    bob_car = Vehicle(customer_id=bob_profile.id, brand="Honda", model="Civic", year=2018, plate_number="XYZ789")
    db.session.add_all([oil_link, tyres_link, closed_link, alice_car, bob_car])
    db.session.commit()

    return SimpleNamespace(
        alice=alice, alice_profile=alice_profile, alice_car=alice_car,
        bob=bob, bob_profile=bob_profile, bob_car=bob_car,
        employee=employee, admin=admin,
        center=center, closed=closed,
        oil=oil, tyres=tyres, detailing=detailing,
        oil_link=oil_link, tyres_link=tyres_link,
    )


@pytest.fixture
def clients(world, login):
    return SimpleNamespace(
        alice=login(world.alice),
        bob=login(world.bob),
        employee=login(world.employee),
        admin=login(world.admin),
    )


def tomorrow():
    return today() + timedelta(days=1)


def booking_payload(world, vehicle=None, center=None, service=None, day=None, at="09:00:00", **extra):
    payload = {
        "vehicleId": (vehicle or world.alice_car).id,
        "serviceCenterId": (center or world.center).id,
        "serviceId": (service or world.oil).id,
        "bookingDate": (day or tomorrow()).isoformat(),
        "bookingTime": at,
    }
    payload.update(extra)
    return payload


@pytest.fixture
def book(world, clients):
    """POST /bookings as alice (or `client`) and return the created booking's data."""
    def _book(client=None, expect=201, **kwargs):
        resp = (client or clients.alice).post("/bookings", json=booking_payload(world, **kwargs))
        assert resp.status_code == expect, resp.get_json()
        return resp.get_json()["data"]
    return _book


@pytest.fixture
def sent(app, monkeypatch):
    """Records outbound messages instead of handing them to SMTP/Twilio."""
    messages = []

    def _record(message):
        messages.append(message)
        return True, None

    monkeypatch.setattr("utils.notifier._transport", _record)
    return messages
