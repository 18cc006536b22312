"""
Unit test configuration and fixtures for the fleet engine
"""

import pytest
from datetime import datetime, date, time, timedelta
from decimal import Decimal

from app import create_app, db
from models import (Driver, Vehicle, Customer, Booking, ShiftSegment, DailyTravel,
                    MonthlyExemptionStatus, VehicleHold, VehicleBookingBlock, VehicleMaintenanceBlock,
                    BlackoutDate, DriverStatus, VehicleStatus, DutyActivity, HoldState, BookingStatus)
import factory
from factory import Faker


class FakeClock:
    """Settable clock injected into services instead of the wall clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing, backed by a throwaway SQLite file"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'fleet_test.db'}",
        'NOTIFICATIONS_ENABLED': False,
        'ENABLE_BACKGROUND_TASKS': False,
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session for testing"""
    yield db.session
    db.session.rollback()


@pytest.fixture
def clock():
    """Fleet-local clock fixed at Saturday 2025-05-31 09:00"""
    return FakeClock(datetime(2025, 5, 31, 9, 0))


# Factory classes for test data generation
class DriverFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Driver
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    full_name = Faker('name')
    phone = factory.Sequence(lambda n: f"+1555010{n:04d}")
    status = DriverStatus.ACTIVE


class VehicleFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Vehicle
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    registration_number = factory.Sequence(lambda n: f"7ABC{n:03d}")
    make = "Mercedes-Benz"
    model = "Sprinter"
    capacity = 14
    status = VehicleStatus.ACTIVE


class CustomerFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Customer
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    email = factory.Sequence(lambda n: f"guest{n}@example.com")
    full_name = Faker('name')
    phone = factory.Sequence(lambda n: f"+1555020{n:04d}")


class BookingFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Booking
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    customer = factory.SubFactory(CustomerFactory)
    tour_date = date(2025, 6, 1)
    start_time = time(10, 0)
    end_time = time(14, 0)
    party_size = 6
    total_price = Decimal('900.00')
    deposit_amount = Decimal('200.00')
    status = BookingStatus.CONFIRMED


class VehicleBookingBlockFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = VehicleBookingBlock
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    vehicle = factory.SubFactory(VehicleFactory)
    booking = factory.SubFactory(BookingFactory)
    block_date = date(2025, 6, 1)
    start_time = time(10, 0)
    end_time = time(14, 0)


class VehicleHoldFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = VehicleHold
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    vehicle = factory.SubFactory(VehicleFactory)
    hold_date = date(2025, 6, 1)
    start_time = time(10, 0)
    end_time = time(14, 0)
    state = HoldState.ACTIVE
    created_at = datetime(2025, 5, 31, 9, 0)
    expires_at = factory.LazyAttribute(lambda o: o.created_at + timedelta(minutes=15))


class VehicleMaintenanceBlockFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = VehicleMaintenanceBlock
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    vehicle = factory.SubFactory(VehicleFactory)
    block_date = date(2025, 6, 1)
    start_time = time(8, 0)
    end_time = time(12, 0)
    reason = "Brake service"


class BlackoutDateFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = BlackoutDate
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    blackout_date = date(2025, 6, 1)
    reason = "Fleet safety day"
    is_active = True


class ShiftSegmentFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = ShiftSegment
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    driver = factory.SubFactory(DriverFactory)
    activity = DutyActivity.DRIVING
    started_at = datetime(2025, 6, 2, 6, 0)
    ended_at = factory.LazyAttribute(lambda o: o.started_at + timedelta(hours=8))
    break_minutes_accumulated = 0


class DailyTravelFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = DailyTravel
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    driver = factory.SubFactory(DriverFactory)
    travel_date = date(2025, 6, 2)
    miles_from_base = Decimal('80.00')


class MonthlyExemptionStatusFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = MonthlyExemptionStatus
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    driver = factory.SubFactory(DriverFactory)
    month_start_date = date(2025, 6, 1)
    exemption_days_used = 0
    monthly_limit = 8


# Fixtures for test data
@pytest.fixture
def driver(db_session):
    """Create active driver"""
    return DriverFactory()


@pytest.fixture
def vehicle(db_session):
    """Create active 14-seat vehicle"""
    return VehicleFactory()


@pytest.fixture
def customer(db_session):
    return CustomerFactory()
