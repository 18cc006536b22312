"""
Unit tests for database models
"""

import pytest
from datetime import datetime, date, time
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from models import (ShiftSegment, VehicleHold, Booking, DailyTravel, MonthlyExemptionStatus,
                    DriverStatus, HoldState, generate_booking_number)
from tests.unit.conftest import (DriverFactory, VehicleFactory, BookingFactory, ShiftSegmentFactory,
                                 MonthlyExemptionStatusFactory, DailyTravelFactory, CustomerFactory)


class TestDriverAndVehicle:

    def test_driver_defaults(self, db_session):
        """Test a new driver is active, off duty and unlocked"""
        driver = DriverFactory()

        assert driver.uuid is not None
        assert driver.is_active is True
        assert driver.ledger_version == 0
        assert driver.duty_status.value == 'off_duty'

    def test_suspended_driver_not_active(self, db_session):
        assert DriverFactory(status=DriverStatus.SUSPENDED).is_active is False

    def test_vehicle_capacity_must_be_positive(self, db_session):
        with pytest.raises(IntegrityError):
            VehicleFactory(capacity=0)
        db_session.rollback()


class TestShiftSegment:

    def test_one_open_segment_per_driver(self, db_session, driver):
        """Test the database refuses a second open shift for a driver"""
        ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 2, 6, 0), ended_at=None)

        db_session.add(ShiftSegment(driver_id=driver.id, started_at=datetime(2025, 6, 2, 7, 0)))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_closed_segments_unrestricted(self, db_session, driver):
        ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 2, 6, 0))
        ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 3, 6, 0))
        ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 4, 6, 0), ended_at=None)

        assert ShiftSegment.query.filter_by(driver_id=driver.id).count() == 3
        assert [s.is_open for s in driver.segments].count(True) == 1

    def test_segment_cannot_end_before_start(self, db_session, driver):
        with pytest.raises(IntegrityError):
            ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 2, 6, 0),
                                ended_at=datetime(2025, 6, 2, 5, 0))
        db_session.rollback()


class TestTravelModels:

    def test_one_travel_row_per_day(self, db_session, driver):
        DailyTravelFactory(driver=driver, travel_date=date(2025, 6, 2))

        db_session.add(DailyTravel(driver_id=driver.id, travel_date=date(2025, 6, 2),
                                   miles_from_base=Decimal('10')))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_exemption_days_within_limit(self, db_session, driver):
        """Test the budget row cannot record more days than its limit"""
        with pytest.raises(IntegrityError):
            MonthlyExemptionStatusFactory(driver=driver, exemption_days_used=9)
        db_session.rollback()

    def test_days_remaining(self, db_session, driver):
        status = MonthlyExemptionStatusFactory(driver=driver, exemption_days_used=3)

        assert status.days_remaining == 5
        assert MonthlyExemptionStatus.query.filter(MonthlyExemptionStatus.days_remaining == 5).count() == 1


class TestBookingModels:

    def test_booking_number_format(self):
        number = generate_booking_number()

        assert number.startswith('BK-')
        assert len(number) == 15
        assert number != generate_booking_number()

    def test_balance_due(self, db_session):
        booking = BookingFactory(total_price=Decimal('900.00'), deposit_amount=Decimal('250.00'))

        assert booking.balance_due == Decimal('650.00')

    def test_deposit_cannot_exceed_total(self, db_session):
        with pytest.raises(IntegrityError):
            BookingFactory(total_price=Decimal('100.00'), deposit_amount=Decimal('150.00'))
        db_session.rollback()

    def test_customer_email_unique(self, db_session):
        CustomerFactory(email='dup@example.com')

        with pytest.raises(IntegrityError):
            CustomerFactory(email='dup@example.com')
        db_session.rollback()

    def test_hold_window_must_not_be_empty(self, db_session, vehicle):
        db_session.add(VehicleHold(vehicle_id=vehicle.id, hold_date=date(2025, 6, 1),
                                   start_time=time(12, 0), end_time=time(12, 0),
                                   state=HoldState.ACTIVE, expires_at=datetime(2025, 6, 1, 0, 15)))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_booking_default_status(self, db_session, customer):
        booking = Booking(customer_id=customer.id, tour_date=date(2025, 6, 1),
                          start_time=time(10, 0), end_time=time(14, 0))
        db_session.add(booking)
        db_session.commit()

        assert booking.status.value == 'pending'
        assert booking.booking_number.startswith('BK-')
