import json
from app import db
from sqlalchemy import Index, CheckConstraint, UniqueConstraint, text
from sqlalchemy.ext.hybrid import hybrid_property
from enum import Enum
import uuid
from timezone_utils import get_local_time_naive

# Enums for better data integrity
class DriverStatus(Enum):
    ACTIVE = 'active'
    SUSPENDED = 'suspended'
    TERMINATED = 'terminated'

class DriverDutyStatus(Enum):
    OFF_DUTY = 'off_duty'
    ON_DUTY = 'on_duty'
    ON_BREAK = 'on_break'

class DutyActivity(Enum):
    DRIVING = 'driving'
    ON_DUTY = 'on_duty'  # non-driving work

class VehicleStatus(Enum):
    ACTIVE = 'active'
    MAINTENANCE = 'maintenance'
    RETIRED = 'retired'

class HoldState(Enum):
    ACTIVE = 'active'
    CONVERTED = 'converted'
    RELEASED = 'released'
    EXPIRED = 'expired'

class BookingStatus(Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    NEEDS_VERIFICATION = 'needs_verification'
    CANCELLED = 'cancelled'


def generate_booking_number():
    return 'BK-' + uuid.uuid4().hex[:12].upper()


class Driver(db.Model):
    __tablename__ = 'drivers'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    full_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    license_expiry = db.Column(db.Date)
    medical_cert_expiry = db.Column(db.Date)

    status = db.Column(db.Enum(DriverStatus), nullable=False, default=DriverStatus.ACTIVE, index=True)
    duty_status = db.Column(db.Enum(DriverDutyStatus), nullable=False, default=DriverDutyStatus.OFF_DUTY)
    # Bumped on every duty transition; the UPDATE is the driver's row lock
    ledger_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    segments = db.relationship('ShiftSegment', backref='driver', lazy=True)

    @hybrid_property
    def is_active(self):
        return self.status == DriverStatus.ACTIVE

    def __repr__(self):
        return f'<Driver {self.full_name}>'


class Vehicle(db.Model):
    __tablename__ = 'vehicles'

    id = db.Column(db.Integer, primary_key=True)
    registration_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    make = db.Column(db.String(50))
    model = db.Column(db.String(100))
    capacity = db.Column(db.Integer, nullable=False, default=1)
    inspection_expiry = db.Column(db.Date)

    status = db.Column(db.Enum(VehicleStatus), nullable=False, default=VehicleStatus.ACTIVE, index=True)
    # Bumped before every hold insert; the UPDATE is the calendar's row lock
    calendar_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    holds = db.relationship('VehicleHold', backref='vehicle', lazy=True)
    blocks = db.relationship('VehicleBookingBlock', backref='vehicle', lazy=True)
    maintenance_blocks = db.relationship('VehicleMaintenanceBlock', backref='vehicle', lazy=True)

    __table_args__ = (
        CheckConstraint('capacity > 0', name='check_vehicle_capacity_positive'),
    )

    def __repr__(self):
        return f'<Vehicle {self.registration_number}>'


class ShiftSegment(db.Model):
    """One clock-in to clock-out interval of a driver's time ledger"""
    __tablename__ = 'shift_segments'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=True, index=True)
    activity = db.Column(db.Enum(DutyActivity), nullable=False, default=DutyActivity.DRIVING)

    started_at = db.Column(db.DateTime, nullable=False, index=True)
    ended_at = db.Column(db.DateTime)

    on_break = db.Column(db.Boolean, nullable=False, default=False)
    break_started_at = db.Column(db.DateTime)
    break_minutes_accumulated = db.Column(db.Integer, nullable=False, default=0)

    start_latitude = db.Column(db.Float)
    start_longitude = db.Column(db.Float)
    end_latitude = db.Column(db.Float)
    end_longitude = db.Column(db.Float)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)

    vehicle = db.relationship('Vehicle')

    __table_args__ = (
        # At most one open segment per driver
        Index('uq_open_segment_per_driver', 'driver_id', unique=True,
              sqlite_where=text('ended_at IS NULL'),
              postgresql_where=text('ended_at IS NULL')),
        CheckConstraint('ended_at IS NULL OR ended_at >= started_at', name='check_segment_end_after_start'),
        CheckConstraint('break_minutes_accumulated >= 0', name='check_break_minutes_positive'),
    )

    @hybrid_property
    def is_open(self):
        return self.ended_at is None

    def __repr__(self):
        return f'<ShiftSegment driver={self.driver_id} {self.started_at}>'


class DailyTravel(db.Model):
    __tablename__ = 'daily_travel'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    travel_date = db.Column(db.Date, nullable=False)
    miles_from_base = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    used_short_haul_exemption_today = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    driver = db.relationship('Driver')

    __table_args__ = (
        UniqueConstraint('driver_id', 'travel_date', name='uq_daily_travel_driver_date'),
        CheckConstraint('miles_from_base >= 0', name='check_miles_positive'),
    )


class MonthlyExemptionStatus(db.Model):
    __tablename__ = 'monthly_exemption_status'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    month_start_date = db.Column(db.Date, nullable=False)
    exemption_days_used = db.Column(db.Integer, nullable=False, default=0)
    monthly_limit = db.Column(db.Integer, nullable=False, default=8)

    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    driver = db.relationship('Driver')

    __table_args__ = (
        UniqueConstraint('driver_id', 'month_start_date', name='uq_exemption_driver_month'),
        CheckConstraint('exemption_days_used >= 0 AND exemption_days_used <= monthly_limit',
                        name='check_exemption_days_range'),
    )

    @hybrid_property
    def days_remaining(self):
        return self.monthly_limit - self.exemption_days_used


class VehicleHold(db.Model):
    __tablename__ = 'vehicle_holds'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    hold_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    state = db.Column(db.Enum(HoldState), nullable=False, default=HoldState.ACTIVE, index=True)
    note = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, nullable=False, default=get_local_time_naive)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    released_at = db.Column(db.DateTime)
    converted_at = db.Column(db.DateTime)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=True)

    __table_args__ = (
        Index('idx_hold_vehicle_date_state', 'vehicle_id', 'hold_date', 'state'),
        CheckConstraint('start_time < end_time', name='check_hold_window'),
    )

    def __repr__(self):
        return f'<VehicleHold {self.id} vehicle={self.vehicle_id} {self.state.value}>'


class VehicleBookingBlock(db.Model):
    __tablename__ = 'vehicle_booking_blocks'

    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    block_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False, index=True)
    hold_id = db.Column(db.Integer, db.ForeignKey('vehicle_holds.id'), nullable=True, unique=True)

    voided_at = db.Column(db.DateTime)
    void_reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=get_local_time_naive)

    __table_args__ = (
        Index('idx_block_vehicle_date', 'vehicle_id', 'block_date'),
        CheckConstraint('start_time < end_time', name='check_block_window'),
    )

    def __repr__(self):
        return f'<VehicleBookingBlock vehicle={self.vehicle_id} {self.block_date} {self.start_time}-{self.end_time}>'


class VehicleMaintenanceBlock(db.Model):
    """Window where a vehicle is out of service for maintenance"""
    __tablename__ = 'vehicle_maintenance_blocks'

    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    block_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    created_by = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    removed_at = db.Column(db.DateTime)

    __table_args__ = (
        Index('idx_maintenance_vehicle_date', 'vehicle_id', 'block_date'),
        CheckConstraint('start_time < end_time', name='check_maintenance_window'),
    )

    def __repr__(self):
        return f'<VehicleMaintenanceBlock vehicle={self.vehicle_id} {self.block_date} {self.start_time}-{self.end_time}>'


class BlackoutDate(db.Model):
    """Fleet-wide date on which no vehicle can be reserved"""
    __tablename__ = 'blackout_dates'

    id = db.Column(db.Integer, primary_key=True)
    blackout_date = db.Column(db.Date, unique=True, nullable=False, index=True)
    reason = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=get_local_time_naive)

    def __repr__(self):
        return f'<BlackoutDate {self.blackout_date}>'


class Customer(db.Model):
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    bookings = db.relationship('Booking', backref='customer', lazy=True)


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    booking_number = db.Column(db.String(20), unique=True, nullable=False, default=generate_booking_number)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)

    tour_date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    party_size = db.Column(db.Integer, nullable=False, default=1)

    total_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    status = db.Column(db.Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    notes = db.Column(db.Text)
    cancellation_reason = db.Column(db.Text)
    cancelled_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    blocks = db.relationship('VehicleBookingBlock', backref='booking', lazy=True)

    __table_args__ = (
        CheckConstraint('party_size > 0', name='check_party_size_positive'),
        CheckConstraint('deposit_amount <= total_price', name='check_deposit_within_total'),
    )

    @hybrid_property
    def balance_due(self):
        return (self.total_price or 0) - (self.deposit_amount or 0)

    def __repr__(self):
        return f'<Booking {self.booking_number}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor = db.Column(db.String(100), nullable=False, default='system', index=True)

    # Action details
    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50), index=True)
    entity_id = db.Column(db.Integer)
    new_values = db.Column(db.Text)  # JSON
    severity = db.Column(db.String(20), nullable=False, default='info')

    # Request context
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=get_local_time_naive, index=True)

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )

    def get_details(self):
        return json.loads(self.new_values) if self.new_values else {}


class ComplianceAuditLog(db.Model):
    """Every compliance evaluation performed for a clock-in attempt"""
    __tablename__ = 'compliance_audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=True)
    action_type = db.Column(db.String(30), nullable=False, default='clock_in')

    was_blocked = db.Column(db.Boolean, nullable=False, default=False)
    block_reason = db.Column(db.String(50))
    violations = db.Column(db.Text)  # JSON array
    warnings = db.Column(db.Text)  # JSON array
    override_requested = db.Column(db.Boolean, nullable=False, default=False)

    evaluated_at = db.Column(db.DateTime, nullable=False, default=get_local_time_naive, index=True)

    def get_violations(self):
        return json.loads(self.violations) if self.violations else []

    def get_warnings(self):
        return json.loads(self.warnings) if self.warnings else []
