"""
Calendar Service

Each vehicle's timeline: committed booking blocks, active unexpired holds
and maintenance blocks, plus fleet-wide blackout dates that close a whole
day. Windows are half-open, so back-to-back reservations (10:00-12:00 and
12:00-14:00) do not conflict.
"""

from dataclasses import dataclass
from datetime import date, time, datetime, timedelta
from typing import Callable, List, Optional
import logging
from flask import current_app, has_app_context
from sqlalchemy import update
from models import (db, VehicleHold, VehicleBookingBlock, VehicleMaintenanceBlock, BlackoutDate,
                    Vehicle, HoldState, VehicleStatus)
from timezone_utils import get_local_time_naive
from .audit_service import AuditService
from .exceptions import AvailabilityConflict, FleetValidationError, NotFoundError, VehicleNotFound
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

DEFAULT_DAY_START = '08:00'
DEFAULT_DAY_END = '22:00'
SLOT_STEP = timedelta(hours=1)


def parse_clock_time(value: str) -> time:
    return datetime.strptime(value, '%H:%M').time()


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """True when the half-open windows [a_start, a_end) and [b_start, b_end) intersect"""
    return a_start < b_end and b_start < a_end


def lock_vehicle(vehicle_id: int) -> Vehicle:
    """
    Bump the vehicle's calendar_version so writers to its calendar run one
    at a time, then return the fresh row. Must run inside a transaction.
    """
    locked = db.session.execute(
        update(Vehicle)
        .where(Vehicle.id == vehicle_id)
        .values(calendar_version=Vehicle.calendar_version + 1)
        .execution_options(synchronize_session=False)
    )
    if locked.rowcount == 0:
        raise VehicleNotFound(vehicle_id)
    return db.session.get(Vehicle, vehicle_id, populate_existing=True)


@dataclass(frozen=True)
class Commitment:
    kind: str  # 'block', 'hold', 'maintenance' or 'blackout'
    id: int
    vehicle_id: int
    date: date
    start_time: time
    end_time: time
    booking_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None

    def to_dict(self):
        return {
            'kind': self.kind,
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'date': self.date.isoformat(),
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
            'booking_id': self.booking_id,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'reason': self.reason,
        }

    @classmethod
    def from_block(cls, block):
        return cls('block', block.id, block.vehicle_id, block.block_date,
                   block.start_time, block.end_time, booking_id=block.booking_id)

    @classmethod
    def from_hold(cls, hold):
        return cls('hold', hold.id, hold.vehicle_id, hold.hold_date,
                   hold.start_time, hold.end_time, expires_at=hold.expires_at)

    @classmethod
    def from_maintenance(cls, block):
        return cls('maintenance', block.id, block.vehicle_id, block.block_date,
                   block.start_time, block.end_time, reason=block.reason)

    @classmethod
    def from_blackout(cls, blackout, vehicle_id):
        # A blackout closes the whole day for every vehicle
        return cls('blackout', blackout.id, vehicle_id, blackout.blackout_date,
                   time.min, time.max, reason=blackout.reason)


@dataclass(frozen=True)
class TimeSlot:
    start_time: time
    end_time: time
    available: bool
    vehicle_id: Optional[int] = None
    vehicle_count: int = 0

    def to_dict(self):
        return {
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
            'available': self.available,
            'vehicle_id': self.vehicle_id,
            'vehicle_count': self.vehicle_count,
        }


class CalendarService:
    """Overlap queries and out-of-service windows for the vehicle calendar"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 day_start: Optional[str] = None, day_end: Optional[str] = None):
        self.clock = clock or get_local_time_naive
        config = current_app.config if has_app_context() else {}
        self.day_start = parse_clock_time(day_start or config.get('OPERATING_DAY_START', DEFAULT_DAY_START))
        self.day_end = parse_clock_time(day_end or config.get('OPERATING_DAY_END', DEFAULT_DAY_END))

    def _block_query(self, vehicle_id: int, on_date: date):
        return VehicleBookingBlock.query.filter(
            VehicleBookingBlock.vehicle_id == vehicle_id,
            VehicleBookingBlock.block_date == on_date,
            VehicleBookingBlock.voided_at.is_(None),
        )

    def _hold_query(self, vehicle_id: int, on_date: date, now: datetime):
        # Holds past expires_at no longer occupy the calendar, swept or not
        return VehicleHold.query.filter(
            VehicleHold.vehicle_id == vehicle_id,
            VehicleHold.hold_date == on_date,
            VehicleHold.state == HoldState.ACTIVE,
            VehicleHold.expires_at > now,
        )

    def _maintenance_query(self, vehicle_id: int, on_date: date):
        return VehicleMaintenanceBlock.query.filter(
            VehicleMaintenanceBlock.vehicle_id == vehicle_id,
            VehicleMaintenanceBlock.block_date == on_date,
            VehicleMaintenanceBlock.removed_at.is_(None),
        )

    @staticmethod
    def get_blackout(on_date: date) -> Optional[BlackoutDate]:
        return BlackoutDate.query.filter_by(blackout_date=on_date, is_active=True).first()

    def find_conflicts(self, vehicle_id: int, on_date: date, start_time: time, end_time: time,
                       now: Optional[datetime] = None) -> List[Commitment]:
        """Commitments of the vehicle that overlap [start_time, end_time) on the date"""
        now = now or self.clock()
        blocks = self._block_query(vehicle_id, on_date).filter(
            VehicleBookingBlock.start_time < end_time,
            VehicleBookingBlock.end_time > start_time,
        ).all()
        holds = self._hold_query(vehicle_id, on_date, now).filter(
            VehicleHold.start_time < end_time,
            VehicleHold.end_time > start_time,
        ).all()
        maintenance = self._maintenance_query(vehicle_id, on_date).filter(
            VehicleMaintenanceBlock.start_time < end_time,
            VehicleMaintenanceBlock.end_time > start_time,
        ).all()

        conflicts = [Commitment.from_block(b) for b in blocks] + [Commitment.from_hold(h) for h in holds]
        conflicts += [Commitment.from_maintenance(m) for m in maintenance]
        blackout = self.get_blackout(on_date)
        if blackout is not None:
            conflicts.append(Commitment.from_blackout(blackout, vehicle_id))
        return sorted(conflicts, key=lambda c: (c.start_time, c.kind, c.id))

    def is_available(self, vehicle_id: int, on_date: date, start_time: time, end_time: time,
                     now: Optional[datetime] = None) -> bool:
        return not self.find_conflicts(vehicle_id, on_date, start_time, end_time, now=now)

    def commitments_for(self, vehicle_id: int, on_date: date, now: Optional[datetime] = None) -> List[Commitment]:
        """Every block, live hold and maintenance window of the vehicle on the date, ordered by start time"""
        now = now or self.clock()
        commitments = [Commitment.from_block(b) for b in self._block_query(vehicle_id, on_date).all()]
        commitments += [Commitment.from_hold(h) for h in self._hold_query(vehicle_id, on_date, now).all()]
        commitments += [Commitment.from_maintenance(m) for m in self._maintenance_query(vehicle_id, on_date).all()]
        blackout = self.get_blackout(on_date)
        if blackout is not None:
            commitments.append(Commitment.from_blackout(blackout, vehicle_id))
        return sorted(commitments, key=lambda c: (c.start_time, c.kind, c.id))

    def find_available_vehicles(self, on_date: date, start_time: time, end_time: time,
                                party_size: int = 1, now: Optional[datetime] = None) -> List[Vehicle]:
        """Active vehicles that seat the party and are free for the window, smallest first"""
        if self.get_blackout(on_date) is not None:
            logger.debug(f"{on_date} is a blackout date, no vehicles available")
            return []

        now = now or self.clock()
        candidates = Vehicle.query.filter(
            Vehicle.status == VehicleStatus.ACTIVE,
            Vehicle.capacity >= party_size,
        ).order_by(Vehicle.capacity.asc(), Vehicle.id.asc()).all()

        available = [v for v in candidates
                     if self.is_available(v.id, on_date, start_time, end_time, now=now)]
        logger.debug(f"{len(available)}/{len(candidates)} vehicles free on {on_date} {start_time}-{end_time}")
        return available

    def available_slots(self, on_date: date, duration_hours, party_size: int = 1,
                        now: Optional[datetime] = None) -> List[TimeSlot]:
        """
        Hourly start times within operating hours for a tour of the given
        length, each marked with the smallest vehicle that could take it.
        """
        try:
            length = timedelta(hours=float(duration_hours))
        except (ValueError, OverflowError):
            raise FleetValidationError(f"Invalid duration {duration_hours}")
        if length <= timedelta(0):
            raise FleetValidationError("Duration must be positive")

        now = now or self.clock()
        slot_start = datetime.combine(on_date, self.day_start)
        day_end = datetime.combine(on_date, self.day_end)

        slots = []
        while slot_start + length <= day_end:
            slot_end = slot_start + length
            vehicles = self.find_available_vehicles(on_date, slot_start.time(), slot_end.time(),
                                                    party_size, now=now)
            slots.append(TimeSlot(
                start_time=slot_start.time(),
                end_time=slot_end.time(),
                available=bool(vehicles),
                vehicle_id=vehicles[0].id if vehicles else None,
                vehicle_count=len(vehicles),
            ))
            slot_start += SLOT_STEP
        return slots

    @TransactionHelper.with_transaction
    def create_maintenance_block(self, vehicle_id: int, on_date: date, start_time: time, end_time: time,
                                 reason: str, created_by: Optional[str] = None) -> VehicleMaintenanceBlock:
        """
        Take a vehicle out of service for a window. Refused when the window
        overlaps a booking, a live hold or another maintenance block.
        """
        if start_time >= end_time:
            raise FleetValidationError(f"Maintenance window {start_time}-{end_time} is empty")
        if not reason:
            raise FleetValidationError("A maintenance reason is required")

        lock_vehicle(vehicle_id)
        conflicts = [c for c in self.find_conflicts(vehicle_id, on_date, start_time, end_time)
                     if c.kind != 'blackout']
        if conflicts:
            logger.info(f"Maintenance block rejected for vehicle {vehicle_id} on {on_date}: "
                        f"{len(conflicts)} overlapping commitment(s)")
            raise AvailabilityConflict(vehicle_id, on_date, start_time, end_time, conflicts)

        block = VehicleMaintenanceBlock(
            vehicle_id=vehicle_id,
            block_date=on_date,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
            created_by=created_by,
            created_at=self.clock(),
        )
        db.session.add(block)
        db.session.flush()

        AuditService.log_action(
            action='create_maintenance_block',
            entity_type='vehicle',
            entity_id=vehicle_id,
            details={'block_id': block.id, 'date': on_date.isoformat(),
                     'start_time': start_time.strftime('%H:%M'), 'end_time': end_time.strftime('%H:%M'),
                     'reason': reason},
            actor=created_by or 'system',
        )
        logger.info(f"Maintenance block {block.id} for vehicle {vehicle_id} on {on_date} "
                    f"{start_time}-{end_time}: {reason}")
        return block

    @TransactionHelper.with_transaction
    def remove_maintenance_block(self, block_id: int) -> bool:
        """Return the window to service; False when it was already removed"""
        block = db.session.get(VehicleMaintenanceBlock, block_id)
        if block is None:
            raise NotFoundError(f"Maintenance block {block_id} not found")
        if block.removed_at is not None:
            return False

        block.removed_at = self.clock()
        AuditService.log_action(
            action='remove_maintenance_block',
            entity_type='vehicle',
            entity_id=block.vehicle_id,
            details={'block_id': block_id},
        )
        logger.info(f"Maintenance block {block_id} removed from vehicle {block.vehicle_id}")
        return True

    @TransactionHelper.with_transaction
    def add_blackout_date(self, on_date: date, reason: Optional[str] = None) -> BlackoutDate:
        """Close a date for new reservations fleet-wide; existing bookings are kept"""
        blackout = BlackoutDate.query.filter_by(blackout_date=on_date).first()
        if blackout is None:
            blackout = BlackoutDate(blackout_date=on_date, created_at=self.clock())
            db.session.add(blackout)
        blackout.reason = reason
        blackout.is_active = True
        db.session.flush()

        booked = VehicleBookingBlock.query.filter(
            VehicleBookingBlock.block_date == on_date,
            VehicleBookingBlock.voided_at.is_(None),
        ).count()
        if booked:
            logger.warning(f"Blackout on {on_date} leaves {booked} existing booking block(s) in place")

        AuditService.log_action(
            action='add_blackout_date',
            entity_type='blackout_date',
            entity_id=blackout.id,
            details={'date': on_date.isoformat(), 'reason': reason, 'existing_blocks': booked},
        )
        return blackout

    @TransactionHelper.with_transaction
    def remove_blackout_date(self, on_date: date) -> bool:
        blackout = BlackoutDate.query.filter_by(blackout_date=on_date, is_active=True).first()
        if blackout is None:
            return False
        blackout.is_active = False
        AuditService.log_action(
            action='remove_blackout_date',
            entity_type='blackout_date',
            entity_id=blackout.id,
            details={'date': on_date.isoformat()},
        )
        logger.info(f"Blackout on {on_date} lifted")
        return True
