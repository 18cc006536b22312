"""
Hold Service

Short-lived vehicle holds. Creating a hold locks the vehicle's calendar
row, re-checks the calendar and inserts in one transaction, so two
concurrent requests for the same window cannot both succeed. State
changes on existing holds are compare-and-set UPDATEs guarded by
state = 'active'.
"""

from datetime import date, time, datetime, timedelta
from typing import Callable, Optional
import logging
from flask import current_app
from sqlalchemy import update
from models import db, VehicleHold, VehicleBookingBlock, HoldState, VehicleStatus
from timezone_utils import get_local_time_naive
from .calendar_service import CalendarService, lock_vehicle
from .exceptions import (AvailabilityConflict, InvalidHoldState, FleetValidationError,
                         ResourceUnavailableError)
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

DEFAULT_HOLD_TTL_MINUTES = 15


class HoldService:
    """Creates, converts, releases and expires vehicle holds"""

    def __init__(self, ttl_minutes: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 calendar: Optional[CalendarService] = None):
        if ttl_minutes is None:
            ttl_minutes = current_app.config.get('HOLD_TTL_MINUTES', DEFAULT_HOLD_TTL_MINUTES)
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock or get_local_time_naive
        self.calendar = calendar or CalendarService(clock=self.clock)

    @TransactionHelper.with_transaction
    def create_hold(self, vehicle_id: int, on_date: date, start_time: time, end_time: time,
                    note: Optional[str] = None) -> VehicleHold:
        if start_time >= end_time:
            raise FleetValidationError(f"Hold window {start_time}-{end_time} is empty")

        # Serialise hold creation per vehicle on its calendar row
        vehicle = lock_vehicle(vehicle_id)
        if vehicle.status != VehicleStatus.ACTIVE:
            logger.info(f"Hold rejected for vehicle {vehicle_id}: vehicle is {vehicle.status.value}")
            raise ResourceUnavailableError(f"Vehicle {vehicle_id} is {vehicle.status.value}")

        now = self.clock()
        conflicts = self.calendar.find_conflicts(vehicle_id, on_date, start_time, end_time, now=now)
        if conflicts:
            logger.info(f"Hold rejected for vehicle {vehicle_id} on {on_date} {start_time}-{end_time}: "
                        f"{len(conflicts)} overlapping commitment(s)")
            raise AvailabilityConflict(vehicle_id, on_date, start_time, end_time, conflicts)

        hold = VehicleHold(
            vehicle_id=vehicle_id,
            hold_date=on_date,
            start_time=start_time,
            end_time=end_time,
            state=HoldState.ACTIVE,
            note=note,
            created_at=now,
            expires_at=now + self.ttl,
        )
        db.session.add(hold)
        db.session.flush()

        logger.info(f"Hold {hold.id} created for vehicle {vehicle_id} on {on_date} "
                    f"{start_time}-{end_time}, expires {hold.expires_at}")
        return hold

    @TransactionHelper.with_transaction
    def release_hold(self, hold_id: int) -> bool:
        """
        Release an active hold. Idempotent: releasing a hold that is already
        released, converted, expired or missing is a no-op.

        Returns:
            bool: True if this call performed the release
        """
        result = db.session.execute(
            update(VehicleHold)
            .where(VehicleHold.id == hold_id, VehicleHold.state == HoldState.ACTIVE)
            .values(state=HoldState.RELEASED, released_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        if released:
            logger.info(f"Hold {hold_id} released")
        else:
            logger.debug(f"Hold {hold_id} not active, release skipped")
        return released

    @TransactionHelper.with_transaction
    def convert_hold_to_booking(self, hold_id: int, booking_id: int) -> VehicleBookingBlock:
        """Turn an active, unexpired hold into a permanent booking block"""
        now = self.clock()
        result = db.session.execute(
            update(VehicleHold)
            .where(VehicleHold.id == hold_id,
                   VehicleHold.state == HoldState.ACTIVE,
                   VehicleHold.expires_at > now)
            .values(state=HoldState.CONVERTED, converted_at=now, booking_id=booking_id)
            .execution_options(synchronize_session=False)
        )

        hold = db.session.get(VehicleHold, hold_id, populate_existing=True)
        if result.rowcount != 1:
            if hold is None:
                state = 'missing'
            elif hold.state == HoldState.ACTIVE:
                state = HoldState.EXPIRED.value  # past expires_at, not yet swept
            else:
                state = hold.state.value
            logger.error(f"Cannot convert hold {hold_id} for booking {booking_id}: hold is {state}")
            raise InvalidHoldState(hold_id, state)

        block = VehicleBookingBlock(
            vehicle_id=hold.vehicle_id,
            block_date=hold.hold_date,
            start_time=hold.start_time,
            end_time=hold.end_time,
            booking_id=booking_id,
            hold_id=hold.id,
        )
        db.session.add(block)
        db.session.flush()

        logger.info(f"Hold {hold_id} converted to block {block.id} for booking {booking_id}")
        return block

    @TransactionHelper.with_transaction
    def expire_stale_holds(self, now: Optional[datetime] = None) -> int:
        """Move every active hold past its expiry to 'expired'; returns how many moved"""
        now = now or self.clock()
        result = db.session.execute(
            update(VehicleHold)
            .where(VehicleHold.state == HoldState.ACTIVE, VehicleHold.expires_at <= now)
            .values(state=HoldState.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} stale hold(s)")
        return result.rowcount

    def get_hold(self, hold_id: int) -> Optional[VehicleHold]:
        return db.session.get(VehicleHold, hold_id)
