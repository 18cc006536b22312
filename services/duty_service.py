"""
Duty Service

Driver shift lifecycle: clock-in, breaks and clock-out against the time
ledger. Every transition first bumps the driver's ledger_version, which
serialises transitions for one driver. Clock-in runs the compliance
evaluator and refuses the shift on any violation; there is no override.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable
import logging
from sqlalchemy import update
from models import (db, Driver, Vehicle, ShiftSegment, DriverDutyStatus, DutyActivity,
                    VehicleStatus)
from timezone_utils import get_local_time_naive
from .audit_service import AuditService
from .compliance_service import ComplianceService, ComplianceVerdict, to_hours, display_hours
from .exceptions import (DriverNotFound, VehicleNotFound, ResourceUnavailableError,
                         ShiftStateConflict, FleetValidationError, ComplianceViolationError)
from .notification_service import NotificationService
from .transaction_helper import TransactionHelper
from .travel_service import TravelService

logger = logging.getLogger(__name__)


@dataclass
class ClockResult:
    segment: ShiftSegment
    verdict: Optional[ComplianceVerdict] = None

    def to_dict(self):
        segment = self.segment
        data = {
            'segment_id': segment.id,
            'driver_id': segment.driver_id,
            'vehicle_id': segment.vehicle_id,
            'activity': segment.activity.value,
            'started_at': segment.started_at.isoformat(),
            'ended_at': segment.ended_at.isoformat() if segment.ended_at else None,
            'on_break': segment.on_break,
            'break_minutes': segment.break_minutes_accumulated,
        }
        if self.verdict is not None:
            data['compliance'] = self.verdict.to_dict()
            data['warnings'] = [w.to_dict() for w in self.verdict.warnings]
        return data


class DutyService:
    """Service class for driver duty transitions"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 compliance: Optional[ComplianceService] = None,
                 notifications: Optional[NotificationService] = None):
        self.clock = clock or get_local_time_naive
        self.compliance = compliance or ComplianceService(clock=self.clock)
        self.notifications = notifications or NotificationService()

    def _lock_driver(self, driver_id: int) -> Driver:
        locked = db.session.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(ledger_version=Driver.ledger_version + 1)
            .execution_options(synchronize_session=False)
        )
        if locked.rowcount == 0:
            raise DriverNotFound(driver_id)
        return db.session.get(Driver, driver_id, populate_existing=True)

    @staticmethod
    def get_open_segment(driver_id: int) -> Optional[ShiftSegment]:
        return ShiftSegment.query.filter(
            ShiftSegment.driver_id == driver_id,
            ShiftSegment.ended_at.is_(None),
        ).first()

    def _require_open_segment(self, driver_id: int) -> ShiftSegment:
        segment = self.get_open_segment(driver_id)
        if segment is None:
            raise ShiftStateConflict(f"Driver {driver_id} has no open shift")
        return segment

    def request_clock_in(self, driver_id: int, vehicle_id: int, timestamp: Optional[datetime] = None,
                         location: Optional[Dict[str, float]] = None,
                         activity: DutyActivity = DutyActivity.DRIVING,
                         override_requested: bool = False) -> ClockResult:
        """
        Start a shift after a fresh compliance evaluation.

        The evaluation is audited whether or not it blocks. A blocked
        clock-in raises ComplianceViolationError after the audit rows are
        committed; asking for an override changes nothing but the audit row.

        Raises:
            DriverNotFound, VehicleNotFound, ResourceUnavailableError,
            ShiftStateConflict, FleetValidationError, ComplianceViolationError
        """
        timestamp = timestamp or self.clock()
        verdict, segment = self._clock_in(driver_id, vehicle_id, timestamp, location or {},
                                          activity, override_requested)
        if not verdict.can_proceed:
            driver = db.session.get(Driver, driver_id)
            self.notifications.notify_clock_in_blocked(driver, verdict)
            raise ComplianceViolationError(verdict)
        return ClockResult(segment, verdict)

    @TransactionHelper.with_transaction
    def _clock_in(self, driver_id, vehicle_id, timestamp, location, activity, override_requested):
        driver = self._lock_driver(driver_id)
        if not driver.is_active:
            raise ResourceUnavailableError(f"Driver {driver_id} is {driver.status.value}")

        vehicle = db.session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise VehicleNotFound(vehicle_id)
        if vehicle.status != VehicleStatus.ACTIVE:
            raise ResourceUnavailableError(f"Vehicle {vehicle_id} is {vehicle.status.value}")

        open_segment = self.get_open_segment(driver_id)
        if open_segment is not None:
            raise ShiftStateConflict(
                f"Driver {driver_id} already clocked in since {open_segment.started_at.isoformat()}")

        last_segment = ShiftSegment.query.filter_by(driver_id=driver_id) \
                                         .order_by(ShiftSegment.ended_at.desc()).first()
        if last_segment is not None and last_segment.ended_at > timestamp:
            raise FleetValidationError(
                f"Clock-in at {timestamp.isoformat()} precedes the previous clock-out "
                f"at {last_segment.ended_at.isoformat()}")

        verdict = self.compliance.evaluate(driver_id, as_of=timestamp)
        ComplianceService.apply_qualifications(verdict, driver, vehicle)
        ComplianceService.record_check(driver_id, verdict, vehicle_id=vehicle_id,
                                       override_requested=override_requested)

        if not verdict.can_proceed:
            primary = verdict.primary_violation
            if override_requested:
                logger.warning(f"Override requested for blocked clock-in of driver {driver_id}; refused")
            logger.warning(f"Clock-in blocked for driver {driver_id}: {primary.message}")
            AuditService.log_action(
                action='clock_in_blocked',
                entity_type='driver',
                entity_id=driver_id,
                details={'vehicle_id': vehicle_id, 'reason': primary.kind.value,
                         'override_requested': override_requested},
                severity='warning',
            )
            return verdict, None

        segment = ShiftSegment(
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            activity=activity,
            started_at=timestamp,
            start_latitude=location.get('latitude'),
            start_longitude=location.get('longitude'),
        )
        db.session.add(segment)
        driver.duty_status = DriverDutyStatus.ON_DUTY
        db.session.flush()

        AuditService.log_action(
            action='clock_in',
            entity_type='driver',
            entity_id=driver_id,
            details={'segment_id': segment.id, 'vehicle_id': vehicle_id,
                     'warnings': [w.kind.value for w in verdict.warnings]},
        )
        logger.info(f"Driver {driver_id} clocked in on vehicle {vehicle_id} at {timestamp}")
        return verdict, segment

    @TransactionHelper.with_transaction
    def request_clock_out(self, driver_id: int, timestamp: Optional[datetime] = None,
                          location: Optional[Dict[str, float]] = None,
                          miles_from_base=None) -> ClockResult:
        """
        Close the open shift, ending any break in progress first. The
        returned verdict is the driver's standing after the shift and only
        carries information; clock-out is never blocked.
        """
        timestamp = timestamp or self.clock()
        location = location or {}
        self._lock_driver(driver_id)
        segment = self._require_open_segment(driver_id)

        if timestamp < segment.started_at:
            raise FleetValidationError(
                f"Clock-out at {timestamp.isoformat()} precedes clock-in at {segment.started_at.isoformat()}")
        if segment.on_break:
            self._close_break(segment, timestamp)

        segment.ended_at = timestamp
        segment.end_latitude = location.get('latitude')
        segment.end_longitude = location.get('longitude')
        segment.driver.duty_status = DriverDutyStatus.OFF_DUTY

        if miles_from_base is not None:
            TravelService.record_daily_miles(driver_id, segment.started_at.date(), miles_from_base)
        db.session.flush()

        worked = display_hours(to_hours(segment.ended_at - segment.started_at
                                        - timedelta(minutes=segment.break_minutes_accumulated)))
        verdict = self.compliance.evaluate(driver_id, as_of=timestamp)

        AuditService.log_action(
            action='clock_out',
            entity_type='driver',
            entity_id=driver_id,
            details={'segment_id': segment.id, 'on_duty_hours': worked,
                     'miles_from_base': miles_from_base,
                     'warnings': [w.kind.value for w in verdict.warnings + verdict.violations]},
        )
        logger.info(f"Driver {driver_id} clocked out at {timestamp} after {worked} on-duty hours")
        return ClockResult(segment, verdict)

    @TransactionHelper.with_transaction
    def request_break_start(self, driver_id: int, timestamp: Optional[datetime] = None) -> ClockResult:
        timestamp = timestamp or self.clock()
        self._lock_driver(driver_id)
        segment = self._require_open_segment(driver_id)

        if segment.on_break:
            raise ShiftStateConflict(f"Driver {driver_id} is already on break")
        if timestamp < segment.started_at:
            raise FleetValidationError("Break cannot start before the shift")

        segment.on_break = True
        segment.break_started_at = timestamp
        segment.driver.duty_status = DriverDutyStatus.ON_BREAK
        db.session.flush()

        logger.info(f"Driver {driver_id} started break at {timestamp}")
        return ClockResult(segment)

    @TransactionHelper.with_transaction
    def request_break_end(self, driver_id: int, timestamp: Optional[datetime] = None) -> ClockResult:
        timestamp = timestamp or self.clock()
        self._lock_driver(driver_id)
        segment = self._require_open_segment(driver_id)

        if not segment.on_break:
            raise ShiftStateConflict(f"Driver {driver_id} is not on break")
        if timestamp < segment.break_started_at:
            raise FleetValidationError("Break cannot end before it started")

        minutes = self._close_break(segment, timestamp)
        segment.driver.duty_status = DriverDutyStatus.ON_DUTY
        db.session.flush()

        logger.info(f"Driver {driver_id} ended {minutes} minute break at {timestamp}")
        return ClockResult(segment)

    @staticmethod
    def _close_break(segment: ShiftSegment, timestamp: datetime) -> int:
        minutes = int(max(timestamp - segment.break_started_at, timedelta(0)).total_seconds() // 60)
        segment.break_minutes_accumulated = (segment.break_minutes_accumulated or 0) + minutes
        segment.on_break = False
        segment.break_started_at = None
        return minutes
