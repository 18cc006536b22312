"""
Compliance Service

Hours-of-service evaluation for passenger-carrier drivers:
- 10 hours driving and 15 hours on duty per day
- 60 hours / 7 days, or 70 hours / 8 days for drivers working every day of the last 8
- 30 minute break once 8 hours on duty have accumulated
- 150 mile short-haul exemption, at most 8 days beyond the radius per month
- license, medical certificate and vehicle inspection expiry at clock-in

evaluate_ledger() is a pure function over a DriverLedger snapshot;
ComplianceService loads the snapshot from the database and records
clock-in checks. Verdicts are recomputed on every call, never cached.
"""

from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple
import json
import logging
from sqlalchemy import or_
from models import (db, ShiftSegment, DailyTravel, MonthlyExemptionStatus,
                    ComplianceAuditLog, DutyActivity)
from timezone_utils import get_local_time_naive, month_start

logger = logging.getLogger(__name__)

# Passenger-carrier HOS limits
MAX_DRIVING_HOURS = Decimal('10')
DRIVING_WARNING_HOURS = Decimal('9')
MAX_ON_DUTY_HOURS = Decimal('15')
ON_DUTY_WARNING_HOURS = Decimal('14')
MAX_HOURS_7_DAYS = Decimal('60')
MAX_HOURS_8_DAYS = Decimal('70')
WEEKLY_WARNING_MARGIN = Decimal('5')
BREAK_REQUIRED_AFTER_HOURS = Decimal('8')
MIN_BREAK_MINUTES = 30
SHORT_HAUL_RADIUS_MILES = Decimal('150')
MONTHLY_EXEMPTION_LIMIT = 8

QUALIFICATION_WARNING_DAYS = 30

LOOKBACK_DAYS = 8
HOURS_PRECISION = Decimal('0.01')
_MICROSECOND = timedelta(microseconds=1)


class ViolationKind(Enum):
    DAILY_DRIVING = 'daily_driving'
    DAILY_ON_DUTY = 'daily_on_duty'
    WEEKLY_CAP = 'weekly_cap'
    MANDATORY_BREAK = 'mandatory_break'
    SHORT_HAUL_EXEMPTION = 'short_haul_exemption'
    DRIVER_QUALIFICATION = 'driver_qualification'
    VEHICLE_QUALIFICATION = 'vehicle_qualification'


def to_hours(duration: timedelta) -> Decimal:
    """Exact hours in a timedelta, down to the microsecond"""
    return Decimal(duration // timedelta(microseconds=1)) / Decimal(3_600_000_000)


def display_hours(hours: Decimal) -> Decimal:
    return hours.quantize(HOURS_PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LedgerSegment:
    started_at: datetime
    ended_at: Optional[datetime] = None
    activity: DutyActivity = DutyActivity.DRIVING
    break_minutes: int = 0
    break_started_at: Optional[datetime] = None

    def end(self, as_of: datetime) -> datetime:
        return min(self.ended_at or as_of, as_of)

    def work_dates(self, as_of: datetime) -> Set[date]:
        """Calendar days the segment touches up to as_of"""
        first = self.started_at.date()
        last = max(self.end(as_of) - timedelta(microseconds=1), self.started_at).date()
        return {first + timedelta(days=n) for n in range((last - first).days + 1)}

    def duration(self, as_of: datetime) -> timedelta:
        return max(self.end(as_of) - self.started_at, timedelta(0))

    def split(self, window_start: datetime, window_end: datetime, as_of: datetime) -> Tuple[timedelta, timedelta]:
        """
        On-duty and break time that fall inside [window_start, window_end).

        An open break is clipped to the window exactly. Closed break minutes
        carry no timestamps, so they are spread evenly over the segment.
        """
        end = self.end(as_of)
        inside = max(min(end, window_end) - max(self.started_at, window_start), timedelta(0))
        if not inside:
            return timedelta(0), timedelta(0)

        closed_break = timedelta(minutes=self.break_minutes)
        total = self.duration(as_of)
        if total and inside != total:
            closed_break = closed_break * (inside // _MICROSECOND) // (total // _MICROSECOND)

        open_break = timedelta(0)
        if self.break_started_at is not None and self.ended_at is None:
            open_break = max(min(end, window_end) - max(self.break_started_at, window_start), timedelta(0))

        taken = min(closed_break + open_break, inside)
        return inside - taken, taken

    @classmethod
    def from_model(cls, segment: ShiftSegment):
        return cls(
            started_at=segment.started_at,
            ended_at=segment.ended_at,
            activity=segment.activity,
            break_minutes=segment.break_minutes_accumulated or 0,
            break_started_at=segment.break_started_at if segment.on_break else None,
        )


@dataclass
class DriverLedger:
    driver_id: int
    segments: List[LedgerSegment] = field(default_factory=list)
    miles_today: Optional[Decimal] = None
    exemption_days_used: int = 0
    monthly_exemption_limit: int = MONTHLY_EXEMPTION_LIMIT


@dataclass(frozen=True)
class ComplianceFinding:
    kind: ViolationKind
    message: str
    measured_value: Decimal
    limit: Decimal

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'message': self.message,
            'measured_value': float(self.measured_value),
            'limit': float(self.limit),
        }


@dataclass
class ComplianceVerdict:
    evaluated_at: datetime
    violations: List[ComplianceFinding] = field(default_factory=list)
    warnings: List[ComplianceFinding] = field(default_factory=list)
    short_haul_exemption_applied: bool = False
    totals: dict = field(default_factory=dict)

    @property
    def can_proceed(self) -> bool:
        return not self.violations

    @property
    def primary_violation(self) -> Optional[ComplianceFinding]:
        return self.violations[0] if self.violations else None

    def to_dict(self):
        return {
            'can_proceed': self.can_proceed,
            'primary_violation': self.primary_violation.to_dict() if self.primary_violation else None,
            'violations': [v.to_dict() for v in self.violations],
            'warnings': [w.to_dict() for w in self.warnings],
            'short_haul_exemption_applied': self.short_haul_exemption_applied,
            'evaluated_at': self.evaluated_at.isoformat(),
            'totals': self.totals,
        }


def _split_totals(segments, window_start, as_of) -> Tuple[timedelta, timedelta]:
    """Summed on-duty and break time of the segments inside [window_start, as_of)"""
    on_duty, breaks = timedelta(0), timedelta(0)
    for segment in segments:
        worked, rested = segment.split(window_start, as_of, as_of)
        on_duty += worked
        breaks += rested
    return on_duty, breaks


def evaluate_ledger(ledger: DriverLedger, as_of: datetime) -> ComplianceVerdict:
    """
    Evaluate HOS rules for a driver as of a fleet-local timestamp.

    Violations are collected in rule precedence order, so the first one is
    the blocking reason. Limits are compared against exact hours; the
    rounded figures are for display only. Segments that cross midnight are
    split, so only the part worked since 00:00 counts toward today.
    """
    today = as_of.date()
    day_start = datetime.combine(today, time.min)
    segments = [s for s in ledger.segments if s.started_at <= as_of]

    driving, _ = _split_totals([s for s in segments if s.activity == DutyActivity.DRIVING],
                               day_start, as_of)
    on_duty, break_today = _split_totals(segments, day_start, as_of)
    driving_today = to_hours(driving)
    on_duty_today = to_hours(on_duty)

    eight_day_start = today - timedelta(days=LOOKBACK_DAYS - 1)
    days_worked = {d for s in segments for d in s.work_dates(as_of) if eight_day_start <= d <= today}
    if len(days_worked) > 7:
        weekly_cap, window_days = MAX_HOURS_8_DAYS, 8
    else:
        weekly_cap, window_days = MAX_HOURS_7_DAYS, 7
    window_start = datetime.combine(today - timedelta(days=window_days - 1), time.min)
    weekly_hours = to_hours(_split_totals(segments, window_start, as_of)[0])

    miles_today = ledger.miles_today if ledger.miles_today is not None else Decimal('0')
    qualifies_short_haul = miles_today <= SHORT_HAUL_RADIUS_MILES
    budget_available = ledger.exemption_days_used < ledger.monthly_exemption_limit
    exemption_applied = qualifies_short_haul and budget_available

    verdict = ComplianceVerdict(evaluated_at=as_of, short_haul_exemption_applied=exemption_applied)
    verdict.totals = {
        'date': today.isoformat(),
        'driving_hours_today': float(display_hours(driving_today)),
        'on_duty_hours_today': float(display_hours(on_duty_today)),
        'break_minutes_today': int(break_today.total_seconds() // 60),
        'weekly_hours': float(display_hours(weekly_hours)),
        'weekly_cap': int(weekly_cap),
        'weekly_window_days': window_days,
        'days_worked_last_8': len(days_worked),
        'miles_from_base_today': float(miles_today),
        'exemption_days_used': ledger.exemption_days_used,
        'exemption_monthly_limit': ledger.monthly_exemption_limit,
    }

    def add(target, kind, message, measured, limit):
        target.append(ComplianceFinding(kind, message, display_hours(measured), limit))

    # 1. Daily driving
    if driving_today >= MAX_DRIVING_HOURS:
        add(verdict.violations, ViolationKind.DAILY_DRIVING,
            f"Daily driving limit reached ({display_hours(driving_today)} of {MAX_DRIVING_HOURS} hours)",
            driving_today, MAX_DRIVING_HOURS)
    elif driving_today > DRIVING_WARNING_HOURS:
        add(verdict.warnings, ViolationKind.DAILY_DRIVING,
            f"Approaching daily driving limit ({display_hours(driving_today)} of {MAX_DRIVING_HOURS} hours)",
            driving_today, MAX_DRIVING_HOURS)

    # 2. Daily on-duty
    if on_duty_today >= MAX_ON_DUTY_HOURS:
        add(verdict.violations, ViolationKind.DAILY_ON_DUTY,
            f"Daily on-duty limit reached ({display_hours(on_duty_today)} of {MAX_ON_DUTY_HOURS} hours)",
            on_duty_today, MAX_ON_DUTY_HOURS)
    elif on_duty_today > ON_DUTY_WARNING_HOURS:
        add(verdict.warnings, ViolationKind.DAILY_ON_DUTY,
            f"Approaching daily on-duty limit ({display_hours(on_duty_today)} of {MAX_ON_DUTY_HOURS} hours)",
            on_duty_today, MAX_ON_DUTY_HOURS)

    # 3. Rolling weekly cap
    if weekly_hours >= weekly_cap:
        add(verdict.violations, ViolationKind.WEEKLY_CAP,
            f"{window_days}-day limit reached ({display_hours(weekly_hours)} of {weekly_cap} hours)",
            weekly_hours, weekly_cap)
    elif weekly_hours >= weekly_cap - WEEKLY_WARNING_MARGIN:
        add(verdict.warnings, ViolationKind.WEEKLY_CAP,
            f"Approaching {window_days}-day limit ({display_hours(weekly_hours)} of {weekly_cap} hours)",
            weekly_hours, weekly_cap)

    # 4. Mandatory break, waived while the short-haul exemption applies
    min_break = timedelta(minutes=MIN_BREAK_MINUTES)
    if (not exemption_applied and on_duty_today >= BREAK_REQUIRED_AFTER_HOURS
            and break_today < min_break):
        break_minutes = Decimal(break_today // timedelta(seconds=1)) / Decimal(60)
        verdict.violations.append(ComplianceFinding(
            ViolationKind.MANDATORY_BREAK,
            f"A {MIN_BREAK_MINUTES} minute break is required after {BREAK_REQUIRED_AFTER_HOURS} hours on duty "
            f"({break_minutes.quantize(HOURS_PRECISION, rounding=ROUND_HALF_UP)} minutes taken)",
            break_minutes.quantize(HOURS_PRECISION, rounding=ROUND_HALF_UP),
            Decimal(MIN_BREAK_MINUTES),
        ))

    # 5. Short-haul exemption budget
    used = ledger.exemption_days_used
    limit = ledger.monthly_exemption_limit
    if not budget_available:
        verdict.warnings.append(ComplianceFinding(
            ViolationKind.SHORT_HAUL_EXEMPTION,
            f"Short-haul exemption used on {used} of {limit} days this month; full HOS rules apply",
            Decimal(used), Decimal(limit),
        ))
    elif used == limit - 1:
        verdict.warnings.append(ComplianceFinding(
            ViolationKind.SHORT_HAUL_EXEMPTION,
            f"1 short-haul exemption day remaining this month ({used} of {limit} used)",
            Decimal(used), Decimal(limit),
        ))

    return verdict


def _expiry_findings(kind, documents, on_date):
    """Violations for expired documents, warnings for ones expiring within 30 days"""
    violations, warnings = [], []
    for label, expires_on in documents:
        if expires_on is None:
            continue
        days_left = (expires_on - on_date).days
        if days_left < 0:
            violations.append(ComplianceFinding(
                kind, f"{label} expired on {expires_on.isoformat()}",
                Decimal(days_left), Decimal(0)))
        elif days_left <= QUALIFICATION_WARNING_DAYS:
            warnings.append(ComplianceFinding(
                kind, f"{label} expires on {expires_on.isoformat()} ({days_left} days left)",
                Decimal(days_left), Decimal(QUALIFICATION_WARNING_DAYS)))
    return violations, warnings


def check_driver_qualification(driver, on_date: date):
    return _expiry_findings(ViolationKind.DRIVER_QUALIFICATION, [
        ("Driver's license", driver.license_expiry),
        ("Medical certificate", driver.medical_cert_expiry),
    ], on_date)


def check_vehicle_qualification(vehicle, on_date: date):
    return _expiry_findings(ViolationKind.VEHICLE_QUALIFICATION, [
        (f"Inspection of vehicle {vehicle.registration_number}", vehicle.inspection_expiry),
    ], on_date)


class ComplianceService:
    """Loads a driver's ledger and evaluates it"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or get_local_time_naive

    def load_ledger(self, driver_id: int, as_of: datetime) -> DriverLedger:
        today = as_of.date()
        lookback_start = datetime.combine(today - timedelta(days=LOOKBACK_DAYS - 1), datetime.min.time())

        segments = ShiftSegment.query.filter(
            ShiftSegment.driver_id == driver_id,
            # Shifts that began before the window but ran into it are split later
            or_(ShiftSegment.ended_at.is_(None), ShiftSegment.ended_at > lookback_start),
            ShiftSegment.started_at <= as_of,
        ).order_by(ShiftSegment.started_at.asc()).all()

        travel = DailyTravel.query.filter_by(driver_id=driver_id, travel_date=today).first()
        budget = MonthlyExemptionStatus.query.filter_by(
            driver_id=driver_id, month_start_date=month_start(today)).first()

        return DriverLedger(
            driver_id=driver_id,
            segments=[LedgerSegment.from_model(s) for s in segments],
            miles_today=Decimal(str(travel.miles_from_base)) if travel else None,
            exemption_days_used=budget.exemption_days_used if budget else 0,
            monthly_exemption_limit=budget.monthly_limit if budget else MONTHLY_EXEMPTION_LIMIT,
        )

    def evaluate(self, driver_id: int, as_of: Optional[datetime] = None) -> ComplianceVerdict:
        as_of = as_of or self.clock()
        verdict = evaluate_ledger(self.load_ledger(driver_id, as_of), as_of)

        if verdict.violations:
            logger.warning(f"Driver {driver_id} HOS violations at {as_of}: "
                           f"{[v.kind.value for v in verdict.violations]}")
        elif verdict.warnings:
            logger.info(f"Driver {driver_id} HOS warnings at {as_of}: "
                        f"{[w.kind.value for w in verdict.warnings]}")
        return verdict

    @staticmethod
    def apply_qualifications(verdict: ComplianceVerdict, driver, vehicle) -> ComplianceVerdict:
        """Add document expiry findings after the hours-of-service ones"""
        on_date = verdict.evaluated_at.date()
        for violations, warnings in (check_driver_qualification(driver, on_date),
                                     check_vehicle_qualification(vehicle, on_date)):
            verdict.violations.extend(violations)
            verdict.warnings.extend(warnings)
        return verdict

    @staticmethod
    def record_check(driver_id: int, verdict: ComplianceVerdict, vehicle_id: Optional[int] = None,
                     action_type: str = 'clock_in', override_requested: bool = False) -> ComplianceAuditLog:
        """Add a compliance audit row to the current session; the caller commits"""
        primary = verdict.primary_violation
        entry = ComplianceAuditLog(
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            action_type=action_type,
            was_blocked=not verdict.can_proceed,
            block_reason=primary.kind.value if primary else None,
            violations=json.dumps([v.to_dict() for v in verdict.violations]),
            warnings=json.dumps([w.to_dict() for w in verdict.warnings]),
            override_requested=override_requested,
            evaluated_at=verdict.evaluated_at,
        )
        db.session.add(entry)
        return entry
