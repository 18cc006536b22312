"""
Travel Service

Per-day distance from base and the monthly short-haul exemption budget.
The budget counts the days this month on which a driver went beyond the
150 mile radius; it is recomputed from daily_travel on every update.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
import logging
from sqlalchemy import func
from models import db, DailyTravel, MonthlyExemptionStatus
from timezone_utils import month_start
from .compliance_service import SHORT_HAUL_RADIUS_MILES, MONTHLY_EXEMPTION_LIMIT
from .exceptions import FleetValidationError

logger = logging.getLogger(__name__)


class TravelService:
    """Maintains daily_travel and monthly_exemption_status; the caller commits"""

    @staticmethod
    def record_daily_miles(driver_id: int, travel_date: date, miles_from_base) -> DailyTravel:
        """Record the furthest distance from base reached on a day"""
        miles = Decimal(str(miles_from_base))
        if miles < 0:
            raise FleetValidationError("miles_from_base cannot be negative")

        travel = DailyTravel.query.filter_by(driver_id=driver_id, travel_date=travel_date).first()
        if travel is None:
            travel = DailyTravel(driver_id=driver_id, travel_date=travel_date, miles_from_base=miles)
            db.session.add(travel)
        elif miles > Decimal(str(travel.miles_from_base)):
            travel.miles_from_base = miles
        db.session.flush()

        budget = TravelService.recompute_monthly_exemption(driver_id, travel_date)
        used_exemption = (Decimal(str(travel.miles_from_base)) <= SHORT_HAUL_RADIUS_MILES
                          and budget.exemption_days_used < budget.monthly_limit)
        travel.used_short_haul_exemption_today = used_exemption

        logger.info(f"Driver {driver_id} travel on {travel_date}: {travel.miles_from_base} miles from base, "
                    f"exemption {'used' if used_exemption else 'not used'}")
        return travel

    @staticmethod
    def recompute_monthly_exemption(driver_id: int, day: date) -> MonthlyExemptionStatus:
        first = month_start(day)
        next_month = (first + timedelta(days=32)).replace(day=1)

        days_beyond_radius = db.session.query(func.count(DailyTravel.id)).filter(
            DailyTravel.driver_id == driver_id,
            DailyTravel.travel_date >= first,
            DailyTravel.travel_date < next_month,
            DailyTravel.miles_from_base > SHORT_HAUL_RADIUS_MILES,
        ).scalar() or 0

        budget = MonthlyExemptionStatus.query.filter_by(driver_id=driver_id, month_start_date=first).first()
        if budget is None:
            budget = MonthlyExemptionStatus(driver_id=driver_id, month_start_date=first,
                                            monthly_limit=MONTHLY_EXEMPTION_LIMIT)
            db.session.add(budget)

        budget.exemption_days_used = min(days_beyond_radius, budget.monthly_limit)
        db.session.flush()

        if days_beyond_radius >= budget.monthly_limit:
            logger.warning(f"Driver {driver_id} exhausted short-haul exemption for {first:%Y-%m} "
                           f"({days_beyond_radius} days beyond {SHORT_HAUL_RADIUS_MILES} miles)")
        return budget

    @staticmethod
    def get_daily_travel(driver_id: int, travel_date: date) -> Optional[DailyTravel]:
        return DailyTravel.query.filter_by(driver_id=driver_id, travel_date=travel_date).first()
