import os
from datetime import datetime, date
import pytz
from flask import current_app, has_app_context

DEFAULT_FLEET_TIMEZONE = 'America/Los_Angeles'


def get_fleet_timezone():
    """Timezone the fleet's calendar days are counted in"""
    name = current_app.config.get('FLEET_TIMEZONE') if has_app_context() else None
    return pytz.timezone(name or os.environ.get('FLEET_TIMEZONE', DEFAULT_FLEET_TIMEZONE))


def get_local_time_naive():
    """Get current fleet-local time as naive datetime for database storage"""
    return datetime.now(get_fleet_timezone()).replace(tzinfo=None)


def month_start(day: date) -> date:
    return day.replace(day=1)
