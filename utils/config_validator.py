"""
Configuration validation for the fleet engine
Ensures hold, calendar and timezone settings are usable before the app starts
"""
import os
import logging
from datetime import datetime
from typing import List, Tuple, Mapping, Any
import pytz

logger = logging.getLogger(__name__)

class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid"""

    def __init__(self, issues: List[str]):
        self.issues = issues
        super().__init__("Invalid configuration: " + "; ".join(issues))

def validate_twilio_config() -> Tuple[bool, List[str]]:
    """
    Validate Twilio configuration for notifications.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    # Required Twilio environment variables
    required_vars = {
        'TWILIO_ACCOUNT_SID': 'Twilio Account SID',
        'TWILIO_AUTH_TOKEN': 'Twilio Auth Token',
        'TWILIO_PHONE_NUMBER': 'Twilio Phone Number'
    }

    for var_name, description in required_vars.items():
        value = os.getenv(var_name)
        if not value or not value.strip():
            issues.append(f"Missing {description} ({var_name})")

    phone_number = os.getenv('TWILIO_PHONE_NUMBER', '').strip()
    if phone_number and not phone_number.startswith('+'):
        issues.append("TWILIO_PHONE_NUMBER must start with '+' (e.g., +1234567890)")

    return len(issues) == 0, issues

def _parse_clock(value: Any, name: str, issues: List[str]):
    try:
        return datetime.strptime(str(value), '%H:%M').time()
    except ValueError:
        issues.append(f"{name} must be HH:MM, got {value!r}")
        return None

def validate_fleet_config(config: Mapping[str, Any]) -> None:
    """
    Validate scheduling settings. Missing Twilio credentials only disable
    notifications; everything else is fatal.

    Raises:
        ConfigValidationError: listing every invalid setting
    """
    issues = []

    ttl = config.get('HOLD_TTL_MINUTES')
    if not isinstance(ttl, int) or ttl <= 0:
        issues.append(f"HOLD_TTL_MINUTES must be a positive integer, got {ttl!r}")

    sweep = config.get('HOLD_SWEEP_INTERVAL_SECONDS')
    if not isinstance(sweep, int) or sweep <= 0:
        issues.append(f"HOLD_SWEEP_INTERVAL_SECONDS must be a positive integer, got {sweep!r}")

    tz_name = config.get('FLEET_TIMEZONE')
    if tz_name not in pytz.all_timezones_set:
        issues.append(f"FLEET_TIMEZONE {tz_name!r} is not a known timezone")

    day_start = _parse_clock(config.get('OPERATING_DAY_START'), 'OPERATING_DAY_START', issues)
    day_end = _parse_clock(config.get('OPERATING_DAY_END'), 'OPERATING_DAY_END', issues)
    if day_start and day_end and day_start >= day_end:
        issues.append("OPERATING_DAY_START must be before OPERATING_DAY_END")

    if issues:
        for issue in issues:
            logger.error(f"FLEET_CONFIG: Issue - {issue}")
        raise ConfigValidationError(issues)

    if config.get('NOTIFICATIONS_ENABLED'):
        twilio_valid, twilio_issues = validate_twilio_config()
        if not twilio_valid:
            logger.warning(f"FLEET_CONFIG: Notifications will not be delivered - {'; '.join(twilio_issues)}")

    logger.info("FLEET_CONFIG: Configuration check PASSED")
