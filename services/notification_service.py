"""
Notification Service

Fire-and-forget WhatsApp / SMS messages via Twilio. A failed send is
logged and reported as False; it never rolls back the booking or shift
that triggered it.
"""

from typing import Optional, Callable, Dict, Any
import logging
import os
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


def send_twilio_message(to_phone_number: str, message: str) -> Dict[str, Any]:
    """Send WhatsApp message via Twilio, falling back to SMS"""
    from twilio.rest import Client

    account_sid = os.environ.get("TWILIO_ACCOUNT_SID")
    auth_token = os.environ.get("TWILIO_AUTH_TOKEN")
    from_number = os.environ.get("TWILIO_PHONE_NUMBER")
    if not all([account_sid, auth_token, from_number]):
        return {'success': False, 'error': 'Twilio credentials not configured'}

    client = Client(account_sid, auth_token)
    try:
        message_obj = client.messages.create(
            body=message,
            from_=f'whatsapp:{from_number}',
            to=f'whatsapp:{to_phone_number}'
        )
        return {'success': True, 'message_sid': message_obj.sid, 'type': 'whatsapp'}
    except Exception as whatsapp_error:
        logger.debug(f"WhatsApp send failed, falling back to SMS: {str(whatsapp_error)}")
        message_obj = client.messages.create(
            body=message,
            from_=from_number,
            to=to_phone_number
        )
        return {'success': True, 'message_sid': message_obj.sid, 'type': 'sms'}


def mask_phone(phone: str) -> str:
    return phone[-4:].rjust(10, '*') if phone else ''


class NotificationService:
    """Service class for customer and driver notifications"""

    def __init__(self, sender: Optional[Callable[[str, str], Dict[str, Any]]] = None):
        self.sender = sender or send_twilio_message

    def _enabled(self) -> bool:
        if has_app_context():
            return current_app.config.get('NOTIFICATIONS_ENABLED', True)
        return True

    def send(self, to_number: Optional[str], message: str) -> bool:
        if not to_number:
            logger.debug("Notification skipped: no phone number")
            return False
        if not self._enabled():
            logger.debug(f"Notifications disabled, not sending to {mask_phone(to_number)}")
            return False

        try:
            result = self.sender(to_number, message)
        except Exception as e:
            logger.error(f"Notification to {mask_phone(to_number)} failed: {str(e)}")
            return False

        if result.get('success'):
            logger.info(f"Notification sent to {mask_phone(to_number)} via {result.get('type', 'sms')}")
            return True
        logger.warning(f"Notification to {mask_phone(to_number)} not delivered: {result.get('error')}")
        return False

    def notify_booking_confirmed(self, booking, customer) -> bool:
        message = (
            f"Your tour booking {booking.booking_number} is confirmed for "
            f"{booking.tour_date:%A, %B %d, %Y} from {booking.start_time:%H:%M} to {booking.end_time:%H:%M}. "
            f"Party size: {booking.party_size}. Balance due: ${booking.balance_due:,.2f}."
        )
        return self.send(customer.phone, message)

    def notify_booking_cancelled(self, booking, customer) -> bool:
        message = f"Your tour booking {booking.booking_number} on {booking.tour_date:%B %d, %Y} has been cancelled."
        return self.send(customer.phone, message)

    def notify_clock_in_blocked(self, driver, verdict) -> bool:
        primary = verdict.primary_violation
        message = f"Clock-in refused: {primary.message if primary else 'hours-of-service violation'}."
        return self.send(driver.phone, message)
