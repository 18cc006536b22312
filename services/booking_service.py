"""
Booking Service

Multi-vehicle booking saga:
    validate -> hold every vehicle -> write customer and booking -> convert holds

Each step commits on its own. When a later step fails, the holds taken
so far are released so no vehicle stays locked. If the booking row was
written but a hold could not be converted, the booking is flagged for
manual verification instead of being confirmed.
"""

from dataclasses import dataclass, field
from datetime import date, time, datetime
from decimal import Decimal
from typing import List, Optional, Callable, Tuple
import logging
from flask import current_app, has_app_context
from models import db, Booking, BookingStatus, Customer, VehicleBookingBlock
from timezone_utils import get_local_time_naive
from .audit_service import AuditService
from .calendar_service import DEFAULT_DAY_START, DEFAULT_DAY_END, parse_clock_time
from .exceptions import (FleetValidationError, BookingNotFound, BookingStateConflict,
                         BookingNeedsVerification)
from .hold_service import HoldService
from .notification_service import NotificationService
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)


@dataclass
class CustomerInfo:
    email: str
    full_name: str
    phone: Optional[str] = None


@dataclass
class Pricing:
    total_price: Decimal
    deposit_amount: Decimal = Decimal('0')
    party_size: int = 1


class SqlBookingStore:
    """Customer and booking persistence; runs inside the caller's transaction"""

    def upsert_customer(self, info: CustomerInfo) -> int:
        email = info.email.strip().lower()
        customer = Customer.query.filter_by(email=email).first()
        if customer is None:
            customer = Customer(email=email, full_name=info.full_name, phone=info.phone)
            db.session.add(customer)
        else:
            customer.full_name = info.full_name
            if info.phone:
                customer.phone = info.phone
        db.session.flush()
        return customer.id

    def insert_booking(self, customer_id: int, on_date: date, start_time: time, end_time: time,
                       pricing: Pricing, notes: Optional[str] = None) -> int:
        booking = Booking(
            customer_id=customer_id,
            tour_date=on_date,
            start_time=start_time,
            end_time=end_time,
            party_size=pricing.party_size,
            total_price=pricing.total_price,
            deposit_amount=pricing.deposit_amount,
            status=BookingStatus.PENDING,
            notes=notes,
        )
        db.session.add(booking)
        db.session.flush()
        return booking.id

    def mark_confirmed(self, booking_id: int) -> Booking:
        booking = db.session.get(Booking, booking_id)
        booking.status = BookingStatus.CONFIRMED
        return booking

    def mark_needs_verification(self, booking_id: int, failed_vehicle_ids: List[int]) -> Booking:
        booking = db.session.get(Booking, booking_id)
        booking.status = BookingStatus.NEEDS_VERIFICATION
        note = f"Reservation missing for vehicles {failed_vehicle_ids}"
        booking.notes = f"{booking.notes}\n{note}" if booking.notes else note
        return booking


@dataclass
class BookingResult:
    booking_id: int
    booking_number: str
    status: BookingStatus
    vehicle_ids: List[int] = field(default_factory=list)
    block_ids: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            'booking_id': self.booking_id,
            'booking_number': self.booking_number,
            'status': self.status.value,
            'vehicle_ids': self.vehicle_ids,
            'block_ids': self.block_ids,
        }


class BookingService:
    """Service class for the booking saga and cancellations"""

    def __init__(self, holds: Optional[HoldService] = None,
                 store: Optional[SqlBookingStore] = None,
                 notifications: Optional[NotificationService] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 day_start: Optional[str] = None, day_end: Optional[str] = None):
        self.clock = clock or get_local_time_naive
        self.holds = holds or HoldService(clock=self.clock)
        self.store = store or SqlBookingStore()
        self.notifications = notifications or NotificationService()

        config = current_app.config if has_app_context() else {}
        self.day_start = parse_clock_time(day_start or config.get('OPERATING_DAY_START', DEFAULT_DAY_START))
        self.day_end = parse_clock_time(day_end or config.get('OPERATING_DAY_END', DEFAULT_DAY_END))

    def validate_request(self, vehicle_ids: List[int], on_date: date, start_time: time, end_time: time,
                         pricing: Pricing) -> None:
        if not vehicle_ids:
            raise FleetValidationError("At least one vehicle is required")
        if len(set(vehicle_ids)) != len(vehicle_ids):
            raise FleetValidationError("Each vehicle may only be requested once")
        if start_time >= end_time:
            raise FleetValidationError("Start time must be before end time")
        if start_time < self.day_start or end_time > self.day_end:
            raise FleetValidationError(
                f"Bookings must fall within operating hours "
                f"{self.day_start:%H:%M}-{self.day_end:%H:%M}")
        if on_date < self.clock().date():
            raise FleetValidationError(f"Cannot book a date in the past ({on_date.isoformat()})")
        if pricing.party_size < 1:
            raise FleetValidationError("Party size must be at least 1")
        if pricing.total_price < 0 or pricing.deposit_amount < 0:
            raise FleetValidationError("Prices cannot be negative")
        if pricing.deposit_amount > pricing.total_price:
            raise FleetValidationError("Deposit cannot exceed the total price")

    def create_booking(self, vehicle_ids: List[int], on_date: date, start_time: time, end_time: time,
                       customer: CustomerInfo, pricing: Pricing,
                       notes: Optional[str] = None) -> BookingResult:
        """
        Reserve every vehicle and record the booking, or leave nothing held.

        Raises:
            FleetValidationError: request rejected before any hold was taken
            AvailabilityConflict: a vehicle was taken; earlier holds are released
            BookingNeedsVerification: booking stored but not every hold converted
        """
        self.validate_request(vehicle_ids, on_date, start_time, end_time, pricing)

        holds: List[Tuple[int, int]] = []
        try:
            for vehicle_id in vehicle_ids:
                hold = self.holds.create_hold(vehicle_id, on_date, start_time, end_time,
                                              note=f"booking for {customer.email}")
                holds.append((vehicle_id, hold.id))
        except Exception as e:
            logger.info(f"Reservation failed after {len(holds)} hold(s), releasing: {str(e)}")
            self._release_all(holds)
            raise

        try:
            booking_id = self._persist(customer, on_date, start_time, end_time, pricing, notes)
        except Exception as e:
            logger.error(f"Booking persistence failed, releasing {len(holds)} hold(s): {str(e)}")
            self._release_all(holds)
            raise

        block_ids, failed = [], []
        for vehicle_id, hold_id in holds:
            try:
                block = self.holds.convert_hold_to_booking(hold_id, booking_id)
                block_ids.append(block.id)
            except Exception as e:
                logger.error(f"Hold {hold_id} for vehicle {vehicle_id} not converted for booking {booking_id}: {str(e)}")
                failed.append(vehicle_id)

        if failed:
            self._release_all([(v, h) for v, h in holds if v in failed])
            booking_number = self._flag_for_verification(booking_id, failed)
            raise BookingNeedsVerification(booking_id, booking_number, failed)

        booking = self._confirm(booking_id, vehicle_ids)
        result = BookingResult(booking.id, booking.booking_number, booking.status,
                               list(vehicle_ids), block_ids)
        self._notify(self.notifications.notify_booking_confirmed, booking)
        return result

    @TransactionHelper.with_transaction
    def _persist(self, customer, on_date, start_time, end_time, pricing, notes) -> int:
        customer_id = self.store.upsert_customer(customer)
        return self.store.insert_booking(customer_id, on_date, start_time, end_time, pricing, notes)

    @TransactionHelper.with_transaction
    def _confirm(self, booking_id: int, vehicle_ids: List[int]) -> Booking:
        booking = self.store.mark_confirmed(booking_id)
        AuditService.log_action(
            action='create_booking',
            entity_type='booking',
            entity_id=booking_id,
            details={'booking_number': booking.booking_number, 'vehicle_ids': vehicle_ids},
        )
        logger.info(f"Booking {booking.booking_number} confirmed for vehicles {vehicle_ids}")
        return booking

    @TransactionHelper.with_transaction
    def _flag_for_verification(self, booking_id: int, failed_vehicle_ids: List[int]) -> str:
        booking = self.store.mark_needs_verification(booking_id, failed_vehicle_ids)
        AuditService.log_action(
            action='booking_needs_verification',
            entity_type='booking',
            entity_id=booking_id,
            details={'failed_vehicle_ids': failed_vehicle_ids},
            severity='critical',
        )
        logger.critical(f"Booking {booking.booking_number} stored without reservation for vehicles "
                        f"{failed_vehicle_ids}; manual verification required")
        return booking.booking_number

    def _release_all(self, holds: List[Tuple[int, int]]) -> None:
        for vehicle_id, hold_id in holds:
            try:
                self.holds.release_hold(hold_id)
            except Exception as e:
                logger.error(f"Failed to release hold {hold_id} on vehicle {vehicle_id}; "
                             f"it stays active until it expires: {str(e)}")

    def _notify(self, notify, booking: Booking) -> None:
        try:
            notify(booking, booking.customer)
        except Exception as e:
            logger.error(f"Notification for booking {booking.id} failed: {str(e)}")

    def cancel_booking(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        """Cancel a booking and void its calendar blocks"""
        booking = self._cancel(booking_id, reason)
        self._notify(self.notifications.notify_booking_cancelled, booking)
        return booking

    @TransactionHelper.with_transaction
    def _cancel(self, booking_id: int, reason: Optional[str]) -> Booking:
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise BookingStateConflict(f"Booking {booking.booking_number} is already cancelled")

        now = self.clock()
        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason
        booking.cancelled_at = now

        voided = VehicleBookingBlock.query.filter(
            VehicleBookingBlock.booking_id == booking_id,
            VehicleBookingBlock.voided_at.is_(None),
        ).update({'voided_at': now, 'void_reason': reason or 'booking cancelled'},
                 synchronize_session=False)

        AuditService.log_action(
            action='cancel_booking',
            entity_type='booking',
            entity_id=booking_id,
            details={'reason': reason, 'blocks_voided': voided},
        )
        logger.info(f"Booking {booking.booking_number} cancelled, {voided} block(s) voided")
        return booking

    @staticmethod
    def get_booking(booking_id: int) -> Booking:
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking
