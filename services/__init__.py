"""
Service Layer Architecture

Business logic for vehicle scheduling and driver hours-of-service,
kept out of the route handlers. Services provide:

1. **Transaction Management**: Atomic operations with proper rollback
2. **Concurrency Safety**: Row locks and compare-and-set updates in the database
3. **Testability**: Injectable clocks, stores and notification senders

Services Architecture:
- **CalendarService**: Vehicle timeline, overlap queries, maintenance and blackout windows, hourly slots
- **HoldService**: Short-lived vehicle holds, conversion and expiry
- **BookingService**: Multi-vehicle booking saga with compensation
- **ComplianceService**: Hours-of-service rule evaluation
- **TravelService**: Daily distance from base and exemption budget
- **DutyService**: Clock-in / break / clock-out transitions
- **NotificationService**: WhatsApp and SMS notifications
- **AuditService**: Centralized audit logging
"""

from .exceptions import (
    FleetError,
    FleetValidationError,
    NotFoundError,
    DriverNotFound,
    VehicleNotFound,
    BookingNotFound,
    ResourceUnavailableError,
    AvailabilityConflict,
    InvalidHoldState,
    BookingNeedsVerification,
    BookingStateConflict,
    ComplianceViolationError,
    ShiftStateConflict,
)
from .calendar_service import CalendarService, Commitment, TimeSlot, overlaps
from .hold_service import HoldService
from .booking_service import BookingService, BookingResult, CustomerInfo, Pricing, SqlBookingStore
from .compliance_service import ComplianceService, ComplianceVerdict, ViolationKind, evaluate_ledger
from .travel_service import TravelService
from .duty_service import DutyService, ClockResult
from .notification_service import NotificationService
from .audit_service import AuditService
from .transaction_helper import TransactionHelper

__all__ = [
    'FleetError',
    'FleetValidationError',
    'NotFoundError',
    'DriverNotFound',
    'VehicleNotFound',
    'BookingNotFound',
    'ResourceUnavailableError',
    'AvailabilityConflict',
    'InvalidHoldState',
    'BookingNeedsVerification',
    'BookingStateConflict',
    'ComplianceViolationError',
    'ShiftStateConflict',
    'CalendarService',
    'Commitment',
    'TimeSlot',
    'overlaps',
    'HoldService',
    'BookingService',
    'BookingResult',
    'CustomerInfo',
    'Pricing',
    'SqlBookingStore',
    'ComplianceService',
    'ComplianceVerdict',
    'ViolationKind',
    'evaluate_ledger',
    'TravelService',
    'DutyService',
    'ClockResult',
    'NotificationService',
    'AuditService',
    'TransactionHelper',
]
