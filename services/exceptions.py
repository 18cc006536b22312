"""
Fleet Engine Exceptions

Domain errors raised by the scheduling and compliance services and
translated into JSON responses by the fleet blueprint. Infrastructure
errors (SQLAlchemy) are never wrapped in these.
"""


class FleetError(Exception):
    """Base exception for all fleet engine errors"""
    code = 'FLEET_ERROR'
    http_status = 400
    retryable = False

    def to_dict(self):
        return {'success': False, 'error': str(self), 'code': self.code}


class FleetValidationError(FleetError):
    """Raised when a request is malformed (bad window, past date, bad timestamp)"""
    code = 'VALIDATION_ERROR'


class NotFoundError(FleetError):
    code = 'NOT_FOUND'
    http_status = 404


class DriverNotFound(NotFoundError):
    code = 'DRIVER_NOT_FOUND'

    def __init__(self, driver_id):
        self.driver_id = driver_id
        super().__init__(f"Driver {driver_id} not found")


class VehicleNotFound(NotFoundError):
    code = 'VEHICLE_NOT_FOUND'

    def __init__(self, vehicle_id):
        self.vehicle_id = vehicle_id
        super().__init__(f"Vehicle {vehicle_id} not found")


class BookingNotFound(NotFoundError):
    code = 'BOOKING_NOT_FOUND'

    def __init__(self, booking_id):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class ResourceUnavailableError(FleetError):
    """Raised when a driver or vehicle exists but is not in service"""
    code = 'RESOURCE_UNAVAILABLE'
    http_status = 409


class AvailabilityConflict(FleetError):
    """Raised when a vehicle window overlaps an active hold or a committed block"""
    code = 'AVAILABILITY_CONFLICT'
    http_status = 409

    def __init__(self, vehicle_id, on_date, start_time, end_time, conflicts=None):
        self.vehicle_id = vehicle_id
        self.date = on_date
        self.start_time = start_time
        self.end_time = end_time
        self.conflicts = list(conflicts or [])
        super().__init__(
            f"Vehicle {vehicle_id} is not available on {on_date.isoformat()} "
            f"{start_time.strftime('%H:%M')}-{end_time.strftime('%H:%M')}"
        )

    def to_dict(self):
        data = super().to_dict()
        data.update({
            'vehicle_id': self.vehicle_id,
            'date': self.date.isoformat(),
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
            'conflicts': [c.to_dict() for c in self.conflicts],
        })
        return data


class InvalidHoldState(FleetError):
    """Raised when a hold is converted after it stopped being active"""
    code = 'INVALID_HOLD_STATE'
    http_status = 409

    def __init__(self, hold_id, state):
        self.hold_id = hold_id
        self.state = state
        super().__init__(f"Hold {hold_id} is {state} and cannot be converted")


class BookingNeedsVerification(FleetError):
    """Raised when a booking was stored but not every vehicle reservation was finalised"""
    code = 'BOOKING_NEEDS_VERIFICATION'
    http_status = 202

    def __init__(self, booking_id, booking_number, failed_vehicle_ids):
        self.booking_id = booking_id
        self.booking_number = booking_number
        self.failed_vehicle_ids = list(failed_vehicle_ids)
        super().__init__(
            f"Booking {booking_number} needs manual verification: "
            f"no reservation for vehicles {self.failed_vehicle_ids}"
        )

    def to_dict(self):
        data = super().to_dict()
        data.update({
            'booking_id': self.booking_id,
            'booking_number': self.booking_number,
            'failed_vehicle_ids': self.failed_vehicle_ids,
        })
        return data


class BookingStateConflict(FleetError):
    """Raised when a booking cannot move to the requested status"""
    code = 'BOOKING_STATE_CONFLICT'
    http_status = 409


class ComplianceViolationError(FleetError):
    """Raised when a clock-in is blocked by an hours-of-service violation"""
    code = 'COMPLIANCE_BLOCKED'
    http_status = 403

    def __init__(self, verdict):
        self.verdict = verdict
        primary = verdict.primary_violation
        message = primary.message if primary else 'Compliance violation'
        super().__init__(message)

    def to_dict(self):
        data = super().to_dict()
        data['retryable'] = self.retryable
        data['verdict'] = self.verdict.to_dict()
        return data


class ShiftStateConflict(FleetError):
    """Raised when a duty transition does not fit the driver's current state"""
    code = 'SHIFT_STATE_CONFLICT'
    http_status = 409
