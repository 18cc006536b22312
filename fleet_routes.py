"""
Fleet API routes
JSON endpoints for vehicle bookings, calendar queries and driver duty transitions
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
import logging

from flask import Blueprint, request, jsonify

from app import db
from models import Driver, DutyActivity
from timezone_utils import get_fleet_timezone
from services import (BookingService, CalendarService, Commitment, ComplianceService, DutyService,
                      CustomerInfo, Pricing, FleetError, FleetValidationError, DriverNotFound)

fleet_bp = Blueprint('fleet', __name__)

logger = logging.getLogger(__name__)


@fleet_bp.errorhandler(FleetError)
def handle_fleet_error(error):
    if error.http_status >= 500:
        logger.error(f"Fleet error: {str(error)}")
    return jsonify(error.to_dict()), error.http_status


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FleetValidationError('Invalid JSON payload')
    return data


def _require(data, key):
    value = data.get(key)
    if value in (None, ''):
        raise FleetValidationError(f"{key} is required")
    return value


def parse_date(value, field='date'):
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise FleetValidationError(f"{field} must be YYYY-MM-DD")


def parse_time(value, field):
    try:
        return datetime.strptime(str(value), '%H:%M').time()
    except ValueError:
        raise FleetValidationError(f"{field} must be HH:MM")


def parse_timestamp(value, field='timestamp'):
    """ISO-8601 timestamp as naive fleet-local time; aware values are converted"""
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise FleetValidationError(f"{field} must be an ISO-8601 timestamp")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(get_fleet_timezone()).replace(tzinfo=None)
    return parsed


def parse_decimal(value, field):
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise FleetValidationError(f"{field} must be a number")


def parse_int(value, field):
    if isinstance(value, bool):
        raise FleetValidationError(f"{field} must be an integer")
    try:
        return int(str(value))
    except (TypeError, ValueError):
        raise FleetValidationError(f"{field} must be an integer")


def parse_location(data):
    location = data.get('location') or {}
    if not isinstance(location, dict):
        raise FleetValidationError('location must be an object with latitude and longitude')
    return location


# ---------------------------------------------------------------- bookings

@fleet_bp.route('/bookings', methods=['POST'])
def create_booking():
    """
    Reserve one or more vehicles and record a booking
    Expected payload: {
        "vehicle_ids": [42],
        "date": "2025-06-01",
        "start_time": "10:00",
        "end_time": "14:00",
        "customer": {"email": "...", "full_name": "...", "phone": "+1..."},
        "pricing": {"total_price": 1200, "deposit_amount": 300, "party_size": 8}
    }
    """
    data = _payload()
    vehicle_ids = _require(data, 'vehicle_ids')
    if not isinstance(vehicle_ids, list) or not all(isinstance(v, int) for v in vehicle_ids):
        raise FleetValidationError('vehicle_ids must be a list of integers')

    customer_data = _require(data, 'customer')
    if not isinstance(customer_data, dict):
        raise FleetValidationError('customer must be an object')
    customer = CustomerInfo(
        email=_require(customer_data, 'email'),
        full_name=_require(customer_data, 'full_name'),
        phone=customer_data.get('phone'),
    )

    pricing_data = data.get('pricing') or {}
    if not isinstance(pricing_data, dict):
        raise FleetValidationError('pricing must be an object')
    pricing = Pricing(
        total_price=parse_decimal(pricing_data.get('total_price', 0), 'total_price'),
        deposit_amount=parse_decimal(pricing_data.get('deposit_amount', 0), 'deposit_amount'),
        party_size=parse_int(pricing_data.get('party_size', 1), 'party_size'),
    )

    result = BookingService().create_booking(
        vehicle_ids,
        parse_date(_require(data, 'date')),
        parse_time(_require(data, 'start_time'), 'start_time'),
        parse_time(_require(data, 'end_time'), 'end_time'),
        customer,
        pricing,
        notes=data.get('notes'),
    )
    return jsonify({'success': True, 'booking': result.to_dict()}), 201


@fleet_bp.route('/bookings/<int:booking_id>', methods=['GET'])
def get_booking(booking_id):
    booking = BookingService.get_booking(booking_id)
    return jsonify({
        'success': True,
        'booking': {
            'booking_id': booking.id,
            'booking_number': booking.booking_number,
            'status': booking.status.value,
            'date': booking.tour_date.isoformat(),
            'start_time': booking.start_time.strftime('%H:%M'),
            'end_time': booking.end_time.strftime('%H:%M'),
            'party_size': booking.party_size,
            'vehicle_ids': sorted(b.vehicle_id for b in booking.blocks if b.voided_at is None),
        }
    })


@fleet_bp.route('/bookings/<int:booking_id>/cancel', methods=['POST'])
def cancel_booking(booking_id):
    data = _payload()
    booking = BookingService().cancel_booking(booking_id, reason=data.get('reason'))
    return jsonify({
        'success': True,
        'booking_id': booking.id,
        'status': booking.status.value,
    })


# ---------------------------------------------------------------- calendar

@fleet_bp.route('/vehicles/<int:vehicle_id>/availability', methods=['GET'])
def vehicle_availability(vehicle_id):
    on_date = parse_date(_require(request.args, 'date'))
    start_time = parse_time(_require(request.args, 'start_time'), 'start_time')
    end_time = parse_time(_require(request.args, 'end_time'), 'end_time')

    conflicts = CalendarService().find_conflicts(vehicle_id, on_date, start_time, end_time)
    return jsonify({
        'success': True,
        'vehicle_id': vehicle_id,
        'available': not conflicts,
        'conflicts': [c.to_dict() for c in conflicts],
    })


@fleet_bp.route('/vehicles/<int:vehicle_id>/commitments', methods=['GET'])
def vehicle_commitments(vehicle_id):
    on_date = parse_date(_require(request.args, 'date'))
    commitments = CalendarService().commitments_for(vehicle_id, on_date)
    return jsonify({
        'success': True,
        'vehicle_id': vehicle_id,
        'date': on_date.isoformat(),
        'commitments': [c.to_dict() for c in commitments],
    })


@fleet_bp.route('/vehicles/available', methods=['GET'])
def available_vehicles():
    on_date = parse_date(_require(request.args, 'date'))
    start_time = parse_time(_require(request.args, 'start_time'), 'start_time')
    end_time = parse_time(_require(request.args, 'end_time'), 'end_time')
    party_size = request.args.get('party_size', 1, type=int)

    vehicles = CalendarService().find_available_vehicles(on_date, start_time, end_time, party_size)
    return jsonify({
        'success': True,
        'vehicles': [{
            'id': v.id,
            'registration_number': v.registration_number,
            'capacity': v.capacity,
        } for v in vehicles],
    })


@fleet_bp.route('/vehicles/slots', methods=['GET'])
def available_slots():
    """Hourly start times for a tour of duration_hours, with the vehicle that would take each"""
    on_date = parse_date(_require(request.args, 'date'))
    duration = parse_decimal(_require(request.args, 'duration_hours'), 'duration_hours')
    party_size = parse_int(request.args.get('party_size', 1), 'party_size')

    slots = CalendarService().available_slots(on_date, duration, party_size)
    return jsonify({
        'success': True,
        'date': on_date.isoformat(),
        'slots': [s.to_dict() for s in slots],
    })


@fleet_bp.route('/vehicles/<int:vehicle_id>/maintenance', methods=['POST'])
def create_maintenance_block(vehicle_id):
    """
    Take a vehicle out of service. Expected payload:
    {"date": "2025-06-01", "start_time": "08:00", "end_time": "12:00", "reason": "brake service"}
    """
    data = _payload()
    block = CalendarService().create_maintenance_block(
        vehicle_id,
        parse_date(_require(data, 'date')),
        parse_time(_require(data, 'start_time'), 'start_time'),
        parse_time(_require(data, 'end_time'), 'end_time'),
        reason=_require(data, 'reason'),
        created_by=data.get('created_by'),
    )
    return jsonify({'success': True, 'maintenance': Commitment.from_maintenance(block).to_dict()}), 201


@fleet_bp.route('/maintenance/<int:block_id>', methods=['DELETE'])
def remove_maintenance_block(block_id):
    removed = CalendarService().remove_maintenance_block(block_id)
    return jsonify({'success': True, 'block_id': block_id, 'removed': removed})


@fleet_bp.route('/blackout-dates', methods=['POST'])
def add_blackout_date():
    data = _payload()
    blackout = CalendarService().add_blackout_date(parse_date(_require(data, 'date')), reason=data.get('reason'))
    return jsonify({
        'success': True,
        'blackout': {'id': blackout.id, 'date': blackout.blackout_date.isoformat(), 'reason': blackout.reason},
    }), 201


@fleet_bp.route('/blackout-dates/<blackout_date>', methods=['DELETE'])
def remove_blackout_date(blackout_date):
    on_date = parse_date(blackout_date)
    removed = CalendarService().remove_blackout_date(on_date)
    return jsonify({'success': True, 'date': on_date.isoformat(), 'removed': removed})


# ---------------------------------------------------------------- duty

@fleet_bp.route('/drivers/<int:driver_id>/clock-in', methods=['POST'])
def clock_in(driver_id):
    """
    Start a shift. Expected payload:
    {"vehicle_id": 7, "timestamp": "...", "activity": "driving", "location": {...}}
    """
    data = _payload()
    vehicle_id = _require(data, 'vehicle_id')
    try:
        activity = DutyActivity(data.get('activity', DutyActivity.DRIVING.value))
    except ValueError:
        raise FleetValidationError('activity must be driving or on_duty')

    result = DutyService().request_clock_in(
        driver_id,
        parse_int(vehicle_id, 'vehicle_id'),
        timestamp=parse_timestamp(data.get('timestamp')),
        location=parse_location(data),
        activity=activity,
        override_requested=bool(data.get('override')),
    )
    return jsonify({'success': True, 'shift': result.to_dict()}), 201


@fleet_bp.route('/drivers/<int:driver_id>/clock-out', methods=['POST'])
def clock_out(driver_id):
    data = _payload()
    miles = data.get('miles_from_base')
    result = DutyService().request_clock_out(
        driver_id,
        timestamp=parse_timestamp(data.get('timestamp')),
        location=parse_location(data),
        miles_from_base=parse_decimal(miles, 'miles_from_base') if miles is not None else None,
    )
    return jsonify({'success': True, 'shift': result.to_dict()})


@fleet_bp.route('/drivers/<int:driver_id>/break/start', methods=['POST'])
def break_start(driver_id):
    data = _payload()
    result = DutyService().request_break_start(driver_id, timestamp=parse_timestamp(data.get('timestamp')))
    return jsonify({'success': True, 'shift': result.to_dict()})


@fleet_bp.route('/drivers/<int:driver_id>/break/end', methods=['POST'])
def break_end(driver_id):
    data = _payload()
    result = DutyService().request_break_end(driver_id, timestamp=parse_timestamp(data.get('timestamp')))
    return jsonify({'success': True, 'shift': result.to_dict()})


@fleet_bp.route('/drivers/<int:driver_id>/compliance', methods=['GET'])
def driver_compliance(driver_id):
    """Current HOS standing; evaluated fresh on every request"""
    if db.session.get(Driver, driver_id) is None:
        raise DriverNotFound(driver_id)
    as_of = parse_timestamp(request.args.get('as_of'), 'as_of')
    verdict = ComplianceService().evaluate(driver_id, as_of=as_of)
    return jsonify({'success': True, 'driver_id': driver_id, 'compliance': verdict.to_dict()})
