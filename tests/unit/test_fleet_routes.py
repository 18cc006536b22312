"""
Tests for the fleet JSON API
"""

from datetime import datetime, date, time, timedelta

from models import Booking, BookingStatus
from timezone_utils import get_local_time_naive
from tests.unit.conftest import ShiftSegmentFactory, VehicleBookingBlockFactory, VehicleFactory


def future_date(days=30):
    return (get_local_time_naive().date() + timedelta(days=days)).isoformat()


def booking_payload(vehicle_ids, on_date=None, start='10:00', end='14:00'):
    return {
        'vehicle_ids': vehicle_ids,
        'date': on_date or future_date(),
        'start_time': start,
        'end_time': end,
        'customer': {'email': 'guide@example.com', 'full_name': 'Sam Guide', 'phone': '+15550101010'},
        'pricing': {'total_price': '850.00', 'deposit_amount': '150.00', 'party_size': 9},
    }


class TestBookingRoutes:

    def test_create_booking(self, client, db_session, vehicle):
        """Test a booking request returns 201 with the booking number"""
        response = client.post('/api/fleet/bookings', json=booking_payload([vehicle.id]))

        assert response.status_code == 201
        data = response.get_json()
        assert data['success'] is True
        assert data['booking']['status'] == 'confirmed'
        assert data['booking']['vehicle_ids'] == [vehicle.id]
        assert 'X-Request-ID' in response.headers

    def test_conflict_returns_409(self, client, db_session, vehicle):
        """Test a taken window returns the vehicle and the conflicting commitments"""
        on_date = future_date()
        VehicleBookingBlockFactory(vehicle=vehicle, block_date=date.fromisoformat(on_date))

        response = client.post('/api/fleet/bookings',
                               json=booking_payload([vehicle.id], on_date=on_date, start='12:00', end='15:00'))

        assert response.status_code == 409
        data = response.get_json()
        assert data['code'] == 'AVAILABILITY_CONFLICT'
        assert data['vehicle_id'] == vehicle.id
        assert data['conflicts'][0]['kind'] == 'block'

    def test_validation_error_returns_400(self, client, db_session, vehicle):
        payload = booking_payload([vehicle.id])
        payload['start_time'] = '7pm'

        response = client.post('/api/fleet/bookings', json=payload)

        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_missing_customer_returns_400(self, client, db_session, vehicle):
        payload = booking_payload([vehicle.id])
        del payload['customer']

        response = client.post('/api/fleet/bookings', json=payload)

        assert response.status_code == 400

    def test_non_numeric_party_size_returns_400(self, client, db_session, vehicle):
        """Test a party size that is not an integer is a validation error, not a 500"""
        payload = booking_payload([vehicle.id])
        payload['pricing']['party_size'] = 'eight'

        response = client.post('/api/fleet/bookings', json=payload)

        assert response.status_code == 400
        data = response.get_json()
        assert data['code'] == 'VALIDATION_ERROR'
        assert 'party_size' in data['error']

    def test_non_object_pricing_returns_400(self, client, db_session, vehicle):
        payload = booking_payload([vehicle.id])
        payload['pricing'] = ['850.00']

        response = client.post('/api/fleet/bookings', json=payload)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'pricing must be an object'

    def test_get_and_cancel_booking(self, client, db_session, vehicle):
        created = client.post('/api/fleet/bookings', json=booking_payload([vehicle.id])).get_json()
        booking_id = created['booking']['booking_id']

        response = client.post(f'/api/fleet/bookings/{booking_id}/cancel', json={'reason': 'weather'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'cancelled'

        fetched = client.get(f'/api/fleet/bookings/{booking_id}').get_json()
        assert fetched['booking']['status'] == 'cancelled'
        assert fetched['booking']['vehicle_ids'] == []
        assert db_session.get(Booking, booking_id).status == BookingStatus.CANCELLED

    def test_unknown_booking_returns_404(self, client, db_session):
        response = client.get('/api/fleet/bookings/4040')

        assert response.status_code == 404
        assert response.get_json()['code'] == 'BOOKING_NOT_FOUND'


class TestCalendarRoutes:

    def test_availability(self, client, db_session, vehicle):
        on_date = future_date()
        VehicleBookingBlockFactory(vehicle=vehicle, block_date=date.fromisoformat(on_date),
                                   start_time=time(10, 0), end_time=time(12, 0))

        busy = client.get(f'/api/fleet/vehicles/{vehicle.id}/availability',
                          query_string={'date': on_date, 'start_time': '11:00', 'end_time': '13:00'})
        free = client.get(f'/api/fleet/vehicles/{vehicle.id}/availability',
                          query_string={'date': on_date, 'start_time': '12:00', 'end_time': '13:00'})

        assert busy.get_json()['available'] is False
        assert free.get_json()['available'] is True

    def test_commitments(self, client, db_session, vehicle):
        on_date = future_date()
        VehicleBookingBlockFactory(vehicle=vehicle, block_date=date.fromisoformat(on_date))

        data = client.get(f'/api/fleet/vehicles/{vehicle.id}/commitments',
                          query_string={'date': on_date}).get_json()

        assert [c['start_time'] for c in data['commitments']] == ['10:00']

    def test_available_vehicles(self, client, db_session):
        small = VehicleFactory(capacity=6)
        large = VehicleFactory(capacity=20)

        data = client.get('/api/fleet/vehicles/available', query_string={
            'date': future_date(), 'start_time': '10:00', 'end_time': '14:00', 'party_size': 8,
        }).get_json()

        assert [v['id'] for v in data['vehicles']] == [large.id]
        assert small.id not in [v['id'] for v in data['vehicles']]

    def test_slots(self, client, db_session, vehicle):
        on_date = future_date()
        VehicleBookingBlockFactory(vehicle=vehicle, block_date=date.fromisoformat(on_date),
                                   start_time=time(10, 0), end_time=time(12, 0))

        data = client.get('/api/fleet/vehicles/slots', query_string={
            'date': on_date, 'duration_hours': '2', 'party_size': 4,
        }).get_json()

        by_start = {s['start_time']: s for s in data['slots']}
        assert by_start['08:00']['available'] is True
        assert by_start['08:00']['vehicle_id'] == vehicle.id
        assert by_start['10:00']['available'] is False
        assert data['slots'][-1]['end_time'] == '22:00'

    def test_slots_bad_party_size_returns_400(self, client, db_session):
        response = client.get('/api/fleet/vehicles/slots', query_string={
            'date': future_date(), 'duration_hours': '2', 'party_size': 'lots',
        })

        assert response.status_code == 400

    def test_maintenance_block_lifecycle(self, client, db_session, vehicle):
        """Test a maintenance window is created, shown on the calendar and removed"""
        on_date = future_date()
        created = client.post(f'/api/fleet/vehicles/{vehicle.id}/maintenance', json={
            'date': on_date, 'start_time': '08:00', 'end_time': '12:00', 'reason': 'Brake service',
        })
        assert created.status_code == 201
        block_id = created.get_json()['maintenance']['id']

        commitments = client.get(f'/api/fleet/vehicles/{vehicle.id}/commitments',
                                 query_string={'date': on_date}).get_json()['commitments']
        assert [c['kind'] for c in commitments] == ['maintenance']

        removed = client.delete(f'/api/fleet/maintenance/{block_id}')
        assert removed.get_json()['removed'] is True

    def test_maintenance_over_booking_returns_409(self, client, db_session, vehicle):
        on_date = future_date()
        VehicleBookingBlockFactory(vehicle=vehicle, block_date=date.fromisoformat(on_date))

        response = client.post(f'/api/fleet/vehicles/{vehicle.id}/maintenance', json={
            'date': on_date, 'start_time': '09:00', 'end_time': '11:00', 'reason': 'Tyres',
        })

        assert response.status_code == 409
        assert response.get_json()['conflicts'][0]['kind'] == 'block'

    def test_blackout_date_blocks_bookings(self, client, db_session, vehicle):
        """Test a booking on a blackout date is refused until the blackout is lifted"""
        on_date = future_date()
        created = client.post('/api/fleet/blackout-dates', json={'date': on_date, 'reason': 'Marathon'})
        assert created.status_code == 201

        refused = client.post('/api/fleet/bookings', json=booking_payload([vehicle.id], on_date=on_date))
        assert refused.status_code == 409
        assert refused.get_json()['conflicts'][0]['kind'] == 'blackout'

        lifted = client.delete(f'/api/fleet/blackout-dates/{on_date}')
        assert lifted.get_json()['removed'] is True
        booked = client.post('/api/fleet/bookings', json=booking_payload([vehicle.id], on_date=on_date))
        assert booked.status_code == 201


class TestDutyRoutes:

    def test_clock_in(self, client, db_session, driver, vehicle):
        response = client.post(f'/api/fleet/drivers/{driver.id}/clock-in', json={
            'vehicle_id': vehicle.id,
            'timestamp': '2025-06-02T06:00:00',
            'location': {'latitude': 34.05, 'longitude': -118.24},
        })

        assert response.status_code == 201
        shift = response.get_json()['shift']
        assert shift['started_at'] == '2025-06-02T06:00:00'
        assert shift['compliance']['can_proceed'] is True

    def test_blocked_clock_in_returns_403(self, client, db_session, driver, vehicle):
        """Test a violation is reported as non-retryable with the verdict attached"""
        ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 2, 6, 0),
                            ended_at=datetime(2025, 6, 2, 16, 30))

        response = client.post(f'/api/fleet/drivers/{driver.id}/clock-in', json={
            'vehicle_id': vehicle.id,
            'timestamp': '2025-06-02T17:00:00',
            'override': True,
        })

        assert response.status_code == 403
        data = response.get_json()
        assert data['code'] == 'COMPLIANCE_BLOCKED'
        assert data['retryable'] is False
        primary = data['verdict']['primary_violation']
        assert primary['kind'] == 'daily_driving'
        assert primary['measured_value'] == 10.5
        assert primary['limit'] == 10.0

    def test_aware_timestamp_converted_to_fleet_time(self, client, db_session, driver, vehicle):
        response = client.post(f'/api/fleet/drivers/{driver.id}/clock-in', json={
            'vehicle_id': vehicle.id,
            'timestamp': '2025-06-02T13:00:00Z',
        })

        assert response.get_json()['shift']['started_at'] == '2025-06-02T06:00:00'

    def test_shift_flow(self, client, db_session, driver, vehicle):
        base = f'/api/fleet/drivers/{driver.id}'
        client.post(f'{base}/clock-in', json={'vehicle_id': vehicle.id, 'timestamp': '2025-06-02T06:00:00'})
        client.post(f'{base}/break/start', json={'timestamp': '2025-06-02T10:00:00'})
        client.post(f'{base}/break/end', json={'timestamp': '2025-06-02T10:30:00'})

        response = client.post(f'{base}/clock-out', json={
            'timestamp': '2025-06-02T15:00:00', 'miles_from_base': 95,
        })

        assert response.status_code == 200
        shift = response.get_json()['shift']
        assert shift['break_minutes'] == 30
        assert shift['compliance']['totals']['on_duty_hours_today'] == 8.5
        assert shift['compliance']['short_haul_exemption_applied'] is True

    def test_clock_out_without_shift_returns_409(self, client, db_session, driver):
        response = client.post(f'/api/fleet/drivers/{driver.id}/clock-out', json={})

        assert response.status_code == 409
        assert response.get_json()['code'] == 'SHIFT_STATE_CONFLICT'

    def test_bad_activity_returns_400(self, client, db_session, driver, vehicle):
        response = client.post(f'/api/fleet/drivers/{driver.id}/clock-in',
                               json={'vehicle_id': vehicle.id, 'activity': 'napping'})

        assert response.status_code == 400

    def test_non_numeric_vehicle_id_returns_400(self, client, db_session, driver):
        """Test a vehicle id that is not an integer is a validation error, not a 500"""
        response = client.post(f'/api/fleet/drivers/{driver.id}/clock-in',
                               json={'vehicle_id': 'van-7', 'timestamp': '2025-06-02T06:00:00'})

        assert response.status_code == 400
        data = response.get_json()
        assert data['code'] == 'VALIDATION_ERROR'
        assert 'vehicle_id' in data['error']

    def test_compliance_report(self, client, db_session, driver):
        ShiftSegmentFactory(driver=driver, started_at=datetime(2025, 6, 2, 6, 0),
                            ended_at=datetime(2025, 6, 2, 15, 30))

        data = client.get(f'/api/fleet/drivers/{driver.id}/compliance',
                          query_string={'as_of': '2025-06-02T16:00:00'}).get_json()

        assert data['compliance']['can_proceed'] is True
        assert data['compliance']['warnings'][0]['kind'] == 'daily_driving'

    def test_compliance_unknown_driver_returns_404(self, client, db_session):
        response = client.get('/api/fleet/drivers/999/compliance')

        assert response.status_code == 404
        assert response.get_json()['code'] == 'DRIVER_NOT_FOUND'


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'
