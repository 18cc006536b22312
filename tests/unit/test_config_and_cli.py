"""
Tests for configuration validation, logging, the hold sweep and the
database command line
"""

import json
import logging
import pytest
from datetime import datetime

from app import create_app, db
from models import VehicleHold, HoldState
from utils.config_validator import ConfigValidationError, validate_fleet_config, validate_twilio_config
from utils.background_tasks import BackgroundTaskScheduler, sweep_expired_holds
from utils.logging_config import JSONFormatter
import database_commands
from tests.unit.conftest import VehicleHoldFactory

VALID_CONFIG = {
    'HOLD_TTL_MINUTES': 15,
    'HOLD_SWEEP_INTERVAL_SECONDS': 60,
    'FLEET_TIMEZONE': 'America/Los_Angeles',
    'OPERATING_DAY_START': '08:00',
    'OPERATING_DAY_END': '22:00',
    'NOTIFICATIONS_ENABLED': False,
}


class TestConfigValidation:

    def test_valid_config_passes(self):
        validate_fleet_config(VALID_CONFIG)

    @pytest.mark.parametrize('key, value', [
        ('HOLD_TTL_MINUTES', 0),
        ('HOLD_TTL_MINUTES', '15'),
        ('HOLD_SWEEP_INTERVAL_SECONDS', -5),
        ('FLEET_TIMEZONE', 'Mars/Olympus_Mons'),
        ('OPERATING_DAY_START', '8am'),
        ('OPERATING_DAY_END', '07:00'),
    ])
    def test_invalid_setting_rejected(self, key, value):
        """Test each bad setting is reported"""
        config = dict(VALID_CONFIG, **{key: value})

        with pytest.raises(ConfigValidationError) as exc_info:
            validate_fleet_config(config)

        assert any(key in issue for issue in exc_info.value.issues)

    def test_create_app_refuses_bad_config(self, tmp_path):
        with pytest.raises(ConfigValidationError):
            create_app({'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'bad.db'}",
                        'HOLD_TTL_MINUTES': 0})

    def test_missing_twilio_credentials_reported(self, monkeypatch):
        for var in ('TWILIO_ACCOUNT_SID', 'TWILIO_AUTH_TOKEN', 'TWILIO_PHONE_NUMBER'):
            monkeypatch.delenv(var, raising=False)

        valid, issues = validate_twilio_config()

        assert valid is False
        assert len(issues) == 3


class TestLogging:

    def test_json_formatter(self):
        record = logging.LogRecord('services.hold_service', logging.INFO, __file__, 1,
                                   'Hold %s created', (7,), None)
        record.vehicle_id = 42

        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == 'Hold 7 created'
        assert data['application'] == 'fleet_engine'
        assert data['extra']['vehicle_id'] == 42

    def test_request_id_echoed(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'req-123'})

        assert response.headers['X-Request-ID'] == 'req-123'


class TestHoldSweep:
    """Background and command-line expiry of stale holds"""

    def test_sweep_expired_holds(self, app, db_session, vehicle):
        """Test the sweep expires holds past their TTL in its own app context"""
        hold_id = VehicleHoldFactory(vehicle=vehicle).id
        db_session.close()

        assert sweep_expired_holds(app) == 1
        assert db.session.get(VehicleHold, hold_id).state == HoldState.EXPIRED

    def test_scheduler_job_swallows_errors(self, caplog):
        scheduler = BackgroundTaskScheduler(app=None)

        with caplog.at_level(logging.ERROR, logger='utils.background_tasks'):
            assert scheduler._safe_sweep_holds() is None

        assert any('Hold expiry sweep failed' in r.getMessage() for r in caplog.records)

    def test_scheduler_job_runs_sweep(self, app, db_session, vehicle):
        VehicleHoldFactory(vehicle=vehicle)
        VehicleHoldFactory(vehicle=vehicle, created_at=datetime(2025, 5, 31, 11, 0))
        db_session.close()

        assert BackgroundTaskScheduler(app)._safe_sweep_holds() == 2


class TestDatabaseCommands:

    def test_sweep_holds_command(self, app, db_session, vehicle, capsys):
        VehicleHoldFactory(vehicle=vehicle)
        db_session.close()

        assert database_commands.run(['sweep-holds'], app=app) == 0
        assert 'Expired 1 hold(s)' in capsys.readouterr().out

    def test_status_command(self, app, db_session, vehicle, capsys):
        VehicleHoldFactory(vehicle=vehicle)
        db_session.close()

        assert database_commands.run(['status'], app=app) == 0

        out = capsys.readouterr().out
        assert 'Connection Status: HEALTHY' in out
        assert 'vehicles: 1 records' in out
        assert 'Expired holds awaiting sweep: 1' in out

    def test_init_command(self, app, db_session, capsys):
        db_session.close()

        assert database_commands.run(['init'], app=app) == 0
        assert 'vehicle_holds' in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert database_commands.run([]) == 1
        assert 'sweep-holds' in capsys.readouterr().out
