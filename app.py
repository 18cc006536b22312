import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from sqlalchemy import event
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix
from datetime import datetime

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)


def _enable_sqlite_write_serialization(engine):
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first DML statement, which lets two
    connections read the same calendar and both decide a slot is free.
    Taking the write lock up front gives SQLite the same serialisation a
    PostgreSQL row lock gives the hold manager.
    """
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_app(config_overrides=None):
    # Create the app
    app = Flask(__name__)
    # Trust one proxy for X-Forwarded-For / -Proto / -Host
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    production_origins = os.environ.get('ALLOWED_ORIGINS', '').split(',')
    allowed_origins = [origin.strip() for origin in production_origins if origin.strip()]
    if not allowed_origins:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    CORS(app, origins=allowed_origins,
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
         methods=["GET", "POST", "OPTIONS"])

    # Configure the database - use PostgreSQL in production, SQLite for development
    database_url = os.environ.get("DATABASE_URL") or "sqlite:///fleet_engine.db"

    if database_url.startswith(("postgresql://", "postgres://")):
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        if database_url.startswith("postgresql://"):
            database_url = database_url.replace("postgresql://", "postgresql+psycopg2://", 1)

        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_size": 10,
            "pool_recycle": 280,
            "pool_pre_ping": True,
            "max_overflow": 15,
            "pool_timeout": 20,
            "connect_args": {
                "connect_timeout": 10,
                "application_name": "fleet_engine",
            }
        }
    else:
        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
            "connect_args": {
                "timeout": 30,
                "check_same_thread": False,
            }
        }

    # Fleet engine settings
    app.config['HOLD_TTL_MINUTES'] = int(os.environ.get('HOLD_TTL_MINUTES', 15))
    app.config['HOLD_SWEEP_INTERVAL_SECONDS'] = int(os.environ.get('HOLD_SWEEP_INTERVAL_SECONDS', 60))
    app.config['FLEET_TIMEZONE'] = os.environ.get('FLEET_TIMEZONE', 'America/Los_Angeles')
    app.config['OPERATING_DAY_START'] = os.environ.get('OPERATING_DAY_START', '08:00')
    app.config['OPERATING_DAY_END'] = os.environ.get('OPERATING_DAY_END', '22:00')
    app.config['ENABLE_BACKGROUND_TASKS'] = os.environ.get('ENABLE_BACKGROUND_TASKS', 'false').lower() == 'true'
    app.config['NOTIFICATIONS_ENABLED'] = os.environ.get('NOTIFICATIONS_ENABLED', 'true').lower() == 'true'

    if config_overrides:
        app.config.update(config_overrides)

    from utils.config_validator import validate_fleet_config
    validate_fleet_config(app.config)

    from utils.logging_config import setup_logging, log_request_start, log_request_end
    setup_logging(app)
    app.before_request(log_request_start)
    app.after_request(log_request_end)

    # Initialize extensions
    db.init_app(app)

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            _enable_sqlite_write_serialization(db.engine)

        import models  # noqa: F401
        db.create_all()

    from fleet_routes import fleet_bp
    app.register_blueprint(fleet_bp, url_prefix='/api/fleet')

    # Health check endpoint for deployment
    @app.route('/health')
    def health():
        """Simple health check endpoint for deployment readiness"""
        return {'status': 'ok', 'timestamp': datetime.utcnow().isoformat()}, 200

    if app.config['ENABLE_BACKGROUND_TASKS']:
        from utils.background_tasks import init_background_tasks
        init_background_tasks(app)

    return app
