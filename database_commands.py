#!/usr/bin/env python3
"""
Database Management Commands for the fleet engine

Usage:
    python database_commands.py --help
    python database_commands.py init
    python database_commands.py status
    python database_commands.py sweep-holds
"""

import sys
import argparse
import logging
from sqlalchemy import text, func, select

logger = logging.getLogger(__name__)


def cmd_init(args, app):
    """Create any missing tables."""
    from app import db

    with app.app_context():
        db.create_all()
        tables = sorted(db.metadata.tables)
    print(f"Schema ready: {len(tables)} tables")
    for table in tables:
        print(f"  {table}")
    return 0


def cmd_status(args, app):
    """Display connection health and calendar / ledger counts."""
    from app import db
    from models import VehicleHold, HoldState, Booking, BookingStatus, ShiftSegment
    from timezone_utils import get_local_time_naive

    with app.app_context():
        print("=" * 60)
        print("DATABASE STATUS REPORT")
        print("=" * 60)

        try:
            db.session.execute(text('SELECT 1'))
            print("Connection Status: HEALTHY")
        except Exception as e:
            print(f"Connection Status: FAILED ({str(e)})")
            return 1

        print(f"Engine: {db.engine.dialect.name}")
        print("\nTable Statistics:")
        for table in sorted(db.metadata.tables.values(), key=lambda t: t.name):
            count = db.session.execute(select(func.count()).select_from(table)).scalar()
            print(f"  {table.name}: {count} records")

        now = get_local_time_naive()
        active = VehicleHold.query.filter(VehicleHold.state == HoldState.ACTIVE,
                                          VehicleHold.expires_at > now).count()
        stale = VehicleHold.query.filter(VehicleHold.state == HoldState.ACTIVE,
                                         VehicleHold.expires_at <= now).count()
        needs_verification = Booking.query.filter_by(status=BookingStatus.NEEDS_VERIFICATION).count()
        open_shifts = ShiftSegment.query.filter(ShiftSegment.ended_at.is_(None)).count()

        print("\nCalendar:")
        print(f"  Active holds: {active}")
        print(f"  Expired holds awaiting sweep: {stale}")
        print(f"  Bookings needing verification: {needs_verification}")
        print(f"  Open shifts: {open_shifts}")
        db.session.rollback()
    return 0


def cmd_sweep_holds(args, app):
    """Expire every active hold past its TTL."""
    from utils.background_tasks import sweep_expired_holds

    expired = sweep_expired_holds(app)
    print(f"Expired {expired} hold(s)")
    return 0


COMMANDS = {
    'init': cmd_init,
    'status': cmd_status,
    'sweep-holds': cmd_sweep_holds,
}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Database Management Commands for the fleet engine",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    subparsers.add_parser('init', help='Create missing tables')
    subparsers.add_parser('status', help='Display database status')
    subparsers.add_parser('sweep-holds', help='Expire holds past their TTL')
    return parser


def run(argv=None, app=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if app is None:
        from app import create_app
        app = create_app({'ENABLE_BACKGROUND_TASKS': False})

    try:
        return COMMANDS[args.command](args, app)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        logger.exception("Unexpected error occurred")
        print(f"Unexpected error: {str(e)}")
        return 1


def main():
    """Main command line interface."""
    sys.exit(run())


if __name__ == "__main__":
    main()
