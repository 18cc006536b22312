"""
Background task scheduler for hold expiry
Periodically moves holds past their TTL from 'active' to 'expired'
"""

import logging
import schedule
import time
import threading

logger = logging.getLogger(__name__)

class BackgroundTaskScheduler:
    """Manages background maintenance of the vehicle calendar"""

    def __init__(self, app=None):
        self.app = app
        self.running = False
        self.scheduler_thread = None
        self.scheduler = schedule.Scheduler()

    def start_scheduler(self, interval_seconds: int = 60):
        """Start the background task scheduler"""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info(f"Starting background task scheduler (hold sweep every {interval_seconds}s)")

        self.scheduler.every(interval_seconds).seconds.do(self._safe_sweep_holds)

        self.running = True
        self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
        self.scheduler_thread.start()

        logger.info("Background task scheduler started successfully")

    def stop_scheduler(self):
        """Stop the background task scheduler"""
        if not self.running:
            return

        logger.info("Stopping background task scheduler")
        self.running = False
        self.scheduler.clear()

        if self.scheduler_thread:
            self.scheduler_thread.join(timeout=30)

        logger.info("Background task scheduler stopped")

    def _run_scheduler(self):
        """Main scheduler loop"""
        while self.running:
            try:
                self.scheduler.run_pending()
                time.sleep(1)
            except Exception as e:
                logger.error(f"Error in scheduler loop: {str(e)}")
                time.sleep(30)

    def _safe_sweep_holds(self):
        """Run the hold expiry sweep inside an app context"""
        try:
            return sweep_expired_holds(self.app)
        except Exception as e:
            logger.error(f"Hold expiry sweep failed: {str(e)}")
            return None

def sweep_expired_holds(app) -> int:
    from services.hold_service import HoldService

    with app.app_context():
        expired = HoldService().expire_stale_holds()
    if expired:
        logger.info(f"Hold expiry sweep moved {expired} hold(s) to expired")
    return expired

# Global scheduler instance
background_scheduler = BackgroundTaskScheduler()

def init_background_tasks(app):
    """Initialize background tasks - call this from app startup"""
    try:
        background_scheduler.app = app
        background_scheduler.start_scheduler(app.config.get('HOLD_SWEEP_INTERVAL_SECONDS', 60))
        logger.info("Background tasks initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize background tasks: {str(e)}")

def cleanup_background_tasks():
    """Cleanup background tasks - call this on app shutdown"""
    try:
        background_scheduler.stop_scheduler()
        logger.info("Background tasks cleaned up successfully")
    except Exception as e:
        logger.error(f"Failed to cleanup background tasks: {str(e)}")
