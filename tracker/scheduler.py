"""Optional background scheduler for periodic sync"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from tracker.config import Settings
from tracker.services.sync_service import SyncService

logger = logging.getLogger(__name__)

JOB_ID = "sync_repositories"


class SyncScheduler:
    """Runs the same sync as POST /api/sync on a fixed interval.

    Disabled unless ``sync_interval_minutes`` is positive and a token is set.
    """

    def __init__(self, settings: Settings, session_factory: sessionmaker):
        self.settings = settings
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler()

    @property
    def enabled(self) -> bool:
        return self.settings.sync_interval_minutes > 0 and bool(self.settings.gitcode_token)

    def start(self):
        """Start the scheduler if periodic sync is configured"""
        if not self.enabled:
            logger.info("Periodic sync disabled")
            return

        self.scheduler.add_job(
            func=self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.settings.sync_interval_minutes),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduled sync every {self.settings.sync_interval_minutes} minutes")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Sync scheduler stopped")

    def run_sync_job(self):
        """Job function; failures are logged, the schedule keeps running"""
        db = self.session_factory()
        try:
            logger.info("Running scheduled sync")
            result = SyncService(db, self.settings).run()
            logger.info(f"Scheduled sync finished: {result.to_dict()}")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")
        finally:
            db.close()
