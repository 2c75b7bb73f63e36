import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from invalidation import InvalidationBus, get_invalidation_bus


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Publishes an invalidation at local midnight so day labels roll over."""

    def __init__(self, bus: Optional[InvalidationBus] = None) -> None:
        settings = get_settings()
        self.bus = bus or get_invalidation_bus()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        faults = self.bus.publish()
        logger.info(f"scheduler_run: source={source} faults={len(faults)}")

    def start(self) -> None:
        trigger = CronTrigger(hour=0, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["day_rollover"],
            id="day_rollover",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info("Scheduler started with midnight day rollover")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
