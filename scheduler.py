import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import PlannedTransactionService


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info("scheduler_run: source=%s", source)
        try:
            with session_scope() as session:
                count = PlannedTransactionService(session).auto_convert_due()
        except Exception:
            logger.exception("scheduler_run_failed: source=%s", source)
            return 0
        logger.info("scheduler_run: source=%s planned_converted=%d", source, count)
        return count

    def start(self) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler disabled by configuration")
            return

        self._run_job("startup")

        hour = self.settings.auto_convert_hour
        minute = self.settings.auto_convert_minute
        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{hour:02d}:{minute:02d}"],
            id="planned_auto_convert_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="planned_auto_convert_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily %02d:%02d and hourly safety net",
            hour,
            minute,
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
