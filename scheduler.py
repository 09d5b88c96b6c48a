import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from ledger_client import LedgerApiError
from recurrence import PeriodEngine
from sync import run_sync


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def recalculate_periods(source: str = "manual") -> int:
    """Advance the payday and roll trackers forward to today."""
    with session_scope() as session:
        engine = PeriodEngine(session)
        engine.advance_payday_if_needed()
        count = engine.recalculate_trackers()
    logger.info(f"recalc_run: source={source} trackers_advanced={count}")
    return count


class SchedulerManager:
    def __init__(self, token: Optional[str] = None) -> None:
        settings = get_settings()
        self.token = token or settings.api_token
        self.sync_interval_minutes = settings.sync_interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _recalc_job(self, source: str = "manual") -> None:
        recalculate_periods(source)

    def _sync_job(self, source: str = "manual") -> None:
        logger.info(f"sync_job: source={source}")
        try:
            run_sync(self.token)
        except LedgerApiError as exc:
            logger.warning(f"sync_job_failed: source={source} status={exc.status} error={exc}")
            raise

    def start(self) -> None:
        self._recalc_job("startup")

        trigger = CronTrigger(hour=0, minute=5)
        self.scheduler.add_job(
            self._recalc_job,
            trigger,
            args=["daily_00:05"],
            id="periods_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        if self.token and self.sync_interval_minutes > 0:
            trigger = IntervalTrigger(minutes=self.sync_interval_minutes)
            self.scheduler.add_job(
                self._sync_job,
                trigger,
                args=["interval"],
                id="ledger_sync",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
            )
        else:
            logger.info("Background sync disabled: no API token or zero interval")

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily 00:05 recalc and "
            f"{self.sync_interval_minutes}m sync interval"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
