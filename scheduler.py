import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from billing import BillingService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"billing_retry_run: source={source}")
        with session_scope() as session:
            recovered = BillingService(session).retry_failed()
            logger.info(f"billing_retry_run: source={source} recovered={recovered}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.settings.billing_retry_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="billing_retry",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with billing retries every "
            f"{self.settings.billing_retry_minutes} minutes"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
