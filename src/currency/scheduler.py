import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from django.conf import settings
import logging

from .services import refresh_rates

logger = logging.getLogger('currency')

JOB_ID = "currency-rates-refresh"


class RatesRefresher:
    """Background job that keeps the cached exchange rates warm.

    Only one process per deployment should run it; `astroluna.asgi` starts it
    in the worker holding the scheduler leader lock.
    """

    def __init__(self, interval_hours: Optional[int] = None) -> None:
        self.interval_hours = interval_hours or settings.CURRENCY_REFRESH_INTERVAL_HOURS
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def refresh(self) -> None:
        try:
            rates = refresh_rates()
        except Exception as e:
            # a failed run must not kill the job; the next interval retries
            logger.exception("rates refresh job error: %s", e)
            return
        logger.info("rates refresh job done (fallback=%s)", bool(rates.get("fallback")))

    def start(self) -> None:
        if self._scheduler is not None:
            return

        sched = BackgroundScheduler()
        # refresh immediately on startup, then every interval
        sched.add_job(
            self.refresh,
            "interval",
            hours=self.interval_hours,
            id=JOB_ID,
            next_run_time=datetime.datetime.now(),
            max_instances=1,
            coalesce=True,
        )
        sched.start()
        self._scheduler = sched
        logger.info("RatesRefresher scheduler started (every %d h)", self.interval_hours)

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("RatesRefresher scheduler stopped")
