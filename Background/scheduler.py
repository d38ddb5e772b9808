from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger


class MissedPunchScheduler:
    """Runs the missed-punch sweep on a fixed interval."""

    def __init__(self, interval_minutes: int, job_func: Callable):
        self._interval = interval_minutes
        self._job_func = job_func
        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._job_func,
            trigger=IntervalTrigger(minutes=self._interval),
            id="missed_punch_check",
            replace_existing=True,
        )

    def start(self):
        self._scheduler.start()

    def stop(self):
        self._scheduler.shutdown(wait=False)
