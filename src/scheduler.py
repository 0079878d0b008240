"""
Background scheduler: ingestion every 15 minutes, alert checks hourly,
analytics snapshots daily. Each job runs on its own daemon thread.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable

from config import ALERT_INTERVAL_MINUTES, ANALYTICS_INTERVAL_HOURS, SCRAPER_INTERVAL_MINUTES
from src.models import utcnow
from src.system_log import SystemLog

logger = logging.getLogger(__name__)


@dataclass
class JobStatus:
    name: str
    interval_seconds: float
    run_count: int = 0
    last_started: str | None = None
    last_finished: str | None = None
    last_error: str | None = None
    running: bool = False


class ScheduledJob:
    """Runs `func` every `interval_seconds` until stopped. Exceptions never escape the loop."""

    def __init__(self, name: str, func: Callable[[threading.Event], object], interval_seconds: float,
                 run_immediately: bool = False, system_log: SystemLog | None = None):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self.system_log = system_log
        self.status = JobStatus(name=name, interval_seconds=interval_seconds)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        self._stop.set()

    def stop(self, timeout: float | None = None) -> None:
        self.request_stop()
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self) -> None:
        if not self.run_immediately and self._stop.wait(self.interval_seconds):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval_seconds):
                return

    def run_once(self) -> None:
        """Invoke the job; the only place its exceptions are caught."""
        with self._lock:
            self.status.running = True
            self.status.last_started = utcnow().isoformat()
        started = time.perf_counter()
        try:
            self.func(self._stop)
            self.status.last_error = None
            logger.info(f"[SCHEDULER] {self.name} finished in {time.perf_counter() - started:.2f}s")
        except Exception as e:
            self.status.last_error = str(e)
            logger.exception(f"[SCHEDULER] {self.name} failed: {e}")
            if self.system_log is not None:
                self.system_log.append("error", f"Scheduled job {self.name} failed", {"error": str(e)})
        finally:
            with self._lock:
                self.status.running = False
                self.status.run_count += 1
                self.status.last_finished = utcnow().isoformat()


class Scheduler:
    """
    Owns the three periodic jobs. Constructed by the entry point with the
    callables to run; `stop` signals every job and waits for in-flight work.
    """

    def __init__(self, ingest: Callable[[threading.Event], object],
                 check_alerts: Callable[[threading.Event], object],
                 cache_analytics: Callable[[threading.Event], object],
                 scraper_interval_minutes: float = SCRAPER_INTERVAL_MINUTES,
                 alert_interval_minutes: float = ALERT_INTERVAL_MINUTES,
                 analytics_interval_hours: float = ANALYTICS_INTERVAL_HOURS,
                 system_log: SystemLog | None = None):
        self.system_log = system_log
        self.jobs = [
            ScheduledJob("news-scraping", ingest, scraper_interval_minutes * 60,
                         run_immediately=True, system_log=system_log),
            ScheduledJob("alert-checking", check_alerts, alert_interval_minutes * 60, system_log=system_log),
            ScheduledJob("analytics-caching", cache_analytics, analytics_interval_hours * 3600,
                         system_log=system_log),
        ]
        self.is_running = False

    def start(self) -> None:
        if self.is_running:
            logger.info("[SCHEDULER] Already running")
            return
        for job in self.jobs:
            job.start()
        self.is_running = True
        logger.info(f"[SCHEDULER] Started {len(self.jobs)} jobs")
        if self.system_log is not None:
            self.system_log.append("success", "Scheduler started")

    def stop(self, timeout: float | None = 30.0) -> None:
        if not self.is_running:
            return
        for job in self.jobs:
            job.request_stop()
        for job in self.jobs:
            job.stop(timeout)
        self.is_running = False
        logger.info("[SCHEDULER] Stopped")
        if self.system_log is not None:
            self.system_log.append("info", "Scheduler stopped")

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "jobs": [asdict(job.status) for job in self.jobs],
        }
