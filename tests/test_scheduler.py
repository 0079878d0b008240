import threading

from src.scheduler import ScheduledJob, Scheduler
from src.system_log import SystemLog


def test_run_once_catches_job_errors():
    log = SystemLog()

    def failing(stop_event):
        raise RuntimeError("feed storm")

    job = ScheduledJob("news-scraping", failing, interval_seconds=60, system_log=log)
    job.run_once()
    job.run_once()

    assert job.status.run_count == 2
    assert job.status.last_error == "feed storm"
    assert job.status.running is False
    assert log.recent(level="error")[0].message == "Scheduled job news-scraping failed"


def test_run_once_clears_previous_error():
    calls = []
    job = ScheduledJob("alert-checking", calls.append, interval_seconds=60)
    job.status.last_error = "old failure"
    job.run_once()

    assert job.status.last_error is None
    assert len(calls) == 1
    assert isinstance(calls[0], threading.Event)


def test_job_waits_for_interval_unless_run_immediately():
    ran = threading.Event()
    job = ScheduledJob("analytics-caching", lambda stop: ran.set(), interval_seconds=3600)
    job.start()
    try:
        assert not ran.wait(0.2)
    finally:
        job.stop(timeout=2)
    assert job.status.run_count == 0


def test_scheduler_runs_ingest_immediately_and_stops():
    ingested = threading.Event()
    seen_stop = []

    def ingest(stop_event):
        seen_stop.append(stop_event)
        ingested.set()

    scheduler = Scheduler(ingest, lambda stop: None, lambda stop: None,
                          scraper_interval_minutes=60, alert_interval_minutes=60,
                          analytics_interval_hours=24)
    scheduler.start()
    try:
        assert ingested.wait(5)
        assert scheduler.status()["is_running"] is True
    finally:
        scheduler.stop(timeout=5)

    status = scheduler.status()
    assert status["is_running"] is False
    assert [j["name"] for j in status["jobs"]] == ["news-scraping", "alert-checking", "analytics-caching"]
    assert status["jobs"][0]["run_count"] == 1
    assert status["jobs"][1]["interval_seconds"] == 3600
    # Cancellation reaches the running job through the event it was given
    assert seen_stop[0].is_set()


def test_stop_without_start_is_noop():
    scheduler = Scheduler(lambda s: None, lambda s: None, lambda s: None)
    scheduler.stop()
    assert scheduler.status()["is_running"] is False
