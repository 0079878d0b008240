#!/usr/bin/env python3
"""Command line entry point: ingest -> enrich -> store, analytics snapshots, alert checks, scheduler."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
import time
import traceback
from dataclasses import dataclass

from config import DATABASE_PATH, MAX_REQUESTS_PER_MINUTE, validate_config
from src.analytics.alerts import AlertEvaluator
from src.analytics.engine import AnalyticsEngine
from src.analyzers.llm_analyzer import EnrichmentClient, MockCompletionPort, OpenAICompletionPort
from src.delivery.alert_sink import LoggingAlertSink
from src.models import TIMEFRAMES, utcnow
from src.pipeline.ingestion import IngestionOrchestrator
from src.rate_limiter import RateLimiter
from src.scheduler import Scheduler
from src.scrapers import http
from src.scrapers.guardian_scraper import GuardianAdapter
from src.scrapers.newsapi_scraper import NewsApiAdapter
from src.scrapers.rss_scraper import FeedAdapter
from src.scrapers.web_scraper import HtmlPageAdapter
from src.storage.base import StoragePort
from src.storage.memory import MemoryStorage
from src.storage.seed import seed_defaults
from src.storage.sqlite_store import SQLiteStorage
from src.system_log import SystemLog, SystemLogHandler

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    """One JSON object per log line, for machine-readable pipeline logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(log_format: str, system_log: SystemLog | None = None) -> None:
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    if system_log is not None:
        root.addHandler(SystemLogHandler(system_log))
    root.setLevel(logging.INFO)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", default=DATABASE_PATH, help=f"SQLite database path (default: {DATABASE_PATH})")
    common.add_argument(
        "--memory",
        action="store_true",
        help="Use in-memory storage seeded with the default sources (nothing is persisted)",
    )
    common.add_argument("--log-format", choices=["text", "json"], default="text", help="Log format (text|json)")
    common.add_argument(
        "--mock",
        action="store_true",
        help="Use a deterministic offline completion port instead of the LLM API",
    )

    parser = argparse.ArgumentParser(description="News ingestion, sentiment analytics and alerting")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("ingest", parents=[common], help="Run one ingestion cycle")
    sub.add_parser("alerts", parents=[common], help="Evaluate keyword alerts once")

    snapshot = sub.add_parser("snapshot", parents=[common], help="Cache analytics snapshots")
    snapshot.add_argument("--timeframe", choices=TIMEFRAMES, help="Only this timeframe (default: all)")

    metrics = sub.add_parser("metrics", parents=[common], help="Print dashboard metrics")
    metrics.add_argument("--timeframe", choices=TIMEFRAMES, default="day")
    metrics.add_argument("--keyword", help="Show metrics for one keyword instead")
    metrics.add_argument("--days", type=int, default=7, help="Lookback for --keyword (default: 7)")
    metrics.add_argument("--source", help="Show metrics for one source name (timeframe day|week|month)")

    sub.add_parser("seed", parents=[common], help="Insert default RSS sources and keyword tracks")
    sub.add_parser("serve", parents=[common], help="Run the scheduler until interrupted")
    sub.add_parser("status", parents=[common], help="Show source health and alert counts")
    return parser.parse_args(argv)


@dataclass
class Services:
    """Process-owned components, built once and passed to every consumer."""
    storage: StoragePort
    system_log: SystemLog
    orchestrator: IngestionOrchestrator
    analytics: AnalyticsEngine
    evaluator: AlertEvaluator


def build_services(args: argparse.Namespace, system_log: SystemLog) -> Services:
    if args.memory:
        storage = MemoryStorage()
        seed_defaults(storage)
    else:
        storage = SQLiteStorage(args.db)

    port = MockCompletionPort() if args.mock else OpenAICompletionPort()
    session = http.build_session()
    html_adapter = HtmlPageAdapter(session=session)
    # Per-minute request budget shared by the feed and search-API adapters
    budget = RateLimiter(0.0, MAX_REQUESTS_PER_MINUTE)
    orchestrator = IngestionOrchestrator(
        storage=storage,
        enrichment=EnrichmentClient(port),
        feed_adapter=FeedAdapter(session=session, limiter=budget),
        search_adapters=[NewsApiAdapter(session=session, limiter=budget),
                         GuardianAdapter(session=session, limiter=budget)],
        html_adapter=html_adapter,
        system_log=system_log,
    )
    return Services(
        storage=storage,
        system_log=system_log,
        orchestrator=orchestrator,
        analytics=AnalyticsEngine(storage, system_log=system_log),
        evaluator=AlertEvaluator(storage, sink=LoggingAlertSink(), system_log=system_log),
    )


def _status_report(services: Services) -> dict:
    now = utcnow()
    sources = services.storage.list_rss_sources(active_only=False)
    return {
        "checked_at": now.isoformat(),
        "rss_sources": [
            {
                "name": s.name,
                "active": s.is_active,
                "last_fetched": s.last_fetched.isoformat() if s.last_fetched else None,
                "last_successful": s.last_successful.isoformat() if s.last_successful else None,
                "error_count": s.error_count,
                "last_error": s.last_error,
            }
            for s in sources
        ],
        "keyword_tracks": len(services.storage.list_keyword_tracks(active_only=True)),
        "unread_alerts": services.storage.count_alerts(unread_only=True),
        "cached_snapshots": services.storage.snapshot_count(),
        "recent_alerts": [a.to_dict() for a in services.storage.list_alerts(limit=10)],
    }


def serve(services: Services) -> dict:
    """Start the scheduler and block until Ctrl-C; in-flight articles finish before exit."""

    def ingest(stop_event: threading.Event) -> None:
        services.orchestrator.run_cycle(cancel_event=stop_event)

    def check_alerts(stop_event: threading.Event) -> None:
        services.evaluator.evaluate()

    def cache_analytics(stop_event: threading.Event) -> None:
        services.analytics.cache_all_snapshots()

    scheduler = Scheduler(ingest, check_alerts, cache_analytics, system_log=services.system_log)
    scheduler.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("[SCHEDULER] Shutdown requested")
    finally:
        scheduler.stop()
    return scheduler.status()


def run_command(args: argparse.Namespace, services: Services) -> dict:
    if args.command == "ingest":
        return services.orchestrator.run_cycle().to_dict()
    if args.command == "alerts":
        return {"alerts": [a.to_dict() for a in services.evaluator.evaluate()]}
    if args.command == "snapshot":
        if args.timeframe:
            snapshot, created = services.analytics.cache_snapshot(args.timeframe)
            return {"timeframe": args.timeframe, "date": snapshot.date.isoformat(), "created": created}
        return services.analytics.cache_all_snapshots()
    if args.command == "metrics":
        if args.keyword:
            return services.analytics.keyword_metrics(args.keyword, days=args.days)
        if args.source:
            return services.analytics.source_metrics(args.source, timeframe=args.timeframe)
        return services.analytics.compute_metrics(args.timeframe).to_dict()
    if args.command == "seed":
        return seed_defaults(services.storage)
    if args.command == "serve":
        return serve(services)
    return _status_report(services)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    system_log = SystemLog()
    configure_logging(args.log_format, system_log)

    valid, messages = validate_config(mode=args.command, mock=args.mock)
    for item in messages:
        logger.warning(f"[CONFIG] {item}")
    if not valid:
        logger.error("Configuration validation failed")
        return 1

    try:
        services = build_services(args, system_log)
        report = run_command(args, services)
    except Exception as exc:
        logger.critical(f"Command '{args.command}' failed unexpectedly: {exc}")
        traceback.print_exc()
        return 1

    print(json.dumps(report, ensure_ascii=False, indent=2, default=str))
    if args.command == "ingest" and report.get("errors"):
        logger.warning(f"Ingestion finished with {len(report['errors'])} issues")
    return 0


if __name__ == "__main__":
    sys.exit(main())
