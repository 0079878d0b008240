"""
Analytics engine: dashboard metrics over a lookback window and write-once
snapshot caching per (timeframe, bucket start).
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from config import ANALYTICS_MAX_ROWS
from src.errors import DuplicateConflict
from src.models import TIMEFRAMES, AnalyticsSnapshot, Article, ensure_utc, utcnow
from src.storage.base import StoragePort
from src.system_log import SystemLog

logger = logging.getLogger(__name__)

# Lookback window per timeframe selector
LOOKBACK = {
    "hour": timedelta(hours=24),
    "day": timedelta(days=30),
    "week": timedelta(days=90),
    "month": timedelta(days=365),
}
# Lookback for per-source metrics, keyed by the coarser timeframes only
SOURCE_LOOKBACK = {
    "day": timedelta(days=7),
    "week": timedelta(days=30),
    "month": timedelta(days=90),
}
TOP_N = 10
MAX_TREND_POINTS = 31
RECENT_ALERT_HOURS = 24


def bucket_start(timeframe: str, moment: datetime) -> datetime:
    """Calendar bucket containing `moment` in UTC. Weeks start on Monday."""
    moment = ensure_utc(moment)
    if timeframe == "hour":
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "day":
        return day
    if timeframe == "week":
        return day - timedelta(days=day.weekday())
    if timeframe == "month":
        return day.replace(day=1)
    raise ValueError(f"Unknown timeframe: {timeframe}")


def next_bucket(timeframe: str, start: datetime) -> datetime:
    if timeframe == "hour":
        return start + timedelta(hours=1)
    if timeframe == "day":
        return start + timedelta(days=1)
    if timeframe == "week":
        return start + timedelta(weeks=1)
    return start + relativedelta(months=1)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _leaderboard(groups: dict[str, list[float]], label: str) -> list[dict]:
    """Top N groups by size, each with its mean sentiment. Ties keep first-seen order."""
    rows = [
        {label: name, "count": len(scores), "sentiment": _mean(scores)}
        for name, scores in groups.items()
    ]
    rows.sort(key=lambda r: r["count"], reverse=True)
    return rows[:TOP_N]


def _group_scores(articles: list[Article], keys_of) -> dict[str, list[float]]:
    groups: dict[str, list[float]] = {}
    for article in articles:
        for key in keys_of(article):
            if key:
                groups.setdefault(key, []).append(article.sentiment.score)
    return groups


@dataclass
class TrendPoint:
    date: str
    value: float
    count: int
    sentiment: float = 0.0


@dataclass
class DashboardMetrics:
    timeframe: str
    total_articles: int = 0
    average_sentiment: float = 0.0
    sentiment_distribution: dict[str, int] = field(
        default_factory=lambda: {"positive": 0, "negative": 0, "neutral": 0}
    )
    top_keywords: list[dict] = field(default_factory=list)
    top_sources: list[dict] = field(default_factory=list)
    recent_alerts: int = 0
    sentiment_trend: list[TrendPoint] = field(default_factory=list)
    volume_trend: list[TrendPoint] = field(default_factory=list)
    window_start: str = ""
    window_end: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class AnalyticsEngine:
    """Read-only over articles and alerts; sole writer of analytics snapshots."""

    def __init__(self, storage: StoragePort, max_rows: int = ANALYTICS_MAX_ROWS,
                 system_log: SystemLog | None = None):
        self.storage = storage
        self.max_rows = max_rows
        self.system_log = system_log

    def _window(self, timeframe: str, window_start: datetime | None,
                window_end: datetime | None, now: datetime | None) -> tuple[datetime, datetime]:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe: {timeframe}")
        end = ensure_utc(window_end or now or utcnow())
        start = ensure_utc(window_start) if window_start else end - LOOKBACK[timeframe]
        return start, end

    def _trend(self, timeframe: str, start: datetime, end: datetime,
               keyword: str | None = None, source: str | None = None) -> list[TrendPoint]:
        points: list[TrendPoint] = []
        cursor = bucket_start(timeframe, start)
        while cursor < end and len(points) < MAX_TREND_POINTS:
            following = next_bucket(timeframe, cursor)
            articles = self.storage.find_articles(max(cursor, start), min(following, end),
                                                  keyword=keyword, limit=self.max_rows, source=source)
            mean = _mean([a.sentiment.score for a in articles])
            points.append(TrendPoint(date=cursor.isoformat(), value=mean, count=len(articles), sentiment=mean))
            cursor = following
        return points

    def compute_metrics(self, timeframe: str = "day", window_start: datetime | None = None,
                        window_end: datetime | None = None, now: datetime | None = None) -> DashboardMetrics:
        """
        Aggregate the newest `max_rows` articles published inside the window.

        Default windows: hour -> 24h, day -> 30d, week -> 90d, month -> 365d,
        ending now. Trend series have one point per calendar bucket of the
        timeframe.
        """
        start, end = self._window(timeframe, window_start, window_end, now)
        articles = self.storage.find_articles(start, end, limit=self.max_rows)
        scores = [a.sentiment.score for a in articles]

        distribution = {"positive": 0, "negative": 0, "neutral": 0}
        for article in articles:
            label = article.sentiment.label if article.sentiment.label in distribution else "neutral"
            distribution[label] += 1

        trend = self._trend(timeframe, start, end)
        metrics = DashboardMetrics(
            timeframe=timeframe,
            total_articles=len(articles),
            average_sentiment=_mean(scores),
            sentiment_distribution=distribution,
            top_keywords=_leaderboard(_group_scores(articles, lambda a: a.keywords), "keyword"),
            top_sources=_leaderboard(_group_scores(articles, lambda a: [a.source]), "source"),
            recent_alerts=self.storage.count_alerts(since=end - timedelta(hours=RECENT_ALERT_HOURS),
                                                    unread_only=True),
            sentiment_trend=trend,
            volume_trend=[TrendPoint(date=p.date, value=float(p.count), count=p.count) for p in trend],
            window_start=start.isoformat(),
            window_end=end.isoformat(),
        )
        logger.info(
            f"[ANALYTICS] {timeframe}: {metrics.total_articles} articles, "
            f"mean sentiment {metrics.average_sentiment:.3f}"
        )
        return metrics

    def snapshot_metrics(self, timeframe: str, now: datetime | None = None) -> dict:
        """Dashboard metrics plus entity leaderboards and language/category distributions."""
        start, end = self._window(timeframe, None, None, now)
        articles = self.storage.find_articles(start, end, limit=self.max_rows)
        payload = self.compute_metrics(timeframe, window_start=start, window_end=end).to_dict()

        payload["top_companies"] = _leaderboard(_group_scores(articles, lambda a: a.entities.organization), "name")
        payload["top_people"] = _leaderboard(_group_scores(articles, lambda a: a.entities.person), "name")
        payload["top_technologies"] = _leaderboard(_group_scores(articles, lambda a: a.entities.technology), "name")
        payload["language_distribution"] = [
            {"language": lang, "count": count}
            for lang, count in Counter(a.language or "en" for a in articles).most_common()
        ]
        payload["category_distribution"] = [
            {"category": cat, "count": count}
            for cat, count in Counter(a.category for a in articles if a.category).most_common()
        ]
        return payload

    def cache_snapshot(self, timeframe: str, now: datetime | None = None) -> tuple[AnalyticsSnapshot, bool]:
        """
        Persist the snapshot for the current bucket unless one already exists.
        Returns (snapshot, created).
        """
        now = ensure_utc(now or utcnow())
        date = bucket_start(timeframe, now)
        existing = self.storage.find_snapshot(date, timeframe)
        if existing is not None:
            logger.info(f"[ANALYTICS] Snapshot {timeframe}@{date.isoformat()} already cached")
            return existing, False

        snapshot = AnalyticsSnapshot(date=date, timeframe=timeframe, metrics=self.snapshot_metrics(timeframe, now))
        try:
            self.storage.insert_snapshot(snapshot)
        except DuplicateConflict:
            # A concurrent writer cached the same bucket first.
            return self.storage.find_snapshot(date, timeframe) or snapshot, False
        logger.info(f"[ANALYTICS] Cached {timeframe} snapshot for {date.isoformat()}")
        return snapshot, True

    def cache_all_snapshots(self, now: datetime | None = None) -> dict[str, str]:
        """cache_snapshot for every timeframe; one failure does not stop the rest."""
        outcome: dict[str, str] = {}
        for timeframe in TIMEFRAMES:
            try:
                _, created = self.cache_snapshot(timeframe, now)
                outcome[timeframe] = "created" if created else "exists"
            except Exception as e:
                logger.error(f"[ANALYTICS] Snapshot for {timeframe} failed: {e}")
                outcome[timeframe] = "failed"
        if self.system_log is not None:
            level = "error" if "failed" in outcome.values() else "success"
            self.system_log.append(level, "Analytics snapshots cached", outcome)
        return outcome

    def keyword_metrics(self, keyword: str, days: int = 7, now: datetime | None = None) -> dict:
        end = ensure_utc(now or utcnow())
        start = end - timedelta(days=days)
        articles = self.storage.find_articles(start, end, keyword=keyword, limit=self.max_rows)
        return {
            "keyword": keyword,
            "count": len(articles),
            "sentiment": _mean([a.sentiment.score for a in articles]),
            "sources": sorted({a.source for a in articles}),
            "trend": [asdict(p) for p in self._trend("day", start, end, keyword=keyword)],
        }

    def source_metrics(self, source: str, timeframe: str = "week", now: datetime | None = None) -> dict:
        """
        Volume, mean sentiment and category mix for one source name.

        The lookback is 7 days for "day", 30 for "week" and 90 for "month";
        the trend always has one point per calendar day (capped like every trend).
        """
        if timeframe not in SOURCE_LOOKBACK:
            raise ValueError(f"Unsupported timeframe for source metrics: {timeframe}")
        end = ensure_utc(now or utcnow())
        start = end - SOURCE_LOOKBACK[timeframe]
        articles = self.storage.find_articles(start, end, limit=self.max_rows, source=source)
        categories = Counter(a.category for a in articles if a.category)
        return {
            "source": source,
            "timeframe": timeframe,
            "count": len(articles),
            "sentiment": _mean([a.sentiment.score for a in articles]),
            "categories": [{"category": c, "count": n} for c, n in categories.most_common()],
            "trend": [asdict(p) for p in self._trend("day", start, end, source=source)],
        }
