"""In-process storage used by tests, --memory runs and dry runs."""

import copy
import threading
from datetime import datetime

from src.errors import DuplicateConflict
from src.models import Alert, AnalyticsSnapshot, Article, KeywordTrack, RSSSource, ensure_utc
from src.storage.base import StoragePort


def _mentions(article: Article, keyword: str | None) -> bool:
    if not keyword:
        return True
    needle = keyword.lower()
    return any(k.lower() == needle for k in article.keywords)


class MemoryStorage(StoragePort):
    """Dict-backed StoragePort. All access goes through one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._articles: dict[str, Article] = {}
        self._article_urls: set[str] = set()
        self._sources: dict[str, RSSSource] = {}
        self._tracks: dict[str, KeywordTrack] = {}
        self._snapshots: dict[tuple[datetime, str], AnalyticsSnapshot] = {}
        self._alerts: list[Alert] = []

    # --- Articles ---
    def article_exists(self, url_hash: str) -> bool:
        with self._lock:
            return url_hash in self._articles

    def insert_article(self, article: Article) -> None:
        with self._lock:
            if article.url_hash in self._articles or article.url in self._article_urls:
                raise DuplicateConflict(f"Article already stored: {article.url}", source=article.source)
            self._articles[article.url_hash] = copy.deepcopy(article)
            self._article_urls.add(article.url)

    def _matching(self, start: datetime, end: datetime, keyword: str | None,
                  source: str | None = None) -> list[Article]:
        start, end = ensure_utc(start), ensure_utc(end)
        return [
            a for a in self._articles.values()
            if start <= a.published_at < end and _mentions(a, keyword)
            and (source is None or a.source == source)
        ]

    def find_articles(self, start: datetime, end: datetime, keyword: str | None = None,
                      limit: int | None = None, source: str | None = None) -> list[Article]:
        with self._lock:
            found = sorted(self._matching(start, end, keyword, source), key=lambda a: a.published_at, reverse=True)
            if limit is not None:
                found = found[:limit]
            return [copy.deepcopy(a) for a in found]

    def count_articles(self, start: datetime, end: datetime, keyword: str | None = None,
                       source: str | None = None) -> int:
        with self._lock:
            return len(self._matching(start, end, keyword, source))

    # --- RSS sources ---
    def list_rss_sources(self, active_only: bool = True) -> list[RSSSource]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._sources.values() if s.is_active or not active_only]

    def insert_rss_source(self, source: RSSSource) -> bool:
        with self._lock:
            if source.url in self._sources:
                return False
            self._sources[source.url] = copy.deepcopy(source)
            return True

    def update_rss_source_status(self, url: str, *, last_fetched: datetime,
                                 last_successful: datetime | None = None,
                                 error_count: int = 0, last_error: str | None = None) -> None:
        with self._lock:
            source = self._sources.get(url)
            if source is None:
                return
            source.last_fetched = last_fetched
            if last_successful is not None:
                source.last_successful = last_successful
            source.error_count = error_count
            source.last_error = last_error

    # --- Keyword tracks ---
    def list_keyword_tracks(self, active_only: bool = True) -> list[KeywordTrack]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._tracks.values() if t.is_active or not active_only]

    def insert_keyword_track(self, track: KeywordTrack) -> bool:
        key = track.keyword.lower()
        with self._lock:
            if key in self._tracks:
                return False
            self._tracks[key] = copy.deepcopy(track)
            return True

    # --- Analytics snapshots ---
    def find_snapshot(self, date: datetime, timeframe: str) -> AnalyticsSnapshot | None:
        with self._lock:
            snapshot = self._snapshots.get((ensure_utc(date), timeframe))
            return copy.deepcopy(snapshot) if snapshot else None

    def insert_snapshot(self, snapshot: AnalyticsSnapshot) -> None:
        key = (ensure_utc(snapshot.date), snapshot.timeframe)
        with self._lock:
            if key in self._snapshots:
                raise DuplicateConflict(f"Snapshot exists for {snapshot.timeframe} {snapshot.date.isoformat()}")
            self._snapshots[key] = copy.deepcopy(snapshot)

    def snapshot_count(self) -> int:
        with self._lock:
            return len(self._snapshots)

    # --- Alerts ---
    def insert_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(copy.deepcopy(alert))

    def list_alerts(self, limit: int = 50, unread_only: bool = False) -> list[Alert]:
        with self._lock:
            alerts = [a for a in self._alerts if not (unread_only and a.is_read)]
            alerts.sort(key=lambda a: a.created_at, reverse=True)
            return [copy.deepcopy(a) for a in alerts[:limit]]

    def count_alerts(self, since: datetime | None = None, unread_only: bool = False) -> int:
        with self._lock:
            return sum(
                1 for a in self._alerts
                if (since is None or a.created_at >= since) and not (unread_only and a.is_read)
            )

    def mark_alert_read(self, alert_id: str, read: bool = True) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.is_read = read
                    return True
            return False
