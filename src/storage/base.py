"""Storage port consumed by the pipeline, analytics engine and alert evaluator."""

from abc import ABC, abstractmethod
from datetime import datetime

from src.models import Alert, AnalyticsSnapshot, Article, KeywordTrack, RSSSource


class StoragePort(ABC):
    """
    Document collections for articles, RSS sources, keyword tracks,
    analytics snapshots and alerts.

    Uniqueness is enforced here, not by callers: a second article with the
    same URL hash, or a second snapshot for the same (date, timeframe),
    raises DuplicateConflict. Time ranges are half-open: start <= t < end.
    Keyword filters match article keyword lists case-insensitively.
    """

    # --- Articles ---
    @abstractmethod
    def article_exists(self, url_hash: str) -> bool:
        ...

    @abstractmethod
    def insert_article(self, article: Article) -> None:
        ...

    @abstractmethod
    def find_articles(self, start: datetime, end: datetime, keyword: str | None = None,
                      limit: int | None = None, source: str | None = None) -> list[Article]:
        """Articles published in [start, end), newest first. `source` matches the source name exactly."""

    @abstractmethod
    def count_articles(self, start: datetime, end: datetime, keyword: str | None = None,
                       source: str | None = None) -> int:
        ...

    # --- RSS sources ---
    @abstractmethod
    def list_rss_sources(self, active_only: bool = True) -> list[RSSSource]:
        ...

    @abstractmethod
    def insert_rss_source(self, source: RSSSource) -> bool:
        """Insert if no source has this URL yet. Returns True when inserted."""

    @abstractmethod
    def update_rss_source_status(self, url: str, *, last_fetched: datetime,
                                 last_successful: datetime | None = None,
                                 error_count: int = 0, last_error: str | None = None) -> None:
        ...

    # --- Keyword tracks ---
    @abstractmethod
    def list_keyword_tracks(self, active_only: bool = True) -> list[KeywordTrack]:
        ...

    @abstractmethod
    def insert_keyword_track(self, track: KeywordTrack) -> bool:
        ...

    # --- Analytics snapshots ---
    @abstractmethod
    def find_snapshot(self, date: datetime, timeframe: str) -> AnalyticsSnapshot | None:
        ...

    @abstractmethod
    def insert_snapshot(self, snapshot: AnalyticsSnapshot) -> None:
        ...

    @abstractmethod
    def snapshot_count(self) -> int:
        ...

    # --- Alerts ---
    @abstractmethod
    def insert_alert(self, alert: Alert) -> None:
        ...

    @abstractmethod
    def list_alerts(self, limit: int = 50, unread_only: bool = False) -> list[Alert]:
        ...

    @abstractmethod
    def count_alerts(self, since: datetime | None = None, unread_only: bool = False) -> int:
        ...

    @abstractmethod
    def mark_alert_read(self, alert_id: str, read: bool = True) -> bool:
        ...
