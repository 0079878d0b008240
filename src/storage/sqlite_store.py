"""SQLite-backed storage: one table per collection, JSON documents plus indexed key columns."""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from src.errors import DuplicateConflict
from src.models import Alert, AnalyticsSnapshot, Article, KeywordTrack, RSSSource, ensure_utc
from src.storage.base import StoragePort

logger = logging.getLogger(__name__)


def _ts(value: datetime) -> str:
    """Fixed-width UTC timestamp so that text comparison equals time comparison."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f")


class SQLiteStorage(StoragePort):
    """StoragePort on a single sqlite3 connection shared across threads behind a lock."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS articles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url_hash TEXT UNIQUE NOT NULL,
        url TEXT UNIQUE NOT NULL,
        source TEXT NOT NULL,
        published_at TEXT NOT NULL,
        document TEXT NOT NULL
    );

    -- Keyword membership, lowercased, for keyword range queries
    CREATE TABLE IF NOT EXISTS article_keywords (
        article_id INTEGER NOT NULL,
        keyword TEXT NOT NULL,
        PRIMARY KEY (article_id, keyword),
        FOREIGN KEY (article_id) REFERENCES articles(id)
    );

    CREATE TABLE IF NOT EXISTS rss_sources (
        url TEXT UNIQUE NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        document TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS keyword_tracks (
        keyword TEXT UNIQUE NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        document TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS analytics (
        date TEXT NOT NULL,
        timeframe TEXT NOT NULL CHECK (timeframe IN ('hour', 'day', 'week', 'month')),
        document TEXT NOT NULL,
        UNIQUE (date, timeframe)
    );

    CREATE TABLE IF NOT EXISTS alerts (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0,
        document TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at);
    CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source, published_at);
    CREATE INDEX IF NOT EXISTS idx_article_keywords_keyword ON article_keywords(keyword);
    CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at);
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        """Open (and create if needed) the database at db_path."""
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # --- Articles ---
    def article_exists(self, url_hash: str) -> bool:
        with self._lock:
            row = self.conn.execute("SELECT 1 FROM articles WHERE url_hash = ?", (url_hash,)).fetchone()
        return row is not None

    def insert_article(self, article: Article) -> None:
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "INSERT INTO articles (url_hash, url, source, published_at, document) VALUES (?, ?, ?, ?, ?)",
                    (article.url_hash, article.url, article.source, _ts(article.published_at),
                     json.dumps(article.to_dict())),
                )
                keywords = {k.lower() for k in article.keywords if k}
                self.conn.executemany(
                    "INSERT OR IGNORE INTO article_keywords (article_id, keyword) VALUES (?, ?)",
                    [(cursor.lastrowid, k) for k in keywords],
                )
                self.conn.commit()
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                raise DuplicateConflict(f"Article already stored: {article.url} ({e})", source=article.source) from e

    def _article_query(self, select: str, start: datetime, end: datetime,
                       keyword: str | None, source: str | None = None) -> tuple[str, list]:
        sql = f"SELECT {select} FROM articles a"
        params: list = []
        if keyword:
            sql += " JOIN article_keywords k ON k.article_id = a.id AND k.keyword = ?"
            params.append(keyword.lower())
        sql += " WHERE a.published_at >= ? AND a.published_at < ?"
        params += [_ts(start), _ts(end)]
        if source is not None:
            sql += " AND a.source = ?"
            params.append(source)
        return sql, params

    def find_articles(self, start: datetime, end: datetime, keyword: str | None = None,
                      limit: int | None = None, source: str | None = None) -> list[Article]:
        sql, params = self._article_query("a.document", start, end, keyword, source)
        sql += " ORDER BY a.published_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [Article.from_dict(json.loads(row["document"])) for row in rows]

    def count_articles(self, start: datetime, end: datetime, keyword: str | None = None,
                       source: str | None = None) -> int:
        sql, params = self._article_query("COUNT(*)", start, end, keyword, source)
        with self._lock:
            return self.conn.execute(sql, params).fetchone()[0]

    # --- RSS sources ---
    def list_rss_sources(self, active_only: bool = True) -> list[RSSSource]:
        sql = "SELECT document FROM rss_sources"
        if active_only:
            sql += " WHERE is_active = 1"
        with self._lock:
            rows = self.conn.execute(sql + " ORDER BY rowid").fetchall()
        return [RSSSource.from_dict(json.loads(row["document"])) for row in rows]

    def insert_rss_source(self, source: RSSSource) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "INSERT OR IGNORE INTO rss_sources (url, is_active, document) VALUES (?, ?, ?)",
                (source.url, int(source.is_active), json.dumps(source.to_dict())),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    def update_rss_source_status(self, url: str, *, last_fetched: datetime,
                                 last_successful: datetime | None = None,
                                 error_count: int = 0, last_error: str | None = None) -> None:
        with self._lock:
            row = self.conn.execute("SELECT document FROM rss_sources WHERE url = ?", (url,)).fetchone()
            if row is None:
                logger.warning(f"[STORAGE] Status update for unknown RSS source {url}")
                return
            source = RSSSource.from_dict(json.loads(row["document"]))
            source.last_fetched = last_fetched
            if last_successful is not None:
                source.last_successful = last_successful
            source.error_count = error_count
            source.last_error = last_error
            self.conn.execute(
                "UPDATE rss_sources SET document = ? WHERE url = ?",
                (json.dumps(source.to_dict()), url),
            )
            self.conn.commit()

    # --- Keyword tracks ---
    def list_keyword_tracks(self, active_only: bool = True) -> list[KeywordTrack]:
        sql = "SELECT document FROM keyword_tracks"
        if active_only:
            sql += " WHERE is_active = 1"
        with self._lock:
            rows = self.conn.execute(sql + " ORDER BY rowid").fetchall()
        return [KeywordTrack.from_dict(json.loads(row["document"])) for row in rows]

    def insert_keyword_track(self, track: KeywordTrack) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "INSERT OR IGNORE INTO keyword_tracks (keyword, is_active, document) VALUES (?, ?, ?)",
                (track.keyword.lower(), int(track.is_active), json.dumps(track.to_dict())),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    # --- Analytics snapshots ---
    def find_snapshot(self, date: datetime, timeframe: str) -> AnalyticsSnapshot | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT document FROM analytics WHERE date = ? AND timeframe = ?",
                (_ts(date), timeframe),
            ).fetchone()
        return AnalyticsSnapshot.from_dict(json.loads(row["document"])) if row else None

    def insert_snapshot(self, snapshot: AnalyticsSnapshot) -> None:
        with self._lock:
            try:
                self.conn.execute(
                    "INSERT INTO analytics (date, timeframe, document) VALUES (?, ?, ?)",
                    (_ts(snapshot.date), snapshot.timeframe, json.dumps(snapshot.to_dict())),
                )
                self.conn.commit()
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                raise DuplicateConflict(
                    f"Snapshot exists for {snapshot.timeframe} {snapshot.date.isoformat()}"
                ) from e

    def snapshot_count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM analytics").fetchone()[0]

    # --- Alerts ---
    def insert_alert(self, alert: Alert) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO alerts (id, created_at, is_read, document) VALUES (?, ?, ?, ?)",
                (alert.id, _ts(alert.created_at), int(alert.is_read), json.dumps(alert.to_dict())),
            )
            self.conn.commit()

    def list_alerts(self, limit: int = 50, unread_only: bool = False) -> list[Alert]:
        sql = "SELECT document, is_read FROM alerts"
        if unread_only:
            sql += " WHERE is_read = 0"
        sql += " ORDER BY created_at DESC LIMIT ?"
        with self._lock:
            rows = self.conn.execute(sql, (limit,)).fetchall()
        alerts = []
        for row in rows:
            alert = Alert.from_dict(json.loads(row["document"]))
            alert.is_read = bool(row["is_read"])
            alerts.append(alert)
        return alerts

    def count_alerts(self, since: datetime | None = None, unread_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM alerts WHERE 1 = 1"
        params: list = []
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(_ts(since))
        if unread_only:
            sql += " AND is_read = 0"
        with self._lock:
            return self.conn.execute(sql, params).fetchone()[0]

    def mark_alert_read(self, alert_id: str, read: bool = True) -> bool:
        with self._lock:
            cursor = self.conn.execute("UPDATE alerts SET is_read = ? WHERE id = ?", (int(read), alert_id))
            self.conn.commit()
        return cursor.rowcount == 1
