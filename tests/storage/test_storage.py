from datetime import datetime, timedelta, timezone

import pytest

from src.errors import DuplicateConflict
from src.models import (
    Alert,
    AnalyticsSnapshot,
    Article,
    ArticleMetrics,
    Entities,
    KeywordTrack,
    RSSSource,
    Sentiment,
)
from src.pipeline.dedup import url_hash
from src.storage.memory import MemoryStorage
from src.storage.seed import seed_defaults
from src.storage.sqlite_store import SQLiteStorage

T0 = datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc)


def _article(n: int, *, minutes: int = 0, keywords=("AI",), url: str | None = None,
             source: str = "Example") -> Article:
    url = url or f"https://news.example.com/{n}"
    return Article(
        title=f"Story {n}",
        url=url,
        url_hash=url_hash(url),
        source=source,
        published_at=T0 + timedelta(minutes=minutes),
        sentiment=Sentiment(score=0.3, confidence=0.7, label="positive",
                            emotions={"joy": 0.4, "anger": 0.0, "fear": 0.0,
                                      "sadness": 0.0, "surprise": 0.1, "disgust": 0.0}),
        entities=Entities(organization=["OpenAI"], technology=["GPT"]),
        metrics=ArticleMetrics(readability=55.0, word_count=420),
        keywords=list(keywords),
        description="Summary",
        content="Body",
        category="Technology",
    )


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield MemoryStorage()
    else:
        store = SQLiteStorage(tmp_path / "db" / "news.db")
        yield store
        store.close()


class TestArticles:
    def test_insert_and_round_trip(self, storage):
        article = _article(1)
        storage.insert_article(article)

        assert storage.article_exists(article.url_hash)
        assert not storage.article_exists(url_hash("https://news.example.com/other"))
        stored = storage.find_articles(T0, T0 + timedelta(hours=1))[0]
        assert stored.url == article.url
        assert stored.published_at == T0
        assert stored.sentiment.emotions["joy"] == 0.4
        assert stored.entities.organization == ["OpenAI"]
        assert stored.metrics.word_count == 420
        assert stored.keywords == ["AI"]

    def test_duplicate_hash_conflicts(self, storage):
        storage.insert_article(_article(1))
        with pytest.raises(DuplicateConflict):
            storage.insert_article(_article(1))
        assert storage.count_articles(T0 - timedelta(days=1), T0 + timedelta(days=1)) == 1

    def test_range_is_half_open_and_newest_first(self, storage):
        for n, minutes in ((1, 0), (2, 30), (3, 60)):
            storage.insert_article(_article(n, minutes=minutes))

        found = storage.find_articles(T0, T0 + timedelta(minutes=60))
        assert [a.title for a in found] == ["Story 2", "Story 1"]
        assert [a.title for a in storage.find_articles(T0, T0 + timedelta(hours=2), limit=1)] == ["Story 3"]

    def test_keyword_filter_is_case_insensitive_exact(self, storage):
        storage.insert_article(_article(1, keywords=["Tesla", "EV"]))
        storage.insert_article(_article(2, minutes=1, keywords=["tesla motors"]))
        end = T0 + timedelta(hours=1)

        assert [a.title for a in storage.find_articles(T0, end, keyword="TESLA")] == ["Story 1"]
        assert storage.count_articles(T0, end, keyword="ev") == 1
        assert storage.count_articles(T0, end) == 2

    def test_source_filter_combines_with_keyword(self, storage):
        storage.insert_article(_article(1, keywords=["Tesla"], source="Wire"))
        storage.insert_article(_article(2, minutes=1, keywords=["Tesla"], source="Daily"))
        storage.insert_article(_article(3, minutes=2, keywords=["Apple"], source="Wire"))
        end = T0 + timedelta(hours=1)

        assert [a.title for a in storage.find_articles(T0, end, source="Wire")] == ["Story 3", "Story 1"]
        assert storage.count_articles(T0, end, keyword="tesla", source="Wire") == 1
        assert storage.count_articles(T0, end, source="wire") == 0

    def test_window_with_naive_datetimes(self, storage):
        storage.insert_article(_article(1))
        assert storage.count_articles(datetime(2025, 4, 1), datetime(2025, 4, 2)) == 1


class TestSourcesAndTracks:
    def test_insert_rss_source_once(self, storage):
        source = RSSSource(name="Feed", url="https://feeds.example.com/a.xml", category="Tech")
        assert storage.insert_rss_source(source) is True
        assert storage.insert_rss_source(source) is False
        assert len(storage.list_rss_sources()) == 1

    def test_active_filter(self, storage):
        storage.insert_rss_source(RSSSource(name="On", url="https://a.example.com/rss", category="x"))
        storage.insert_rss_source(RSSSource(name="Off", url="https://b.example.com/rss", category="x",
                                            is_active=False))
        assert [s.name for s in storage.list_rss_sources()] == ["On"]
        assert len(storage.list_rss_sources(active_only=False)) == 2

    def test_update_status(self, storage):
        url = "https://a.example.com/rss"
        storage.insert_rss_source(RSSSource(name="On", url=url, category="x"))
        storage.update_rss_source_status(url, last_fetched=T0, error_count=2, last_error="HTTP 500")
        storage.update_rss_source_status(url, last_fetched=T0 + timedelta(minutes=15),
                                         last_successful=T0 + timedelta(minutes=15))

        source = storage.list_rss_sources()[0]
        assert source.last_fetched == T0 + timedelta(minutes=15)
        assert source.last_successful == T0 + timedelta(minutes=15)
        assert source.error_count == 0
        assert source.last_error is None

    def test_keyword_track_unique_ignoring_case(self, storage):
        assert storage.insert_keyword_track(KeywordTrack(keyword="Tesla")) is True
        assert storage.insert_keyword_track(KeywordTrack(keyword="tesla")) is False
        tracks = storage.list_keyword_tracks()
        assert [t.keyword for t in tracks] == ["Tesla"]
        assert tracks[0].threshold.volume_spike_percent == 50.0

    def test_seed_defaults_is_idempotent(self, storage):
        first = seed_defaults(storage)
        second = seed_defaults(storage)
        assert first["rss_sources"] == 7
        assert first["keyword_tracks"] == 13
        assert second == {"rss_sources": 0, "keyword_tracks": 0}
        techcrunch = storage.list_rss_sources()[0]
        assert techcrunch.settings.max_articles == 50


class TestSnapshots:
    def test_unique_per_date_and_timeframe(self, storage):
        day = datetime(2025, 4, 1, tzinfo=timezone.utc)
        storage.insert_snapshot(AnalyticsSnapshot(date=day, timeframe="day", metrics={"total_articles": 3}))
        storage.insert_snapshot(AnalyticsSnapshot(date=day, timeframe="week", metrics={}))
        with pytest.raises(DuplicateConflict):
            storage.insert_snapshot(AnalyticsSnapshot(date=day, timeframe="day", metrics={"total_articles": 9}))

        assert storage.snapshot_count() == 2
        assert storage.find_snapshot(day, "day").metrics == {"total_articles": 3}
        assert storage.find_snapshot(day, "month") is None


class TestAlerts:
    def test_list_count_and_mark_read(self, storage):
        old = Alert(kind="volume_spike", message="old", severity="medium", created_at=T0 - timedelta(days=2))
        new = Alert(kind="sentiment_change", message="new", severity="high", keyword="tesla", created_at=T0)
        storage.insert_alert(old)
        storage.insert_alert(new)

        assert [a.message for a in storage.list_alerts()] == ["new", "old"]
        assert storage.count_alerts(since=T0 - timedelta(hours=1)) == 1

        assert storage.mark_alert_read(new.id) is True
        assert storage.mark_alert_read("missing") is False
        assert [a.message for a in storage.list_alerts(unread_only=True)] == ["old"]
        assert storage.count_alerts(unread_only=True) == 1
        assert storage.list_alerts()[0].is_read is True


def test_sqlite_persists_across_connections(tmp_path):
    path = tmp_path / "news.db"
    first = SQLiteStorage(path)
    first.insert_article(_article(1))
    first.close()

    second = SQLiteStorage(path)
    try:
        assert second.article_exists(url_hash("https://news.example.com/1"))
        with pytest.raises(DuplicateConflict):
            second.insert_article(_article(99, url="https://news.example.com/1"))
    finally:
        second.close()
