import threading
from datetime import datetime, timedelta, timezone

import pytest

from src.analyzers.llm_analyzer import CompletionPort, EnrichmentClient, MockCompletionPort
from src.errors import DuplicateConflict, FetchError
from src.models import RawArticle, RSSSource
from src.pipeline.ingestion import IngestionOrchestrator
from src.rate_limiter import RateLimiter
from src.scrapers.base import SourceAdapter
from src.storage.memory import MemoryStorage
from src.system_log import SystemLog

PUBLISHED = datetime(2025, 2, 3, 9, 0, tzinfo=timezone.utc)
LONG_BODY = ("Record growth at the company lifted shares as investors cheered strong results. " * 4).strip()
FEED_URL = "https://feeds.example.com/tech.xml"


def _raw(n: int, content: str = LONG_BODY, language: str = "en", source: str = "Example Feed") -> RawArticle:
    return RawArticle(
        title=f"Story {n}",
        url=f"https://news.example.com/story-{n}",
        source=source,
        published_at=PUBLISHED + timedelta(minutes=n),
        description=f"Summary of story {n}",
        content=content,
        language=language,
    )


class FakeFeedAdapter:
    """Stands in for FeedAdapter: returns canned articles per source URL or raises."""

    name = "rss"

    def __init__(self, by_url: dict):
        self.by_url = by_url
        self.calls: list[str] = []

    def fetch(self, source):
        self.calls.append(source.url)
        outcome = self.by_url[source.url]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


class FakeSearchAdapter(SourceAdapter):
    def __init__(self, adapter_name: str, articles=None, configured: bool = True):
        self._name = adapter_name
        self.articles = articles or []
        self.configured = configured
        self.fetch_count = 0

    @property
    def name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return self.configured

    def fetch(self, source_config=None):
        self.fetch_count += 1
        return list(self.articles)


class FakeHtmlAdapter:
    def __init__(self, text: str):
        self.text = text
        self.urls: list[str] = []

    def fetch_text(self, url: str) -> str:
        self.urls.append(url)
        return self.text


class BrokenHtmlAdapter:
    def fetch_text(self, url: str) -> str:
        raise RuntimeError("decoder blew up")


class RecordingPort(MockCompletionPort):
    def __init__(self):
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return super().complete(prompt)


class BrokenPort(CompletionPort):
    def complete(self, prompt: str) -> str:
        raise TimeoutError("model unavailable")


def _storage_with_feed() -> MemoryStorage:
    storage = MemoryStorage()
    storage.insert_rss_source(RSSSource(name="Example Feed", url=FEED_URL, category="Technology"))
    return storage


def _orchestrator(storage, feed=None, port=None, **kwargs) -> IngestionOrchestrator:
    enrichment = EnrichmentClient(port or MockCompletionPort(), limiter=RateLimiter(0.0))
    kwargs.setdefault("web_profiles", [])
    return IngestionOrchestrator(storage=storage, enrichment=enrichment, feed_adapter=feed, **kwargs)


def _stored(storage) -> list:
    return storage.find_articles(PUBLISHED - timedelta(days=1), PUBLISHED + timedelta(days=1))


def test_cycle_is_idempotent():
    storage = _storage_with_feed()
    feed = FakeFeedAdapter({FEED_URL: [_raw(1), _raw(2), _raw(3)]})
    orchestrator = _orchestrator(storage, feed)

    first = orchestrator.run_cycle()
    second = orchestrator.run_cycle()

    assert first.total_fetched == 3
    assert first.new_count == 3
    assert first.total_persisted == 3
    assert second.total_persisted == 0
    assert second.duplicate_count == 3
    assert len(_stored(storage)) == 3


def test_enriched_article_fields():
    storage = _storage_with_feed()
    orchestrator = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1)]}))
    orchestrator.run_cycle()

    article = _stored(storage)[0]
    assert article.sentiment.label == "positive"
    assert article.metrics.readability == 60.0
    assert article.metrics.word_count == len(LONG_BODY.split())
    assert article.metrics.social_shares == 0
    assert "growth" in article.keywords
    assert article.url_hash == orchestrator.dedup.identity(_raw(1))


def test_cap_defers_remaining_articles_to_next_cycle():
    storage = _storage_with_feed()
    feed = FakeFeedAdapter({FEED_URL: [_raw(1), _raw(2), _raw(3)]})
    orchestrator = _orchestrator(storage, feed, max_articles=2)

    first = orchestrator.run_cycle()
    assert first.total_persisted == 2
    assert first.deferred_count == 1

    second = orchestrator.run_cycle()
    assert second.total_persisted == 1
    assert second.duplicate_count == 2
    assert len(_stored(storage)) == 3


def test_same_url_from_two_adapters_counts_once():
    storage = _storage_with_feed()
    feed = FakeFeedAdapter({FEED_URL: [_raw(1)]})
    search = FakeSearchAdapter("newsapi", [_raw(1, source="Wire")])
    report = _orchestrator(storage, feed, search_adapters=[search]).run_cycle()

    assert report.total_fetched == 2
    assert report.new_count == 1
    assert report.duplicate_count == 1
    assert report.total_persisted == 1


def test_failed_feed_records_source_status():
    storage = _storage_with_feed()
    feed = FakeFeedAdapter({FEED_URL: FetchError("HTTP 503", source="Example Feed")})
    search = FakeSearchAdapter("guardian", [_raw(7)])
    report = _orchestrator(storage, feed, search_adapters=[search]).run_cycle()

    rss_result = report.adapter_results[0]
    assert rss_result.status == "failed"
    assert rss_result.error_type == "FETCH"
    assert report.total_persisted == 1
    assert any("HTTP 503" in e for e in report.errors)

    source = storage.list_rss_sources()[0]
    assert source.error_count == 1
    assert source.last_error == "HTTP 503"
    assert source.last_fetched is not None
    assert source.last_successful is None


def test_successful_feed_resets_error_count():
    storage = MemoryStorage()
    storage.insert_rss_source(RSSSource(name="Example Feed", url=FEED_URL, category="Technology",
                                        error_count=4, last_error="timeout"))
    _orchestrator(storage, FakeFeedAdapter({FEED_URL: []})).run_cycle()

    source = storage.list_rss_sources()[0]
    assert source.error_count == 0
    assert source.last_error is None
    assert source.last_successful is not None


def test_inactive_sources_are_not_fetched():
    storage = MemoryStorage()
    storage.insert_rss_source(RSSSource(name="Off", url=FEED_URL, category="x", is_active=False))
    feed = FakeFeedAdapter({})
    _orchestrator(storage, feed).run_cycle()
    assert feed.calls == []


def test_unconfigured_search_adapter_is_skipped():
    search = FakeSearchAdapter("newsapi", [_raw(1)], configured=False)
    report = _orchestrator(MemoryStorage(), search_adapters=[search]).run_cycle()

    assert search.fetch_count == 0
    assert report.adapter_results[0].status == "skipped"
    assert report.errors == []


def test_storage_failure_in_task_is_reported(monkeypatch):
    storage = _storage_with_feed()

    def broken_update(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(storage, "update_rss_source_status", broken_update)
    report = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1)]})).run_cycle()

    assert report.adapter_results[0].status == "failed"
    assert report.adapter_results[0].error_type == "RuntimeError"
    assert report.total_persisted == 0


def test_rss_source_listing_failure_is_not_fatal(monkeypatch):
    storage = _storage_with_feed()

    def broken_listing(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(storage, "list_rss_sources", broken_listing)
    search = FakeSearchAdapter("guardian", [_raw(1)])
    report = _orchestrator(storage, FakeFeedAdapter({}), search_adapters=[search]).run_cycle()

    assert report.adapter_results[0].adapter == "rss"
    assert report.adapter_results[0].status == "failed"
    assert report.adapter_results[0].error_type == "RuntimeError"
    assert report.total_persisted == 1
    assert any("database is locked" in e for e in report.errors)


def test_article_stored_by_another_writer_during_enrichment(monkeypatch):
    storage = _storage_with_feed()
    orchestrator = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1)]}))
    enrich = orchestrator.enrich

    def enrich_then_race(raw, url_hash):
        article = enrich(raw, url_hash)
        storage.insert_article(article)
        return article

    monkeypatch.setattr(orchestrator, "enrich", enrich_then_race)
    report = orchestrator.run_cycle()

    assert report.total_persisted == 0
    assert report.duplicate_count == 1
    assert report.errors == []
    assert len(_stored(storage)) == 1


def test_write_time_conflict_counts_as_duplicate(monkeypatch):
    storage = _storage_with_feed()

    def conflicting_insert(article):
        raise DuplicateConflict(f"Article already stored: {article.url}")

    monkeypatch.setattr(storage, "insert_article", conflicting_insert)
    report = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1)]})).run_cycle()

    assert report.total_persisted == 0
    assert report.duplicate_count == 1
    assert report.errors == []


def test_cancellation_stops_before_next_article():
    storage = _storage_with_feed()
    cancel = threading.Event()
    cancel.set()
    report = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1), _raw(2)]})).run_cycle(cancel_event=cancel)

    assert report.cancelled is True
    assert report.total_persisted == 0
    assert _stored(storage) == []


def test_enrichment_outage_still_persists_with_fallbacks():
    storage = _storage_with_feed()
    report = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1)]}), port=BrokenPort()).run_cycle()

    assert report.total_persisted == 1
    article = _stored(storage)[0]
    assert article.sentiment.score == 0.0
    assert article.sentiment.label == "neutral"
    assert article.sentiment.confidence == 0.1
    assert article.metrics.readability == 50.0
    assert article.keywords == []


def test_short_content_falls_back_to_title_and_description():
    storage = _storage_with_feed()
    port = RecordingPort()
    _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1, content="Too short")]}), port=port).run_cycle()

    sentiment_prompt = next(p for p in port.prompts if p.startswith("Analyze the sentiment"))
    assert "Story 1. Summary of story 1" in sentiment_prompt


def test_non_english_text_is_translated_first():
    storage = _storage_with_feed()
    port = RecordingPort()
    _orchestrator(storage, FakeFeedAdapter({FEED_URL: [_raw(1, language="de")]}), port=port).run_cycle()

    assert port.prompts[0].startswith("Translate the following text to en.")
    assert _stored(storage)[0].language == "de"


def test_truncated_feed_body_is_hydrated():
    storage = _storage_with_feed()
    html = FakeHtmlAdapter(LONG_BODY * 2)
    raw = _raw(1, content="Teaser text... [+1200 chars]")
    _orchestrator(storage, FakeFeedAdapter({FEED_URL: [raw]}), html_adapter=html).run_cycle()

    assert html.urls == [raw.url]
    assert _stored(storage)[0].content == LONG_BODY * 2


def test_extraction_crash_keeps_feed_text():
    storage = _storage_with_feed()
    raw = _raw(1, content="short...")
    report = _orchestrator(storage, FakeFeedAdapter({FEED_URL: [raw]}), html_adapter=BrokenHtmlAdapter()).run_cycle()

    assert report.total_persisted == 1
    assert report.errors == []
    assert _stored(storage)[0].content == "short..."


def test_guardian_items_are_not_hydrated():
    html = FakeHtmlAdapter(LONG_BODY * 2)
    search = FakeSearchAdapter("guardian", [_raw(1, content="short")])
    _orchestrator(MemoryStorage(), search_adapters=[search], html_adapter=html).run_cycle()
    assert html.urls == []


@pytest.mark.parametrize("status", ["success", "warning"])
def test_cycle_writes_system_log(status):
    log = SystemLog()
    storage = _storage_with_feed()
    outcome = [_raw(1)] if status == "success" else FetchError("down")
    _orchestrator(storage, FakeFeedAdapter({FEED_URL: outcome}), system_log=log).run_cycle()

    entries = log.recent()
    assert entries[-1].message == "Starting news ingestion cycle"
    assert entries[0].level == status
