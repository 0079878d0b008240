"""
Ingestion cycle: fan out across source adapters, dedupe, enrich and persist.

Adapters run concurrently (one task per RSS source, per search API and one
sequential task for the HTML profiles). Enrichment runs one article at a time
through the EnrichmentClient, whose rate limiter paces every model call.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field

from config import INGEST_MAX_WORKERS, MAX_ARTICLES_TO_PROCESS, SEARCH_QUERY, WEB_SCRAPE_PROFILES
from src.analyzers.llm_analyzer import EnrichmentClient
from src.errors import DuplicateConflict, PipelineError
from src.models import Article, ArticleMetrics, RawArticle, RSSSource, utcnow
from src.pipeline.dedup import DedupResolver, Resolution
from src.scrapers.base import SearchConfig, SourceAdapter
from src.scrapers.rss_scraper import FeedAdapter
from src.scrapers.web_scraper import HtmlPageAdapter, needs_full_content
from src.storage.base import StoragePort
from src.system_log import SystemLog

logger = logging.getLogger(__name__)

MIN_ANALYSIS_CHARS = 50
# Adapters whose items may carry truncated bodies worth a full-page extraction
HYDRATED_ADAPTERS = ("rss", "newsapi")


@dataclass
class AdapterResult:
    """Outcome of one source fetch within a cycle."""
    adapter: str                # "rss" | "newsapi" | "guardian" | "web"
    source: str                 # source / profile name
    status: str = "ok"          # ok | failed | skipped
    fetched: int = 0
    error_type: str = ""
    error: str = ""


@dataclass
class IngestionReport:
    run_id: str
    started_at: str
    finished_at: str = ""
    duration_seconds: float = 0.0
    adapter_results: list[AdapterResult] = field(default_factory=list)
    total_fetched: int = 0
    new_count: int = 0
    duplicate_count: int = 0
    deferred_count: int = 0     # new articles beyond the per-cycle cap
    total_persisted: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class IngestionOrchestrator:
    """Runs ingestion cycles against injected adapters, enrichment client and storage."""

    def __init__(self, storage: StoragePort, enrichment: EnrichmentClient,
                 feed_adapter: FeedAdapter | None = None,
                 search_adapters: list[SourceAdapter] | None = None,
                 html_adapter: HtmlPageAdapter | None = None,
                 web_profiles: list[str] | None = None,
                 search_config: SearchConfig | None = None,
                 max_articles: int = MAX_ARTICLES_TO_PROCESS,
                 max_workers: int = INGEST_MAX_WORKERS,
                 system_log: SystemLog | None = None):
        self.storage = storage
        self.enrichment = enrichment
        self.feed_adapter = feed_adapter
        self.search_adapters = search_adapters or []
        self.html_adapter = html_adapter
        self.web_profiles = WEB_SCRAPE_PROFILES if web_profiles is None else web_profiles
        self.search_config = search_config or SearchConfig(query=SEARCH_QUERY)
        self.max_articles = max_articles
        self.max_workers = max_workers
        self.system_log = system_log
        self.dedup = DedupResolver(storage)

    # --- Fetch stage ---
    def _fetch_rss(self, source: RSSSource) -> tuple[list[AdapterResult], list[tuple[str, RawArticle]]]:
        result = AdapterResult(adapter="rss", source=source.name)
        now = utcnow()
        try:
            articles = self.feed_adapter.fetch(source)
        except Exception as e:
            result.status = "failed"
            result.error_type = e.category if isinstance(e, PipelineError) else type(e).__name__
            result.error = str(e)
            logger.warning(f"[INGEST] RSS source failed: {source.name}: {e}")
            self.storage.update_rss_source_status(
                source.url, last_fetched=now,
                error_count=source.error_count + 1, last_error=str(e),
            )
            return [result], []

        self.storage.update_rss_source_status(
            source.url, last_fetched=now, last_successful=now, error_count=0, last_error=None,
        )
        result.fetched = len(articles)
        return [result], [("rss", a) for a in articles]

    def _fetch_search(self, adapter: SourceAdapter) -> tuple[list[AdapterResult], list[tuple[str, RawArticle]]]:
        result = AdapterResult(adapter=adapter.name, source=adapter.name)
        if not adapter.is_configured():
            result.status = "skipped"
            result.error_type = "CONFIG"
            result.error = "missing API key"
            logger.warning(f"[INGEST] {adapter.name} not configured, skipped this cycle")
            return [result], []
        try:
            articles = adapter.fetch(self.search_config)
        except Exception as e:
            result.status = "failed"
            result.error_type = e.category if isinstance(e, PipelineError) else type(e).__name__
            result.error = str(e)
            logger.warning(f"[INGEST] {adapter.name} failed: {e}")
            return [result], []
        result.fetched = len(articles)
        return [result], [(adapter.name, a) for a in articles]

    def _fetch_web(self) -> tuple[list[AdapterResult], list[tuple[str, RawArticle]]]:
        results: list[AdapterResult] = []
        collected: list[tuple[str, RawArticle]] = []
        for i, profile_name in enumerate(self.web_profiles):
            if i > 0:
                self.html_adapter.pause_between_sources()
            result = AdapterResult(adapter="web", source=profile_name)
            try:
                articles = self.html_adapter.fetch(profile_name)
            except Exception as e:
                result.status = "failed"
                result.error_type = e.category if isinstance(e, PipelineError) else type(e).__name__
                result.error = str(e)
                logger.warning(f"[INGEST] Web source failed: {profile_name}: {e}")
            else:
                result.fetched = len(articles)
                collected.extend(("web", a) for a in articles)
            results.append(result)
        return results, collected

    def fetch_all(self) -> tuple[list[AdapterResult], list[tuple[str, RawArticle]]]:
        """Run every adapter task concurrently; results keep submission order."""
        tasks = []
        results: list[AdapterResult] = []
        collected: list[tuple[str, RawArticle]] = []
        if self.feed_adapter is not None:
            try:
                sources = self.storage.list_rss_sources(active_only=True)
            except Exception as e:
                logger.error(f"[INGEST] Could not load RSS sources, skipping feeds this cycle: {e}")
                results.append(AdapterResult(adapter="rss", source="rss_sources", status="failed",
                                             error_type=type(e).__name__, error=str(e)))
                sources = []
            for source in sources:
                tasks.append(("rss", source.name, self._fetch_rss, (source,)))
        for adapter in self.search_adapters:
            tasks.append((adapter.name, adapter.name, self._fetch_search, (adapter,)))
        if self.html_adapter is not None and self.web_profiles:
            tasks.append(("web", ", ".join(self.web_profiles), self._fetch_web, ()))

        if not tasks:
            return results, collected

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [(adapter, source, executor.submit(fn, *args)) for adapter, source, fn, args in tasks]
            for adapter, source, future in futures:
                try:
                    task_results, task_articles = future.result()
                except Exception as e:
                    # e.g. storage failure while recording source status
                    logger.error(f"[INGEST] Task for {adapter}:{source} crashed: {e}")
                    results.append(AdapterResult(adapter=adapter, source=source, status="failed",
                                                 error_type=type(e).__name__, error=str(e)))
                    continue
                results.extend(task_results)
                collected.extend(task_articles)
        return results, collected

    # --- Enrichment stage ---
    def _hydrate(self, adapter_name: str, raw: RawArticle) -> None:
        if self.html_adapter is None or adapter_name not in HYDRATED_ADAPTERS:
            return
        if not needs_full_content(raw.content):
            return
        try:
            text = self.html_adapter.fetch_text(raw.url)
        except Exception as e:
            logger.warning(f"[INGEST] Full-content extraction failed for {raw.url}, keeping feed text: {e}")
            return
        if len(text) > len(raw.content or ""):
            raw.content = text

    def enrich(self, raw: RawArticle, url_hash: str) -> Article:
        """Build a fully populated Article; every field falls back rather than failing."""
        analysis_text = raw.content
        if not analysis_text or len(analysis_text) < MIN_ANALYSIS_CHARS:
            analysis_text = f"{raw.title}. {raw.description}"

        if raw.language and raw.language != "en":
            analysis_text = self.enrichment.translate(analysis_text, "en")

        sentiment = self.enrichment.sentiment(analysis_text)
        entities = self.enrichment.entities(analysis_text)
        keyword_result = self.enrichment.keywords(analysis_text)
        readability = self.enrichment.readability(analysis_text)

        return Article.from_raw(
            raw,
            url_hash=url_hash,
            sentiment=sentiment,
            entities=entities,
            keywords=keyword_result.keywords,
            metrics=ArticleMetrics(
                readability=readability,
                word_count=len(analysis_text.split()),
                social_shares=0,
            ),
        )

    def _persist(self, article: Article, raw: RawArticle) -> bool:
        # Another writer may have stored the URL while this one was enriching.
        if self.dedup.resolve(raw) is Resolution.DUPLICATE:
            return False
        try:
            self.storage.insert_article(article)
        except DuplicateConflict:
            return False
        return True

    # --- Cycle ---
    def run_cycle(self, cancel_event: threading.Event | None = None) -> IngestionReport:
        started = time.perf_counter()
        now = utcnow()
        report = IngestionReport(run_id=f"{now.strftime('%Y-%m-%d')}-{int(time.time())}", started_at=now.isoformat())
        logger.info("=" * 60)
        logger.info(f"[INGEST] Cycle {report.run_id} started")
        self._log_event("info", "Starting news ingestion cycle", {"run_id": report.run_id})

        report.adapter_results, collected = self.fetch_all()
        report.total_fetched = len(collected)
        for result in report.adapter_results:
            if result.status == "failed":
                report.errors.append(f"{result.adapter}:{result.source}: {result.error}")

        candidates: list[tuple[str, RawArticle, str]] = []
        seen: set[str] = set()
        for adapter_name, raw in collected:
            identity = self.dedup.identity(raw)
            try:
                duplicate = identity in seen or self.dedup.resolve(raw) is Resolution.DUPLICATE
            except Exception as e:
                logger.error(f"[INGEST] Duplicate check failed for {raw.url}: {e}")
                report.errors.append(f"dedup:{raw.url}: {e}")
                continue
            if duplicate:
                report.duplicate_count += 1
                continue
            seen.add(identity)
            candidates.append((adapter_name, raw, identity))

        report.new_count = len(candidates)
        batch = candidates[:self.max_articles]
        report.deferred_count = len(candidates) - len(batch)
        logger.info(
            f"[INGEST] fetched={report.total_fetched} new={report.new_count} "
            f"duplicates={report.duplicate_count} processing={len(batch)}"
        )

        for adapter_name, raw, identity in batch:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.warning("[INGEST] Cancellation requested, stopping before next article")
                break
            try:
                self._hydrate(adapter_name, raw)
                article = self.enrich(raw, identity)
                if self._persist(article, raw):
                    report.total_persisted += 1
                    logger.info(f"[INGEST] Saved: {article.title[:70]}")
                else:
                    report.duplicate_count += 1
            except Exception as e:
                logger.error(f"[INGEST] Failed to process '{raw.title[:60]}': {e}")
                report.errors.append(f"article:{raw.url}: {e}")

        report.finished_at = utcnow().isoformat()
        report.duration_seconds = round(time.perf_counter() - started, 3)
        failed = sum(1 for r in report.adapter_results if r.status == "failed")
        logger.info(
            f"[INGEST] Cycle {report.run_id} done | persisted={report.total_persisted} "
            f"failed_sources={failed} duration={report.duration_seconds:.2f}s"
        )
        self._log_event(
            "success" if not report.errors else "warning",
            f"Ingestion cycle finished: {report.total_persisted} new articles",
            {"run_id": report.run_id, "failed_sources": failed, "errors": len(report.errors)},
        )
        return report

    def _log_event(self, level: str, message: str, details: dict | None = None) -> None:
        if self.system_log is not None:
            self.system_log.append(level, message, details)
