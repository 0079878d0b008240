"""NewsAPI.org adapter (search / top-headlines endpoints)."""

import logging
from datetime import datetime, timedelta
from typing import Any

import requests

from config import HTTP_TIMEOUT_SECONDS, NEWSAPI_COUNTRY, NEWSAPI_KEY
from src.errors import FetchError, ParseError
from src.models import RawArticle, utcnow
from src.rate_limiter import RateLimiter
from src.scrapers import http
from src.scrapers.base import SearchConfig, SourceAdapter

logger = logging.getLogger(__name__)

NEWSAPI_BASE_URL = "https://newsapi.org/v2"
PAGE_SIZE = 50


def build_request(config: SearchConfig, *, api_key: str, country: str = "us",
                  now: datetime | None = None) -> tuple[str, dict[str, Any]]:
    """
    Choose the endpoint and query parameters.

    - query present: /everything, newest first, limited to the last 24 hours
    - no query:      /top-headlines for `country`, or for `sources` instead of
                     the country (the provider rejects both), with an optional
                     category only when neither query nor sources is set
    """
    now = now or utcnow()
    params: dict[str, Any] = {
        "apiKey": api_key,
        "language": "en",
        "pageSize": PAGE_SIZE,
    }

    if config.query:
        endpoint = f"{NEWSAPI_BASE_URL}/everything"
        params["q"] = config.query
        params["sortBy"] = "publishedAt"
        params["from"] = (now - timedelta(hours=24)).strftime("%Y-%m-%d")
        return endpoint, params

    endpoint = f"{NEWSAPI_BASE_URL}/top-headlines"
    if config.sources:
        params["sources"] = config.sources
    else:
        params["country"] = country
        if config.category:
            params["category"] = config.category
    return endpoint, params


class NewsApiAdapter(SourceAdapter):
    """One GET per call; a missing API key turns the adapter into a no-op."""

    def __init__(self, api_key: str | None = None, country: str = NEWSAPI_COUNTRY,
                 session: requests.Session | None = None,
                 limiter: RateLimiter | None = None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.api_key = NEWSAPI_KEY if api_key is None else api_key
        self.country = country
        self.session = session or http.build_session()
        self.limiter = limiter
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "newsapi"

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def fetch(self, source_config: SearchConfig | None = None) -> list[RawArticle]:
        config = source_config or SearchConfig()
        if not self.api_key:
            logger.warning("[NEWSAPI] NEWSAPI_KEY not found. Skipping NewsAPI source.")
            return []

        endpoint, params = build_request(config, api_key=self.api_key, country=self.country)
        logger.info(f"[NEWSAPI] Calling {endpoint} (query={config.query!r})")
        if self.limiter:
            self.limiter.acquire()

        resp = http.get(self.session, endpoint, params=params,
                        headers={"User-Agent": http.API_USER_AGENT},
                        timeout=self.timeout, source=self.name)
        try:
            payload = resp.json()
        except ValueError as e:
            raise FetchError(f"NewsAPI returned invalid JSON: {e}", source=self.name) from e
        if payload.get("status") == "error":
            raise FetchError(f"NewsAPI error: {payload.get('message', 'unknown')}", source=self.name)

        articles = parse_articles(payload.get("articles") or [], category=config.category)
        logger.info(f"[NEWSAPI] Got {len(articles)} articles")
        return articles


def parse_articles(items: list[dict], category: str | None = None) -> list[RawArticle]:
    articles: list[RawArticle] = []
    for item in items:
        url = item.get("url") or ""
        title = item.get("title") or ""
        if not url or not title:
            continue
        description = http.clean_text(item.get("description") or "")
        content = http.clean_text(item.get("content") or "")
        try:
            articles.append(RawArticle(
                title=title,
                url=url,
                source=(item.get("source") or {}).get("name") or "NewsAPI",
                published_at=http.parse_datetime(item.get("publishedAt")),
                description=description,
                content=content or description,
                author=item.get("author") or None,
                image_url=item.get("urlToImage") or None,
                category=category,
                language="en",
            ))
        except ParseError as e:
            logger.debug("[NEWSAPI] Skipped malformed item: %s", e)
    return articles
