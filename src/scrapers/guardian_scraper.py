"""The Guardian Open Platform search adapter."""

import logging
from datetime import datetime, timedelta
from typing import Any

import requests

from config import GUARDIAN_API_KEY, GUARDIAN_PLACEHOLDER_KEY, HTTP_TIMEOUT_SECONDS
from src.errors import FetchError, ParseError
from src.models import RawArticle, utcnow
from src.rate_limiter import RateLimiter
from src.scrapers import http
from src.scrapers.base import SearchConfig, SourceAdapter

logger = logging.getLogger(__name__)

GUARDIAN_SEARCH_URL = "https://content.guardianapis.com/search"


def build_params(config: SearchConfig, *, api_key: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    params: dict[str, Any] = {
        "api-key": api_key,
        "show-fields": "headline,standfirst,body,thumbnail,byline",
        "page-size": 50,
        "order-by": "newest",
        "from-date": (now - timedelta(hours=24)).strftime("%Y-%m-%d"),
    }
    if config.query:
        params["q"] = config.query
    if config.category:
        params["section"] = config.category
    return params


class GuardianAdapter(SourceAdapter):

    def __init__(self, api_key: str | None = None, session: requests.Session | None = None,
                 limiter: RateLimiter | None = None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.api_key = GUARDIAN_API_KEY if api_key is None else api_key
        self.session = session or http.build_session()
        self.limiter = limiter
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "guardian"

    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != GUARDIAN_PLACEHOLDER_KEY

    def fetch(self, source_config: SearchConfig | None = None) -> list[RawArticle]:
        config = source_config or SearchConfig()
        if not self.is_configured():
            logger.warning("[GUARDIAN] GUARDIAN_API_KEY not configured. Skipping Guardian source.")
            return []

        if self.limiter:
            self.limiter.acquire()
        resp = http.get(self.session, GUARDIAN_SEARCH_URL,
                        params=build_params(config, api_key=self.api_key),
                        headers={"User-Agent": http.API_USER_AGENT},
                        timeout=self.timeout, source=self.name)
        try:
            results = resp.json()["response"]["results"]
        except (ValueError, KeyError, TypeError) as e:
            raise FetchError(f"Unexpected Guardian response: {e}", source=self.name) from e

        articles: list[RawArticle] = []
        for item in results:
            fields = item.get("fields") or {}
            url = item.get("webUrl") or ""
            title = fields.get("headline") or item.get("webTitle") or ""
            if not url or not title:
                continue
            try:
                articles.append(RawArticle(
                    title=title,
                    url=url,
                    source="The Guardian",
                    published_at=http.parse_datetime(item.get("webPublicationDate")),
                    description=http.clean_text(fields.get("standfirst")),
                    content=http.html_to_text(fields.get("body")),
                    author=fields.get("byline") or None,
                    image_url=fields.get("thumbnail") or None,
                    category=item.get("sectionName"),
                    language="en",
                ))
            except ParseError as e:
                logger.debug("[GUARDIAN] Skipped malformed item: %s", e)

        logger.info(f"[GUARDIAN] Got {len(articles)} articles")
        return articles
