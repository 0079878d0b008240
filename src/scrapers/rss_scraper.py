"""RSS/Atom feed adapter for configured syndication sources."""

import logging
from datetime import datetime

import feedparser
import requests

from config import HTTP_TIMEOUT_SECONDS
from src.errors import FetchError, ParseError
from src.models import RawArticle, RSSSource, ensure_utc
from src.rate_limiter import RateLimiter
from src.scrapers import http
from src.scrapers.base import SourceAdapter

logger = logging.getLogger(__name__)


def parse_date(entry: dict) -> datetime:
    """
    Parse the entry timestamp from 'published_parsed' / 'updated_parsed',
    then from the raw strings. Falls back to the current time.
    """
    for field in ("published_parsed", "updated_parsed"):
        parsed = entry.get(field)
        if parsed:
            try:
                return ensure_utc(datetime(*parsed[:6]))
            except (TypeError, ValueError):
                continue
    return http.parse_datetime(entry.get("published") or entry.get("updated"))


def get_content(entry: dict) -> str:
    """
    Plain-text body of an entry.
    Priority: content > summary > description
    """
    if "content" in entry and entry["content"]:
        text = entry["content"][0].get("value", "")
    elif "summary" in entry:
        text = entry.get("summary", "")
    elif "description" in entry:
        text = entry.get("description", "")
    else:
        text = ""
    return http.html_to_text(text)


def get_description(entry: dict, max_len: int = 500) -> str:
    return http.clean_text(entry.get("summary") or entry.get("description") or "", max_len)


def get_image_url(entry: dict) -> str | None:
    for enclosure in entry.get("enclosures") or []:
        href = enclosure.get("href") or enclosure.get("url")
        if href and str(enclosure.get("type", "image")).startswith("image"):
            return href
    for media in (entry.get("media_content") or []) + (entry.get("media_thumbnail") or []):
        if media.get("url"):
            return media["url"]
    return None


class FeedAdapter(SourceAdapter):
    """Fetches one RSSSource per call and maps its entries to RawArticle."""

    def __init__(self, session: requests.Session | None = None,
                 limiter: RateLimiter | None = None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.session = session or http.build_session()
        self.limiter = limiter
        self.timeout = timeout
        self.headers = http.browser_headers()
        self.headers["Accept"] = "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"

    @property
    def name(self) -> str:
        return "rss"

    def fetch(self, source_config: RSSSource) -> list[RawArticle]:
        source = source_config
        logger.info(f"[RSS] Fetching: {source.name} ({source.url})")
        if self.limiter:
            self.limiter.acquire()

        resp = http.get(self.session, source.url, headers=self.headers,
                        timeout=self.timeout, source=source.name)
        feed = feedparser.parse(resp.content)

        if feed.bozo and not feed.entries:
            raise FetchError(f"Malformed feed: {feed.get('bozo_exception')}", source=source.name)

        articles: list[RawArticle] = []
        for entry in feed.entries[:source.settings.max_articles]:
            title = (entry.get("title") or "").strip()
            link = (entry.get("link") or "").strip()
            if not title or not link:
                continue
            try:
                articles.append(RawArticle(
                    title=http.clean_text(title),
                    url=link,
                    source=source.name,
                    published_at=parse_date(entry),
                    description=get_description(entry),
                    content=get_content(entry),
                    author=entry.get("author") or None,
                    image_url=get_image_url(entry),
                    category=source.category,
                    language=(feed.feed.get("language") or "en")[:2].lower(),
                ))
            except ParseError as e:
                logger.debug("[RSS] Skipped malformed entry in %s: %s", source.name, e)

        logger.info(f"[RSS] Got {len(articles)} articles from {source.name}")
        return articles
