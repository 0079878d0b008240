"""HTML page adapter: two-phase crawl of configured news sites with BeautifulSoup."""

import logging
import time
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from config import (
    HTTP_TIMEOUT_SECONDS,
    MAX_REQUESTS_PER_MINUTE,
    SCRAPER_DELAY_SECONDS,
    WEB_SITE_PROFILES,
    SiteProfile,
)
from src.errors import ConfigurationError, FetchError, ParseError
from src.models import RawArticle, utcnow
from src.rate_limiter import RateLimiter
from src.scrapers import http
from src.scrapers.base import SourceAdapter

logger = logging.getLogger(__name__)

# Generic article-body selectors, most specific first.
CONTENT_SELECTORS = [
    '[data-module="ArticleBody"] p',
    ".article-body p",
    ".story-body p",
    ".post-content p",
    ".entry-content p",
    ".article-content p",
    ".content p",
    "article p",
    "main p",
    ".text p",
]

NOISE_SELECTORS = "script, style, nav, header, footer, aside, .advertisement, .ads, .social-share, .comments"

EXCLUDED_URL_PATTERNS = (
    "/live/",
    "/topic/",
    "/video/",
    "/audio/",
    "/gallery/",
    "/sport/",
    "/weather/",
    "#",
    "mailto:",
    "javascript:",
)

MIN_PARAGRAPH_CHARS = 20
MIN_CONTENT_CHARS = 100
FALLBACK_MAX_PARAGRAPHS = 10


def _make_absolute(url: str, base_url: str) -> str:
    """Ensure URL is absolute."""
    if url.startswith("http"):
        return url
    return urljoin(base_url, url)


def is_valid_article_url(url: str) -> bool:
    """Reject live blogs, topic hubs, media galleries and non-http links."""
    return not any(pattern in url for pattern in EXCLUDED_URL_PATTERNS)


def _paragraphs(soup: BeautifulSoup, selector: str) -> list[str]:
    texts = [http.clean_text(el.get_text(" ")) for el in soup.select(selector)]
    return [t for t in texts if len(t) > MIN_PARAGRAPH_CHARS]


def extract_content(soup: BeautifulSoup, preferred: list[str] | None = None) -> str:
    """
    Recover the article body from a parsed page.

    Tries each selector in priority order and accepts the first one that
    yields at least two paragraphs with more than MIN_CONTENT_CHARS combined.
    Otherwise falls back to every page paragraph longer than 20 characters,
    capped at 10.
    """
    for el in soup.select(NOISE_SELECTORS):
        el.decompose()

    for selector in (preferred or []) + CONTENT_SELECTORS:
        paragraphs = _paragraphs(soup, selector)
        if len(paragraphs) >= 2:
            content = "\n".join(paragraphs)
            if len(content) > MIN_CONTENT_CHARS:
                return content

    return "\n".join(_paragraphs(soup, "p")[:FALLBACK_MAX_PARAGRAPHS])


def needs_full_content(content: str | None) -> bool:
    """Syndicated bodies are often truncated ("[+1234 chars]", "...") or missing."""
    if not content:
        return True
    return "[+" in content or "..." in content or len(content) < 200


class HtmlPageAdapter(SourceAdapter):
    """
    Crawls a named site profile: the listing page first, then each candidate
    article page. A fixed browser user agent and a delay of at least one
    second precede every page fetch; distinct sources are separated by a
    longer pause.
    """

    def __init__(self, profiles: list[SiteProfile] | None = None,
                 session: requests.Session | None = None,
                 delay_seconds: float = SCRAPER_DELAY_SECONDS,
                 max_per_minute: int = MAX_REQUESTS_PER_MINUTE,
                 timeout: float = HTTP_TIMEOUT_SECONDS,
                 sleep=time.sleep):
        self.profiles = {p.name.lower(): p for p in (profiles if profiles is not None else WEB_SITE_PROFILES)}
        self.session = session or http.build_session()
        self.delay_seconds = max(1.0, delay_seconds)
        self.limiter = RateLimiter(self.delay_seconds, max_per_minute, sleep=sleep)
        self.timeout = timeout
        self.headers = http.browser_headers()
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "web"

    def available_profiles(self) -> list[str]:
        return [p.name for p in self.profiles.values()]

    def get_profile(self, profile_name: str) -> SiteProfile:
        profile = self.profiles.get((profile_name or "").lower())
        if profile is None:
            raise ConfigurationError(f"Source '{profile_name}' not found", source=profile_name)
        return profile

    def pause_between_sources(self) -> None:
        self._sleep(self.delay_seconds * 2)

    def _get_page(self, url: str, source: str) -> BeautifulSoup:
        self.limiter.acquire()
        resp = http.get(self.session, url, headers=self.headers, timeout=self.timeout, source=source)
        return BeautifulSoup(resp.text, "html.parser")

    def fetch(self, source_config) -> list[RawArticle]:
        profile = source_config if isinstance(source_config, SiteProfile) else self.get_profile(source_config)
        logger.info(f"[WEB] Fetching {profile.name}: {profile.base_url}")

        links = self.scrape_article_links(profile)
        logger.info(f"[WEB] Found {len(links)} article links on {profile.name}")

        articles: list[RawArticle] = []
        for link in links:
            try:
                article = self.scrape_article(link, profile)
            except FetchError as e:
                logger.warning(f"[WEB] Skipping {link}: {e}")
                continue
            if article:
                articles.append(article)

        logger.info(f"[WEB] Got {len(articles)} articles from {profile.name}")
        return articles

    def scrape_article_links(self, profile: SiteProfile) -> list[str]:
        soup = self._get_page(profile.base_url, profile.name)
        links: list[str] = []
        for el in soup.select(profile.article_links):
            href = (el.get("href") or "").strip()
            if not href:
                continue
            if not is_valid_article_url(href):
                continue
            absolute = _make_absolute(href, profile.base_url)
            if absolute not in links and is_valid_article_url(absolute):
                links.append(absolute)
        return links[:profile.max_articles]

    def scrape_article(self, url: str, profile: SiteProfile) -> RawArticle | None:
        soup = self._get_page(url, profile.name)
        return parse_article_page(soup, url, profile)

    def fetch_text(self, url: str) -> str:
        """
        Full-text extraction for syndicated items whose body is truncated.
        Throttled like every other page fetch; failures return "".
        """
        try:
            soup = self._get_page(url, "content-extraction")
        except FetchError as e:
            logger.warning(f"[WEB] Content extraction failed for {url}: {e}")
            return ""
        return extract_content(soup).strip()


def parse_article_page(soup: BeautifulSoup, url: str, profile: SiteProfile) -> RawArticle | None:
    """Build a RawArticle from a fetched page, or None if it is not usable."""
    title_el = soup.select_one(profile.title)
    title = http.clean_text(title_el.get_text(" ")) if title_el else ""
    if not title:
        logger.info(f"[WEB] No title found for {url}")
        return None

    published_at = utcnow()
    if profile.published_at:
        date_el = soup.select_one(profile.published_at)
        if date_el is not None:
            raw_date = date_el.get("datetime") or date_el.get_text(strip=True)
            if raw_date:
                published_at = http.parse_datetime(raw_date)

    author = None
    if profile.author:
        author_el = soup.select_one(profile.author)
        author = http.clean_text(author_el.get_text(" ")) if author_el else None

    image_url = None
    if profile.image:
        image_el = soup.select_one(profile.image)
        src = (image_el.get("src") or image_el.get("data-src")) if image_el else None
        if src:
            image_url = _make_absolute(src, profile.base_url)

    content = extract_content(soup, preferred=[s.strip() for s in profile.content.split(",") if s.strip()])
    if len(content) < MIN_CONTENT_CHARS:
        logger.info(f"[WEB] Insufficient content for {url}")
        return None

    try:
        return RawArticle(
            title=title,
            url=url,
            source=profile.name,
            published_at=published_at,
            description=http.clean_text(content, 300),
            content=content,
            author=author or None,
            image_url=image_url,
        )
    except ParseError as e:
        logger.info(f"[WEB] Rejected {url}: {e}")
        return None
