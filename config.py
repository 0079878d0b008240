"""Central configuration for the News Sentiment Analyzer."""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


# --- LLM Config ---
# Any OpenAI-compatible chat endpoint works; OpenRouter is the default provider.
LLM_API_KEY = os.getenv("OPENROUTER_API_KEY", "") or os.getenv("LLM_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://openrouter.ai/api/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "moonshotai/kimi-k2:free")
LLM_SITE_URL = os.getenv("OPENROUTER_SITE_URL", "http://localhost:3000")
LLM_SITE_NAME = os.getenv("OPENROUTER_SITE_NAME", "News Sentiment Analyzer")

_llm_timeout = os.getenv("LLM_TIMEOUT_SECONDS")
LLM_TIMEOUT_SECONDS = float(_llm_timeout) if _llm_timeout else 60.0

_llm_max_tokens = os.getenv("LLM_MAX_TOKENS")
LLM_MAX_TOKENS = int(_llm_max_tokens) if _llm_max_tokens else 1000

# Process-wide spacing between two enrichment calls
_llm_interval = os.getenv("LLM_MIN_REQUEST_INTERVAL_SECONDS")
LLM_MIN_REQUEST_INTERVAL_SECONDS = float(_llm_interval) if _llm_interval else 0.1

# --- Search API Config ---
NEWSAPI_KEY = os.getenv("NEWSAPI_KEY", "")
NEWSAPI_COUNTRY = os.getenv("NEWSAPI_COUNTRY", "us")
GUARDIAN_API_KEY = os.getenv("GUARDIAN_API_KEY", "")
GUARDIAN_PLACEHOLDER_KEY = "your_guardian_api_key_here"

# --- Scraper Config ---
_scraper_delay = os.getenv("SCRAPER_DELAY_MS")
# Politeness floor: never less than one second between page fetches.
SCRAPER_DELAY_SECONDS = max(1.0, (int(_scraper_delay) if _scraper_delay else 1000) / 1000.0)

_max_rpm = os.getenv("MAX_REQUESTS_PER_MINUTE")
MAX_REQUESTS_PER_MINUTE = int(_max_rpm) if _max_rpm else 60

_http_timeout = os.getenv("HTTP_TIMEOUT_SECONDS")
HTTP_TIMEOUT_SECONDS = float(_http_timeout) if _http_timeout else 15.0

# --- Pipeline Config ---
_max_process = os.getenv("MAX_ARTICLES_TO_PROCESS")
MAX_ARTICLES_TO_PROCESS = int(_max_process) if _max_process else 10

_analytics_rows = os.getenv("ANALYTICS_MAX_ROWS")
ANALYTICS_MAX_ROWS = int(_analytics_rows) if _analytics_rows else 1000

ARTICLE_HASH_ALGORITHM = os.getenv("ARTICLE_HASH_ALGORITHM", "sha256")

_max_workers = os.getenv("INGEST_MAX_WORKERS")
INGEST_MAX_WORKERS = max(1, int(_max_workers)) if _max_workers else 4

# Comma separated WEB_SITE_PROFILES names crawled on every cycle (empty: none)
WEB_SCRAPE_PROFILES = [p.strip() for p in os.getenv("WEB_SCRAPE_PROFILES", "").split(",") if p.strip()]

# Optional free-text query for the search-API adapters
SEARCH_QUERY = os.getenv("SEARCH_QUERY", "") or None

# --- Scheduler Config ---
_scraper_interval = os.getenv("SCRAPER_INTERVAL_MINUTES")
SCRAPER_INTERVAL_MINUTES = int(_scraper_interval) if _scraper_interval else 15

_alert_interval = os.getenv("ALERT_INTERVAL_MINUTES")
ALERT_INTERVAL_MINUTES = int(_alert_interval) if _alert_interval else 60

_analytics_interval = os.getenv("ANALYTICS_INTERVAL_HOURS")
ANALYTICS_INTERVAL_HOURS = int(_analytics_interval) if _analytics_interval else 24

# --- Storage Config ---
DATABASE_PATH = os.getenv("DATABASE_PATH", os.path.join("data", "news.db"))


# --- Web Site Profiles (HTML-page adapter) ---
@dataclass
class SiteProfile:
    name: str
    base_url: str
    article_links: str   # CSS selector for candidate article links on the listing page
    title: str
    content: str
    published_at: str = ""
    author: str = ""
    image: str = ""
    max_articles: int = 10


WEB_SITE_PROFILES: list[SiteProfile] = [
    SiteProfile(
        name="BBC News",
        base_url="https://www.bbc.com/news",
        article_links='a[href*="/news/"]',
        title='h1, [data-component="headline"]',
        content='[data-component="text-block"] p, .story-body p',
        published_at="time[datetime]",
        author='[data-component="byline"] span',
        image='[data-component="image"] img',
    ),
    SiteProfile(
        name="Reuters",
        base_url="https://www.reuters.com",
        article_links='a[href*="/world/"], a[href*="/business/"], a[href*="/technology/"]',
        title='[data-testid="Heading"]',
        content='[data-testid="paragraph"] p, .StandardArticleBody_body p',
        published_at="time[datetime]",
        author='[data-testid="Author"]',
        image='[data-testid="Image"] img',
    ),
    SiteProfile(
        name="CNN",
        base_url="https://www.cnn.com",
        article_links='a[href*="/2025/"], a[href*="/2026/"]',
        title='h1.headline__text, h1[data-editable="headlineText"]',
        content=".zn-body__paragraph, .l-container p",
        published_at=".timestamp",
        author=".byline__name",
        image=".media__image img",
    ),
    SiteProfile(
        name="The Guardian",
        base_url="https://www.theguardian.com/world",
        article_links='a[href*="/2025/"], a[href*="/2026/"]',
        title='[data-gu-name="headline"] h1, .content__headline',
        content=".content__article-body p, #maincontent p",
        published_at="time[datetime]",
        author='[data-component="byline"] a',
        image=".content__main-column img",
    ),
]


# --- Seed Data (created once, then owned by the configuration surface) ---
@dataclass
class FeedSeed:
    name: str
    url: str
    category: str
    fetch_interval: int = 15   # minutes
    max_articles: int = 50


DEFAULT_RSS_SOURCES: list[FeedSeed] = [
    FeedSeed("TechCrunch", "https://techcrunch.com/feed/", "Technology", 15, 50),
    FeedSeed("BBC News - Technology", "http://feeds.bbci.co.uk/news/technology/rss.xml", "Technology", 15, 30),
    FeedSeed("Ars Technica", "https://feeds.arstechnica.com/arstechnica/index", "Technology", 30, 25),
    FeedSeed("The Verge", "https://www.theverge.com/rss/index.xml", "Technology", 15, 40),
    FeedSeed("Wired", "https://www.wired.com/feed/rss", "Technology", 30, 30),
    FeedSeed("CNN - Business", "http://rss.cnn.com/rss/money_latest.rss", "Business", 20, 35),
    FeedSeed("BBC News - Business", "http://feeds.bbci.co.uk/news/business/rss.xml", "Business", 15, 35),
]

DEFAULT_KEYWORD_TRACKS: list[tuple[str, str]] = [
    ("artificial intelligence", "technology"),
    ("machine learning", "technology"),
    ("bitcoin", "technology"),
    ("cryptocurrency", "technology"),
    ("blockchain", "technology"),
    ("tesla", "company"),
    ("apple", "company"),
    ("google", "company"),
    ("microsoft", "company"),
    ("meta", "company"),
    ("climate change", "event"),
    ("election", "event"),
    ("stock market", "event"),
]


@dataclass
class ConfigReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_config(mode: str = "ingest", mock: bool = False) -> tuple[bool, list[str]]:
    """
    Check required settings for a CLI command.
    Returns (ok, messages). Missing search-API keys never fail validation:
    the affected adapter simply skips itself for the cycle.
    """
    report = ConfigReport()
    needs_llm = mode in ("ingest", "serve")

    if needs_llm and not mock and not LLM_API_KEY:
        report.errors.append("OPENROUTER_API_KEY (or LLM_API_KEY) is not set.")

    if mode in ("ingest", "serve"):
        if not NEWSAPI_KEY:
            report.warnings.append("NEWSAPI_KEY not set; NewsAPI adapter disabled.")
        if not GUARDIAN_API_KEY or GUARDIAN_API_KEY == GUARDIAN_PLACEHOLDER_KEY:
            report.warnings.append("GUARDIAN_API_KEY not set; Guardian adapter disabled.")

    if MAX_ARTICLES_TO_PROCESS <= 0:
        report.errors.append("MAX_ARTICLES_TO_PROCESS must be positive.")

    return not report.errors, report.errors + report.warnings
