"""HTTP session, headers and text helpers shared by the source adapters."""

import logging
import random
import re
import time
from datetime import datetime

import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from src.errors import FetchError
from src.models import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Realistic desktop browsers; one is picked per adapter instance and kept fixed.
BROWSER_USER_AGENTS = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
)

API_USER_AGENT = "News-Sentiment-Analyzer/1.0"

BLOCK_TAGS = ["p", "div", "li", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "tr", "figcaption"]


def browser_headers(user_agent: str | None = None) -> dict[str, str]:
    return {
        "User-Agent": user_agent or random.choice(BROWSER_USER_AGENTS),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


def build_session() -> requests.Session:
    """
    HTTP session that follows redirects but never retries on its own.
    A failed fetch waits for the next scheduled cycle.
    """
    session = requests.Session()
    retries = Retry(
        total=None,
        connect=0,
        read=0,
        status=0,
        redirect=5,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def get(session: requests.Session, url: str, *, headers: dict | None = None,
        params: dict | None = None, timeout: float = 15.0, source: str = "") -> requests.Response:
    """GET with 2xx enforcement; every transport failure becomes FetchError."""
    try:
        resp = session.get(url, headers=headers, params=params, timeout=timeout)
        resp.raise_for_status()
        return resp
    except requests.RequestException as e:
        raise FetchError(f"GET {url} failed: {e}", source=source) from e


def clean_text(text: str | None, max_len: int | None = None) -> str:
    """Strip tags, collapse whitespace and optionally truncate."""
    if not text:
        return ""
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_len] if max_len else text


def html_to_text(html: str | None) -> str:
    """Decode an HTML fragment to plain text, one paragraph per line."""
    if not html:
        return ""
    if "<" not in html:
        return clean_text(html)
    soup = BeautifulSoup(html, "html.parser")
    for el in soup(["script", "style"]):
        el.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(BLOCK_TAGS):
        block.append("\n")
    lines = [re.sub(r"\s+", " ", line).strip() for line in soup.get_text().splitlines()]
    return "\n".join(line for line in lines if line)


def parse_datetime(value) -> datetime:
    """
    Parse a timestamp from a feed tuple, datetime or free-form string.
    Unparseable input yields the current time instead of an error.
    """
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (tuple, time.struct_time)):
        try:
            return ensure_utc(datetime(*tuple(value)[:6]))
        except (TypeError, ValueError):
            return utcnow()
    try:
        return ensure_utc(date_parser.parse(str(value)))
    except (ValueError, OverflowError, TypeError):
        logger.debug("Unparseable date %r, using now", value)
        return utcnow()
