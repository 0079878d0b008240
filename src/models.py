"""Data models shared by the ingestion, analytics and alerting stages."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlparse

from src.errors import ParseError

SENTIMENT_LABELS = ("positive", "negative", "neutral")
EMOTIONS = ("joy", "anger", "fear", "sadness", "surprise", "disgust")
ENTITY_CATEGORIES = ("person", "organization", "location", "technology", "other")
TIMEFRAMES = ("hour", "day", "week", "month")
ALERT_KINDS = ("sentiment_change", "volume_spike", "keyword_mention", "custom")
SEVERITIES = ("low", "medium", "high", "critical")


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp(value, low: float, high: float, default: float) -> float:
    """Coerce a model-provided number into [low, high]; non-numbers become default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def is_absolute_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class RawArticle:
    """
    Normalized article produced by a source adapter, before enrichment.
    Never persisted as-is.
    """
    title: str
    url: str                          # canonical absolute URL, identity of the article
    source: str                       # originating source name (e.g. "TechCrunch")
    published_at: datetime
    description: str = ""             # short summary / standfirst
    content: str = ""                 # plain-text body
    author: str | None = None
    image_url: str | None = None
    category: str | None = None
    language: str = "en"

    def __post_init__(self):
        self.title = (self.title or "").strip()
        self.url = (self.url or "").strip()
        if not self.title:
            raise ParseError("RawArticle title must be non-empty")
        if not is_absolute_url(self.url):
            raise ParseError(f"RawArticle url must be absolute: {self.url!r}")
        self.published_at = ensure_utc(self.published_at)


@dataclass
class Sentiment:
    score: float = 0.0               # -1 (negative) .. 1 (positive)
    confidence: float = 0.1          # 0 .. 1
    label: str = "neutral"
    emotions: dict[str, float] | None = None

    @classmethod
    def neutral(cls) -> "Sentiment":
        return cls(score=0.0, confidence=0.1, label="neutral")

    @classmethod
    def from_dict(cls, data: dict) -> "Sentiment":
        return cls(
            score=data.get("score", 0.0),
            confidence=data.get("confidence", 0.1),
            label=data.get("label", "neutral"),
            emotions=data.get("emotions"),
        )


@dataclass
class Entities:
    person: list[str] = field(default_factory=list)
    organization: list[str] = field(default_factory=list)
    location: list[str] = field(default_factory=list)
    technology: list[str] = field(default_factory=list)
    other: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Entities":
        return cls(**{name: list(data.get(name) or []) for name in ENTITY_CATEGORIES})


@dataclass
class KeywordResult:
    keywords: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)


@dataclass
class ArticleMetrics:
    readability: float = 50.0        # 0 (hard) .. 100 (easy)
    word_count: int = 0
    social_shares: int | None = 0


@dataclass
class Article:
    """
    Persistent, fully enriched article. Created once per unique URL;
    every enrichment field is populated (possibly with fallbacks) before save.
    """
    title: str
    url: str
    url_hash: str
    source: str
    published_at: datetime
    sentiment: Sentiment
    entities: Entities
    metrics: ArticleMetrics
    keywords: list[str] = field(default_factory=list)
    description: str = ""
    content: str = ""
    author: str | None = None
    image_url: str | None = None
    category: str | None = None
    language: str = "en"
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_raw(cls, raw: RawArticle, url_hash: str, sentiment: Sentiment,
                 entities: Entities, keywords: list[str],
                 metrics: ArticleMetrics) -> "Article":
        return cls(
            title=raw.title,
            url=raw.url,
            url_hash=url_hash,
            source=raw.source,
            published_at=raw.published_at,
            sentiment=sentiment,
            entities=entities,
            metrics=metrics,
            keywords=list(keywords),
            description=raw.description,
            content=raw.content,
            author=raw.author,
            image_url=raw.image_url,
            category=raw.category,
            language=raw.language or "en",
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["published_at"] = _iso(self.published_at)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Article":
        return cls(
            title=data["title"],
            url=data["url"],
            url_hash=data["url_hash"],
            source=data["source"],
            published_at=_from_iso(data["published_at"]),
            sentiment=Sentiment.from_dict(data.get("sentiment") or {}),
            entities=Entities.from_dict(data.get("entities") or {}),
            metrics=ArticleMetrics(**(data.get("metrics") or {})),
            keywords=list(data.get("keywords") or []),
            description=data.get("description", ""),
            content=data.get("content", ""),
            author=data.get("author"),
            image_url=data.get("image_url"),
            category=data.get("category"),
            language=data.get("language", "en"),
            created_at=_from_iso(data.get("created_at")) or utcnow(),
        )


@dataclass
class AlertThreshold:
    sentiment_change_percent: float = 20.0   # percentage points of mean score
    volume_spike_percent: float = 50.0       # percent increase in article count


@dataclass
class KeywordTrack:
    keyword: str
    category: str = "custom"                 # company | technology | person | event | custom
    is_active: bool = True
    threshold: AlertThreshold = field(default_factory=AlertThreshold)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "KeywordTrack":
        return cls(
            keyword=data["keyword"],
            category=data.get("category", "custom"),
            is_active=bool(data.get("is_active", True)),
            threshold=AlertThreshold(**(data.get("threshold") or {})),
            created_at=_from_iso(data.get("created_at")) or utcnow(),
        )


@dataclass
class SourceSettings:
    fetch_interval: int = 15                 # minutes
    max_articles: int = 50


@dataclass
class RSSSource:
    name: str
    url: str
    category: str
    is_active: bool = True
    last_fetched: datetime | None = None
    last_successful: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    settings: SourceSettings = field(default_factory=SourceSettings)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_fetched"] = _iso(self.last_fetched)
        data["last_successful"] = _iso(self.last_successful)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RSSSource":
        return cls(
            name=data["name"],
            url=data["url"],
            category=data.get("category", ""),
            is_active=bool(data.get("is_active", True)),
            last_fetched=_from_iso(data.get("last_fetched")),
            last_successful=_from_iso(data.get("last_successful")),
            error_count=int(data.get("error_count", 0) or 0),
            last_error=data.get("last_error"),
            settings=SourceSettings(**(data.get("settings") or {})),
        )


@dataclass
class AnalyticsSnapshot:
    """Write-once cached metrics for one (timeframe, bucket start) pair."""
    date: datetime
    timeframe: str
    metrics: dict
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "date": _iso(self.date),
            "timeframe": self.timeframe,
            "metrics": self.metrics,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalyticsSnapshot":
        return cls(
            date=_from_iso(data["date"]),
            timeframe=data["timeframe"],
            metrics=data.get("metrics") or {},
            created_at=_from_iso(data.get("created_at")) or utcnow(),
        )


@dataclass
class Alert:
    kind: str
    message: str
    severity: str
    keyword: str | None = None
    is_read: bool = False
    is_sent: bool = False
    data: dict = field(default_factory=dict)  # triggering metrics, for audit
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.kind not in ALERT_KINDS:
            raise ValueError(f"Unknown alert kind: {self.kind}")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown alert severity: {self.severity}")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Alert":
        return cls(
            kind=data["kind"],
            message=data["message"],
            severity=data["severity"],
            keyword=data.get("keyword"),
            is_read=bool(data.get("is_read", False)),
            is_sent=bool(data.get("is_sent", False)),
            data=data.get("data") or {},
            id=data.get("id") or uuid.uuid4().hex,
            created_at=_from_iso(data.get("created_at")) or utcnow(),
        )
