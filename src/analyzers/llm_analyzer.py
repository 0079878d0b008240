"""
LLM enrichment client.

Wraps one chat-completion call per enrichment operation (sentiment, entities,
keywords, readability, translation), recovers JSON from free-form model
output and degrades to neutral fallbacks instead of raising.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import Any, Union

from openai import OpenAI

from config import (
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_MAX_TOKENS,
    LLM_MIN_REQUEST_INTERVAL_SECONDS,
    LLM_MODEL,
    LLM_SITE_NAME,
    LLM_SITE_URL,
    LLM_TIMEOUT_SECONDS,
)
from src.errors import ConfigurationError
from src.models import EMOTIONS, ENTITY_CATEGORIES, Entities, KeywordResult, Sentiment, clamp
from src.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 10
MAX_TOPICS = 5
DEFAULT_READABILITY = 50.0


# --- Tagged parse result ---
@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Fallback:
    reason: str


ParseResult = Union[Ok, Fallback]


# --- Completion ports ---
class CompletionPort(ABC):
    """Stateless prompt -> text call against a language model."""

    @abstractmethod
    def complete(self, prompt: str) -> str:
        ...


def _message_to_text(message: object) -> str:
    """Flatten string or content-part list replies into plain text."""
    content = getattr(message, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict):
                text = item.get("text") or item.get("content")
                if isinstance(text, str):
                    parts.append(text)
            else:
                text = getattr(item, "text", None)
                if isinstance(text, str):
                    parts.append(text)
        return "\n".join(p for p in parts if p).strip()
    refusal = getattr(message, "refusal", None)
    return refusal.strip() if isinstance(refusal, str) else ""


class OpenAICompletionPort(CompletionPort):
    """OpenAI-compatible endpoint (OpenRouter by default) with attribution headers."""

    def __init__(self, api_key: str = LLM_API_KEY, base_url: str = LLM_BASE_URL,
                 model: str = LLM_MODEL, timeout: float = LLM_TIMEOUT_SECONDS,
                 max_tokens: int = LLM_MAX_TOKENS):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        """Lazy-init API client."""
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("LLM API key is not set.", source="llm")
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
                default_headers={
                    "HTTP-Referer": LLM_SITE_URL,
                    "X-Title": LLM_SITE_NAME,
                },
            )
        return self._client

    def complete(self, prompt: str) -> str:
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.1,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )
        if not response.choices:
            return ""
        return _message_to_text(response.choices[0].message).strip()


_POSITIVE_WORDS = {"gain", "growth", "win", "record", "success", "surge", "rise", "improve", "breakthrough", "strong"}
_NEGATIVE_WORDS = {"loss", "fall", "crash", "fail", "crisis", "drop", "risk", "decline", "lawsuit", "weak"}
_STOPWORDS = {"about", "after", "their", "there", "these", "which", "would", "could", "while", "where", "other"}


class MockCompletionPort(CompletionPort):
    """
    Deterministic offline replies for --mock runs and tests.
    Answers based on which enrichment prompt it receives.
    """

    def complete(self, prompt: str) -> str:
        text = prompt.rsplit("Text to analyze:", 1)[-1].lower()
        words = re.findall(r"[a-z][a-z\-]+", text)

        if prompt.startswith("Translate"):
            return prompt.rsplit("Text to translate:", 1)[-1].strip().strip('"')
        if prompt.startswith("Analyze the sentiment"):
            pos = sum(w in _POSITIVE_WORDS for w in words)
            neg = sum(w in _NEGATIVE_WORDS for w in words)
            score = 0.0 if pos == neg else (pos - neg) / (pos + neg)
            label = "positive" if score > 0.1 else "negative" if score < -0.1 else "neutral"
            return json.dumps({"score": score, "confidence": 0.5, "label": label,
                               "emotions": {e: 0.0 for e in EMOTIONS}})
        if prompt.startswith("Extract named entities"):
            return json.dumps({name: [] for name in ENTITY_CATEGORIES})
        if prompt.startswith("Extract the most important keywords"):
            counts = Counter(w for w in words if len(w) > 4 and w not in _STOPWORDS)
            top = [w for w, _ in counts.most_common(MAX_KEYWORDS)]
            return "```json\n" + json.dumps({"keywords": top, "topics": top[:2]}) + "\n```"
        if prompt.startswith("Rate the readability"):
            return "60"
        return ""


# --- JSON recovery ---
def _try_parse(candidate: str) -> Any:
    s = (candidate or "").strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        # Common repairs: smart quotes, BOM, stray control chars, trailing commas
        repaired = s.replace("“", '"').replace("”", '"').replace("’", "'")
        repaired = repaired.replace("\ufeff", "")
        repaired = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", repaired)
        repaired = re.sub(r",\s*([}\]])", r"\1", repaired)
        try:
            return json.loads(repaired)
        except json.JSONDecodeError:
            return None


def _first_brace_object(raw: str) -> str | None:
    """Text of the first balanced top-level {...} block, ignoring braces in strings."""
    start = raw.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(raw)):
        ch = raw[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\" and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return raw[start:i + 1]
    return None


def _extract_json(text: str) -> ParseResult:
    """
    Recover a JSON value from model output.
    Order: fenced ```json block, then the first brace-delimited object,
    then the whole reply (a bare number or object).
    """
    if not text or not text.strip():
        return Fallback("empty response")
    raw = text.strip()

    md_match = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", raw, re.DOTALL)
    if md_match:
        parsed = _try_parse(md_match.group(1))
        if parsed is not None:
            return Ok(parsed)

    block = _first_brace_object(raw)
    if block is not None:
        parsed = _try_parse(block)
        if parsed is not None:
            return Ok(parsed)

    parsed = _try_parse(raw)
    if parsed is not None:
        return Ok(parsed)
    return Fallback(f"no JSON found in reply: {raw[:80]!r}")


def normalize_label(label: Any) -> str:
    value = str(label or "").lower()
    if "positive" in value:
        return "positive"
    if "negative" in value:
        return "negative"
    return "neutral"


def _string_list(value: Any, limit: int | None = None) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return items[:limit] if limit else items


# --- Prompts ---
SENTIMENT_PROMPT = """Analyze the sentiment of the following news article text. Provide:
1. Overall sentiment score from -1 (very negative) to 1 (very positive)
2. Confidence level from 0 to 1
3. Sentiment label (positive, negative, or neutral)
4. Emotion scores from 0 to 1 for: joy, anger, fear, sadness, surprise, disgust

Return ONLY a valid JSON object (no markdown):
{{"score": <number>, "confidence": <number>, "label": "<positive|negative|neutral>",
 "emotions": {{"joy": <number>, "anger": <number>, "fear": <number>, "sadness": <number>, "surprise": <number>, "disgust": <number>}}}}

Text to analyze:
"{text}"
"""

ENTITIES_PROMPT = """Extract named entities from the following news article text. Categorize them into:
person (people), organization (companies, institutions), location (places, countries, cities),
technology (technologies, products, software, hardware) and other (other significant entities).

Return ONLY a valid JSON object (no markdown):
{{"person": [], "organization": [], "location": [], "technology": [], "other": []}}

Text to analyze:
"{text}"
"""

KEYWORDS_PROMPT = """Extract the most important keywords and topics from the following news article text.
keywords: specific important terms, phrases and concepts. topics: broader themes covered.
Limit to the top 10 keywords and top 5 topics.

Return ONLY a valid JSON object (no markdown):
{{"keywords": [], "topics": []}}

Text to analyze:
"{text}"
"""

READABILITY_PROMPT = """Rate the readability of the following text on a scale from 0 to 100,
where 100 is very easy and 0 is very difficult to read. Consider sentence length,
word complexity and structure.

Return ONLY a number between 0 and 100 (no explanation).

Text to analyze:
"{text}"
"""

TRANSLATE_PROMPT = """Translate the following text to {language}.
Only return the translated text, nothing else.

Text to translate:
"{text}"
"""


def _quote(text: str) -> str:
    return (text or "").replace('"', '\\"')


class EnrichmentClient:
    """
    Enrichment operations over a CompletionPort.

    Every call waits on the client's own RateLimiter, so calls from any
    thread queue instead of bursting. No method raises: transport errors and
    unusable replies yield the documented fallback values.
    """

    def __init__(self, port: CompletionPort | None = None, limiter: RateLimiter | None = None):
        self.port = port or OpenAICompletionPort()
        self.limiter = limiter or RateLimiter(LLM_MIN_REQUEST_INTERVAL_SECONDS)

    def _call(self, prompt: str, kind: str) -> str | None:
        self.limiter.acquire()
        try:
            return self.port.complete(prompt)
        except Exception as e:
            logger.warning(f"[LLM] {kind} call failed: {e}")
            return None

    def _request_json(self, prompt: str, kind: str) -> ParseResult:
        raw = self._call(prompt, kind)
        if raw is None:
            return Fallback("transport error")
        result = _extract_json(raw)
        if isinstance(result, Fallback):
            logger.warning(f"[LLM] Could not parse {kind} reply ({result.reason})")
        return result

    def sentiment(self, text: str) -> Sentiment:
        result = self._request_json(SENTIMENT_PROMPT.format(text=_quote(text)), "sentiment")
        if isinstance(result, Fallback) or not isinstance(result.value, dict):
            return Sentiment.neutral()
        data = result.value

        emotions = None
        if isinstance(data.get("emotions"), dict):
            emotions = {name: clamp(data["emotions"].get(name), 0.0, 1.0, 0.0) for name in EMOTIONS}
        return Sentiment(
            score=clamp(data.get("score"), -1.0, 1.0, 0.0),
            confidence=clamp(data.get("confidence"), 0.0, 1.0, 0.5),
            label=normalize_label(data.get("label")),
            emotions=emotions,
        )

    def entities(self, text: str) -> Entities:
        result = self._request_json(ENTITIES_PROMPT.format(text=_quote(text)), "entities")
        if isinstance(result, Fallback) or not isinstance(result.value, dict):
            return Entities()
        return Entities(**{name: _string_list(result.value.get(name)) for name in ENTITY_CATEGORIES})

    def keywords(self, text: str) -> KeywordResult:
        result = self._request_json(KEYWORDS_PROMPT.format(text=_quote(text)), "keywords")
        if isinstance(result, Fallback) or not isinstance(result.value, dict):
            return KeywordResult()
        return KeywordResult(
            keywords=_string_list(result.value.get("keywords"), MAX_KEYWORDS),
            topics=_string_list(result.value.get("topics"), MAX_TOPICS),
        )

    def readability(self, text: str) -> float:
        raw = self._call(READABILITY_PROMPT.format(text=_quote(text)), "readability")
        if raw is None:
            return DEFAULT_READABILITY

        result = _extract_json(raw)
        value: Any = None
        if isinstance(result, Ok):
            value = result.value.get("score") if isinstance(result.value, dict) else result.value
        else:
            number = re.search(r"-?\d+(?:\.\d+)?", raw)
            value = number.group(0) if number else None
        if isinstance(value, bool):
            value = None
        return clamp(value, 0.0, 100.0, DEFAULT_READABILITY)

    def translate(self, text: str, target_language: str = "en") -> str:
        """Returns the original text when translation fails or comes back empty."""
        if not text:
            return text
        raw = self._call(TRANSLATE_PROMPT.format(language=target_language, text=_quote(text)), "translate")
        if not raw or not raw.strip():
            return text
        translated = raw.strip()
        if len(translated) >= 2 and translated[0] == translated[-1] == '"':
            translated = translated[1:-1]
        return translated or text
