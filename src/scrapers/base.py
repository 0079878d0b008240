"""Base class for all source adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.models import RawArticle


@dataclass
class SearchConfig:
    """Per-call options for the search-API adapters."""
    query: str | None = None
    sources: str | None = None     # comma separated provider source ids
    category: str | None = None    # NewsAPI category / Guardian section


class SourceAdapter(ABC):
    """
    One adapter per ingestion protocol. `fetch` normalizes external records
    into RawArticle and raises FetchError on network or parse failure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used in cycle reports."""

    @abstractmethod
    def fetch(self, source_config) -> list[RawArticle]:
        """Fetch and normalize articles for one source configuration."""

    def is_configured(self) -> bool:
        """False when a required credential is missing (adapter is a no-op)."""
        return True
