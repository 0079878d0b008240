"""URL-hash identity and new-vs-duplicate resolution."""

import hashlib
from enum import Enum

from config import ARTICLE_HASH_ALGORITHM
from src.models import RawArticle
from src.storage.base import StoragePort


class Resolution(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"


def url_hash(url: str, algorithm: str = ARTICLE_HASH_ALGORITHM) -> str:
    """Hex digest of the canonical URL string. Content never affects identity."""
    return hashlib.new(algorithm, url.strip().encode("utf-8")).hexdigest()


class DedupResolver:
    """
    Decides whether a raw article is already stored.

    `resolve` is called twice per article: once before enrichment and again
    right before the insert. The storage unique constraint stays the final
    authority for writers racing between the second check and the write.
    """

    def __init__(self, storage: StoragePort, algorithm: str = ARTICLE_HASH_ALGORITHM):
        self.storage = storage
        self.algorithm = algorithm

    def identity(self, raw: RawArticle) -> str:
        return url_hash(raw.url, self.algorithm)

    def resolve(self, raw: RawArticle) -> Resolution:
        if self.storage.article_exists(self.identity(raw)):
            return Resolution.DUPLICATE
        return Resolution.NEW
