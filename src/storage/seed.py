"""Insert the default RSS sources and keyword tracks (safe to run repeatedly)."""

import logging

from config import DEFAULT_KEYWORD_TRACKS, DEFAULT_RSS_SOURCES
from src.models import KeywordTrack, RSSSource, SourceSettings
from src.storage.base import StoragePort

logger = logging.getLogger(__name__)


def seed_defaults(storage: StoragePort) -> dict[str, int]:
    """Returns how many sources and tracks were newly inserted."""
    sources_added = 0
    for seed in DEFAULT_RSS_SOURCES:
        source = RSSSource(
            name=seed.name,
            url=seed.url,
            category=seed.category,
            settings=SourceSettings(fetch_interval=seed.fetch_interval, max_articles=seed.max_articles),
        )
        if storage.insert_rss_source(source):
            sources_added += 1

    tracks_added = 0
    for keyword, category in DEFAULT_KEYWORD_TRACKS:
        if storage.insert_keyword_track(KeywordTrack(keyword=keyword, category=category)):
            tracks_added += 1

    logger.info(f"[SEED] Added {sources_added} RSS sources and {tracks_added} keyword tracks")
    return {"rss_sources": sources_added, "keyword_tracks": tracks_added}
