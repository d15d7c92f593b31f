"""Feed source list loader."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from feedrelay.models.feeds import FeedSource
from feedrelay.validators.url_validator import is_valid_feed_url

logger = logging.getLogger(__name__)


def load_feed_sources(yaml_path: str) -> list[FeedSource]:
    """Read ``feeds:`` from a YAML file.

    Entries may be plain URL strings or mappings with ``url``,
    ``custom_title`` and ``category_id``. Invalid or duplicate entries are
    skipped with a logged error; a missing file yields an empty list.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Feeds file not found at %s, starting with no sources", yaml_path)
        return []

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse feeds YAML at %s: %s", yaml_path, exc)
        return []

    if not isinstance(raw, dict) or not isinstance(raw.get("feeds"), list):
        logger.warning("Feeds YAML missing 'feeds' list")
        return []

    sources: list[FeedSource] = []
    seen: set[str] = set()
    for entry in raw["feeds"]:
        if isinstance(entry, str):
            entry = {"url": entry}
        try:
            source = FeedSource.model_validate(entry)
        except Exception as exc:
            logger.error("Invalid feed entry %r: %s, skipping", entry, exc)
            continue
        if not is_valid_feed_url(source.url):
            logger.error("Feed URL is not http(s): %s, skipping", source.url)
            continue
        if source.url in seen:
            continue
        seen.add(source.url)
        sources.append(source)

    logger.info("Loaded %d feed sources from %s", len(sources), yaml_path)
    return sources
