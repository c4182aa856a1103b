"""
Feed aggregation service.

This module provides the FeedAggregator class which fetches every configured
source, normalizes entries into Article objects, merges them, and keeps the
most recent ones.
"""

import datetime
import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from dossier.errors import FetchFailure, StoreError
from dossier.models import Article, FeedItem, utcnow
from dossier.parsers.base import FeedParser

if TYPE_CHECKING:
    from dossier.services.db import PostgresStore

logger = logging.getLogger(__name__)


def per_source_quota(target_count: int, source_count: int) -> int:
    """Splits the target count evenly across sources, at least one each."""
    if source_count <= 0:
        return 0
    return max(1, target_count // source_count)


class FeedAggregator:
    """Fetches feeds sequentially and merges them into one ranked list."""

    def __init__(
        self,
        parser: FeedParser,
        store: Optional["PostgresStore"] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self.parser = parser
        self.store = store
        self.clock = clock

    def _normalize(
        self, feed_url: str, item: FeedItem, fetched_at: datetime.datetime
    ) -> Article:
        return Article(
            feed_url=feed_url,
            title=item.title,
            link=item.link,
            description=item.description or "",
            content=item.content or item.description or "",
            author=item.author or "",
            published_at=item.published_at or fetched_at,
            fetched_at=fetched_at,
        )

    def fetch_source(self, feed_url: str, limit: Optional[int] = None) -> List[Article]:
        """Fetches one source and returns its articles, at most ``limit`` if given."""
        items = self.parser.fetch(feed_url)
        fetched_at = self.clock()
        articles = []
        for item in items:
            if limit is not None and len(articles) >= limit:
                break
            if not item.link:
                logger.debug("Skipping entry without link from %s", feed_url)
                continue
            articles.append(self._normalize(feed_url, item, fetched_at))
        return articles

    def aggregate(self, feed_urls: Sequence[str], target_count: int) -> List[Article]:
        """Fetches every source, tolerating individual failures."""
        if not feed_urls or target_count <= 0:
            return []

        quota = per_source_quota(target_count, len(feed_urls))
        collected: List[Article] = []
        overflow: List[Article] = []

        # Sources are fetched one at a time to avoid overwhelming origins
        for feed_url in feed_urls:
            logger.info("Fetching articles from feed: %s", feed_url)
            try:
                articles = self.fetch_source(feed_url)
            except FetchFailure as e:
                logger.error("Error fetching feed %s: %s", feed_url, e)
                continue
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Unexpected error parsing feed %s: %s", feed_url, e)
                continue
            collected.extend(articles[:quota])
            overflow.extend(articles[quota:])
            logger.info("Fetched %d articles from %s", len(articles), feed_url)

        unique = _unique_by_link(collected)
        if len(unique) < target_count and overflow:
            extra = sorted(overflow, key=lambda a: a.published_at, reverse=True)
            unique = _unique_by_link(unique + extra)

        ranked = sorted(unique, key=lambda a: a.published_at, reverse=True)
        result = ranked[:target_count]
        logger.info(
            "Aggregation: %d fetched -> %d unique -> %d kept.",
            len(collected) + len(overflow),
            len(unique),
            len(result),
        )

        if self.store is not None and result:
            try:
                result = self.store.save_articles(result)
            except StoreError as e:
                logger.warning("Could not store fetched articles: %s", e)
        return result


def _unique_by_link(articles: List[Article]) -> List[Article]:
    unique: List[Article] = []
    seen_links = set()
    for article in articles:
        if article.link in seen_links:
            continue
        seen_links.add(article.link)
        unique.append(article)
    return unique
