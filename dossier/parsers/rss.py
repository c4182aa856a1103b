"""
RSS/Atom feed parser implementation.

This module provides the RSSParser class for fetching and parsing feeds into
normalized FeedItem objects.
"""

import calendar
import datetime
import logging
import re
from typing import Any, List, Optional

import requests
import feedparser  # type: ignore

from dossier.errors import FetchFailure
from dossier.models import FeedItem

logger = logging.getLogger(__name__)

USER_AGENT = "DossierBot/1.0"


def clean_html(raw_html: Optional[str]) -> str:
    """Removes HTML tags from a string."""
    if not raw_html:
        return ""
    cleaner = re.compile("<.*?>", re.DOTALL)
    text = re.sub(cleaner, "", raw_html)
    return " ".join(text.split())


class RSSParser:
    """Parses standard RSS and Atom feeds."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def _published_at(self, entry: Any) -> Optional[datetime.datetime]:
        """Returns the entry's publish time as an aware UTC datetime."""
        parsed = entry.get("published_parsed") or entry.get("updated_parsed")
        if not parsed:
            return None
        return datetime.datetime.fromtimestamp(
            calendar.timegm(parsed), tz=datetime.timezone.utc
        )

    def _content(self, entry: Any) -> str:
        for block in entry.get("content") or []:
            value = block.get("value") if hasattr(block, "get") else None
            if value:
                return value
        return ""

    def fetch(self, url: str) -> List[FeedItem]:
        """Fetches and parses a single feed."""
        # Add a user-agent to prevent 403s from some strict blogs
        try:
            resp = requests.get(
                url, timeout=self.timeout, headers={"User-Agent": USER_AGENT}
            )
            resp.raise_for_status()
            feed_content = resp.content
        except requests.RequestException as req_err:
            raise FetchFailure(f"Network error fetching {url}: {req_err}") from req_err

        feed = feedparser.parse(feed_content)
        if feed.get("bozo") and not feed.entries:
            raise FetchFailure(
                f"Malformed feed at {url}: {feed.get('bozo_exception', 'unknown error')}"
            )

        items = []
        for entry in feed.entries:
            items.append(
                FeedItem(
                    title=(entry.get("title") or "").strip(),
                    link=(entry.get("link") or "").strip(),
                    description=entry.get("summary") or "",
                    content=self._content(entry),
                    author=entry.get("author") or "",
                    published_at=self._published_at(entry),
                )
            )
        logger.info("Parsed %d entries from %s", len(items), url)
        return items
