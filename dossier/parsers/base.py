"""
Base classes and interfaces for feed parsers.

This module defines the contract that all feed parsers must follow.
"""

from typing import List, Protocol

from dossier.models import FeedItem


class FeedParser(Protocol):
    """
    Protocol for feed parsers.

    Classes implementing this protocol fetch one feed URL and return its
    entries as normalized FeedItem objects, raising FetchFailure when the
    source is unreachable or malformed.
    """

    def fetch(self, url: str) -> List[FeedItem]:
        """Fetches and parses a feed."""
