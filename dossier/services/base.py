"""
Capability interfaces the scheduler and the pipeline depend on.

Each protocol is small enough to be replaced by a test double.
"""

from typing import TYPE_CHECKING, List, Protocol, Sequence

from dossier.models import Article

if TYPE_CHECKING:
    from dossier.services.email_service import DossierMessage
    from dossier.services.llm import InferenceRequest


class FeedFetcher(Protocol):
    """Turns a set of feed URLs into a ranked list of articles."""

    def aggregate(self, feed_urls: Sequence[str], target_count: int) -> List[Article]:
        """Fetches, merges and truncates articles from every source."""


class Summarizer(Protocol):
    """Turns an article set into the final summary text."""

    def summarize(
        self,
        articles: Sequence[Article],
        tone: str,
        language: str,
        special_instructions: str = "",
    ) -> str:
        """Produces an HTML-safe summary or raises GenerationFailure."""


class Mailer(Protocol):
    """Delivers one composed message."""

    def send(self, message: "DossierMessage") -> None:
        """Sends the message or raises TransportFailure."""


class InferenceClient(Protocol):
    """Request/response access to a language model."""

    def generate(self, request: "InferenceRequest") -> str:
        """Returns the generated text or raises InferenceError."""
