"""
Summarization pipeline.

Three stages run one after another for every dossier:

1. Selection: narrow a large article set down to a representative subset.
2. Extraction: compress each selected article into a few factual sentences.
3. Generation: write the final summary in the configured tone.

Selection and extraction degrade to the raw input when the model misbehaves.
Generation has no fallback; without it there is nothing to send.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Sequence

from dossier.errors import (
    ExtractionFailure,
    GenerationFailure,
    InferenceError,
    SelectionFailure,
)
from dossier.models import Article
from dossier.services.base import InferenceClient
from dossier.services.llm import InferenceRequest
from dossier.services.tones import ToneRepository, select_model, system_message_for

logger = logging.getLogger(__name__)

MAX_ARTICLES_FOR_SELECTION = 10
TARGET_ARTICLE_COUNT = 10
MAX_DESCRIPTION_LENGTH = 150

_TAG_RE = re.compile(r"<[^>]*>")
_NON_INDEX_RE = re.compile(r"[^\d,\s]")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ArticleFacts:
    """An article paired with the factual text used for generation."""

    article: Article
    facts: str


def parse_indices(text: str, count: int) -> List[int]:
    """
    Parses a comma-separated list of 1-based indices from a model reply.

    Anything other than digits, commas and whitespace is dropped first, so
    "Articles: 1, 3, 7." reads as 1, 3, 7. A part that still is not a plain
    number is ignored. Values outside 1..count are discarded and duplicates
    keep their first position.
    """
    if not text or count <= 0:
        return []

    stripped = _NON_INDEX_RE.sub("", text)
    indices: List[int] = []
    for part in stripped.split(","):
        part = part.strip()
        if not part.isdigit():
            continue
        value = int(part)
        if 1 <= value <= count and value not in indices:
            indices.append(value)
    return indices


def strip_tags(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class SummarizationPipeline:
    """Runs selection, extraction and generation against one inference client."""

    def __init__(
        self,
        client: InferenceClient,
        tones: ToneRepository,
        standard_model: str,
        unrestricted_model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout: float = 300.0,
    ):
        self.client = client
        self.tones = tones
        self.standard_model = standard_model
        self.unrestricted_model = unrestricted_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def _request(self, model: str, prompt: str, system: str = "") -> InferenceRequest:
        return InferenceRequest(
            model=model,
            prompt=prompt,
            system=system,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )

    # Stage A

    def _selection_prompt(
        self, articles: Sequence[Article], special_instructions: str
    ) -> str:
        lines = [
            "You are a news editor selecting articles for a digest. "
            f"From the following {len(articles)} articles, select exactly "
            f"{TARGET_ARTICLE_COUNT} that are most important and cover diverse topics.",
            "",
        ]
        if special_instructions:
            lines.append(
                "If these special instructions pertain to article selection, use them. "
                "If they do not, ignore them. Do not comment on whether or not you "
                f"used them: {special_instructions}"
            )
            lines.append("")
        lines.append(
            "Return ONLY comma-separated numbers (e.g., 1,3,7,12). No explanations."
        )
        lines.append("")
        for i, article in enumerate(articles, start=1):
            lines.append(f"{i}. {article.title}")
            if article.description:
                description = strip_tags(article.description)
                lines.append(f"   {_truncate(description, MAX_DESCRIPTION_LENGTH)}")
            lines.append("")
        return "\n".join(lines)

    def select_articles(
        self, articles: Sequence[Article], special_instructions: str = ""
    ) -> List[Article]:
        """Chooses a representative subset, or returns the input unchanged."""
        if len(articles) <= MAX_ARTICLES_FOR_SELECTION:
            return list(articles)

        try:
            response = self.client.generate(
                self._request(
                    self.standard_model,
                    self._selection_prompt(articles, special_instructions),
                )
            )
            indices = parse_indices(response, len(articles))
            if not indices:
                raise SelectionFailure(
                    f"No valid article indices in selection reply: {response[:200]!r}"
                )
        except (InferenceError, SelectionFailure) as e:
            logger.warning("Article selection failed, using all %d articles: %s", len(articles), e)
            return list(articles)

        logger.info("Selected articles %s (from %d total)", indices, len(articles))
        return [articles[i - 1] for i in indices]

    # Stage B

    def _extract_one(self, article: Article) -> str:
        source_text = article.description or article.content
        if not source_text:
            return article.title

        prompt = (
            "Extract the key information from this article into 2-3 plain text "
            "sentences.\n"
            "Remove all HTML and formatting. Remove marketing language and opinion.\n"
            "Focus on information, events, and data.\n\n"
            f"Title: {article.title}\n"
            f"Content: {source_text}\n\n"
            "Return only 2-3 sentences with no HTML:"
        )
        try:
            response = self.client.generate(self._request(self.standard_model, prompt))
        except InferenceError as e:
            raise ExtractionFailure(str(e)) from e

        facts = strip_tags(response)
        if not facts:
            raise ExtractionFailure("Extraction returned no text")
        return facts

    def extract_facts(self, articles: Sequence[Article]) -> List[ArticleFacts]:
        """Compresses every article into plain facts, never dropping one."""
        results = []
        for i, article in enumerate(articles, start=1):
            logger.info("Extracting facts %d/%d: %s", i, len(articles), article.title)
            try:
                facts = self._extract_one(article)
            except ExtractionFailure as e:
                logger.warning(
                    "Extraction failed for %s, using feed content: %s", article.link, e
                )
                facts = article.description or article.content
            results.append(ArticleFacts(article=article, facts=facts))
        return results

    # Stage C

    def _generation_prompt(
        self,
        facts: Sequence[ArticleFacts],
        tone_prompt: str,
        language: str,
        special_instructions: str,
    ) -> str:
        parts = [f"Please provide a summary of the following articles using this tone: {tone_prompt}"]
        if language and language.strip().lower() != "english":
            parts.append(f" Please write the summary in {language}.")
        if special_instructions:
            parts.append(f" Special instructions: {special_instructions}")
        parts.append(
            "\n\nFORMATTING REQUIREMENTS:\n"
            "- Output HTML markup only; it is embedded directly into an email.\n"
            "- Write paragraphs of prose, not a list.\n"
            "- Link each story to its article with an <a href> tag inside the text.\n"
            "- Do not print raw URLs.\n\n"
            "Cleaned articles (factual content only):\n\n"
        )
        for i, item in enumerate(facts, start=1):
            parts.append(
                f"{i}. **{item.article.title}**\n"
                f"   Facts: {item.facts}\n"
                f"   Source: {item.article.link}\n\n"
            )
        return "".join(parts)

    def generate_summary(
        self,
        facts: Sequence[ArticleFacts],
        tone: str,
        language: str,
        special_instructions: str = "",
    ) -> str:
        """Writes the final summary. Raises GenerationFailure on any error."""
        tone_prompt = self.tones.resolve_prompt(tone)
        model = select_model(tone, self.standard_model, self.unrestricted_model)
        logger.info("Generating summary with model %s (tone: %s)", model, tone)

        prompt = self._generation_prompt(facts, tone_prompt, language, special_instructions)
        try:
            response = self.client.generate(
                self._request(model, prompt, system_message_for(tone))
            )
        except InferenceError as e:
            raise GenerationFailure(f"Summary generation failed: {e}") from e

        summary = _BLANK_LINES_RE.sub("\n\n", response).strip()
        if not summary:
            raise GenerationFailure("Summary generation returned no text")
        return summary

    def summarize(
        self,
        articles: Sequence[Article],
        tone: str,
        language: str,
        special_instructions: str = "",
    ) -> str:
        """Runs all three stages and returns the final summary."""
        if not articles:
            raise GenerationFailure("No articles to summarize")

        logger.info(
            "Starting summarization for %d articles (tone: %s, language: %s)",
            len(articles),
            tone,
            language,
        )
        selected = self.select_articles(articles, special_instructions)
        facts = self.extract_facts(selected)
        summary = self.generate_summary(facts, tone, language, special_instructions)
        logger.info("Generated summary (%d chars)", len(summary))
        return summary
