"""
Data models for the Dossier application.

Values read from the database or a JSON payload are decoded through the
``from_mapping`` constructors, which validate them before they reach the
scheduler or the pipeline.
"""

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dossier.errors import ConfigValidationError

MIN_ARTICLE_COUNT = 1
MAX_ARTICLE_COUNT = 50

UNRESTRICTED_TONE = "sweary"


class Frequency(str, enum.Enum):
    """How often a dossier is delivered."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def utcnow() -> datetime.datetime:
    """Returns the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def parse_delivery_time(value: Any) -> datetime.time:
    """Parses a time of day from "HH:MM", "HH:MM:SS" or a time value."""
    if isinstance(value, datetime.datetime):
        return value.time().replace(second=0, microsecond=0, tzinfo=None)
    if isinstance(value, datetime.time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    if isinstance(value, str):
        text = value.strip()
        for fmt in ("%H:%M", "%H:%M:%S"):
            try:
                return datetime.datetime.strptime(text, fmt).time()
            except ValueError:
                continue
    raise ConfigValidationError(f"Invalid delivery time: {value!r}")


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"Field '{key}' is required")
    return value.strip()


def _optional_str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigValidationError(f"Field '{key}' must be a string")
    return value.strip() or default


@dataclass(frozen=True)
class DossierConfig:
    """A saved recurring-digest configuration."""

    id: int
    title: str
    email: str
    feed_urls: Tuple[str, ...]
    article_count: int
    frequency: Frequency
    delivery_time: datetime.time
    timezone: str = "UTC"
    tone: str = "professional"
    language: str = "English"
    special_instructions: str = ""
    active: bool = True
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DossierConfig":
        """Decodes and validates a configuration from a row or JSON object."""
        config_id = data.get("id")
        if isinstance(config_id, bool) or not isinstance(config_id, int):
            raise ConfigValidationError("Field 'id' must be an integer")

        email = _require_str(data, "email")
        if "@" not in email:
            raise ConfigValidationError(f"Invalid recipient address: {email!r}")

        raw_urls = data.get("feed_urls")
        if isinstance(raw_urls, str) or not raw_urls:
            raise ConfigValidationError("Field 'feed_urls' must be a non-empty list")
        feed_urls = tuple(str(u).strip() for u in raw_urls if str(u).strip())
        if not feed_urls:
            raise ConfigValidationError("Field 'feed_urls' must be a non-empty list")

        article_count = data.get("article_count", 20)
        if isinstance(article_count, bool) or not isinstance(article_count, int):
            raise ConfigValidationError("Field 'article_count' must be an integer")
        if not MIN_ARTICLE_COUNT <= article_count <= MAX_ARTICLE_COUNT:
            raise ConfigValidationError(
                f"Field 'article_count' must be between {MIN_ARTICLE_COUNT} "
                f"and {MAX_ARTICLE_COUNT}"
            )

        raw_frequency = data.get("frequency", "")
        if isinstance(raw_frequency, Frequency):
            raw_frequency = raw_frequency.value
        try:
            frequency = Frequency(str(raw_frequency).strip().lower())
        except ValueError as e:
            raise ConfigValidationError(
                f"Invalid frequency: {data.get('frequency')!r}"
            ) from e

        timezone = _optional_str(data, "timezone", "UTC")
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigValidationError(f"Unknown timezone: {timezone!r}") from e

        return cls(
            id=config_id,
            title=_require_str(data, "title"),
            email=email,
            feed_urls=feed_urls,
            article_count=article_count,
            frequency=frequency,
            delivery_time=parse_delivery_time(data.get("delivery_time")),
            timezone=timezone,
            tone=_optional_str(data, "tone", "professional"),
            language=_optional_str(data, "language", "English"),
            special_instructions=_optional_str(data, "special_instructions"),
            active=bool(data.get("active", True)),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class FeedItem:
    """A single entry as produced by the feed parsing boundary."""

    title: str
    link: str
    description: str = ""
    content: str = ""
    author: str = ""
    published_at: Optional[datetime.datetime] = None


@dataclass(frozen=True)
class Article:
    """A normalized article fetched from one feed source."""

    feed_url: str
    title: str
    link: str
    description: str
    content: str
    author: str
    published_at: datetime.datetime
    fetched_at: datetime.datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass(frozen=True)
class Tone:
    """A named style preset for the generated summary."""

    name: str
    prompt: str
    is_system_default: bool = False
    id: Optional[int] = None

    @property
    def requires_unrestricted_language(self) -> bool:
        return tone_requires_unrestricted_language(self.name)


def tone_requires_unrestricted_language(name: str) -> bool:
    """Whether a tone must be routed to the less-filtered model."""
    return name == UNRESTRICTED_TONE or "uncensored" in name.lower()


@dataclass(frozen=True)
class Delivery:
    """Persisted proof that a dossier was generated for a configuration."""

    config_id: int
    delivered_at: datetime.datetime
    summary: str
    article_count: int
    success: bool
    article_ids: Tuple[int, ...] = ()
    id: Optional[int] = None


@dataclass(frozen=True)
class RunResult:
    """Outcome of one orchestration call."""

    success: bool
    message: str
    delivery: Optional[Delivery] = None
