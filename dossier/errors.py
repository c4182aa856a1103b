"""
Error taxonomy for the Dossier digest engine.

Recoverable failures (fetch, selection, extraction, tone resolution) are
logged and degraded where they happen. Fatal failures carry the stage they
came from so the scheduler can report which part of a run aborted it.
"""

from typing import Optional


class DossierError(Exception):
    """Base class for all Dossier errors."""

    stage: Optional[str] = None

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ConfigValidationError(DossierError):
    """Raised when a configuration or settings value fails validation."""


class StoreError(DossierError):
    """Raised when the persistence store cannot complete an operation."""


class FetchFailure(DossierError):
    """One feed source was unreachable or malformed."""

    stage = "fetch"


class AggregationEmpty(DossierError):
    """Every feed source failed or produced nothing."""

    stage = "aggregate"


class InferenceError(DossierError):
    """The inference endpoint failed or returned nothing usable."""


class SelectionFailure(DossierError):
    """The selection reply could not be turned into valid indices."""

    stage = "select"


class ExtractionFailure(DossierError):
    """Factual extraction failed for a single article."""

    stage = "extract"


class GenerationFailure(DossierError):
    """The final tone-conditioned summary could not be generated."""

    stage = "generate"


class ToneResolutionFailure(DossierError):
    """A tone name could not be resolved to a style prompt."""

    stage = "tone"


class ToneError(DossierError):
    """Raised for invalid tone mutations, such as editing a system default."""


class TemplateFailure(DossierError):
    """The delivery message could not be rendered."""

    stage = "compose"


class TransportFailure(DossierError):
    """The mail transport failed to deliver the message."""

    stage = "transport"
