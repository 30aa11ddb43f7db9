"""Error taxonomy for the task pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vocab_toolkit.tasks.models import Results


@dataclass(slots=True)
class ToolkitError(Exception):
    """Base error for the vocabulary toolkit."""

    message: str
    code: str = "toolkit_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ConfigurationError(ToolkitError):
    """Task description is unusable; the run never starts."""

    code: str = "configuration"


@dataclass(slots=True)
class ConcurrencyConflictError(ToolkitError):
    """A run is already active for the same vocabulary version."""

    code: str = "concurrency_conflict"
    vocabulary_id: str = ""
    version_id: str = ""
    active_task_id: int | None = None


@dataclass(slots=True)
class PersistenceError(ToolkitError):
    """Task store could not record the run.

    When raised after execution, ``results`` holds the computed outcome that
    could not be written.
    """

    code: str = "persistence"
    task_id: int | None = None
    results: Results | None = field(default=None, repr=False)


@dataclass(slots=True)
class ProviderError(ToolkitError):
    """Step-level failure; converted into a failed StepOutcome."""

    code: str = "provider_error"
    retryable: bool = False


@dataclass(slots=True)
class StepConfigurationError(ProviderError):
    """Required provider config key is missing or invalid."""

    code: str = "configuration"


@dataclass(slots=True)
class SourceUnavailableError(ProviderError):
    """External endpoint could not be reached or answered with a server error."""

    code: str = "source_unavailable"
    retryable: bool = True


@dataclass(slots=True)
class DataFormatError(ProviderError):
    """Input data is malformed."""

    code: str = "data_format"


@dataclass(slots=True)
class SinkRejectedError(ProviderError):
    """Downstream sink refused the published content."""

    code: str = "sink_rejected"
