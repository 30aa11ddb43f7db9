"""Provider contract shared by all processing steps."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, ClassVar, Protocol

import httpx

from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import (
    DataFormatError,
    ProviderError,
    SourceUnavailableError,
    StepConfigurationError,
)
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

logger = logging.getLogger(__name__)


class Provider(Protocol):
    """Interface for one category of work against a vocabulary version."""

    kind: ProviderKind

    def execute(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        """Run the step; failures are reported in the outcome, never raised."""
        raise NotImplementedError


class BaseProvider:
    """Converts step-level errors into failed outcomes.

    Subclasses implement ``run`` and raise ``ProviderError`` subclasses for
    expected failures.
    """

    kind: ClassVar[ProviderKind]

    def execute(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        try:
            return self.run(config, context)
        except ProviderError as error:
            return StepOutcome.failure(error.message, code=error.code, retryable=error.retryable)
        except httpx.TimeoutException as error:
            return _failure_from(SourceUnavailableError(message=f"Request timed out: {error}"))
        except httpx.HTTPError as error:
            return _failure_from(SourceUnavailableError(message=f"HTTP error: {error}"))
        except json.JSONDecodeError as error:
            return _failure_from(DataFormatError(message=f"Invalid JSON: {error}"))
        except OSError as error:
            return StepOutcome.failure(f"Filesystem error: {error}", code="io_error")

    def run(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        raise NotImplementedError


def _failure_from(error: ProviderError) -> StepOutcome:
    logger.warning("%s", error.message)
    return StepOutcome.failure(error.message, code=error.code, retryable=error.retryable)


def require_str(config: Mapping[str, Any], key: str) -> str:
    value = config.get(key)
    if not isinstance(value, str) or not value.strip():
        raise StepConfigurationError(message=f"Config key {key!r} is required.")
    return value.strip()


def optional_str(config: Mapping[str, Any], key: str, default: str = "") -> str:
    value = config.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise StepConfigurationError(message=f"Config key {key!r} must be a string.")
    return value.strip()


def optional_float(config: Mapping[str, Any], key: str, default: float) -> float:
    value = config.get(key, default)
    if isinstance(value, bool):
        raise StepConfigurationError(message=f"Config key {key!r} must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError) as error:
        raise StepConfigurationError(
            message=f"Config key {key!r} must be a number, got {value!r}.",
        ) from error
    if number <= 0:
        raise StepConfigurationError(message=f"Config key {key!r} must be > 0.")
    return number


def write_json(path: Path, payload: object) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)
    return path


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))
