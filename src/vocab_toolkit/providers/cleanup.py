"""Cleanup provider: release temporary run artifacts."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from vocab_toolkit.providers.base import BaseProvider
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import StepConfigurationError
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

logger = logging.getLogger(__name__)

CLEANED_PATHS = "cleaned_paths"


class CleanupProvider(BaseProvider):
    """Removes the run scratch dir, recorded temporary paths and configured extras."""

    kind = ProviderKind.CLEANUP

    def run(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        paths = list(context.temporary_paths) + _extra_paths(config)
        removed = 0
        for path in paths:
            if _remove(path):
                removed += 1
        context.forget_temporary()
        logger.info(
            "Cleanup removed %d of %d paths (vocabulary=%s version=%s).",
            removed,
            len(paths),
            context.vocabulary_id,
            context.version_id,
        )
        return StepOutcome.success(
            f"Removed {removed} temporary paths.",
            **{CLEANED_PATHS: str(removed)},
        )


def _extra_paths(config: Mapping[str, Any]) -> list[Path]:
    raw = config.get("paths") or []
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise StepConfigurationError(message="Config key 'paths' must be a list of strings.")
    return [Path(item) for item in raw]


def _remove(path: Path) -> bool:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False
