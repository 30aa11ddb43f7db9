"""Per-run scratch state shared between subtasks."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

from vocab_toolkit.tasks.errors import StepConfigurationError


class RunContext:
    """Mutable state owned by a single TaskRunner invocation.

    Providers read committed artifacts from here. They hand new artifacts back
    through ``StepOutcome.artifacts`` and the runner commits them only when the
    step succeeded. Scratch space and temporary paths are tracked directly so
    that cleanup sees them even after a failed step.
    """

    def __init__(
        self,
        *,
        vocabulary_id: str,
        version_id: str,
        vocabs_root: Path,
    ) -> None:
        self.vocabulary_id = vocabulary_id
        self.version_id = version_id
        self.vocabs_root = vocabs_root
        self._artifacts: dict[str, str] = {}
        self._scratch_dir: Path | None = None
        self._temporary_paths: list[Path] = []

    @property
    def artifacts(self) -> Mapping[str, str]:
        return MappingProxyType(self._artifacts)

    @property
    def version_dir(self) -> Path:
        return self.vocabs_root / self.vocabulary_id / self.version_id

    @property
    def temporary_paths(self) -> tuple[Path, ...]:
        paths = list(self._temporary_paths)
        if self._scratch_dir is not None:
            paths.append(self._scratch_dir)
        return tuple(paths)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._artifacts.get(key, default)

    def require(self, key: str) -> str:
        value = self._artifacts.get(key)
        if value is None:
            raise StepConfigurationError(
                message=f"Required artifact {key!r} is not available from earlier subtasks.",
                code="missing_artifact",
            )
        return value

    def commit(self, artifacts: Mapping[str, str]) -> None:
        self._artifacts.update(artifacts)

    def scratch_dir(self) -> Path:
        """Create (once) and return a temporary directory for this run."""

        if self._scratch_dir is None:
            self._scratch_dir = Path(
                tempfile.mkdtemp(prefix=f"vocab-{self.vocabulary_id}-{self.version_id}-"),
            )
        return self._scratch_dir

    def release_scratch(self) -> None:
        """Remove the scratch directory if a CLEANUP step has not already done so."""

        if self._scratch_dir is not None:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
            self._scratch_dir = None

    def mark_temporary(self, path: Path) -> None:
        if path not in self._temporary_paths:
            self._temporary_paths.append(path)

    def forget_temporary(self) -> None:
        self._temporary_paths.clear()
        self._scratch_dir = None
