"""Artifact freshness tracking backed by the filesystem.

Nothing is cached between calls: every answer is recomputed from file
modification times and in-progress markers on disk, so manual deletion or
touching of artifacts is always honoured.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Optional

from bolt_repro.errors import BuildError
from bolt_repro.graph import Stage

logger = logging.getLogger(__name__)


def mtime(path: Path) -> Optional[int]:
    """Modification marker of ``path`` in nanoseconds, or None if absent."""
    try:
        return os.stat(path).st_mtime_ns
    except (FileNotFoundError, NotADirectoryError):
        return None


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree if it exists."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class ArtifactStore:
    """Decide whether stage outputs are up to date.

    Args:
        state_dir: Directory for in-progress markers. A marker exists from
            the moment a stage starts until it completes successfully, so
            outputs of an interrupted stage are recognizably stale.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    def is_fresh(self, artifact: Path, dependencies: Iterable[Path]) -> bool:
        """True if ``artifact`` exists and is not older than any dependency."""
        own = mtime(artifact)
        if own is None:
            return False
        for dependency in dependencies:
            other = mtime(dependency)
            if other is None or other > own:
                return False
        return True

    def marker_path(self, stage: Stage) -> Path:
        return self.state_dir / f"{stage.id}.inprogress"

    def in_progress(self, stage: Stage) -> bool:
        return self.marker_path(stage).exists()

    def is_satisfied(self, stage: Stage, dependency_artifacts: Iterable[Path]) -> bool:
        """True if the stage has outputs, all fresh, and did not stop midway."""
        if not stage.outputs or self.in_progress(stage):
            return False
        dependencies = list(dependency_artifacts)
        return all(self.is_fresh(output, dependencies) for output in stage.outputs)

    def begin(self, stage: Stage) -> None:
        """Mark ``stage`` as running and drop its stale outputs."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.marker_path(stage).write_text(stage.key + "\n", encoding="utf-8")
        for output in stage.outputs:
            if mtime(output) is not None or output.is_symlink():
                logger.debug("Removing stale artifact %s", output)
                remove_path(output)

    def record(self, artifact: Path) -> None:
        """Stamp ``artifact`` as produced now."""
        os.utime(artifact)

    def commit(self, stage: Stage, log_path: Optional[Path] = None) -> None:
        """Record a successful stage; every declared output must exist."""
        missing = [str(p) for p in stage.outputs if mtime(p) is None]
        if missing:
            raise BuildError(
                f"Stage finished without producing {', '.join(missing)}",
                stage_id=stage.id,
                log_path=log_path,
            )
        for output in stage.outputs:
            self.record(output)
        self.marker_path(stage).unlink(missing_ok=True)

    def abort(self, stage: Stage) -> None:
        """Discard partial outputs of a failed or interrupted stage.

        The in-progress marker stays, so even outputs that could not be
        removed are never mistaken for complete ones.
        """
        for output in stage.outputs:
            try:
                remove_path(output)
            except OSError as exc:
                logger.warning("Could not remove partial artifact %s: %s", output, exc)
