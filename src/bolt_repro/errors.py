"""Error taxonomy for the benchmark pipeline.

Every failure raised while a stage runs derives from :class:`PipelineError`
and carries enough context for an operator to diagnose it: the stage that
failed, the command it was running, the exit code and the single log file
holding the full output of the failing step.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple


class PipelineError(Exception):
    """Base class for failures surfaced by the pipeline."""

    def __init__(
        self,
        message: str,
        *,
        stage_id: Optional[str] = None,
        command: Optional[Sequence[str]] = None,
        exit_code: Optional[int] = None,
        log_path: Optional[Path] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage_id = stage_id
        self.command: Optional[Tuple[str, ...]] = tuple(command) if command is not None else None
        self.exit_code = exit_code
        self.log_path = Path(log_path) if log_path is not None else None

    def attach(
        self,
        *,
        stage_id: Optional[str] = None,
        log_path: Optional[Path] = None,
    ) -> "PipelineError":
        """Fill in stage context that was unknown where the error was raised."""
        if self.stage_id is None:
            self.stage_id = stage_id
        if self.log_path is None and log_path is not None:
            self.log_path = Path(log_path)
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage_id is not None:
            parts.append(f"stage: {self.stage_id}")
        if self.command:
            parts.append(f"command: {' '.join(self.command)}")
        if self.exit_code is not None:
            parts.append(f"exit code: {self.exit_code}")
        if self.log_path is not None:
            parts.append(f"log: {self.log_path}")
        return "\n  ".join(parts)


class StageError(PipelineError):
    """A stage's work failed."""


class DownloadError(StageError):
    """Network or version-control failure while fetching sources."""


class BuildError(StageError):
    """Non-zero exit from a build step, or a build that left no output."""


class ProfileCollectionError(StageError):
    """The sampling tool failed (including missing hardware support)."""


class AggregationError(StageError):
    """Malformed or empty raw sample data."""


class OptimizationToolError(StageError):
    """The binary rewriting tool rejected its input."""


class InsufficientSamplesError(AggregationError):
    """Fewer than two samples are available for a statistic."""


class CycleError(PipelineError):
    """The stage graph has a dependency cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__("Dependency cycle between stages: " + " -> ".join(self.cycle))


class ConfigError(ValueError):
    """Invalid benchmark configuration."""


__all__ = [
    "AggregationError",
    "BuildError",
    "ConfigError",
    "CycleError",
    "DownloadError",
    "InsufficientSamplesError",
    "OptimizationToolError",
    "PipelineError",
    "ProfileCollectionError",
    "StageError",
]
