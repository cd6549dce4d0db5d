"""Stage-based pipeline orchestration.

The orchestrator walks the stage graph in topological order, skips stages
whose artifacts are fresh and runs the others one at a time. The first
failure halts the plan: nothing downstream runs, the failed stage's partial
outputs are discarded, and re-running the same plan later resumes exactly at
the failed stage.
"""

from __future__ import annotations

import json
import logging
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from bolt_repro.errors import PipelineError, StageError
from bolt_repro.graph import Stage, StageContext, StageGraph
from bolt_repro.process import ProcessRunner
from bolt_repro.store import ArtifactStore

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StageOutcome:
    """Result recorded for one stage of a run."""

    name: str
    status: StageStatus = StageStatus.PENDING
    details: Dict[str, Any] = field(default_factory=dict)
    log_path: Optional[Path] = None
    duration: float = 0.0


@dataclass(frozen=True)
class PlannedStage:
    stage_id: str
    will_run: bool
    reason: str
    description: str = ""


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered stages for one invocation, with a run/skip prediction each."""

    entries: List[PlannedStage]

    @property
    def stage_ids(self) -> List[str]:
        return [entry.stage_id for entry in self.entries]

    @property
    def to_run(self) -> List[str]:
        return [entry.stage_id for entry in self.entries if entry.will_run]


class Orchestrator:
    """Run a :class:`StageGraph` with memoization and fail-stop semantics.

    Args:
        graph: Stages to run.
        store: Freshness oracle for stage outputs.
        runner: Process runner handed to stage actions.
        log_dir: Directory receiving one ``<stage-id>.log`` per stage.
        summary_path: Where to write the JSON run summary, if anywhere.
        retries: Extra attempts for a failed stage. Defaults to none, since
            build failures usually need an operator.
    """

    def __init__(
        self,
        graph: StageGraph,
        store: ArtifactStore,
        runner: ProcessRunner,
        log_dir: Path,
        summary_path: Optional[Path] = None,
        retries: int = 0,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be non-negative")
        self.graph = graph
        self.store = store
        self.runner = runner
        self.log_dir = Path(log_dir)
        self.summary_path = summary_path
        self.retries = retries
        self.outcomes: List[StageOutcome] = []

    def log_path(self, stage_id: str) -> Path:
        return self.log_dir / f"{stage_id}.log"

    def _stale_reason(self, stage: Stage, changed: Set[str]) -> Optional[str]:
        upstream = [dep for dep in stage.deps if dep in changed]
        if upstream:
            return f"dependency {upstream[0]} runs first"
        if not stage.outputs:
            return "no declared outputs"
        if self.store.in_progress(stage):
            return "previous attempt did not finish"
        if not self.store.is_satisfied(stage, self.graph.dependency_outputs(stage.id)):
            return "outputs missing or older than dependencies"
        return None

    def plan(self, targets: Optional[Iterable[str]] = None) -> ExecutionPlan:
        """Predict which stages a run would execute, without running any."""
        order = self.graph.topological_order(targets)
        changed: Set[str] = set()
        entries: List[PlannedStage] = []
        for stage_id in order:
            stage = self.graph[stage_id]
            reason = self._stale_reason(stage, changed)
            if reason is not None:
                changed.add(stage_id)
            entries.append(
                PlannedStage(
                    stage_id=stage_id,
                    will_run=reason is not None,
                    reason=reason or "up to date",
                    description=stage.description,
                )
            )
        return ExecutionPlan(entries)

    def run(self, targets: Optional[Iterable[str]] = None) -> List[StageOutcome]:
        """Execute every stale stage needed for ``targets`` (default: all).

        Raises:
            CycleError: If the graph has a cycle; nothing runs.
            PipelineError: The first stage failure, with stage id and log path.
        """
        order = self.graph.topological_order(targets)
        self.outcomes = [StageOutcome(name=stage_id) for stage_id in order]
        changed: Set[str] = set()

        for outcome in self.outcomes:
            stage = self.graph[outcome.name]
            reason = self._stale_reason(stage, changed)
            if reason is None:
                outcome.status = StageStatus.SKIPPED
                logger.info("[skip] %s (up to date)", stage.id)
                continue

            outcome.status = StageStatus.RUNNING
            outcome.log_path = self.log_path(stage.id)
            outcome.details["reason"] = reason
            logger.info("[run ] %s (%s)", stage.id, reason)
            start = time.monotonic()
            try:
                self._execute(stage, outcome.log_path)
            except BaseException as exc:
                outcome.duration = time.monotonic() - start
                outcome.status = StageStatus.FAILED
                if isinstance(exc, PipelineError):
                    exc.attach(stage_id=stage.id, log_path=outcome.log_path)
                    outcome.details.update(_error_details(exc))
                    logger.error("Stage %s failed; see %s", stage.id, exc.log_path)
                else:
                    outcome.details["error"] = repr(exc)
                    logger.error("Stage %s aborted: %r", stage.id, exc)
                self._write_summary()
                raise
            outcome.duration = time.monotonic() - start
            outcome.status = StageStatus.SUCCEEDED
            changed.add(stage.id)

        self._write_summary()
        return self.outcomes

    def _execute(self, stage: Stage, log_path: Path) -> None:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.write_text(
                f"# stage {stage.id} attempt {attempt} started {datetime.now().isoformat()}\n",
                encoding="utf-8",
            )
            context = StageContext(stage=stage, runner=self.runner, log_file=log_path)
            self.store.begin(stage)
            try:
                self._invoke(stage, context)
                return
            except PipelineError:
                self.store.abort(stage)
                if attempt == attempts:
                    raise
                logger.warning("Stage %s failed, retrying (%d/%d)", stage.id, attempt, self.retries)
            except BaseException:
                self.store.abort(stage)
                raise

    def _invoke(self, stage: Stage, context: StageContext) -> None:
        """Run the action and commit, reporting unexpected errors as stage errors."""
        try:
            stage.action(context)
            self.store.commit(stage, log_path=context.log_file)
        except PipelineError:
            raise
        except Exception as exc:
            with open(context.log_file, "a", encoding="utf-8") as handle:
                handle.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
            raise StageError(
                f"{type(exc).__name__}: {exc}",
                stage_id=stage.id,
                log_path=context.log_file,
            ) from exc

    def _write_summary(self) -> None:
        if self.summary_path is None:
            return
        payload = {
            "generated": datetime.now().isoformat(),
            "stages": [
                {
                    "name": outcome.name,
                    "status": outcome.status.value,
                    "duration": round(outcome.duration, 3),
                    "log": str(outcome.log_path) if outcome.log_path else None,
                    "details": outcome.details,
                }
                for outcome in self.outcomes
            ],
        }
        summary_path = Path(self.summary_path)
        summary_path.parent.mkdir(parents=True, exist_ok=True)
        summary_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _error_details(exc: PipelineError) -> Dict[str, Any]:
    return {
        "error": exc.message,
        "error_type": type(exc).__name__,
        "command": list(exc.command) if exc.command else None,
        "exit_code": exc.exit_code,
        "log": str(exc.log_path) if exc.log_path else None,
    }


__all__ = ["ExecutionPlan", "Orchestrator", "PlannedStage", "StageOutcome", "StageStatus"]
