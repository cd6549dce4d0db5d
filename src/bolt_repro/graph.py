"""Stage definitions and the dependency graph between them."""

from __future__ import annotations

import hashlib
import heapq
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from bolt_repro.errors import CycleError
from bolt_repro.process import Command, ProcessRunner


@dataclass(frozen=True)
class StageContext:
    """Execution context handed to a stage action."""

    stage: "Stage"
    runner: ProcessRunner
    log_file: Path

    def run(self, command: Command):
        """Run a command, logging to the stage log, raising on failure."""
        return self.runner.run_command(command, log_file=self.log_file, stage_id=self.stage.id)

    def note(self, message: str) -> None:
        """Append a line to the stage log."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as handle:
            handle.write(f"# {message}\n")


StageAction = Callable[[StageContext], None]


@dataclass(frozen=True)
class CommandAction:
    """Stage action running a fixed sequence of command templates."""

    commands: Tuple[Command, ...]

    def __call__(self, ctx: StageContext) -> None:
        for command in self.commands:
            ctx.run(command)


def run_commands(*commands: Command) -> CommandAction:
    return CommandAction(tuple(commands))


@dataclass(frozen=True)
class Stage:
    """Single pipeline stage.

    Attributes:
        id: Unique stage identifier.
        action: Callable doing the stage's work.
        deps: Identifiers of the stages this one depends on.
        outputs: Artifacts the stage owns and produces.
        inputs: External files consumed but produced by no stage.
        description: One-line summary shown in plans.
    """

    id: str
    action: StageAction
    deps: Tuple[str, ...] = ()
    outputs: Tuple[Path, ...] = ()
    inputs: Tuple[Path, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "deps", tuple(self.deps))
        object.__setattr__(self, "outputs", tuple(Path(p) for p in self.outputs))
        object.__setattr__(self, "inputs", tuple(Path(p) for p in self.inputs))

    @property
    def commands(self) -> Tuple[Command, ...]:
        """Command templates, when the action is a plain command sequence."""
        return getattr(self.action, "commands", ())

    @property
    def key(self) -> str:
        """Idempotency key derived from the stage's identity, inputs and outputs."""
        digest = hashlib.sha256()
        for part in (self.id, *self.deps, *map(str, self.outputs), *map(str, self.inputs)):
            digest.update(part.encode("utf-8"))
            digest.update(b"\0")
        return digest.hexdigest()[:16]


class StageGraph:
    """Directed acyclic graph of stages, ordered deterministically."""

    def __init__(self) -> None:
        self._stages: Dict[str, Stage] = {}
        self._order: Dict[str, int] = {}

    def add_stage(self, stage: Stage) -> Stage:
        if stage.id in self._stages:
            raise ValueError(f"Duplicate stage id '{stage.id}'")
        self._order[stage.id] = len(self._order)
        self._stages[stage.id] = stage
        return stage

    def add(
        self,
        stage_id: str,
        action: StageAction,
        deps: Sequence[str] = (),
        outputs: Sequence[Path] = (),
        inputs: Sequence[Path] = (),
        description: str = "",
    ) -> Stage:
        return self.add_stage(
            Stage(
                id=stage_id,
                action=action,
                deps=tuple(deps),
                outputs=tuple(outputs),
                inputs=tuple(inputs),
                description=description,
            )
        )

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    def __getitem__(self, stage_id: str) -> Stage:
        return self._stages[stage_id]

    def __len__(self) -> int:
        return len(self._stages)

    @property
    def stage_ids(self) -> List[str]:
        """Stage ids in declaration order."""
        return list(self._stages)

    def ancestors(self, targets: Iterable[str]) -> Set[str]:
        """The targets together with every stage they transitively depend on."""
        seen: Set[str] = set()
        stack = list(targets)
        while stack:
            stage_id = stack.pop()
            if stage_id in seen:
                continue
            self._require(stage_id)
            seen.add(stage_id)
            stack.extend(self._stages[stage_id].deps)
        return seen

    def topological_order(self, targets: Optional[Iterable[str]] = None) -> List[str]:
        """Order stages so every stage follows its dependencies.

        Stages with no ordering constraint between them keep their
        declaration order, so the result is the same on every call.

        Raises:
            CycleError: If the (selected part of the) graph has a cycle.
            ValueError: If a stage id or dependency is unknown.
        """
        selected = self.ancestors(targets) if targets is not None else set(self._stages)
        for stage_id in selected:
            for dep in self._stages[stage_id].deps:
                self._require(dep, referrer=stage_id)

        indegree = {stage_id: 0 for stage_id in selected}
        dependents: Dict[str, List[str]] = {stage_id: [] for stage_id in selected}
        for stage_id in selected:
            for dep in set(self._stages[stage_id].deps):
                indegree[stage_id] += 1
                dependents[dep].append(stage_id)

        ready = [(self._order[s], s) for s, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        order: List[str] = []
        while ready:
            _, stage_id = heapq.heappop(ready)
            order.append(stage_id)
            for child in dependents[stage_id]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._order[child], child))

        if len(order) != len(selected):
            remaining = selected.difference(order)
            raise CycleError(self._find_cycle(remaining))
        return order

    def dependency_outputs(self, stage_id: str) -> List[Path]:
        """Artifacts a stage's freshness is checked against."""
        stage = self._stages[stage_id]
        paths: List[Path] = []
        for dep in stage.deps:
            paths.extend(self._stages[dep].outputs)
        paths.extend(stage.inputs)
        return paths

    def _require(self, stage_id: str, referrer: Optional[str] = None) -> None:
        if stage_id not in self._stages:
            if referrer is not None:
                raise ValueError(f"Stage '{referrer}' depends on unknown stage '{stage_id}'")
            raise ValueError(f"Unknown stage '{stage_id}'")

    def _find_cycle(self, remaining: Set[str]) -> List[str]:
        # Every stage left over has an unresolved dependency inside the set,
        # so walking dependencies must revisit a stage.
        start = min(remaining, key=self._order.__getitem__)
        path: List[str] = []
        position: Dict[str, int] = {}
        current = start
        while current not in position:
            position[current] = len(path)
            path.append(current)
            current = next(d for d in self._stages[current].deps if d in remaining)
        cycle = path[position[current]:]
        cycle.reverse()
        return cycle + [cycle[0]]
