"""Assemble and drive the reproduction pipeline for a configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from bolt_repro.datatypes import BenchConfig
from bolt_repro.layout import Layout
from bolt_repro.orchestrator import ExecutionPlan, Orchestrator, StageOutcome
from bolt_repro.process import ProcessRunner
from bolt_repro.recipes import WORKLOADS, WorkloadPipeline
from bolt_repro.store import ArtifactStore, remove_path

logger = logging.getLogger(__name__)

TARGET_GROUPS = ("run-all", "download-sources", "build-all", "results")


def layout_for(config: BenchConfig) -> Layout:
    """Each workload gets its own tree under the working-directory root."""
    return Layout(root=config.root / config.workload.value, workload=config.workload)


@dataclass
class Pipeline:
    config: BenchConfig
    layout: Layout
    workload: WorkloadPipeline
    orchestrator: Orchestrator

    def targets(self, name: Optional[str]) -> Optional[List[str]]:
        """Stage ids of a target group or a single stage; None means everything."""
        if name is None:
            return None
        if name in self.workload.targets:
            return list(self.workload.targets[name])
        if name in self.workload.graph:
            return [name]
        known = ", ".join([*TARGET_GROUPS, *self.workload.graph.stage_ids])
        raise ValueError(f"Unknown target '{name}' (known: {known})")

    def plan(self, target: Optional[str] = None) -> ExecutionPlan:
        return self.orchestrator.plan(self.targets(target))

    def run(self, target: Optional[str] = None) -> List[StageOutcome]:
        logger.info("Running %s for %s under %s", target or "all stages", self.config.workload.value, self.layout.root)
        return self.orchestrator.run(self.targets(target))


def build_pipeline(config: BenchConfig, runner: Optional[ProcessRunner] = None) -> Pipeline:
    layout = layout_for(config)
    workload = WORKLOADS[config.workload](config, layout)
    orchestrator = Orchestrator(
        graph=workload.graph,
        store=ArtifactStore(layout.state),
        runner=runner or ProcessRunner(tee=config.tee),
        log_dir=layout.logs,
        summary_path=layout.summary_file,
    )
    return Pipeline(config=config, layout=layout, workload=workload, orchestrator=orchestrator)


def clean_results(layout: Layout) -> None:
    """Delete measurement results so experiments restart without rebuilding."""
    for path in (layout.results, layout.scratch, layout.summary_file):
        logger.info("Removing %s", path)
        remove_path(path)
    # Markers of interrupted measure/compare stages would outlive their outputs.
    if layout.state.exists():
        for marker in layout.state.glob("*.inprogress"):
            if marker.name.startswith(("measure-", "compare-")):
                marker.unlink()


def distclean(layout: Layout) -> None:
    """Delete results, every build, the downloaded sources and all logs."""
    clean_results(layout)
    for path in (layout.benchmarks, layout.sources, layout.logs, layout.state):
        logger.info("Removing %s", path)
        remove_path(path)


__all__ = ["Pipeline", "build_pipeline", "clean_results", "distclean", "layout_for"]
