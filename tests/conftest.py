"""Shared fixtures for pipeline tests."""

import sys
from pathlib import Path

import pytest

from bolt_repro.graph import StageGraph
from bolt_repro.orchestrator import Orchestrator
from bolt_repro.process import ProcessRunner
from bolt_repro.store import ArtifactStore


def python_argv(code: str):
    """Command line running a Python snippet with the current interpreter."""
    return (sys.executable, "-c", code)


@pytest.fixture
def runner():
    return ProcessRunner()


@pytest.fixture
def make_orchestrator(tmp_path: Path, runner):
    """Build an orchestrator with state, logs and summary under ``tmp_path``."""
    def factory(graph: StageGraph, retries: int = 0) -> Orchestrator:
        return Orchestrator(
            graph=graph,
            store=ArtifactStore(tmp_path / ".state"),
            runner=runner,
            log_dir=tmp_path / "logs",
            summary_path=tmp_path / "pipeline_summary.json",
            retries=retries,
        )

    return factory
