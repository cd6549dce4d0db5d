"""Registry of workload pipelines."""

from __future__ import annotations

from typing import Callable

from bolt_repro.datatypes import BenchConfig, Workload
from bolt_repro.layout import Layout

from .clang import build_clang_pipeline
from .common import WorkloadPipeline
from .gcc import build_gcc_pipeline

PipelineBuilder = Callable[[BenchConfig, Layout], WorkloadPipeline]

WORKLOADS: dict[Workload, PipelineBuilder] = {
    Workload.CLANG: build_clang_pipeline,
    Workload.GCC: build_gcc_pipeline,
}

__all__ = ["WORKLOADS", "WorkloadPipeline"]
