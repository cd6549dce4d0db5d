"""BOLT Evaluation Reproduction Pipeline.

Builds clang or gcc in several configurations (baseline, PGO, BOLT and
PGO+BOLT), times each one building clang and reports the relative speedups.
"""

__version__ = "0.1.0"

from bolt_repro.datatypes import (
    BenchConfig,
    ComparisonResult,
    Configuration,
    SampleStats,
    TrialSample,
    Workload,
)

__all__ = [
    "BenchConfig",
    "ComparisonResult",
    "Configuration",
    "SampleStats",
    "TrialSample",
    "Workload",
]
