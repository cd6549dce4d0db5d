"""Core data types for the benchmark pipeline.

This module defines the configuration tags and the measurement records
shared by the trial runner, the statistics helpers and the reports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


class Workload(str, Enum):
    """Compiler whose build-time performance is evaluated."""

    CLANG = "clang"
    GCC = "gcc"


class Configuration(str, Enum):
    """Compiler build configuration under comparison."""

    BASELINE = "stage1"
    PGO = "pgo"
    BOLT = "bolt"
    PGOBOLT = "pgobolt"

    def artifact_name(self, workload: Workload) -> str:
        """Directory and file tag used for this configuration, e.g. ``clangpgo``."""
        if self is Configuration.BASELINE:
            return self.value
        return f"{workload.value}{self.value}"

    @property
    def is_optimized(self) -> bool:
        """Whether the post-link optimizer is applied to this configuration."""
        return self in (Configuration.BOLT, Configuration.PGOBOLT)

    @property
    def input_configuration(self) -> "Configuration":
        """Configuration whose install tree is fed to the post-link optimizer."""
        if self is Configuration.BOLT:
            return Configuration.BASELINE
        if self is Configuration.PGOBOLT:
            return Configuration.PGO
        return self


TREATMENTS: Tuple[Configuration, ...] = (
    Configuration.PGO,
    Configuration.BOLT,
    Configuration.PGOBOLT,
)


@dataclass(frozen=True)
class BenchConfig:
    """Configuration for a benchmark reproduction run.

    Attributes:
        workload: Compiler being evaluated.
        root: Working-directory root holding sources, builds and results.
        cores: Job count passed to every build tool invocation.
        trials: Number of measured trials per configuration.
        trial_jobs: Number of trials allowed to run concurrently.
        use_ninja: Generate Ninja build files instead of Makefiles.
        tee: Echo subprocess output to the console besides the log file.
    """
    workload: Workload
    root: Path
    cores: int
    trials: int
    trial_jobs: int = 1
    use_ninja: bool = True
    tee: bool = False


@dataclass(frozen=True)
class TrialSample:
    """One measurement of one trial.

    Attributes:
        configuration: Artifact name of the measured configuration.
        index: 1-based trial number.
        value: Measured task clock in milliseconds.
    """
    configuration: str
    index: int
    value: float


@dataclass(frozen=True)
class SampleStats:
    """Summary statistics of a sample set."""
    n: int
    mean: float
    stddev: float


@dataclass(frozen=True)
class ComparisonResult:
    """Baseline versus treatment comparison.

    Attributes:
        baseline: Artifact name of the baseline configuration.
        treatment: Artifact name of the treatment configuration.
        baseline_samples: Samples measured for the baseline.
        treatment_samples: Samples measured for the treatment.
        baseline_stats: Aggregated baseline statistics.
        treatment_stats: Aggregated treatment statistics.
        percentage_delta: How much faster the treatment is, in percent.
    """
    baseline: str
    treatment: str
    baseline_samples: Tuple[TrialSample, ...]
    treatment_samples: Tuple[TrialSample, ...]
    baseline_stats: SampleStats
    treatment_stats: SampleStats
    percentage_delta: float


@dataclass(frozen=True)
class ExitStatus:
    """Outcome of one external command."""
    command: Tuple[str, ...]
    returncode: int
    log_path: Optional[Path] = None
    duration: float = 0.0
    workdir: Optional[Path] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.returncode == 0
