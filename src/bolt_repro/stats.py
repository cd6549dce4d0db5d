"""Statistics over trial samples.

This module aggregates trial measurements and derives the relative speedup
of a treatment configuration over the baseline.
"""

from pathlib import Path
from typing import Iterable, Sequence, Union

import numpy as np

from bolt_repro.datatypes import ComparisonResult, SampleStats, TrialSample
from bolt_repro.errors import AggregationError, InsufficientSamplesError


Sample = Union[TrialSample, float, int]

PERF_STAT_EVENT = "task-clock"


def _values(samples: Iterable[Sample]) -> np.ndarray:
    return np.array(
        [s.value if isinstance(s, TrialSample) else float(s) for s in samples],
        dtype=float,
    )


def aggregate(samples: Iterable[Sample]) -> SampleStats:
    """Compute mean and unbiased sample standard deviation.

    Args:
        samples: Trial samples or plain numbers.

    Returns:
        SampleStats with ``stddev`` using the n-1 denominator.

    Raises:
        InsufficientSamplesError: If fewer than two samples are given.
        AggregationError: If a sample is not finite.
    """
    values = _values(samples)
    if values.size < 2:
        raise InsufficientSamplesError(
            f"At least 2 samples are needed for a standard deviation, got {values.size}"
        )
    if not np.all(np.isfinite(values)):
        raise AggregationError("Samples contain non-finite values")
    return SampleStats(
        n=int(values.size),
        mean=float(np.mean(values)),
        stddev=float(np.std(values, ddof=1)),
    )


def compare(baseline: SampleStats, treatment: SampleStats) -> float:
    """Percentage by which the treatment is faster than the baseline.

    Computed as ``(baseline.mean / treatment.mean - 1) * 100``: a treatment
    needing 80 time units against a baseline of 100 is 25% faster.
    """
    if treatment.mean <= 0:
        raise AggregationError(f"Treatment mean must be positive, got {treatment.mean}")
    return (baseline.mean / treatment.mean - 1.0) * 100.0


def build_comparison(
    baseline: Sequence[TrialSample],
    treatment: Sequence[TrialSample],
    baseline_name: str,
    treatment_name: str,
) -> ComparisonResult:
    """Aggregate both sides and compare them under explicit labels."""
    baseline_stats = aggregate(baseline)
    treatment_stats = aggregate(treatment)
    return ComparisonResult(
        baseline=baseline_name,
        treatment=treatment_name,
        baseline_samples=tuple(baseline),
        treatment_samples=tuple(treatment),
        baseline_stats=baseline_stats,
        treatment_stats=treatment_stats,
        percentage_delta=compare(baseline_stats, treatment_stats),
    )


def parse_perf_stat(path: Path, event: str = PERF_STAT_EVENT) -> float:
    """Read one counter value from ``perf stat -x ,`` output.

    Each data line is ``value,unit,event,...``; comment lines start with
    ``#``. The event may carry a modifier suffix such as ``task-clock:u``.

    Raises:
        AggregationError: If the file is missing, empty or has no usable row.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise AggregationError(f"Measurement file {path} does not exist") from None

    if not text.strip():
        raise AggregationError(f"Measurement file {path} is empty")

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split(",")
        if len(fields) < 3 or fields[2].split(":")[0] != event:
            continue
        try:
            value = float(fields[0])
        except ValueError:
            raise AggregationError(
                f"Malformed {event} value {fields[0]!r} in {path}"
            ) from None
        if not np.isfinite(value):
            raise AggregationError(f"Non-finite {event} value in {path}")
        return value

    raise AggregationError(f"No {event} record found in {path}")
