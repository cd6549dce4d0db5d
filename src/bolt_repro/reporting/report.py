"""Persistence of samples, comparisons and the final report.

This module writes per-configuration raw sample dumps, one comparison file
per baseline/treatment pair, and appends one human-readable line per
comparison to the final report.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pandas as pd

from bolt_repro.datatypes import ComparisonResult, SampleStats, TrialSample
from bolt_repro.errors import AggregationError

SAMPLE_COLUMNS = ["configuration", "index", "value"]


def _atomic_write(path: Path, write) -> Path:
    """Write through a temporary sibling so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    write(tmp_path)
    os.replace(tmp_path, path)
    return path


def format_report_line(result: ComparisonResult) -> str:
    """Render the one-line verdict of a comparison."""
    return (
        f"{result.treatment} is {result.percentage_delta:.4f}% faster than baseline, "
        f"average of {result.treatment_stats.n} experiments"
    )


def _format_side(title: str, samples: Sequence[TrialSample], stats: SampleStats) -> List[str]:
    lines = [title]
    for position, sample in enumerate(samples, start=1):
        lines.append(f"Data point {position}: {sample.value:f}")
    lines.append(f"Mean: {stats.mean:f} StdDev: {stats.stddev:f}")
    return lines


class ReportWriter:
    """Write result artifacts under a results directory.

    Args:
        results_dir: Directory receiving sample, comparison and report files.
        report_name: File name of the append-only final report.
    """

    def __init__(self, results_dir: Path, report_name: str = "results.txt") -> None:
        self.results_dir = Path(results_dir)
        self.report_path = self.results_dir / report_name

    def samples_path(self, configuration: str) -> Path:
        return self.results_dir / f"measurements.{configuration}.csv"

    def comparison_path(self, treatment: str) -> Path:
        return self.results_dir / f"comparison.{treatment}.txt"

    def comparison_json_path(self, treatment: str) -> Path:
        return self.results_dir / f"comparison.{treatment}.json"

    def write_samples(self, configuration: str, samples: Sequence[TrialSample]) -> Path:
        """Dump the raw samples of one configuration as CSV."""
        df = pd.DataFrame(
            [(s.configuration, s.index, s.value) for s in samples],
            columns=SAMPLE_COLUMNS,
        )
        return _atomic_write(
            self.samples_path(configuration),
            lambda tmp: df.to_csv(tmp, index=False),
        )

    def read_samples(self, configuration: str) -> List[TrialSample]:
        """Load samples written by :meth:`write_samples`.

        Raises:
            AggregationError: If the file is missing, empty or malformed.
        """
        path = self.samples_path(configuration)
        if not path.exists():
            raise AggregationError(f"Sample file {path} does not exist")
        try:
            df = pd.read_csv(path)
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
            raise AggregationError(f"Cannot read samples from {path}: {exc}") from None

        missing = set(SAMPLE_COLUMNS) - set(df.columns)
        if missing:
            raise AggregationError(f"Sample file {path} lacks columns {sorted(missing)}")
        if df.empty:
            raise AggregationError(f"Sample file {path} holds no samples")
        values = pd.to_numeric(df["value"], errors="coerce")
        if values.isna().any():
            raise AggregationError(f"Sample file {path} has non-numeric values")

        return [
            TrialSample(configuration=str(cfg), index=int(index), value=float(value))
            for cfg, index, value in zip(df["configuration"], df["index"], values)
        ]

    def write_comparison(self, result: ComparisonResult) -> Path:
        """Write the text and JSON comparison files of one treatment."""
        lines = _format_side(
            f"SIDE A: Baseline ({result.baseline}):",
            result.baseline_samples,
            result.baseline_stats,
        )
        lines += _format_side(
            f"SIDE B: Treatment ({result.treatment}):",
            result.treatment_samples,
            result.treatment_stats,
        )
        lines += ["", format_report_line(result), ""]
        text = "\n".join(lines)

        _atomic_write(
            self.comparison_json_path(result.treatment),
            lambda tmp: tmp.write_text(
                json.dumps(comparison_to_dict(result), indent=2), encoding="utf-8"
            ),
        )
        return _atomic_write(
            self.comparison_path(result.treatment),
            lambda tmp: tmp.write_text(text, encoding="utf-8"),
        )

    def append_report(self, result: ComparisonResult) -> Path:
        """Append the comparison verdict to the final report."""
        self.report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.report_path, "a", encoding="utf-8") as f:
            f.write(format_report_line(result) + "\n")
        return self.report_path

    def load_comparisons(self) -> List[Dict[str, Any]]:
        """Read every comparison JSON present in the results directory."""
        payloads = []
        for path in sorted(self.results_dir.glob("comparison.*.json")):
            payloads.append(json.loads(path.read_text(encoding="utf-8")))
        return payloads


def comparison_to_dict(result: ComparisonResult) -> Dict[str, Any]:
    """Serialize a comparison for JSON."""
    def side(samples: Sequence[TrialSample], stats: SampleStats) -> Dict[str, Any]:
        return {
            "samples": [float(s.value) for s in samples],
            "n": stats.n,
            "mean": stats.mean,
            "stddev": stats.stddev,
        }

    return {
        "baseline": result.baseline,
        "treatment": result.treatment,
        "baseline_stats": side(result.baseline_samples, result.baseline_stats),
        "treatment_stats": side(result.treatment_samples, result.treatment_stats),
        "percentage_delta": result.percentage_delta,
        "timestamp": datetime.now().isoformat(),
    }
