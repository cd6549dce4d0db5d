"""Tests for result files and summary tables."""

import json

import pytest

from bolt_repro.datatypes import TrialSample
from bolt_repro.errors import AggregationError
from bolt_repro.reporting import (
    ReportWriter,
    create_comparison_table,
    format_report_line,
    format_table_for_display,
)
from bolt_repro.reporting.report import comparison_to_dict
from bolt_repro.stats import build_comparison


def samples(name, values):
    return [TrialSample(configuration=name, index=i, value=v) for i, v in enumerate(values, start=1)]


def comparison(treatment="clangbolt", baseline_values=(100, 100, 100), treatment_values=(80, 80, 80)):
    return build_comparison(
        samples("stage1", baseline_values),
        samples(treatment, treatment_values),
        baseline_name="stage1",
        treatment_name=treatment,
    )


class TestSamples:
    """Test raw sample dumps."""

    def test_write_and_read(self, tmp_path):
        """Samples read back equal the samples written."""
        writer = ReportWriter(tmp_path)
        original = samples("clangpgo", [1.5, 2.5, 3.25])
        path = writer.write_samples("clangpgo", original)

        assert path == tmp_path / "measurements.clangpgo.csv"
        assert writer.read_samples("clangpgo") == original
        assert not list(tmp_path.glob(".*.tmp"))

    def test_missing_file(self, tmp_path):
        """Reading samples that were never measured fails."""
        with pytest.raises(AggregationError, match="does not exist"):
            ReportWriter(tmp_path).read_samples("stage1")

    def test_empty_file(self, tmp_path):
        """An empty sample file fails."""
        (tmp_path / "measurements.stage1.csv").write_text("")
        with pytest.raises(AggregationError):
            ReportWriter(tmp_path).read_samples("stage1")

    def test_non_numeric_value(self, tmp_path):
        """Garbage values are rejected."""
        (tmp_path / "measurements.stage1.csv").write_text(
            "configuration,index,value\nstage1,1,abc\n"
        )
        with pytest.raises(AggregationError, match="non-numeric"):
            ReportWriter(tmp_path).read_samples("stage1")

    def test_missing_column(self, tmp_path):
        """Files without the expected columns are rejected."""
        (tmp_path / "measurements.stage1.csv").write_text("index,value\n1,2.0\n")
        with pytest.raises(AggregationError, match="lacks columns"):
            ReportWriter(tmp_path).read_samples("stage1")


class TestComparisonFiles:
    """Test comparison output and the final report."""

    def test_report_line(self):
        """The verdict names the treatment, delta and trial count."""
        line = format_report_line(comparison())
        assert line == "clangbolt is 25.0000% faster than baseline, average of 3 experiments"

    def test_write_comparison(self, tmp_path):
        """Text and JSON files describe both sides."""
        writer = ReportWriter(tmp_path)
        path = writer.write_comparison(comparison())

        text = path.read_text()
        assert path.name == "comparison.clangbolt.txt"
        assert "SIDE A: Baseline (stage1):" in text
        assert "SIDE B: Treatment (clangbolt):" in text
        assert "Data point 3: 80.000000" in text
        assert "Mean: 100.000000 StdDev: 0.000000" in text

        payload = json.loads((tmp_path / "comparison.clangbolt.json").read_text())
        assert payload["baseline"] == "stage1"
        assert payload["treatment_stats"]["samples"] == [80.0, 80.0, 80.0]
        assert payload["percentage_delta"] == pytest.approx(25.0)

    def test_pgo_comparison_headers(self, tmp_path):
        """Headers name the compared configurations, not the optimizer."""
        text = ReportWriter(tmp_path).write_comparison(comparison("clangpgo")).read_text()
        assert "SIDE B: Treatment (clangpgo):" in text
        assert "Without BOLT" not in text
        assert "With BOLT" not in text

    def test_report_is_append_only(self, tmp_path):
        """Each comparison adds one line to results.txt."""
        writer = ReportWriter(tmp_path)
        writer.append_report(comparison("clangpgo"))
        writer.append_report(comparison("clangbolt"))
        lines = writer.report_path.read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("clangpgo is")
        assert lines[1].startswith("clangbolt is")

    def test_load_comparisons(self, tmp_path):
        """Stored comparisons are found again."""
        writer = ReportWriter(tmp_path)
        writer.write_comparison(comparison("clangpgo"))
        writer.write_comparison(comparison("clangbolt"))
        treatments = [p["treatment"] for p in writer.load_comparisons()]
        assert treatments == ["clangbolt", "clangpgo"]


class TestTables:
    """Test summary tables."""

    def test_table_sorted_by_speedup(self, tmp_path):
        """The fastest treatment comes first."""
        writer = ReportWriter(tmp_path)
        writer.write_comparison(comparison("clangpgo", treatment_values=(90, 90, 90)))
        writer.write_comparison(comparison("clangpgobolt", treatment_values=(50, 50, 50)))
        df = create_comparison_table(writer.load_comparisons())

        assert list(df.index) == ["clangpgobolt", "clangpgo"]
        assert df.loc["clangpgobolt", "Faster_pct"] == pytest.approx(100.0)
        assert df.loc["clangpgo", "Trials"] == 3

    def test_empty_table(self):
        """Without comparisons the display says so."""
        assert format_table_for_display(create_comparison_table([])) == "(no comparison results)"

    def test_display_rounds(self):
        """Floats are rendered with the requested precision."""
        df = create_comparison_table([comparison_to_dict(comparison())])
        text = format_table_for_display(df, decimal_places=1)
        assert "25.0" in text
        assert "25.00" not in text
