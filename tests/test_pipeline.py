"""Tests for pipeline assembly and cleanup."""

import pytest

from bolt_repro.config import parse_config
from bolt_repro.pipeline import build_pipeline, clean_results, distclean, layout_for


def config_for(tmp_path, workload="clang"):
    return parse_config({"workload": workload, "root": tmp_path, "cores": 2, "trials": 3})


class TestBuildPipeline:
    """Test wiring a configuration into an orchestrator."""

    def test_workloads_get_separate_trees(self, tmp_path):
        """Clang and gcc runs never share a directory."""
        assert layout_for(config_for(tmp_path, "clang")).root == tmp_path.resolve() / "clang"
        assert layout_for(config_for(tmp_path, "gcc")).root == tmp_path.resolve() / "gcc"

    def test_target_groups(self, tmp_path):
        """Named groups and single stages are valid targets."""
        pipeline = build_pipeline(config_for(tmp_path))
        assert pipeline.targets(None) is None
        assert pipeline.targets("build-bolt") == ["build-bolt"]
        assert "compare-clangbolt" in pipeline.targets("results")

    def test_unknown_target(self, tmp_path):
        """Unknown targets are rejected with the known ones listed."""
        pipeline = build_pipeline(config_for(tmp_path))
        with pytest.raises(ValueError, match="download-sources"):
            pipeline.targets("download-everything")

    def test_plan_on_empty_tree(self, tmp_path):
        """On a fresh root every stage would run and nothing is created."""
        pipeline = build_pipeline(config_for(tmp_path))
        plan = pipeline.plan("download-sources")
        assert plan.to_run == ["download-llvm", "download-gcc", "download-bolt"]
        assert not pipeline.layout.root.exists()

    def test_orchestrator_paths(self, tmp_path):
        """Logs, markers and the summary live in the workload tree."""
        pipeline = build_pipeline(config_for(tmp_path, "gcc"))
        layout = pipeline.layout
        assert pipeline.orchestrator.log_path("build-bolt") == layout.logs / "build-bolt.log"
        assert pipeline.orchestrator.store.state_dir == layout.state
        assert pipeline.orchestrator.summary_path == layout.summary_file


class TestClean:
    """Test result and full cleanup."""

    def populate(self, layout):
        for path in (layout.results, layout.scratch, layout.benchmarks, layout.sources, layout.logs, layout.state):
            path.mkdir(parents=True)
        (layout.results / "results.txt").write_text("x")
        (layout.state / "measure-stage1.inprogress").write_text("k")
        (layout.state / "build-stage1.inprogress").write_text("k")
        layout.summary_file.write_text("{}")

    def test_clean_keeps_builds(self, tmp_path):
        """Cleaning results leaves sources and builds alone."""
        layout = layout_for(config_for(tmp_path))
        self.populate(layout)
        clean_results(layout)

        assert not layout.results.exists()
        assert not layout.scratch.exists()
        assert not layout.summary_file.exists()
        assert not (layout.state / "measure-stage1.inprogress").exists()
        assert (layout.state / "build-stage1.inprogress").exists()
        assert layout.benchmarks.exists() and layout.sources.exists()

    def test_distclean_removes_everything(self, tmp_path):
        """A full clean leaves only the empty workload root."""
        layout = layout_for(config_for(tmp_path))
        self.populate(layout)
        distclean(layout)
        assert list(layout.root.iterdir()) == []

    def test_clean_on_missing_tree(self, tmp_path):
        """Cleaning a never-used root is harmless."""
        layout = layout_for(config_for(tmp_path))
        distclean(layout)
        assert not layout.root.exists()
