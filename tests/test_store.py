"""Tests for artifact freshness tracking."""

import os

import pytest

from bolt_repro.errors import BuildError
from bolt_repro.graph import Stage
from bolt_repro.store import ArtifactStore, remove_path


def noop(ctx):
    pass


def set_mtime(path, seconds):
    os.utime(path, ns=(seconds * 1_000_000_000, seconds * 1_000_000_000))


class TestIsFresh:
    """Test mtime-based freshness."""

    def test_missing_artifact(self, tmp_path):
        """A missing artifact is never fresh."""
        store = ArtifactStore(tmp_path / ".state")
        assert not store.is_fresh(tmp_path / "missing", [])

    def test_no_dependencies(self, tmp_path):
        """An existing artifact without dependencies is fresh."""
        artifact = tmp_path / "out"
        artifact.write_text("x")
        assert ArtifactStore(tmp_path / ".state").is_fresh(artifact, [])

    def test_newer_dependency(self, tmp_path):
        """A dependency modified after the artifact makes it stale."""
        artifact, dep = tmp_path / "out", tmp_path / "in"
        artifact.write_text("x")
        dep.write_text("y")
        set_mtime(artifact, 1000)
        set_mtime(dep, 2000)
        store = ArtifactStore(tmp_path / ".state")
        assert not store.is_fresh(artifact, [dep])

        set_mtime(artifact, 3000)
        assert store.is_fresh(artifact, [dep])

    def test_missing_dependency(self, tmp_path):
        """A missing dependency makes the artifact stale."""
        artifact = tmp_path / "out"
        artifact.write_text("x")
        store = ArtifactStore(tmp_path / ".state")
        assert not store.is_fresh(artifact, [tmp_path / "gone"])

    def test_directory_artifact(self, tmp_path):
        """Directories are tracked by their own modification time."""
        tree = tmp_path / "install"
        tree.mkdir()
        assert ArtifactStore(tmp_path / ".state").is_fresh(tree, [])


class TestStageLifecycle:
    """Test begin, commit and abort."""

    def test_begin_marks_and_clears(self, tmp_path):
        """Starting a stage drops old outputs and leaves a marker."""
        output = tmp_path / "out.bin"
        output.write_text("old")
        stage = Stage(id="build", action=noop, outputs=(output,))
        store = ArtifactStore(tmp_path / ".state")

        store.begin(stage)

        assert not output.exists()
        assert store.in_progress(stage)
        assert store.marker_path(stage).read_text().strip() == stage.key
        assert not store.is_satisfied(stage, [])

    def test_commit_clears_marker(self, tmp_path):
        """A committed stage with its outputs present is satisfied."""
        output = tmp_path / "out.bin"
        stage = Stage(id="build", action=noop, outputs=(output,))
        store = ArtifactStore(tmp_path / ".state")

        store.begin(stage)
        output.write_text("new")
        store.commit(stage)

        assert not store.in_progress(stage)
        assert store.is_satisfied(stage, [])

    def test_commit_requires_outputs(self, tmp_path):
        """Finishing without producing a declared output is a build error."""
        stage = Stage(id="build", action=noop, outputs=(tmp_path / "never",))
        store = ArtifactStore(tmp_path / ".state")
        store.begin(stage)
        with pytest.raises(BuildError, match="never"):
            store.commit(stage)
        assert store.in_progress(stage)

    def test_commit_touches_outputs(self, tmp_path):
        """Committed outputs are at least as new as their inputs."""
        dep = tmp_path / "in"
        dep.write_text("y")
        output = tmp_path / "out"
        stage = Stage(id="build", action=noop, outputs=(output,))
        store = ArtifactStore(tmp_path / ".state")

        store.begin(stage)
        output.write_text("x")
        set_mtime(output, 1000)
        store.commit(stage)

        assert store.is_satisfied(stage, [dep])

    def test_abort_removes_outputs_keeps_marker(self, tmp_path):
        """Aborting discards partial outputs; the stage stays unsatisfied."""
        output = tmp_path / "tree"
        stage = Stage(id="build", action=noop, outputs=(output,))
        store = ArtifactStore(tmp_path / ".state")

        store.begin(stage)
        output.mkdir()
        (output / "partial.o").write_text("x")
        store.abort(stage)

        assert not output.exists()
        assert store.in_progress(stage)

    def test_stage_without_outputs_never_satisfied(self, tmp_path):
        """Stages declaring no outputs always run."""
        stage = Stage(id="always", action=noop)
        assert not ArtifactStore(tmp_path / ".state").is_satisfied(stage, [])


class TestRemovePath:
    """Test artifact removal."""

    def test_remove_file_tree_and_missing(self, tmp_path):
        """Files and trees are removed; missing paths are ignored."""
        f = tmp_path / "file"
        f.write_text("x")
        d = tmp_path / "dir"
        (d / "nested").mkdir(parents=True)
        remove_path(f)
        remove_path(d)
        remove_path(tmp_path / "missing")
        assert not f.exists() and not d.exists()
