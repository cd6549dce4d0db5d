"""Tests for stage graph ordering."""

import pytest

from bolt_repro.errors import CycleError
from bolt_repro.graph import Stage, StageGraph, run_commands
from bolt_repro.process import Command


def noop(ctx):
    pass


def diamond() -> StageGraph:
    graph = StageGraph()
    graph.add("download", noop)
    graph.add("build-a", noop, deps=["download"])
    graph.add("build-b", noop, deps=["download"])
    graph.add("measure", noop, deps=["build-b", "build-a"])
    return graph


class TestTopologicalOrder:
    """Test dependency ordering."""

    def test_dependencies_come_first(self):
        """Every stage follows all of its dependencies."""
        graph = diamond()
        order = graph.topological_order()
        for stage_id in order:
            for dep in graph[stage_id].deps:
                assert order.index(dep) < order.index(stage_id)

    def test_ties_follow_declaration_order(self):
        """Independent stages keep the order they were declared in."""
        assert diamond().topological_order() == ["download", "build-a", "build-b", "measure"]

    def test_order_is_deterministic(self):
        """Repeated calls give identical orders."""
        graph = diamond()
        first = graph.topological_order()
        for _ in range(5):
            assert graph.topological_order() == first

    def test_targets_restrict_to_ancestors(self):
        """Only the targets and what they depend on are ordered."""
        assert diamond().topological_order(["build-b"]) == ["download", "build-b"]

    def test_unknown_target(self):
        """An unknown target is rejected."""
        with pytest.raises(ValueError, match="Unknown stage"):
            diamond().topological_order(["nope"])

    def test_unknown_dependency(self):
        """A dependency on an undeclared stage is rejected."""
        graph = StageGraph()
        graph.add("build", noop, deps=["download"])
        with pytest.raises(ValueError, match="unknown stage 'download'"):
            graph.topological_order()


class TestCycles:
    """Test cycle detection."""

    def test_two_stage_cycle(self):
        """A -> B -> A is reported with both stages named."""
        graph = StageGraph()
        graph.add("A", noop, deps=["B"])
        graph.add("B", noop, deps=["A"])
        with pytest.raises(CycleError) as excinfo:
            graph.topological_order()
        cycle = excinfo.value.cycle
        assert set(cycle) == {"A", "B"}
        assert cycle[0] == cycle[-1]
        assert "A" in str(excinfo.value) and "B" in str(excinfo.value)

    def test_cycle_excludes_bystanders(self):
        """Stages feeding into a cycle are not part of the reported cycle."""
        graph = StageGraph()
        graph.add("root", noop)
        graph.add("x", noop, deps=["root", "z"])
        graph.add("y", noop, deps=["x"])
        graph.add("z", noop, deps=["y"])
        with pytest.raises(CycleError) as excinfo:
            graph.topological_order()
        assert set(excinfo.value.cycle) == {"x", "y", "z"}

    def test_self_dependency(self):
        """A stage depending on itself is a cycle."""
        graph = StageGraph()
        graph.add("loop", noop, deps=["loop"])
        with pytest.raises(CycleError):
            graph.topological_order()


class TestStageGraph:
    """Test graph construction helpers."""

    def test_duplicate_id(self):
        """Stage ids are unique."""
        graph = StageGraph()
        graph.add("build", noop)
        with pytest.raises(ValueError, match="Duplicate"):
            graph.add("build", noop)

    def test_dependency_outputs(self, tmp_path):
        """Freshness inputs are dependency outputs plus external inputs."""
        graph = StageGraph()
        graph.add("download", noop, outputs=[tmp_path / "src"])
        graph.add(
            "build", noop, deps=["download"],
            outputs=[tmp_path / "bin"], inputs=[tmp_path / "patch.diff"],
        )
        assert graph.dependency_outputs("build") == [tmp_path / "src", tmp_path / "patch.diff"]

    def test_stage_key_changes_with_outputs(self, tmp_path):
        """The stage key reflects its declared outputs."""
        a = Stage(id="build", action=noop, outputs=(tmp_path / "a",))
        b = Stage(id="build", action=noop, outputs=(tmp_path / "b",))
        assert a.key != b.key
        assert a.key == Stage(id="build", action=noop, outputs=(tmp_path / "a",)).key

    def test_command_templates_exposed(self, tmp_path):
        """Command-sequence stages expose their command templates."""
        command = Command(("make", "install"), cwd=tmp_path)
        stage = Stage(id="build", action=run_commands(command))
        assert stage.commands == (command,)
        assert Stage(id="custom", action=noop).commands == ()
