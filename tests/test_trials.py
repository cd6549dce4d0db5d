"""Tests for repeated measurement trials."""

import threading
import time

import pytest

import bolt_repro.trials
from bolt_repro.errors import BuildError
from bolt_repro.process import Command
from bolt_repro.trials import TrialRunner, TrialTemplate

from conftest import python_argv


def write_value(trial_dir, index):
    """Trial command writing ``index * 10`` to ``value.txt``."""
    return [
        Command(
            python_argv(f"open('value.txt', 'w').write('{index * 10}')"),
            cwd=trial_dir,
        )
    ]


def read_value(trial_dir, index):
    return float((trial_dir / "value.txt").read_text())


def template(tmp_path, commands=write_value, collect=read_value):
    return TrialTemplate(
        configuration="stage1",
        commands=commands,
        collect=collect,
        log_file=lambda index: tmp_path / "logs" / f"trial.{index}.log",
    )


class TestTrialRunner:
    """Test trial execution and cleanup."""

    def test_samples_in_index_order(self, tmp_path, runner):
        """Samples come back ordered by 1-based trial index."""
        trials = TrialRunner(runner, tmp_path / "scratch")
        result = trials.run_trials(template(tmp_path), 3)
        assert [s.index for s in result] == [1, 2, 3]
        assert [s.value for s in result] == pytest.approx([10.0, 20.0, 30.0])
        assert all(s.configuration == "stage1" for s in result)

    def test_trial_dirs_removed_after_success(self, tmp_path, runner):
        """No trial directory outlives its trial."""
        seen = []

        def commands(trial_dir, index):
            seen.append(trial_dir)
            return write_value(trial_dir, index)

        TrialRunner(runner, tmp_path / "scratch").run_trials(template(tmp_path, commands), 2)
        assert len(set(seen)) == 2
        assert not any(d.exists() for d in seen)

    def test_trial_dirs_removed_after_failure(self, tmp_path, runner):
        """A failing trial still has its directory removed."""
        seen = []

        def commands(trial_dir, index):
            seen.append(trial_dir)
            return [Command(python_argv("import sys; sys.exit(1)"), cwd=trial_dir)]

        with pytest.raises(BuildError):
            TrialRunner(runner, tmp_path / "scratch").run_trials(template(tmp_path, commands), 1, "measure-stage1")
        assert seen and not seen[0].exists()

    def test_logs_per_trial(self, tmp_path, runner):
        """Each trial writes its own log file."""
        TrialRunner(runner, tmp_path / "scratch").run_trials(template(tmp_path), 2)
        for index in (1, 2):
            log = (tmp_path / "logs" / f"trial.{index}.log").read_text()
            assert log.startswith(f"# trial {index} of stage1")

    def test_parallel_trials(self, tmp_path, runner):
        """Concurrent trials use separate directories and keep index order."""
        threads = set()

        def collect(trial_dir, index):
            threads.add(threading.current_thread().name)
            return read_value(trial_dir, index)

        result = TrialRunner(runner, tmp_path / "scratch", parallelism=3).run_trials(
            template(tmp_path, collect=collect), 4
        )
        assert [s.value for s in result] == pytest.approx([10.0, 20.0, 30.0, 40.0])
        assert all(name.startswith("trial-stage1") for name in threads)
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_parallel_failure_reports_lowest_index(self, tmp_path, runner):
        """With several failures, the earliest trial's error is raised."""
        def commands(trial_dir, index):
            code = 0 if index == 1 else index
            return [Command(python_argv(f"import sys; sys.exit({code})"), cwd=trial_dir)]

        with pytest.raises(BuildError) as excinfo:
            TrialRunner(runner, tmp_path / "scratch", parallelism=2).run_trials(
                template(tmp_path, commands, collect=lambda d, i: 1.0), 3
            )
        assert excinfo.value.exit_code == 2

    def test_invalid_arguments(self, tmp_path, runner):
        """Trial count and parallelism must be positive."""
        with pytest.raises(ValueError):
            TrialRunner(runner, tmp_path, parallelism=0)
        with pytest.raises(ValueError):
            TrialRunner(runner, tmp_path).run_trials(template(tmp_path), 0)

    def test_interrupt_terminates_parallel_trials(self, tmp_path, runner, monkeypatch):
        """An interrupt while waiting stops running trials instead of waiting for them."""
        def sleeper(trial_dir, index):
            return [Command(python_argv("import time; time.sleep(60)"), cwd=trial_dir)]

        def interrupted_wait(futures):
            deadline = time.monotonic() + 30
            while len(runner.running) < 2 and time.monotonic() < deadline:
                time.sleep(0.05)
            raise KeyboardInterrupt

        monkeypatch.setattr(bolt_repro.trials, "wait", interrupted_wait)
        start = time.monotonic()
        with pytest.raises(KeyboardInterrupt):
            TrialRunner(runner, tmp_path / "scratch", parallelism=2).run_trials(
                template(tmp_path, sleeper, collect=lambda d, i: 1.0), 2
            )
        assert time.monotonic() - start < 30
        assert runner.running == []
        assert list((tmp_path / "scratch").iterdir()) == []
