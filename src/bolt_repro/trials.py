"""Repeated measurement trials in isolated working directories."""

from __future__ import annotations

import logging
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from bolt_repro.datatypes import TrialSample
from bolt_repro.process import Command, ProcessRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrialTemplate:
    """How to run and read one trial of a measurement.

    Attributes:
        configuration: Artifact name of the measured configuration.
        commands: Builds the commands of trial ``index`` inside ``trial_dir``.
        collect: Reads the sample of trial ``index`` once its commands succeed.
        log_file: Log file of trial ``index``.
    """
    configuration: str
    commands: Callable[[Path, int], Sequence[Command]]
    collect: Callable[[Path, int], float]
    log_file: Callable[[int], Path]


class TrialRunner:
    """Run trials of a measurement, optionally several at a time.

    Trial-level concurrency is independent of the job count each trial's
    build uses internally; since a build usually saturates the machine the
    default is one trial at a time.
    """

    def __init__(self, runner: ProcessRunner, scratch_root: Path, parallelism: int = 1) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.runner = runner
        self.scratch_root = Path(scratch_root)
        self.parallelism = parallelism

    def run_trials(
        self,
        template: TrialTemplate,
        n: int,
        stage_id: Optional[str] = None,
    ) -> List[TrialSample]:
        """Run trials ``1..n`` and return their samples ordered by index.

        If any trial fails, the remaining ones are allowed to finish and the
        error of the lowest-numbered failing trial is raised.
        """
        if n < 1:
            raise ValueError("number of trials must be at least 1")
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        indices = range(1, n + 1)

        if self.parallelism == 1 or n == 1:
            return [self._run_one(template, index, stage_id) for index in indices]

        samples: Dict[int, TrialSample] = {}
        errors: Dict[int, BaseException] = {}
        pool = ThreadPoolExecutor(
            max_workers=min(self.parallelism, n),
            thread_name_prefix=f"trial-{template.configuration}",
        )
        try:
            futures = {
                pool.submit(self._run_one, template, index, stage_id): index for index in indices
            }
            wait(futures)
        except BaseException:
            # Running trials would otherwise finish their commands first.
            pool.shutdown(wait=False, cancel_futures=True)
            self.runner.terminate_active()
            pool.shutdown(wait=True)
            raise
        pool.shutdown(wait=True)

        for future, index in futures.items():
            exc = future.exception()
            if exc is not None:
                errors[index] = exc
            else:
                samples[index] = future.result()
        if errors:
            raise errors[min(errors)]
        return [samples[index] for index in sorted(samples)]

    def _run_one(self, template: TrialTemplate, index: int, stage_id: Optional[str]) -> TrialSample:
        trial_dir = Path(
            tempfile.mkdtemp(prefix=f"{template.configuration}.trial{index}.", dir=self.scratch_root)
        )
        log_file = template.log_file(index)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.write_text(f"# trial {index} of {template.configuration}\n", encoding="utf-8")
        logger.info("Measuring trial number %d for %s", index, template.configuration)
        try:
            for command in template.commands(trial_dir, index):
                self.runner.run_command(command, log_file=log_file, stage_id=stage_id)
            value = float(template.collect(trial_dir, index))
        finally:
            shutil.rmtree(trial_dir, ignore_errors=True)
        logger.info("Trial %d for %s: %.3f", index, template.configuration, value)
        return TrialSample(configuration=template.configuration, index=index, value=value)
