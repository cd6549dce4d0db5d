"""External command execution with captured logs."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Set, Sequence, Tuple, Type

from bolt_repro.datatypes import ExitStatus
from bolt_repro.errors import BuildError, PipelineError

logger = logging.getLogger(__name__)

# Exit statuses reported when a command cannot be started, as a shell would.
COMMAND_NOT_FOUND = 127
CHDIR_FAILED = 1
TERMINATE_GRACE_SECONDS = 10.0


@dataclass(frozen=True)
class Command:
    """Template of one external command run by a stage.

    Attributes:
        argv: Program and arguments.
        cwd: Working directory of the child process.
        env: Variables added to (or overriding) the inherited environment.
        error: Error class raised when the command exits non-zero.
        description: Short human-readable summary used in logs.
    """
    argv: Tuple[str, ...]
    cwd: Path
    env: Mapping[str, str] = field(default_factory=dict)
    error: Type[PipelineError] = BuildError
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "argv", tuple(str(a) for a in self.argv))
        object.__setattr__(self, "cwd", Path(self.cwd))
        object.__setattr__(self, "env", dict(self.env))

    def render(self) -> str:
        env = " ".join(f"{k}={v}" for k, v in sorted(self.env.items()))
        prefix = f"{env} " if env else ""
        return f"(cd {self.cwd} && {prefix}{' '.join(self.argv)})"


class ProcessRunner:
    """Run external commands, streaming combined output to a log file.

    The working directory is always passed to the child explicitly; the
    runner never changes the current directory of this process, so several
    runs may proceed concurrently from different threads.
    """

    def __init__(self, tee: bool = False, echo=None) -> None:
        self.tee = tee
        self._echo = echo or sys.stdout.write
        self._active: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    @property
    def running(self) -> List[subprocess.Popen]:
        """Children started by this runner that have not been reaped yet."""
        with self._lock:
            return list(self._active)

    def terminate_active(self) -> None:
        """Terminate every running child, e.g. when the caller is interrupted."""
        for proc in self.running:
            _terminate(proc)

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        workdir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        log_file: Optional[Path] = None,
        tee: Optional[bool] = None,
    ) -> ExitStatus:
        """Run ``command args...`` and return its exit status.

        Output is appended to ``log_file``. A non-zero status is returned,
        not raised; see :meth:`check`.
        """
        argv = (str(command), *(str(a) for a in args))
        workdir = Path(workdir) if workdir is not None else Path.cwd()
        tee = self.tee if tee is None else tee

        child_env = os.environ.copy()
        if env:
            child_env.update({k: str(v) for k, v in env.items()})

        log_handle = None
        if log_file is not None:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_handle = open(log_file, "a", encoding="utf-8", errors="replace")

        start = time.monotonic()
        try:
            header = f"$ cd {workdir} && {' '.join(argv)}\n"
            if log_handle is not None:
                log_handle.write(header)
                log_handle.flush()

            if not workdir.is_dir():
                return self._not_started(
                    f"working directory {workdir} does not exist",
                    CHDIR_FAILED, argv, workdir, log_handle, log_file, start,
                )

            logger.debug("Running %s in %s", " ".join(argv), workdir)
            try:
                proc = subprocess.Popen(
                    argv,
                    cwd=workdir,
                    env=child_env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    errors="replace",
                )
            except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
                return self._not_started(
                    f"cannot execute {argv[0]}: {exc}",
                    COMMAND_NOT_FOUND, argv, workdir, log_handle, log_file, start,
                )

            with self._lock:
                self._active.add(proc)
            try:
                assert proc.stdout is not None
                for line in proc.stdout:
                    if log_handle is not None:
                        log_handle.write(line)
                    if tee:
                        self._echo(line)
                returncode = proc.wait()
            except BaseException:
                _terminate(proc)
                raise
            finally:
                with self._lock:
                    self._active.discard(proc)
        finally:
            if log_handle is not None:
                log_handle.close()

        duration = time.monotonic() - start
        logger.debug("%s exited with %d after %.1fs", argv[0], returncode, duration)
        return ExitStatus(
            command=argv,
            returncode=returncode,
            log_path=log_file,
            duration=duration,
            workdir=workdir,
        )

    @staticmethod
    def _not_started(message, returncode, argv, workdir, log_handle, log_file, start) -> ExitStatus:
        if log_handle is not None:
            log_handle.write(message + "\n")
        logger.error(message)
        return ExitStatus(
            command=argv,
            returncode=returncode,
            log_path=log_file,
            duration=time.monotonic() - start,
            workdir=workdir,
        )

    def run_command(
        self,
        command: Command,
        log_file: Optional[Path] = None,
        stage_id: Optional[str] = None,
    ) -> ExitStatus:
        """Run a command template and raise its error class on failure."""
        command.cwd.mkdir(parents=True, exist_ok=True)
        if command.description:
            logger.info("%s", command.description)
        status = self.run(
            command.argv[0],
            command.argv[1:],
            workdir=command.cwd,
            env=command.env,
            log_file=log_file,
        )
        self.check(status, command.error, stage_id=stage_id, description=command.description)
        return status

    @staticmethod
    def check(
        status: ExitStatus,
        error: Type[PipelineError] = BuildError,
        stage_id: Optional[str] = None,
        description: str = "",
    ) -> ExitStatus:
        """Raise ``error`` if ``status`` is a failure."""
        if status.ok:
            return status
        what = description or status.command[0]
        raise error(
            f"{what} failed",
            stage_id=stage_id,
            command=status.command,
            exit_code=status.returncode,
            log_path=status.log_path,
        )


def _terminate(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    logger.warning("Terminating %s (pid %d)", proc.args[0], proc.pid)
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
