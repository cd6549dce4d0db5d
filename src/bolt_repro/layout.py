"""Filesystem layout of a reproduction run.

Every artifact path used by the recipes is derived here from a
:class:`~bolt_repro.datatypes.Configuration` tag instead of being assembled
from strings at the call site.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from bolt_repro.datatypes import Configuration, Workload
from bolt_repro.reporting.report import ReportWriter

CLANG_BINARY = "bin/clang-7"
GCC_BINARY = "libexec/gcc/x86_64-pc-linux-gnu/8.2.0/cc1plus"


@dataclass(frozen=True)
class Layout:
    """Paths under the working-directory root for one workload."""

    root: Path
    workload: Workload

    # Top-level trees

    @property
    def sources(self) -> Path:
        """Optimizer sources, build tree and install tree."""
        return self.root / "src"

    @property
    def benchmarks(self) -> Path:
        return self.root / "benchmarks"

    @property
    def results(self) -> Path:
        return self.root / "results"

    @property
    def logs(self) -> Path:
        return self.root / "logs"

    @property
    def state(self) -> Path:
        """In-progress markers of running stages."""
        return self.root / ".state"

    @property
    def scratch(self) -> Path:
        """Parent of the ephemeral per-trial working directories."""
        return self.root / "scratch"

    @property
    def summary_file(self) -> Path:
        return self.root / "pipeline_summary.json"

    # Sources and tools

    @property
    def llvm_source(self) -> Path:
        return self.benchmarks / "llvm"

    @property
    def gcc_source(self) -> Path:
        return self.benchmarks / "gcc"

    @property
    def bolt_source(self) -> Path:
        return self.sources / "llvm"

    @property
    def bolt_build(self) -> Path:
        return self.sources / "build"

    @property
    def bolt(self) -> Path:
        return self.sources / "install" / "bin" / "llvm-bolt"

    @property
    def perf2bolt(self) -> Path:
        return self.sources / "install" / "bin" / "perf2bolt"

    # Per-configuration artifacts

    def name(self, configuration: Configuration) -> str:
        return configuration.artifact_name(self.workload)

    def build_dir(self, configuration: Configuration) -> Path:
        """Build subtree of a configuration's compiler."""
        return self.benchmarks / self.name(configuration)

    def install_dir(self, configuration: Configuration) -> Path:
        return self.build_dir(configuration) / "install"

    def input_build_dir(self, configuration: Configuration) -> Path:
        """Build subtree of the compiler fed to the post-link optimizer.

        Clang reuses the baseline and PGO installs; gcc builds dedicated
        relocation-preserving copies.
        """
        source = configuration.input_configuration
        if self.workload is Workload.CLANG:
            return self.build_dir(source)
        return self.benchmarks / f"{self.name(configuration)}.input"

    def input_install_dir(self, configuration: Configuration) -> Path:
        return self.input_build_dir(configuration) / "install"

    def compilers(self, configuration: Configuration) -> Tuple[Path, Path]:
        """C and C++ compiler drivers of a configuration."""
        return self.drivers(self.install_dir(configuration))

    def drivers(self, install_dir: Path) -> Tuple[Path, Path]:
        bindir = install_dir / "bin"
        if self.workload is Workload.CLANG:
            return bindir / "clang", bindir / "clang++"
        return bindir / "gcc", bindir / "g++"

    def optimized_binary(self, install_dir: Path) -> Path:
        """Binary inside an install tree that the post-link optimizer rewrites."""
        if self.workload is Workload.CLANG:
            return install_dir / CLANG_BINARY
        return install_dir / GCC_BINARY

    # Clang PGO training

    @property
    def instrumented_dir(self) -> Path:
        """Build subtree of the instrumented clang."""
        return self.benchmarks / "stage2"

    @property
    def pgo_train_dir(self) -> Path:
        return self.benchmarks / "train"

    @property
    def pgo_profiles(self) -> Path:
        """Raw ``.profraw`` files written by the instrumented clang."""
        return self.instrumented_dir / "profiles"

    @property
    def pgo_profdata(self) -> Path:
        return self.instrumented_dir / "clang.profdata"

    def train_dir(self, configuration: Configuration) -> Path:
        """Scratch build tree used while collecting an optimizer profile."""
        return self.benchmarks / f"train.{self.name(configuration)}"

    def profile_dir(self) -> Path:
        """Directory holding raw and aggregated optimizer profiles."""
        if self.workload is Workload.CLANG:
            return self.instrumented_dir
        return self.benchmarks

    def raw_profile(self, configuration: Configuration) -> Path:
        return self.profile_dir() / f"perf.data.{self.name(configuration)}"

    def bolt_profile(self, configuration: Configuration) -> Path:
        return self.profile_dir() / f"bolt.fdata.{self.name(configuration)}"

    def bolt_yaml_profile(self, configuration: Configuration) -> Path:
        return self.profile_dir() / f"bolt.fdata.{self.name(configuration)}.yaml"

    # Results

    def report_writer(self) -> ReportWriter:
        return ReportWriter(self.results)

    def samples_file(self, configuration: Configuration) -> Path:
        return self.report_writer().samples_path(self.name(configuration))

    def trial_output(self, configuration: Configuration, index: int) -> Path:
        """Raw ``perf stat`` output of one trial."""
        return self.results / f"measurements.{self.name(configuration)}.exp.{index}"

    def trial_log(self, configuration: Configuration, index: int) -> Path:
        return self.results / f"measurements.{self.name(configuration)}.log.{index}"

    def comparison_files(self, configuration: Configuration) -> Tuple[Path, Path]:
        """Text and JSON comparison of a treatment against the baseline."""
        writer = self.report_writer()
        name = self.name(configuration)
        return writer.comparison_path(name), writer.comparison_json_path(name)
