"""Stages shared by the clang and gcc workloads.

Source downloads, the optimizer build, profile collection, post-link
optimization, measurement and comparison stages look the same for both
compilers; only the compiler builds and a few flags differ.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from bolt_repro.datatypes import TREATMENTS, BenchConfig, Configuration
from bolt_repro.errors import (
    AggregationError,
    BuildError,
    DownloadError,
    OptimizationToolError,
    ProfileCollectionError,
)
from bolt_repro.graph import StageContext, StageGraph, run_commands
from bolt_repro.layout import Layout
from bolt_repro.process import Command
from bolt_repro.stats import build_comparison, parse_perf_stat
from bolt_repro.store import remove_path
from bolt_repro.trials import TrialRunner, TrialTemplate

logger = logging.getLogger(__name__)

LLVM_BRANCH = "release_70"
LLVM_REPOS: Tuple[Tuple[str, str], ...] = (
    # (repository, checkout location relative to the llvm tree)
    ("https://github.com/llvm-mirror/llvm.git", "."),
    ("https://github.com/llvm-mirror/clang.git", "tools"),
    ("https://github.com/llvm-mirror/lld.git", "projects"),
    ("https://github.com/llvm-mirror/compiler-rt.git", "projects"),
)
GCC_REPO = "https://github.com/gcc-mirror/gcc"
GCC_BRANCH = "gcc-8_2_0-release"
BOLT_LLVM_REPO = "https://github.com/llvm-mirror/llvm"
BOLT_LLVM_COMMIT = "f137ed238db11440f03083b1c88b7ffc0f4af65e"
BOLT_REPO = "https://github.com/facebookincubator/BOLT"
BOLT_COMMIT = "dd94222dabf6f8942c0fb6eb122bbfa60569dd5e"

BOLT_OPTIONS: Tuple[str, ...] = (
    "-reorder-blocks=cache+",
    "-reorder-functions=hfsort+",
    "-split-functions=3",
    "-split-all-cold",
    "-dyno-stats",
    "-icf=1",
    "-use-gnu-stack",
)
PERF_RECORD_EVENTS: Tuple[str, ...] = ("-e", "cycles:u", "-j", "any,u")
GCC_TRAIN_CONFIGURE: Tuple[str, ...] = (
    "--disable-bootstrap",
    "--enable-linker-build-id",
    "--enable-languages=c,c++",
    "--with-gnu-as",
    "--with-gnu-ld",
    "--disable-multilib",
)


@dataclass(frozen=True)
class Recipe:
    """Settings and paths every stage factory needs."""

    config: BenchConfig
    layout: Layout

    @property
    def cmake(self) -> Tuple[str, ...]:
        return ("cmake", "-G", "Ninja") if self.config.use_ninja else ("cmake",)

    @property
    def build_tool(self) -> str:
        return "ninja" if self.config.use_ninja else "make"

    @property
    def jobs(self) -> Tuple[str, str]:
        return ("-j", str(self.config.cores))

    def configure_llvm(
        self,
        cwd: Path,
        c_compiler: object,
        cxx_compiler: object,
        install_prefix: Path,
        *extra: str,
        env: Optional[Dict[str, str]] = None,
        description: str = "",
    ) -> Command:
        """CMake configuration of the llvm tree shared by all clang builds."""
        argv = (
            *self.cmake,
            str(self.layout.llvm_source),
            "-DLLVM_TARGETS_TO_BUILD=X86",
            "-DCMAKE_BUILD_TYPE=Release",
            f"-DCMAKE_C_COMPILER={c_compiler}",
            f"-DCMAKE_CXX_COMPILER={cxx_compiler}",
            *extra,
            f"-DCMAKE_INSTALL_PREFIX={install_prefix}",
        )
        return Command(argv, cwd=cwd, env=env or {}, description=description or f"Configuring {cwd.name}")

    def build(self, cwd: Path, *targets: str, error=BuildError, description: str = "") -> Command:
        return Command(
            (self.build_tool, *targets, *self.jobs),
            cwd=cwd,
            error=error,
            description=description or f"Building {' '.join(targets) or 'all'} in {cwd.name}",
        )

    def make(self, cwd: Path, *targets: str, description: str = "") -> Command:
        """Plain ``make`` invocation, used for gcc's autotools builds."""
        return Command(
            ("make", *targets, *self.jobs),
            cwd=cwd,
            description=description or f"make {' '.join(targets)} in {cwd.name}".strip(),
        )


@dataclass
class WorkloadPipeline:
    """A workload's stage graph with named groups of target stages."""

    graph: StageGraph
    targets: Dict[str, List[str]] = field(default_factory=dict)
    compiler_stages: Dict[Configuration, str] = field(default_factory=dict)


# Downloads and tools


def add_download_llvm(graph: StageGraph, recipe: Recipe) -> str:
    source = recipe.layout.llvm_source
    commands = []
    for repo, location in LLVM_REPOS:
        name = repo.rsplit("/", 1)[-1].removesuffix(".git")
        if location == ".":
            cwd, dest = source.parent, source.name
        else:
            cwd, dest = source / location, name
        commands.append(
            Command(
                ("git", "clone", "-q", "--depth=1", f"--branch={LLVM_BRANCH}", repo, dest),
                cwd=cwd,
                error=DownloadError,
                description=f"Cloning {name}",
            )
        )
    graph.add(
        "download-llvm",
        run_commands(*commands),
        outputs=[source],
        description="Download llvm, clang, lld and compiler-rt sources",
    )
    return "download-llvm"


def add_download_gcc(graph: StageGraph, recipe: Recipe) -> str:
    source = recipe.layout.gcc_source
    graph.add(
        "download-gcc",
        run_commands(
            Command(
                ("git", "clone", "-q", "--depth=1", f"--branch={GCC_BRANCH}", GCC_REPO, source.name),
                cwd=source.parent,
                error=DownloadError,
                description="Cloning gcc",
            ),
            Command(
                ("./contrib/download_prerequisites",),
                cwd=source,
                error=DownloadError,
                description="Downloading gcc prerequisites",
            ),
        ),
        outputs=[source],
        description="Download gcc sources and prerequisites",
    )
    return "download-gcc"


def add_download_bolt(graph: StageGraph, recipe: Recipe) -> str:
    source = recipe.layout.bolt_source
    tools = source / "tools"
    graph.add(
        "download-bolt",
        run_commands(
            Command(
                ("git", "clone", BOLT_LLVM_REPO, source.name, "-q", "--single-branch"),
                cwd=source.parent,
                error=DownloadError,
                description="Cloning llvm for the optimizer",
            ),
            Command(
                ("git", "checkout", "-b", "llvm-bolt", BOLT_LLVM_COMMIT),
                cwd=tools,
                error=DownloadError,
            ),
            Command(
                ("git", "clone", BOLT_REPO, "llvm-bolt"),
                cwd=tools,
                error=DownloadError,
                description="Cloning the optimizer",
            ),
            Command(
                ("git", "checkout", BOLT_COMMIT),
                cwd=tools / "llvm-bolt",
                error=DownloadError,
            ),
            Command(
                ("patch", "-p1", "-i", "tools/llvm-bolt/llvm.patch"),
                cwd=source,
                error=DownloadError,
                description="Patching llvm for the optimizer",
            ),
        ),
        outputs=[source],
        description="Download the post-link optimizer at the evaluated revision",
    )
    return "download-bolt"


def add_build_bolt(graph: StageGraph, recipe: Recipe, download: str) -> str:
    layout = recipe.layout
    graph.add(
        "build-bolt",
        run_commands(
            Command(
                (
                    "cmake",
                    str(layout.bolt_source),
                    "-DLLVM_TARGETS_TO_BUILD=X86;AArch64",
                    "-DCMAKE_BUILD_TYPE=Release",
                    f"-DCMAKE_INSTALL_PREFIX={layout.sources / 'install'}",
                ),
                cwd=layout.bolt_build,
                description="Configuring the optimizer",
            ),
            recipe.make(layout.bolt_build, "install", description="Building the optimizer"),
        ),
        deps=[download],
        outputs=[layout.bolt, layout.perf2bolt],
        description="Build llvm-bolt and perf2bolt",
    )
    return "build-bolt"


# Post-link optimization


def add_bolt_stages(
    graph: StageGraph,
    recipe: Recipe,
    configuration: Configuration,
    input_stage: str,
    gcc_download: str,
    bolt_build: str,
) -> str:
    """Profile, aggregate and optimize one configuration; return the last stage id."""
    layout = recipe.layout
    name = layout.name(configuration)
    input_install = layout.input_install_dir(configuration)
    input_binary = layout.optimized_binary(input_install)
    raw_profile = layout.raw_profile(configuration)
    fdata = layout.bolt_profile(configuration)
    yaml_profile = layout.bolt_yaml_profile(configuration)
    train_dir = layout.train_dir(configuration)

    def profile(ctx: StageContext) -> None:
        remove_path(train_dir)
        cc, cxx = layout.drivers(input_install)
        ctx.run(
            Command(
                (str(layout.gcc_source / "configure"), *GCC_TRAIN_CONFIGURE),
                cwd=train_dir,
                env={"CC": str(cc), "CXX": str(cxx)},
                description=f"Configuring the gcc training build with {name}",
            )
        )
        ctx.run(
            Command(
                (
                    "perf", "record", *PERF_RECORD_EVENTS, "-o", str(raw_profile),
                    "--", "make", "maybe-all-gcc", *recipe.jobs,
                ),
                cwd=train_dir,
                error=ProfileCollectionError,
                description=f"Recording a profile of {name} while building gcc",
            )
        )

    def aggregate(ctx: StageContext) -> None:
        if not raw_profile.exists() or raw_profile.stat().st_size == 0:
            raise AggregationError(f"Raw profile {raw_profile} is missing or empty")
        ctx.run(
            Command(
                (
                    str(layout.perf2bolt), str(input_binary),
                    "-p", str(raw_profile), "-o", str(fdata), "-w", str(yaml_profile),
                ),
                cwd=layout.profile_dir(),
                error=AggregationError,
                description=f"Aggregating the profile of {name}",
            )
        )

    def optimize(ctx: StageContext) -> None:
        install = layout.install_dir(configuration)
        install.parent.mkdir(parents=True, exist_ok=True)
        ctx.note(f"copying {input_install} to {install}")
        shutil.copytree(input_install, install, symlinks=True)
        binary = layout.optimized_binary(install)
        optimized = binary.with_name(binary.name + ".bolt")
        ctx.run(
            Command(
                (str(layout.bolt), str(binary), "-o", str(optimized), "-b", str(yaml_profile), *BOLT_OPTIONS),
                cwd=install.parent,
                error=OptimizationToolError,
                description=f"Optimizing {binary.name} of {name}",
            )
        )
        if not optimized.exists():
            raise OptimizationToolError(f"Optimizer produced no {optimized}")
        shutil.copymode(binary, optimized)
        os.replace(optimized, binary)

    profile_id = f"profile-{name}"
    aggregate_id = f"aggregate-{name}"
    optimize_id = f"optimize-{name}"
    graph.add(
        profile_id,
        profile,
        deps=[input_stage, bolt_build, gcc_download],
        outputs=[raw_profile],
        description=f"Collect a sampled profile of {name} building gcc",
    )
    graph.add(
        aggregate_id,
        aggregate,
        deps=[profile_id, input_stage, bolt_build],
        outputs=[fdata, yaml_profile],
        description=f"Convert the {name} profile to edge counts",
    )
    graph.add(
        optimize_id,
        optimize,
        deps=[aggregate_id, input_stage, bolt_build],
        outputs=[layout.install_dir(configuration)],
        description=f"Create the {name} install with an optimized binary",
    )
    return optimize_id


# Measurement and comparison


def add_measure_stage(
    graph: StageGraph,
    recipe: Recipe,
    configuration: Configuration,
    compiler_stage: str,
    llvm_download: str,
    extra_cmake: Callable[[Configuration], Sequence[str]] = lambda cfg: (),
) -> str:
    """Time ``clang`` builds made with the configuration's compiler."""
    layout = recipe.layout
    config = recipe.config
    name = layout.name(configuration)
    cc, cxx = layout.compilers(configuration)

    def commands(trial_dir: Path, index: int) -> List[Command]:
        return [
            recipe.configure_llvm(
                trial_dir,
                cc,
                cxx,
                trial_dir / "install",
                *extra_cmake(configuration),
                description=f"Configuring trial {index} of {name}",
            ),
            Command(
                (
                    "perf", "stat", "-x", ",", "-o", str(layout.trial_output(configuration, index)),
                    "--", recipe.build_tool, "clang", *recipe.jobs,
                ),
                cwd=trial_dir,
                description=f"Timing trial {index} of {name}",
            ),
        ]

    template = TrialTemplate(
        configuration=name,
        commands=commands,
        collect=lambda trial_dir, index: parse_perf_stat(layout.trial_output(configuration, index)),
        log_file=lambda index: layout.trial_log(configuration, index),
    )

    def measure(ctx: StageContext) -> None:
        trials = TrialRunner(ctx.runner, layout.scratch, parallelism=config.trial_jobs)
        samples = trials.run_trials(template, config.trials, stage_id=ctx.stage.id)
        path = layout.report_writer().write_samples(name, samples)
        ctx.note(f"wrote {len(samples)} samples to {path}")

    stage_id = f"measure-{name}"
    graph.add(
        stage_id,
        measure,
        deps=[compiler_stage, llvm_download],
        outputs=[layout.samples_file(configuration)],
        description=f"Measure build time of clang using {name} ({config.trials} trials)",
    )
    return stage_id


def add_compare_stage(
    graph: StageGraph,
    recipe: Recipe,
    treatment: Configuration,
    baseline_measure: str,
    treatment_measure: str,
) -> str:
    layout = recipe.layout
    baseline_name = layout.name(Configuration.BASELINE)
    treatment_name = layout.name(treatment)

    def compare(ctx: StageContext) -> None:
        writer = layout.report_writer()
        result = build_comparison(
            writer.read_samples(baseline_name),
            writer.read_samples(treatment_name),
            baseline_name=baseline_name,
            treatment_name=treatment_name,
        )
        writer.write_comparison(result)
        writer.append_report(result)
        logger.info(
            "%s is %.4f%% faster than baseline, average of %d experiments",
            treatment_name,
            result.percentage_delta,
            result.treatment_stats.n,
        )

    stage_id = f"compare-{treatment_name}"
    graph.add(
        stage_id,
        compare,
        deps=[baseline_measure, treatment_measure],
        outputs=list(layout.comparison_files(treatment)),
        description=f"Compare {treatment_name} against {baseline_name}",
    )
    return stage_id


def add_evaluation(
    pipeline: WorkloadPipeline,
    recipe: Recipe,
    llvm_download: str,
    extra_cmake: Callable[[Configuration], Sequence[str]] = lambda cfg: (),
) -> None:
    """Add measure and compare stages for every configuration, plus target groups."""
    graph = pipeline.graph
    measures = {
        configuration: add_measure_stage(
            graph, recipe, configuration, stage, llvm_download, extra_cmake
        )
        for configuration, stage in pipeline.compiler_stages.items()
    }
    compares = [
        add_compare_stage(
            graph, recipe, treatment, measures[Configuration.BASELINE], measures[treatment]
        )
        for treatment in TREATMENTS
    ]
    pipeline.targets["results"] = compares
    pipeline.targets["run-all"] = compares
