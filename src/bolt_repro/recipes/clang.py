"""Clang workload: how much faster do PGO, BOLT and PGO+BOLT make clang?

Clang is built once with the host gcc (the baseline), once instrumented to
collect a PGO profile, and once with PGO and full LTO. The optimizer is then
applied to both the baseline and the PGO build. Every configuration is timed
building clang itself.
"""

from __future__ import annotations

from bolt_repro.datatypes import BenchConfig, Configuration
from bolt_repro.errors import ProfileCollectionError
from bolt_repro.graph import StageContext, StageGraph, run_commands
from bolt_repro.layout import Layout
from bolt_repro.process import Command
from bolt_repro.recipes.common import (
    Recipe,
    WorkloadPipeline,
    add_bolt_stages,
    add_build_bolt,
    add_download_bolt,
    add_download_gcc,
    add_download_llvm,
    add_evaluation,
)
from bolt_repro.store import remove_path

# Keep relocations and bind symbols eagerly so the optimizer can rewrite
# the binary.
RELOC_LDFLAGS = {"LDFLAGS": "-Wl,-q,-znow"}


def build_clang_pipeline(config: BenchConfig, layout: Layout) -> WorkloadPipeline:
    recipe = Recipe(config=config, layout=layout)
    graph = StageGraph()
    pipeline = WorkloadPipeline(graph=graph)

    llvm = add_download_llvm(graph, recipe)
    gcc = add_download_gcc(graph, recipe)
    bolt_source = add_download_bolt(graph, recipe)
    bolt = add_build_bolt(graph, recipe, bolt_source)

    # Baseline: clang built by the host gcc.
    stage1_dir = layout.build_dir(Configuration.BASELINE)
    stage1_cc, stage1_cxx = layout.compilers(Configuration.BASELINE)
    graph.add(
        "build-stage1",
        run_commands(
            recipe.configure_llvm(
                stage1_dir,
                "gcc",
                "g++",
                layout.install_dir(Configuration.BASELINE),
                "-DLLVM_ENABLE_ASSERTIONS=OFF",
                "-DCMAKE_ASM_COMPILER=gcc",
                "-DENABLE_LINKER_BUILD_ID=ON",
                env=RELOC_LDFLAGS,
            ),
            recipe.build(stage1_dir, "install"),
        ),
        deps=[llvm],
        outputs=[stage1_cc],
        description="Build the baseline clang with the host compiler",
    )

    # Instrumented clang, used only to collect the PGO profile.
    stage2_dir = layout.instrumented_dir
    stage2_cc = stage2_dir / "install" / "bin" / "clang"
    graph.add(
        "build-stage2",
        run_commands(
            recipe.configure_llvm(
                stage2_dir,
                stage1_cc,
                stage1_cxx,
                stage2_dir / "install",
                "-DLLVM_ENABLE_ASSERTIONS=OFF",
                "-DLLVM_USE_LINKER=lld",
                "-DLLVM_BUILD_INSTRUMENTED=ON",
            ),
            recipe.build(stage2_dir, "install"),
        ),
        deps=["build-stage1"],
        outputs=[stage2_cc],
        description="Build an instrumented clang for PGO training",
    )

    train_dir = layout.pgo_train_dir

    def train(ctx: StageContext) -> None:
        remove_path(train_dir)
        ctx.run(
            recipe.configure_llvm(
                train_dir,
                stage2_cc,
                f"{stage2_cc}++",
                train_dir / "install",
                "-DLLVM_USE_LINKER=lld",
            )
        )
        ctx.run(recipe.build(train_dir, "clang", description="Building clang with the instrumented clang"))
        if not list(layout.pgo_profiles.glob("*.profraw")):
            raise ProfileCollectionError(f"Training build wrote no .profraw files to {layout.pgo_profiles}")

    graph.add(
        "train-pgo",
        train,
        deps=["build-stage2"],
        outputs=[layout.pgo_profiles],
        description="Build clang with the instrumented clang to collect PGO data",
    )

    def merge(ctx: StageContext) -> None:
        raw = sorted(layout.pgo_profiles.glob("*.profraw"))
        if not raw:
            raise ProfileCollectionError(f"No .profraw files in {layout.pgo_profiles}")
        profdata_tool = layout.install_dir(Configuration.BASELINE) / "bin" / "llvm-profdata"
        ctx.run(
            Command(
                (str(profdata_tool), "merge", f"-output={layout.pgo_profdata}", *map(str, raw)),
                cwd=layout.pgo_profiles,
                error=ProfileCollectionError,
                description="Merging PGO profiles",
            )
        )

    graph.add(
        "merge-pgo",
        merge,
        deps=["train-pgo", "build-stage1"],
        outputs=[layout.pgo_profdata],
        description="Merge raw PGO profiles",
    )

    # PGO + LTO clang.
    pgo_dir = layout.build_dir(Configuration.PGO)
    graph.add(
        "build-clangpgo",
        run_commands(
            recipe.configure_llvm(
                pgo_dir,
                stage1_cc,
                stage1_cxx,
                layout.install_dir(Configuration.PGO),
                "-DLLVM_ENABLE_ASSERTIONS=OFF",
                "-DLLVM_USE_LINKER=lld",
                "-DLLVM_ENABLE_LTO=Full",
                "-DENABLE_LINKER_BUILD_ID=ON",
                f"-DLLVM_PROFDATA_FILE={layout.pgo_profdata}",
                env=RELOC_LDFLAGS,
            ),
            recipe.build(pgo_dir, "install"),
        ),
        deps=["merge-pgo", "build-stage1"],
        outputs=[layout.compilers(Configuration.PGO)[0]],
        description="Build clang with PGO and full LTO",
    )

    pipeline.compiler_stages = {
        Configuration.BASELINE: "build-stage1",
        Configuration.PGO: "build-clangpgo",
    }
    for configuration in (Configuration.BOLT, Configuration.PGOBOLT):
        input_stage = pipeline.compiler_stages[configuration.input_configuration]
        pipeline.compiler_stages[configuration] = add_bolt_stages(
            graph, recipe, configuration, input_stage, gcc, bolt
        )

    add_evaluation(
        pipeline,
        recipe,
        llvm,
        extra_cmake=lambda configuration: ("-DLLVM_USE_LINKER=lld",),
    )
    pipeline.targets["download-sources"] = [llvm, gcc, bolt_source]
    pipeline.targets["build-all"] = [bolt, *pipeline.compiler_stages.values()]
    return pipeline
