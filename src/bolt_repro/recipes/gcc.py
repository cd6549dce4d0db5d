"""GCC workload: the same comparison with gcc 8.2 as the evaluated compiler.

The optimizer cannot read gcc 8 binaries whose functions were split by
``-freorder-blocks-and-partition``, and it needs relocations kept in the
output, so the two configurations fed to it are separate gcc builds with
those flags instead of copies of the baseline and PGO builds.
"""

from __future__ import annotations

from typing import List

from bolt_repro.datatypes import BenchConfig, Configuration
from bolt_repro.graph import StageGraph, run_commands
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

GCC_CONFIGURE = (
    "--enable-bootstrap",
    "--enable-linker-build-id",
    "--enable-languages=c,c++",
    "--with-gnu-as",
    "--with-gnu-ld",
    "--disable-multilib",
)
BOLT_READY_CONFIGURE = (
    "--with-boot-ldflags=-Wl,-q,-znow -static-libstdc++ -static-libgcc",
    "--with-stage1-ldflags=-Wl,-q,-znow",
)
BOLT_READY_BOOT_CFLAGS = "BOOT_CFLAGS=-O2 -g -fno-reorder-blocks-and-partition"


def _gcc_build(
    recipe: Recipe,
    build_dir,
    install_dir,
    bootstrap_target: str = "",
    bolt_ready: bool = False,
) -> List[Command]:
    configure = [str(recipe.layout.gcc_source / "configure"), *GCC_CONFIGURE]
    make_args = [bootstrap_target] if bootstrap_target else []
    if bolt_ready:
        configure.extend(BOLT_READY_CONFIGURE)
        make_args.append(BOLT_READY_BOOT_CFLAGS)
    configure.append(f"--prefix={install_dir}")
    return [
        Command(tuple(configure), cwd=build_dir, description=f"Configuring {build_dir.name}"),
        recipe.make(build_dir, *make_args, description=f"Bootstrapping {build_dir.name}"),
        recipe.make(build_dir, "install", description=f"Installing {build_dir.name}"),
    ]


def build_gcc_pipeline(config: BenchConfig, layout: Layout) -> WorkloadPipeline:
    recipe = Recipe(config=config, layout=layout)
    graph = StageGraph()
    pipeline = WorkloadPipeline(graph=graph)

    gcc = add_download_gcc(graph, recipe)
    bolt_source = add_download_bolt(graph, recipe)
    bolt = add_build_bolt(graph, recipe, bolt_source)
    llvm = add_download_llvm(graph, recipe)

    graph.add(
        "build-stage1",
        run_commands(
            *_gcc_build(
                recipe,
                layout.build_dir(Configuration.BASELINE),
                layout.install_dir(Configuration.BASELINE),
            )
        ),
        deps=[gcc],
        outputs=[layout.compilers(Configuration.BASELINE)[0]],
        description="Bootstrap the baseline gcc",
    )
    graph.add(
        "build-gccpgo",
        run_commands(
            *_gcc_build(
                recipe,
                layout.build_dir(Configuration.PGO),
                layout.install_dir(Configuration.PGO),
                bootstrap_target="profiledbootstrap",
            )
        ),
        deps=[gcc],
        outputs=[layout.compilers(Configuration.PGO)[0]],
        description="Bootstrap gcc with profile feedback",
    )
    pipeline.compiler_stages = {
        Configuration.BASELINE: "build-stage1",
        Configuration.PGO: "build-gccpgo",
    }

    for configuration in (Configuration.BOLT, Configuration.PGOBOLT):
        name = layout.name(configuration)
        input_dir = layout.input_build_dir(configuration)
        input_install = layout.input_install_dir(configuration)
        input_stage = f"build-{name}-input"
        bootstrap = "profiledbootstrap" if configuration is Configuration.PGOBOLT else ""
        graph.add(
            input_stage,
            run_commands(
                *_gcc_build(recipe, input_dir, input_install, bootstrap, bolt_ready=True)
            ),
            deps=[gcc],
            outputs=[layout.drivers(input_install)[0]],
            description=f"Bootstrap gcc for {name} keeping relocations",
        )
        pipeline.compiler_stages[configuration] = add_bolt_stages(
            graph, recipe, configuration, input_stage, gcc, bolt
        )

    def runtime_rpath(configuration: Configuration):
        bindir = layout.compilers(configuration)[0].parent
        return (f"-DCMAKE_CXX_LINK_FLAGS=-Wl,-rpath,{bindir / '..' / 'lib64'}",)

    add_evaluation(pipeline, recipe, llvm, extra_cmake=runtime_rpath)
    pipeline.targets["download-sources"] = [llvm, gcc, bolt_source]
    pipeline.targets["build-all"] = [bolt, *pipeline.compiler_stages.values()]
    return pipeline
