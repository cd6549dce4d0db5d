"""Command-line interface for the benchmark reproduction pipeline.

This module provides the ``bolt-repro`` entry point. Each command maps to a
group of pipeline stages; stages whose artifacts are already up to date are
skipped, so any command can be re-run after a failure or interruption.
"""

import click
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from bolt_repro.config import resolve_config
from bolt_repro.datatypes import BenchConfig, Workload
from bolt_repro.errors import CycleError, PipelineError
from bolt_repro.orchestrator import StageStatus
from bolt_repro.pipeline import Pipeline, build_pipeline, clean_results, distclean, layout_for
from bolt_repro.reporting.tables import create_comparison_table, format_table_for_display

EXIT_STAGE_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _load(ctx: click.Context) -> BenchConfig:
    settings: Dict[str, Any] = ctx.obj
    try:
        return resolve_config(settings["config_file"], overrides=settings["overrides"])
    except (ValueError, OSError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


def _pipeline(ctx: click.Context) -> Pipeline:
    config = _load(ctx)
    try:
        return build_pipeline(config)
    except ValueError as e:
        click.echo(f"Pipeline error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


def _run(ctx: click.Context, target: str) -> None:
    pipeline = _pipeline(ctx)
    try:
        outcomes = pipeline.run(target)
    except CycleError as e:
        click.echo(f"Pipeline error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except PipelineError as e:
        click.echo(f"Stage {e.stage_id} failed: {e.message}", err=True)
        if e.exit_code is not None:
            click.echo(f"  exit code: {e.exit_code}", err=True)
        click.echo(f"  log: {e.log_path}", err=True)
        sys.exit(EXIT_STAGE_FAILED)
    except ValueError as e:
        click.echo(f"Pipeline error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    ran = [o.name for o in outcomes if o.status is StageStatus.SUCCEEDED]
    skipped = [o.name for o in outcomes if o.status is StageStatus.SKIPPED]
    click.echo(f"{target}: {len(ran)} stage(s) run, {len(skipped)} up to date")
    if target in ("run-all", "results"):
        report = pipeline.layout.report_writer()
        click.echo(format_table_for_display(create_comparison_table(report.load_comparisons())))


@click.group()
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help='TOML file with a [bench] table')
@click.option('--workload', type=click.Choice([w.value for w in Workload]), default=None,
              help='Compiler to evaluate')
@click.option('--root', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Working-directory root')
@click.option('--cores', type=int, default=None, help='Parallel jobs for every build')
@click.option('--trials', type=int, default=None, help='Measured trials per configuration')
@click.option('--trial-jobs', type=int, default=None, help='Trials allowed to run concurrently')
@click.option('--ninja/--no-ninja', 'use_ninja', default=None, help='Use Ninja instead of make for CMake builds')
@click.option('--tee/--no-tee', default=None, help='Echo command output to the console')
@click.option('--verbose', is_flag=True, help='Verbose output')
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[Path],
    workload: Optional[str],
    root: Optional[Path],
    cores: Optional[int],
    trials: Optional[int],
    trial_jobs: Optional[int],
    use_ninja: Optional[bool],
    tee: Optional[bool],
    verbose: bool,
):
    """Reproduce the BOLT evaluation: build compilers, time them, compare."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {
        "config_file": config_file,
        "overrides": {
            "workload": workload,
            "root": root,
            "cores": cores,
            "trials": trials,
            "trial_jobs": trial_jobs,
            "use_ninja": use_ninja,
            "tee": tee,
        },
    }


@cli.command("run-all")
@click.pass_context
def run_all(ctx: click.Context):
    """Download, build, measure and compare everything."""
    _run(ctx, "run-all")


@cli.command("download-sources")
@click.pass_context
def download_sources(ctx: click.Context):
    """Fetch compiler and optimizer sources."""
    _run(ctx, "download-sources")


@cli.command("build-all")
@click.pass_context
def build_all(ctx: click.Context):
    """Build the optimizer and every compiler configuration."""
    _run(ctx, "build-all")


@cli.command("results")
@click.pass_context
def results(ctx: click.Context):
    """Measure every configuration and write the comparisons."""
    _run(ctx, "results")


@cli.command("plan")
@click.argument("target", default="run-all")
@click.pass_context
def plan(ctx: click.Context, target: str):
    """Show which stages TARGET would run, without running anything."""
    pipeline = _pipeline(ctx)
    try:
        execution_plan = pipeline.plan(target)
    except ValueError as e:
        click.echo(f"Pipeline error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    for entry in execution_plan.entries:
        marker = "run " if entry.will_run else "skip"
        click.echo(f"[{marker}] {entry.stage_id:<24} {entry.reason}")
    click.echo(f"{len(execution_plan.to_run)} of {len(execution_plan.entries)} stage(s) would run")


@cli.command("summary")
@click.option('--decimals', type=int, default=2, help='Decimal places in the table')
@click.pass_context
def summary(ctx: click.Context, decimals: int):
    """Print a table of the comparisons measured so far."""
    layout = layout_for(_load(ctx))
    table = create_comparison_table(layout.report_writer().load_comparisons())
    click.echo(format_table_for_display(table, decimal_places=decimals))


@cli.command("clean")
@click.pass_context
def clean(ctx: click.Context):
    """Delete measurement results, keeping sources and builds."""
    layout = layout_for(_load(ctx))
    clean_results(layout)
    click.echo(f"Removed results under {layout.root}")


@cli.command("clean-all")
@click.pass_context
def clean_all(ctx: click.Context):
    """Delete results, builds, sources and logs."""
    layout = layout_for(_load(ctx))
    distclean(layout)
    click.echo(f"Removed everything under {layout.root}")


cli.add_command(clean_all, name="distclean")


def main():
    cli()


if __name__ == '__main__':
    main()
