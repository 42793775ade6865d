"""
deployline — CLI entrypoint.

Usage:
    deployline --help
    deployline run --build-number 42
    deployline plan
    deployline config check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from deployline import __version__
from deployline.core.observability.logging_config import (
    FILE_ENV,
    FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)

_MARKERS = {
    "success": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
}


@click.group()
@click.version_option(version=__version__, prog_name="deployline")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to deployline.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """deployline — build, push and roll out one image to one cluster."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug, verbose, quiet, os.environ),
        log_file=os.environ.get(FILE_ENV),
        log_file_level=os.environ.get(FILE_LEVEL_ENV),
    )


def _overrides(region: str | None, cluster: str | None, repository: str | None) -> dict:
    return {"region": region, "cluster": cluster, "repository": repository}


def _run_options(fn):
    """Options shared by ``run`` and ``plan``."""
    options = [
        click.option("--build-number", "-b", type=click.IntRange(min=1), default=None,
                     help="Run id (default: $BUILD_NUMBER, then last run + 1)."),
        click.option("--revision", "-r", default=None,
                     help="Source revision (default: $GIT_COMMIT, then git HEAD)."),
        click.option("--region", default=None, help="Override the AWS region."),
        click.option("--cluster", default=None, help="Override the target cluster."),
        click.option("--repository", default=None, help="Override the image repository."),
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@cli.command()
@_run_options
@click.pass_context
def run(
    ctx: click.Context,
    build_number: int | None,
    revision: str | None,
    region: str | None,
    cluster: str | None,
    repository: str | None,
    as_json: bool,
) -> None:
    """Build, push and deploy the current revision.

    Examples:

        deployline run

        deployline run --build-number 42 --revision abcdef1234567

        deployline run --cluster staging --json
    """
    from deployline.core.use_cases.run import run_deploy

    result = run_deploy(
        config_path=ctx.obj.get("config_path"),
        build_number=build_number,
        revision=revision,
        overrides=_overrides(region, cluster, repository),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.outcome is not None
    summary = result.outcome.summary

    click.secho(
        f"\n🚀 Run {summary['run_id']} — {summary['repository']} → {summary['cluster']}",
        fg="cyan",
        bold=True,
    )
    click.echo(f"   Revision: {summary['revision']}")
    click.echo(f"   Tags:     {', '.join(summary['tags'])}")
    click.echo()

    for stage in summary["stages"]:
        marker, color = _MARKERS.get(stage["status"], ("?", "white"))
        click.secho(f"   {marker} {stage['stage']:<18}", fg=color, nl=False)
        timing = f" ({stage['duration_ms']}ms)" if stage["duration_ms"] else ""
        warn = " ⚠️" if stage["warning"] else ""
        click.echo(f"{timing}{warn}")
        if stage["detail"] and (stage["status"] != "success" or ctx.obj.get("verbose")):
            click.echo(f"     │ {stage['detail']}")

    click.echo()
    if summary["status"] == "success":
        click.secho(f"   ✅ Deployed {summary['image']}", fg="green", bold=True)
        click.echo(f"   Duration: {summary['duration_ms']}ms")
        click.echo()
        return

    click.secho(
        f"   ❌ Failed at {summary['failed_stage']} ({summary['failure_reason']})",
        fg="red",
        bold=True,
    )
    for hint in summary["hints"]:
        click.echo(f"   → {hint}")
    click.echo()
    sys.exit(1)


@cli.command()
@_run_options
@click.pass_context
def plan(
    ctx: click.Context,
    build_number: int | None,
    revision: str | None,
    region: str | None,
    cluster: str | None,
    repository: str | None,
    as_json: bool,
) -> None:
    """Show what the next run would do, without doing it."""
    from deployline.core.use_cases.plan import plan_deploy

    result = plan_deploy(
        config_path=ctx.obj.get("config_path"),
        build_number=build_number,
        revision=revision,
        overrides=_overrides(region, cluster, repository),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    run_ctx = result.context
    assert run_ctx is not None

    click.secho(f"\n📋 Plan for run {run_ctx.run_id}", fg="cyan", bold=True)
    click.echo(f"   Revision:  {run_ctx.revision}")
    click.echo(f"   Target:    {run_ctx.cluster_name} ({run_ctx.region}), "
               f"namespace {run_ctx.namespace}")
    click.echo()
    click.secho("   Images:", fg="white", bold=True)
    for uri in result.images:
        click.echo(f"     • {uri}")
    click.echo()
    click.secho("   Manifests:", fg="white", bold=True)
    for manifest in result.manifests:
        label = "" if manifest["exists"] else (
            " (optional, absent)" if manifest["optional"] else " (missing)"
        )
        click.echo(f"     • {manifest['path']}{label}")
    click.echo()
    click.secho("   Stages:", fg="white", bold=True)
    for i, stage in enumerate(result.stages, start=1):
        click.echo(f"     {i}. {stage['stage']:<18} {stage['description']}")
    click.echo()


@cli.group()
def config() -> None:
    """Pipeline configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate deployline.yml configuration."""
    from deployline.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Pipeline:   {result.config.name}")
        click.echo(f"   Repository: {result.config.repository}")
        click.echo(f"   Cluster:    {result.config.cluster} ({result.config.region})")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="Entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent runs from the run ledger."""
    from deployline.core.use_cases.history import load_history

    result = load_history(config_path=ctx.obj.get("config_path"), limit=limit)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.entries:
        click.echo("No runs recorded yet.")
        return

    state = result.state
    click.secho("\n📜 Recent runs", fg="cyan", bold=True)
    if state is not None:
        click.echo(f"   {state.runs_total} total, {state.runs_failed} failed")
    click.echo()
    for entry in result.entries:
        marker, color = _MARKERS.get(entry.status, ("?", "white"))
        click.secho(f"   {marker} #{entry.run_id:<6}", fg=color, nl=False)
        click.echo(f" {entry.revision[:7]}  {entry.tag:<8} {entry.cluster}  {entry.timestamp}")
        if entry.failed_stage:
            click.echo(f"     │ {entry.failed_stage}: {entry.failure_reason}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def preflight(as_json: bool) -> None:
    """Check that docker, aws and kubectl are installed."""
    from deployline.core.use_cases.preflight import run_preflight

    result = run_preflight()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    click.echo()
    for name, tool in result.tools.items():
        if tool["available"]:
            click.secho(f"   ✓ {name}", fg="green")
        elif tool["required"]:
            click.secho(f"   ✗ {name} (not on PATH)", fg="red")
        else:
            click.secho(f"   ⊘ {name} (optional, not on PATH)", fg="yellow")
    click.echo()

    if not result.ok:
        click.secho(f"❌ Missing: {', '.join(result.missing)}", fg="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
