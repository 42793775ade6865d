"""
Run use case — one deployment, from config to report.

This is the top-level orchestrator: it loads config, resolves the run
id and revision, builds the immutable RunContext, runs every stage and
hands the sealed report to the Run Reporter.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from deployline.adapters.registry import AdapterRegistry, default_registry
from deployline.core.config.loader import ConfigError, config_root, find_config_file, load_config
from deployline.core.engine.executor import run_pipeline
from deployline.core.engine.reporter import ReportOutcome, report_run
from deployline.core.engine.toolchain import Toolchain, TunnelFactory, port_forward_factory
from deployline.core.models.action import Action
from deployline.core.models.config import PipelineConfig
from deployline.core.models.run import RunContext, RunReport
from deployline.core.observability.logging_config import bind_run
from deployline.core.persistence.state_file import default_state_path, load_state

logger = logging.getLogger(__name__)

SCRATCH_DIR = "tmp"


class RunSetupError(Exception):
    """Raised when a run cannot be started (no revision, bad run id)."""


@dataclass
class RunResult:
    """Result of one deployment run."""

    report: RunReport | None = None
    outcome: ReportOutcome | None = None
    config: PipelineConfig | None = None
    context: RunContext | None = None
    project_root: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.succeeded

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["project_root"] = str(self.project_root)
        if self.outcome:
            result.update(self.outcome.summary)
            result["cleanup"] = list(self.outcome.cleanup)
            result["notified"] = self.outcome.notified
        return result


# ── Run inputs ──────────────────────────────────────────────────


def resolve_run_id(
    build_number: int | None,
    environ: Mapping[str, str],
    state_path: Path,
) -> int:
    """``--build-number`` > ``BUILD_NUMBER`` > last recorded run + 1."""
    if build_number is not None:
        return build_number

    raw = environ.get("BUILD_NUMBER", "").strip()
    if raw:
        try:
            return int(raw)
        except ValueError as e:
            raise RunSetupError(f"BUILD_NUMBER is not an integer: {raw!r}") from e

    return load_state(state_path).next_run_id()


def resolve_revision(
    revision: str | None,
    environ: Mapping[str, str],
    registry: AdapterRegistry,
    source_dir: Path,
) -> str:
    """``--revision`` > ``GIT_COMMIT`` > ``git rev-parse HEAD``."""
    if revision:
        return revision.strip()

    from_env = environ.get("GIT_COMMIT", "").strip()
    if from_env:
        return from_env

    receipt = registry.execute(
        Action.for_run("setup", "git", "rev-parse", timeout=15),
        working_dir=str(source_dir),
    )
    if not receipt.ok or not receipt.output.strip():
        raise RunSetupError(
            f"Cannot determine the source revision: {receipt.error or 'empty output'}. "
            "Pass --revision or set GIT_COMMIT."
        )

    status = registry.execute(
        Action.for_run("setup", "git", "status", timeout=15),
        working_dir=str(source_dir),
    )
    if status.ok and status.output.strip():
        logger.warning("Working tree has uncommitted changes; the image may not match %s",
                       receipt.output.strip()[:7])

    return receipt.output.strip()


def prepare_run(
    config_path: Path | None = None,
    build_number: int | None = None,
    revision: str | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    registry: AdapterRegistry | None = None,
) -> tuple[PipelineConfig, Path, RunContext, AdapterRegistry]:
    """Load config and build the RunContext shared by ``run`` and ``plan``.

    Raises:
        ConfigError: If configuration is missing or invalid.
        RunSetupError: If the run id or revision cannot be determined.
    """
    env = os.environ if environ is None else environ

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        raise ConfigError("No deployline.yml found. Create one or specify --config.")

    config = load_config(config_path, overrides=overrides, environ=env)
    project_root = config_root(config_path)

    if registry is None:
        registry = default_registry(working_dir=str(project_root))

    state_path = default_state_path(project_root, config.state_dir)
    run_id = resolve_run_id(build_number, env, state_path)
    source_dir = project_root / config.image.context
    commit = resolve_revision(revision, env, registry, source_dir)

    try:
        context = RunContext.create(
            run_id=run_id,
            revision=commit,
            region=config.region,
            repository_name=config.repository,
            cluster_name=config.cluster,
            namespace=config.deployment.namespace,
            source_dir=source_dir,
        )
    except ValueError as e:
        raise RunSetupError(str(e)) from e

    return config, project_root, context, registry


def run_deploy(
    config_path: Path | None = None,
    build_number: int | None = None,
    revision: str | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    registry: AdapterRegistry | None = None,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], None] | None = None,
    tunnel_factory: TunnelFactory | None = None,
) -> RunResult:
    """Execute one deployment run.

    Args:
        config_path: Optional explicit path to deployline.yml.
        build_number: Run id from the CLI; wins over BUILD_NUMBER.
        revision: Source revision from the CLI; wins over GIT_COMMIT.
        overrides: Top-level config keys set from the CLI.
        environ: Environment mapping (default: ``os.environ``).
        registry: Optional pre-configured adapter registry.
        clock: Monotonic clock for timing and rollout deadlines.
        sleep: Sleep used between readiness polls and probes.
        tunnel_factory: Factory for the health-probe tunnel.

    Returns:
        RunResult with the sealed report and what the reporter did.
    """
    result = RunResult()

    # ── Resolve inputs ───────────────────────────────────────────
    try:
        config, project_root, context, registry = prepare_run(
            config_path, build_number, revision, overrides, environ, registry,
        )
    except (ConfigError, RunSetupError) as e:
        result.error = str(e)
        return result

    result.config = config
    result.project_root = project_root
    result.context = context
    bind_run(context.run_id)

    toolchain = Toolchain(
        registry=registry,
        config=config,
        project_root=project_root,
        scratch_dir=project_root / config.state_dir / SCRATCH_DIR,
        tunnel_factory=tunnel_factory or port_forward_factory,
    )
    if clock is not None:
        toolchain.clock = clock
    if sleep is not None:
        toolchain.sleep = sleep

    # ── Execute and report ───────────────────────────────────────
    report = run_pipeline(context, toolchain)
    result.report = report
    result.outcome = report_run(report, toolchain)
    return result
