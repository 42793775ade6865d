"""
Engine executor — the pipeline run loop.

Stages run strictly in declaration order. The first fatal failure stops
the run: every remaining stage is recorded as skipped, so a sealed
RunReport always carries exactly one result per stage.

Flow:
    context → stage 1 … stage N → RunReport → Run Reporter
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from deployline.core.engine.toolchain import Toolchain
from deployline.core.errors import PipelineError
from deployline.core.models.run import RunContext, RunReport, StageResult
from deployline.core.stages import DEFAULT_STAGES, Stage
from deployline.core.stages.diagnostics import collect_diagnostics

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _marker(result: StageResult) -> str:
    if result.ok:
        return "⚠" if result.warning else "✓"
    return "✗" if result.failed else "⊘"


def run_stage(
    stage: Stage,
    context: RunContext,
    results: dict[str, StageResult],
    toolchain: Toolchain,
) -> StageResult:
    """Run one stage, converting any exception into a failed result."""
    try:
        return stage.run(context, results, toolchain)
    except PipelineError as e:
        diagnostics = {}
        if e.collect_diagnostics:
            diagnostics = collect_diagnostics(context, results, toolchain)
        return StageResult.failure(
            stage.name,
            str(e),
            reason=e.reason,
            error_kind=e.kind,
            hints=e.hints,
            outputs=e.details,
            diagnostics=diagnostics,
        )
    except Exception as e:
        logger.exception("Stage %s crashed", stage.name)
        return StageResult.failure(
            stage.name,
            f"Unexpected error: {e}",
            error_kind="UnexpectedError",
        )


def run_pipeline(
    context: RunContext,
    toolchain: Toolchain,
    stages: Sequence[Stage] = DEFAULT_STAGES,
) -> RunReport:
    """Execute every stage and seal the results into a RunReport.

    Args:
        context: The immutable per-run record.
        toolchain: Adapters, config, clock and scratch space.
        stages: Stage declarations, in order.

    Returns:
        RunReport with one StageResult per stage.
    """
    logger.info(
        "Run %d: %s → %s (%s)",
        context.run_id,
        context.short_revision,
        context.cluster_name,
        ", ".join(context.image_tags),
    )
    run_started_at = _now_iso()
    run_clock = toolchain.clock()
    results: dict[str, StageResult] = {}
    failed: StageResult | None = None

    for stage in stages:
        if failed is not None:
            result = StageResult.skip(stage.name, f"Skipped: {failed.stage} failed")
        else:
            started_at = _now_iso()
            started = toolchain.clock()
            result = run_stage(stage, context, results, toolchain)
            result = result.timed(
                started_at,
                _now_iso(),
                int((toolchain.clock() - started) * 1000),
            )
            if result.failed:
                failed = result

        results[stage.name] = result
        logger.info("%s %s: %s", _marker(result), stage.name, result.detail)

    return RunReport(
        run=context,
        stages=tuple(results[stage.name] for stage in stages),
        started_at=run_started_at,
        ended_at=_now_iso(),
        duration_ms=int((toolchain.clock() - run_clock) * 1000),
    )
