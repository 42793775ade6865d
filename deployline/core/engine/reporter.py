"""
Run Reporter — summarize, persist, notify, clean up.

Runs after the pipeline whatever its outcome. Nothing here can change
the run status: persistence, notification and cleanup problems are
logged and the report stays as sealed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from deployline.core.engine.toolchain import Toolchain
from deployline.core.models.run import (
    IDENTITY_RESOLVER,
    IMAGE_BUILDER,
    RunReport,
)
from deployline.core.models.state import RunRecord
from deployline.core.persistence.ledger import DEFAULT_LEDGER_FILE, LedgerEntry, RunLedger
from deployline.core.persistence.state_file import default_state_path, record_run
from deployline.core.stages.manifest import restore_leftover_backups

logger = logging.getLogger(__name__)


@dataclass
class ReportOutcome:
    """What the reporter did with a finished run."""

    summary: dict[str, Any] = field(default_factory=dict)
    cleanup: list[str] = field(default_factory=list)
    cleanup_errors: list[str] = field(default_factory=list)
    notified: bool = False
    persisted: bool = False

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "cleanup": list(self.cleanup),
            "cleanup_errors": list(self.cleanup_errors),
            "notified": self.notified,
            "persisted": self.persisted,
        }


def report_run(report: RunReport, toolchain: Toolchain) -> ReportOutcome:
    """Handle a finished RunReport. Never raises."""
    outcome = ReportOutcome(summary=report.summary())
    try:
        _log_summary(outcome.summary)
        outcome.persisted = persist_run(report, outcome.summary, toolchain)
        try:
            outcome.notified = notify(report, outcome.summary, toolchain)
        except Exception as e:
            logger.error("Notification for run %d failed: %s", report.run.run_id, e)
    finally:
        cleanup(report, toolchain, outcome)
    return outcome


# ── Summary ─────────────────────────────────────────────────────


def _log_summary(summary: dict[str, Any]) -> None:
    if summary["status"] == "success":
        logger.info(
            "Run %s succeeded: %s on %s/%s in %dms",
            summary["run_id"],
            summary["image"],
            summary["region"],
            summary["cluster"],
            summary["duration_ms"],
        )
    else:
        logger.error(
            "Run %s failed at %s (%s): %s",
            summary["run_id"],
            summary["failed_stage"],
            summary["failure_reason"],
            summary["detail"],
        )
        for hint in summary["hints"]:
            logger.error("  hint: %s", hint)
    if summary["warnings"]:
        logger.warning("Stages with warnings: %s", ", ".join(summary["warnings"]))


# ── Persistence ─────────────────────────────────────────────────


def persist_run(report: RunReport, summary: dict[str, Any], toolchain: Toolchain) -> bool:
    """Append to the run ledger and update the state file."""
    state_dir = toolchain.project_root / toolchain.config.state_dir
    try:
        RunLedger(path=state_dir / DEFAULT_LEDGER_FILE).write(LedgerEntry.from_summary(summary))

        state_path = default_state_path(toolchain.project_root, toolchain.config.state_dir)
        failed = report.failed_stage
        record_run(
            state_path,
            toolchain.config.name,
            RunRecord(
                run_id=report.run.run_id,
                revision=report.run.revision,
                tag=report.run.primary_tag,
                status=report.status,
                failed_stage=failed.stage if failed else None,
                started_at=report.started_at,
                ended_at=report.ended_at,
            ),
        )
    except Exception as e:
        logger.error("Could not persist run %d: %s", report.run.run_id, e)
        return False
    return True


# ── Notification ────────────────────────────────────────────────


# notifications.on uses "failure"; a run status is "failed"
_ON_STATUS = {"failure": "failed"}


def should_notify(on: str, status: str) -> bool:
    return on == "always" or _ON_STATUS.get(on, on) == status


def notify(report: RunReport, summary: dict[str, Any], toolchain: Toolchain) -> bool:
    """POST the summary to the configured webhook, if any."""
    settings = toolchain.config.notifications
    if not settings.webhook_url or not should_notify(settings.on, report.status):
        return False

    receipt = toolchain.call(
        report.run,
        "http",
        "post",
        qualifier="notify",
        url=settings.webhook_url,
        payload=summary,
        timeout=settings.timeout,
    )
    if not receipt.ok:
        logger.warning("Webhook notification failed: %s", receipt.error)
        return False
    logger.info("Notified %s", settings.webhook_url)
    return True


# ── Cleanup ─────────────────────────────────────────────────────


def local_image_uris(report: RunReport) -> list[str]:
    """URIs of every tag the Image Builder may have created locally."""
    built = report.get(IMAGE_BUILDER)
    if built.skipped:
        return []
    references = built.outputs.get("references")
    if references:
        return [f"{r['registry']}/{r['repository']}:{r['tag']}" for r in references]

    registry = report.get(IDENTITY_RESOLVER).outputs.get("registry")
    if not registry:
        return []
    return [f"{registry}/{report.run.repository_name}:{tag}" for tag in report.run.image_tags]


def cleanup(report: RunReport, toolchain: Toolchain, outcome: ReportOutcome) -> None:
    """Remove local images, the run kubeconfig and leftover backups."""
    images = local_image_uris(report)
    if images:
        receipt = toolchain.call(
            report.run, "docker", "rmi", qualifier="cleanup", images=images, force=True,
        )
        if receipt.ok:
            outcome.cleanup.append(f"removed {len(images)} local image tag(s)")
        else:
            logger.warning("docker rmi failed: %s", receipt.error)
            outcome.cleanup_errors.append(f"docker rmi: {receipt.error}")

    kubeconfig = toolchain.kubeconfig_path(report.run)
    try:
        if kubeconfig.exists():
            kubeconfig.unlink()
            outcome.cleanup.append(f"deleted {kubeconfig.name}")
    except OSError as e:
        logger.warning("Cannot delete %s: %s", kubeconfig, e)
        outcome.cleanup_errors.append(f"kubeconfig: {e}")

    try:
        for path in restore_leftover_backups(toolchain):
            logger.warning("Restored leftover backup of %s", path)
            outcome.cleanup.append(f"restored {path}")
    except OSError as e:
        logger.warning("Cannot restore manifest backups: %s", e)
        outcome.cleanup_errors.append(f"manifests: {e}")
