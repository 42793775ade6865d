"""
Manifest Applier — bind the run's image into the manifests and apply them.

Each manifest file is backed up, the image placeholder substituted in
place, the file applied, and the backup restored in ``finally``: the
template on disk is byte-identical before and after, whatever happens.
``kubectl apply`` is declarative, so applying the same content twice
changes nothing.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.errors import ApplyFailure
from deployline.core.models.run import (
    MANIFEST_APPLIER,
    REGISTRY_PUBLISHER,
    RunContext,
    StageResult,
)
from deployline.core.stages.cluster import cluster_from
from deployline.core.stages.image import references_from

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def backup_manifest(path: Path) -> Path:
    """Copy ``path`` next to itself, restoring a stale backup first."""
    backup = backup_path(path)
    if backup.exists():
        # A previous run died before restoring; its backup is the pristine copy
        logger.warning("Restoring stale backup %s before this run", backup)
        restore_manifest(path)
    shutil.copy2(path, backup)
    return backup


def restore_manifest(path: Path) -> bool:
    """Move the backup of ``path`` back over it. Returns True if restored."""
    backup = backup_path(path)
    if not backup.exists():
        return False
    backup.replace(path)
    logger.debug("Restored %s", path)
    return True


def substitute_image(path: Path, placeholder: str, image_uri: str) -> int:
    """Replace every placeholder occurrence in ``path``. Returns the count."""
    text = path.read_text(encoding="utf-8")
    count = text.count(placeholder)
    if count:
        path.write_text(text.replace(placeholder, image_uri), encoding="utf-8")
    return count


def apply_manifests(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> StageResult:
    published = results[REGISTRY_PUBLISHER]
    if not published.ok or context.primary_tag not in published.outputs.get("pushed_tags", []):
        raise ApplyFailure(
            f"Run tag {context.primary_tag} is not published; refusing to deploy it"
        )

    settings = toolchain.config.deployment
    cluster = cluster_from(results)
    image_uri = references_from(results)[0].uri

    applied: list[str] = []
    substitutions = 0
    for manifest in settings.manifests:
        path = toolchain.resolve(manifest.path)
        if not path.is_file():
            if manifest.optional:
                logger.info("Optional manifest %s not present — skipping", manifest.path)
                continue
            raise ApplyFailure(f"Manifest not found: {path}")

        backup_manifest(path)
        try:
            substitutions += substitute_image(path, settings.image_placeholder, image_uri)
            receipt = toolchain.call(
                context,
                "kubectl",
                "apply",
                qualifier=manifest.path,
                timeout=settings.apply_timeout,
                kubeconfig=str(cluster.kubeconfig),
                namespace=context.namespace,
                file=str(path),
            )
        except OSError as e:
            raise ApplyFailure(f"Cannot render {manifest.path}: {e}") from e
        finally:
            restore_manifest(path)

        if not receipt.ok:
            raise ApplyFailure(f"kubectl apply -f {manifest.path} failed: {receipt.error}")
        applied.append(manifest.path)
        logger.info("Applied %s: %s", manifest.path, receipt.output.replace("\n", "; "))

    if not applied:
        raise ApplyFailure("No manifests were applied")
    if substitutions == 0:
        logger.warning(
            "No '%s' placeholder found in %s; image %s was not bound",
            settings.image_placeholder,
            ", ".join(applied),
            image_uri,
        )

    return StageResult.success(
        MANIFEST_APPLIER,
        f"Applied {', '.join(applied)} with {image_uri}",
        warning=substitutions == 0,
        outputs={
            "applied": applied,
            "image_uri": image_uri,
            "substitutions": substitutions,
        },
    )


def restore_leftover_backups(toolchain: Toolchain) -> list[str]:
    """Restore any manifest backup still on disk. Returns restored paths."""
    restored = []
    for manifest in toolchain.config.deployment.manifests:
        path = toolchain.resolve(manifest.path)
        if restore_manifest(path):
            restored.append(manifest.path)
    return restored
