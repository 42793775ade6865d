"""
Pipeline stages, in declaration order.

Every stage is a plain function ``(RunContext, StageResults, Toolchain)
-> StageResult``. A stage reads what earlier stages produced from the
results mapping, and raises a PipelineError subclass when it cannot
continue.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.models.run import (
    CLUSTER_CONNECTOR,
    IDENTITY_RESOLVER,
    IMAGE_BUILDER,
    MANIFEST_APPLIER,
    REGISTRY_PUBLISHER,
    ROLLOUT_VERIFIER,
    RunContext,
    StageResult,
)
from deployline.core.stages.cluster import connect_cluster
from deployline.core.stages.identity import resolve_identity
from deployline.core.stages.image import build_image
from deployline.core.stages.manifest import apply_manifests
from deployline.core.stages.publish import publish_image
from deployline.core.stages.rollout import verify_rollout

StageFn = Callable[[RunContext, StageResults, Toolchain], StageResult]


@dataclass(frozen=True)
class Stage:
    """A named step of the pipeline."""

    name: str
    run: StageFn
    description: str = ""


DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage(IDENTITY_RESOLVER, resolve_identity, "Resolve the deploying account and registry"),
    Stage(IMAGE_BUILDER, build_image, "Build the image and apply every run tag"),
    Stage(REGISTRY_PUBLISHER, publish_image, "Log in, ensure the repository, push tags"),
    Stage(CLUSTER_CONNECTOR, connect_cluster, "Write a run-scoped kubeconfig and list nodes"),
    Stage(MANIFEST_APPLIER, apply_manifests, "Bind the image into manifests and apply them"),
    Stage(ROLLOUT_VERIFIER, verify_rollout, "Wait for ready replicas and probe health"),
)

__all__ = ["DEFAULT_STAGES", "Stage", "StageFn"]
