"""
Plan use case — show what a run would do, without doing it.

Resolves the same RunContext a run would use, but never touches the
registry, the cluster or the state file. The registry host is shown
for the configured fallback account; the real one is resolved at run
time.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from deployline.adapters.registry import AdapterRegistry
from deployline.core.config.loader import ConfigError
from deployline.core.models.config import PipelineConfig
from deployline.core.models.run import Identity, RunContext
from deployline.core.stages import DEFAULT_STAGES
from deployline.core.stages.image import image_references
from deployline.core.use_cases.run import RunSetupError, prepare_run


@dataclass
class PlanResult:
    """A dry description of the next run."""

    context: RunContext | None = None
    config: PipelineConfig | None = None
    images: list[str] = field(default_factory=list)
    stages: list[dict[str, str]] = field(default_factory=list)
    manifests: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        assert self.context is not None
        return {
            "run": self.context.model_dump(mode="json"),
            "images": list(self.images),
            "stages": list(self.stages),
            "manifests": list(self.manifests),
        }


def plan_deploy(
    config_path: Path | None = None,
    build_number: int | None = None,
    revision: str | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    registry: AdapterRegistry | None = None,
) -> PlanResult:
    """Describe the next run: context, image references, stage order."""
    result = PlanResult()
    try:
        config, project_root, context, _ = prepare_run(
            config_path, build_number, revision, overrides, environ, registry,
        )
    except (ConfigError, RunSetupError) as e:
        result.error = str(e)
        return result

    result.context = context
    result.config = config

    identity = Identity(
        account_id=config.fallback_account_id, region=context.region, provenance="fallback"
    )
    result.images = [ref.uri for ref in image_references(context, identity.registry)]
    result.stages = [
        {"stage": stage.name, "description": stage.description} for stage in DEFAULT_STAGES
    ]
    for manifest in config.deployment.manifests:
        path = project_root / manifest.path
        result.manifests.append({
            "path": manifest.path,
            "optional": manifest.optional,
            "exists": path.is_file(),
        })
    return result
