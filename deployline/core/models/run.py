"""
Run models — the per-execution records threaded through the pipeline.

RunContext is created once when a run starts and never changes.
StageResults accumulate in declaration order and are sealed into an
immutable RunReport when the pipeline terminates. The report is the
only thing the Run Reporter looks at.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SHORT_REVISION_LENGTH = 7
LATEST_TAG = "latest"


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


# ── Stage names (declaration order) ──────────────────────────────

IDENTITY_RESOLVER = "IdentityResolver"
IMAGE_BUILDER = "ImageBuilder"
REGISTRY_PUBLISHER = "RegistryPublisher"
CLUSTER_CONNECTOR = "ClusterConnector"
MANIFEST_APPLIER = "ManifestApplier"
ROLLOUT_VERIFIER = "RolloutVerifier"

STAGE_ORDER: tuple[str, ...] = (
    IDENTITY_RESOLVER,
    IMAGE_BUILDER,
    REGISTRY_PUBLISHER,
    CLUSTER_CONNECTOR,
    MANIFEST_APPLIER,
    ROLLOUT_VERIFIER,
)


class RunContext(BaseModel):
    """Immutable per-execution record."""

    model_config = ConfigDict(frozen=True)

    run_id: int
    revision: str
    short_revision: str
    region: str
    repository_name: str
    cluster_name: str
    namespace: str = "default"
    image_tags: tuple[str, ...]
    source_dir: Path = Path(".")
    started_at: str = Field(default_factory=_now_iso)

    @field_validator("run_id")
    @classmethod
    def _positive_run_id(cls, value: int) -> int:
        if value < 1:
            raise ValueError("run_id must be a positive build number")
        return value

    @classmethod
    def create(
        cls,
        run_id: int,
        revision: str,
        region: str,
        repository_name: str,
        cluster_name: str,
        namespace: str = "default",
        source_dir: Path | None = None,
    ) -> RunContext:
        """Build a RunContext and derive its tag set.

        Tags are ordered: run id (primary), short revision, ``latest``.
        """
        revision = revision.strip()
        if len(revision) < SHORT_REVISION_LENGTH:
            raise ValueError(
                f"revision '{revision}' is shorter than {SHORT_REVISION_LENGTH} characters"
            )
        short = revision[:SHORT_REVISION_LENGTH]
        return cls(
            run_id=run_id,
            revision=revision,
            short_revision=short,
            region=region,
            repository_name=repository_name,
            cluster_name=cluster_name,
            namespace=namespace,
            image_tags=(str(run_id), short, LATEST_TAG),
            source_dir=source_dir or Path("."),
        )

    @property
    def primary_tag(self) -> str:
        return self.image_tags[0]

    @property
    def secondary_tags(self) -> tuple[str, ...]:
        return self.image_tags[1:]


class Identity(BaseModel):
    """Resolved account/registry identity."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    region: str
    provenance: Literal["resolved", "fallback"] = "resolved"
    arn: str = ""

    @property
    def warning(self) -> bool:
        """Fallback identities are usable but must be flagged."""
        return self.provenance == "fallback"

    @property
    def registry(self) -> str:
        return f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com"


class ImageReference(BaseModel):
    """One tag of the run's image in the target registry."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: str
    image_id: str = ""

    @property
    def uri(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"


class ClusterContext(BaseModel):
    """Run-scoped handle on the target cluster."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    region: str
    kubeconfig: Path
    context_name: str = ""
    node_count: int = 0


StageStatus = Literal["success", "failed", "skipped"]


class StageResult(BaseModel):
    """Outcome of a single pipeline stage."""

    model_config = ConfigDict(frozen=True)

    stage: str
    status: StageStatus
    detail: str = ""

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    warning: bool = False
    reason: str | None = None
    error_kind: str | None = None
    hints: tuple[str, ...] = ()

    outputs: dict[str, Any] = Field(default_factory=dict)
    diagnostics: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, stage: str, detail: str = "", **kwargs: Any) -> StageResult:
        """Create a success result."""
        return cls(stage=stage, status="success", detail=detail, **kwargs)

    @classmethod
    def failure(cls, stage: str, detail: str, **kwargs: Any) -> StageResult:
        """Create a failure result."""
        return cls(stage=stage, status="failed", detail=detail, **kwargs)

    @classmethod
    def skip(cls, stage: str, detail: str = "", **kwargs: Any) -> StageResult:
        """Create a skipped result."""
        return cls(stage=stage, status="skipped", detail=detail, **kwargs)

    def timed(self, started_at: str, ended_at: str, duration_ms: int) -> StageResult:
        """Return a copy stamped with the run loop's timing."""
        return self.model_copy(
            update={
                "started_at": started_at,
                "ended_at": ended_at,
                "duration_ms": duration_ms,
            }
        )


class RunReport(BaseModel):
    """Sealed record of a finished run — the Run Reporter's sole input."""

    model_config = ConfigDict(frozen=True)

    run: RunContext
    stages: tuple[StageResult, ...]
    started_at: str
    ended_at: str
    duration_ms: int = 0

    @field_validator("stages")
    @classmethod
    def _one_result_per_stage(
        cls, value: tuple[StageResult, ...]
    ) -> tuple[StageResult, ...]:
        names = tuple(r.stage for r in value)
        if names != STAGE_ORDER:
            raise ValueError(
                f"stage results must follow {', '.join(STAGE_ORDER)}; got {', '.join(names)}"
            )
        return value

    @property
    def status(self) -> Literal["success", "failed"]:
        return "failed" if any(r.failed for r in self.stages) else "success"

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def failed_stage(self) -> StageResult | None:
        for result in self.stages:
            if result.failed:
                return result
        return None

    @property
    def warnings(self) -> list[str]:
        return [r.stage for r in self.stages if r.warning]

    def get(self, stage: str) -> StageResult:
        for result in self.stages:
            if result.stage == stage:
                return result
        raise KeyError(stage)

    def summary(self) -> dict[str, Any]:
        """Structured summary for logs, ledger and notifications."""
        published = self.get(REGISTRY_PUBLISHER).outputs
        image = published.get("image_uri") or self.get(IMAGE_BUILDER).outputs.get("image_uri", "")
        failed = self.failed_stage
        return {
            "run_id": self.run.run_id,
            "revision": self.run.revision,
            "repository": self.run.repository_name,
            "tag": self.run.primary_tag,
            "tags": list(self.run.image_tags),
            "image": image,
            "cluster": self.run.cluster_name,
            "region": self.run.region,
            "namespace": self.run.namespace,
            "status": self.status,
            "failed_stage": failed.stage if failed else None,
            "failure_reason": (failed.reason or failed.error_kind) if failed else None,
            "detail": failed.detail if failed else "",
            "hints": list(failed.hints) if failed else [],
            "warnings": self.warnings,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
            "stages": [
                {
                    "stage": r.stage,
                    "status": r.status,
                    "detail": r.detail,
                    "warning": r.warning,
                    "reason": r.reason,
                    "duration_ms": r.duration_ms,
                }
                for r in self.stages
            ],
        }
