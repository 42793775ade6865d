"""
Pipeline configuration model — loaded from deployline.yml.

Every default the pipeline relies on lives here, including the
placeholder account used when live identity lookup fails. A live
lookup always overrides ``fallback_account_id``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ImageSettings(BaseModel):
    """How the image is built."""

    context: str = "."
    dockerfile: str = "Dockerfile"
    build_args: dict[str, str] = Field(default_factory=dict)
    build_timeout: int = 900
    push_timeout: int = 600


class ManifestFile(BaseModel):
    """A manifest file applied to the cluster."""

    path: str
    optional: bool = False


class DeploymentSettings(BaseModel):
    """Cluster-side names and the manifest set."""

    namespace: str = "default"
    workload: str = "app"
    service: str = "app-service"
    service_port: int = 80
    app_label: str = ""
    image_placeholder: str = "IMAGE_URI"
    manifests: list[ManifestFile] = Field(
        default_factory=lambda: [ManifestFile(path="k8s/deployment.yml")]
    )
    apply_timeout: int = 120

    @field_validator("manifests", mode="before")
    @classmethod
    def _accept_plain_paths(cls, value: object) -> object:
        # Allow ``manifests: [k8s/deployment.yml]`` shorthand
        if isinstance(value, list):
            return [{"path": v} if isinstance(v, str) else v for v in value]
        return value

    @property
    def selector(self) -> str:
        return f"app={self.app_label or self.workload}"


class RolloutSettings(BaseModel):
    """Readiness polling and health probing."""

    timeout: float = 300.0
    poll_interval: float = 5.0
    poll_backoff: Literal["fixed", "exponential"] = "fixed"
    poll_max_interval: float = 30.0
    health_path: str = "/health"
    health_attempts: int = 5
    health_interval: float = 3.0
    health_timeout: float = 5.0
    local_port: int = 18080


class NotificationSettings(BaseModel):
    """Optional webhook notification of the run summary."""

    webhook_url: str = ""
    on: Literal["always", "failure", "success"] = "always"
    timeout: float = 10.0


class PipelineConfig(BaseModel):
    """Root configuration — loaded from deployline.yml."""

    version: int = 1

    name: str = "app"
    region: str = "us-east-1"
    repository: str
    cluster: str

    fallback_account_id: str = "000000000000"
    identity_timeout: int = 10

    image: ImageSettings = Field(default_factory=ImageSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    rollout: RolloutSettings = Field(default_factory=RolloutSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    state_dir: str = ".state"
