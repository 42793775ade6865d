"""
Pipeline error taxonomy.

Stages raise these; the run loop turns them into failed StageResults.
Adapters never raise (they return failed Receipts), so every error here
originates in stage logic that inspected a Receipt and gave up.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for stage failures.

    Attributes:
        kind: Taxonomy name recorded on the StageResult.
        reason: Short terminal-state label (e.g. ``TimedOut``).
        hints: Remediation hints shown in the run summary.
        collect_diagnostics: Whether cluster diagnostics should be
            gathered for this failure.
        details: Partial stage outputs kept on the failed StageResult.
    """

    kind = "PipelineError"
    fatal = True
    collect_diagnostics = False
    default_hints: tuple[str, ...] = ()

    def __init__(
        self,
        message: str,
        *,
        reason: str | None = None,
        hints: tuple[str, ...] | list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.details = details or {}
        self.hints = tuple(hints) if hints is not None else self.default_hints


class IdentityUnavailable(PipelineError):
    """Live identity lookup failed; the resolver falls back."""

    kind = "IdentityUnavailable"
    fatal = False


class BuildFailure(PipelineError):
    kind = "BuildFailure"
    default_hints = (
        "Check the Dockerfile and build context paths in deployline.yml.",
        "Run the docker build locally to reproduce.",
    )


class RegistryAuthFailure(PipelineError):
    kind = "RegistryAuthFailure"
    default_hints = (
        "Verify the deploying principal may call ecr:GetAuthorizationToken.",
        "Check that the docker daemon is reachable.",
    )


class RepositoryProvisionFailure(PipelineError):
    kind = "RepositoryProvisionFailure"
    default_hints = (
        "Verify ecr:DescribeRepositories and ecr:CreateRepository permissions.",
    )


class PushFailure(PipelineError):
    kind = "PushFailure"
    default_hints = (
        "Check network access to the registry and retry the run.",
    )


class ClusterConnectFailure(PipelineError):
    kind = "ClusterConnectFailure"
    default_hints = (
        "Confirm the cluster name and region.",
        "Verify eks:DescribeCluster permission and the cluster's aws-auth mapping.",
    )


class ApplyFailure(PipelineError):
    kind = "ApplyFailure"
    collect_diagnostics = True
    default_hints = (
        "Validate the manifests with 'kubectl apply --dry-run=server'.",
    )


class RolloutTimeout(PipelineError):
    kind = "RolloutTimeout"
    collect_diagnostics = True
    default_hints = (
        "Inspect pod events for image pull or scheduling errors.",
        "Check the readiness probe against the health endpoint.",
    )

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("reason", "TimedOut")
        super().__init__(message, **kwargs)


class HealthCheckFailure(PipelineError):
    kind = "HealthCheckFailure"
    collect_diagnostics = True
    default_hints = (
        "Check the application logs of the new pods.",
        "Confirm the service port and health path in deployline.yml.",
    )

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("reason", "HealthCheckFailed")
        super().__init__(message, **kwargs)
