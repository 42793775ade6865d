"""
Rollout Verifier — wait for ready replicas, then probe the health endpoint.

States:
    PENDING      → nothing observed yet.
    PROGRESSING  → ready replicas < desired; polling until the deadline.
    READY        → ready replicas >= desired within the deadline.
    HEALTH_VERIFIED    (terminal, success) → health probe returned 2xx.
    TIMED_OUT          (terminal, fatal)   → deadline elapsed first.
    HEALTH_CHECK_FAILED (terminal, fatal)  → probe attempts exhausted.

Transitions:
    PENDING → PROGRESSING:          first observation
    PROGRESSING → READY:            ready >= desired
    PROGRESSING → TIMED_OUT:        deadline elapsed
    READY → HEALTH_VERIFIED:        probe 2xx
    READY → HEALTH_CHECK_FAILED:    attempts exhausted

The tunnel used for probing is closed on every exit path.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from deployline.adapters.cluster.port_forward import TunnelError
from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.errors import HealthCheckFailure, RolloutTimeout
from deployline.core.models.config import RolloutSettings
from deployline.core.models.run import ROLLOUT_VERIFIER, RunContext, StageResult
from deployline.core.stages.cluster import cluster_from

logger = logging.getLogger(__name__)


class RolloutState(StrEnum):
    """Rollout verification states."""

    PENDING = "Pending"
    PROGRESSING = "Progressing"
    READY = "Ready"
    HEALTH_VERIFIED = "HealthVerified"
    TIMED_OUT = "TimedOut"
    HEALTH_CHECK_FAILED = "HealthCheckFailed"


_ALLOWED: dict[RolloutState, frozenset[RolloutState]] = {
    RolloutState.PENDING: frozenset({RolloutState.PROGRESSING}),
    RolloutState.PROGRESSING: frozenset({RolloutState.READY, RolloutState.TIMED_OUT}),
    RolloutState.READY: frozenset(
        {RolloutState.HEALTH_VERIFIED, RolloutState.HEALTH_CHECK_FAILED}
    ),
}

TERMINAL_STATES = frozenset(
    {
        RolloutState.HEALTH_VERIFIED,
        RolloutState.TIMED_OUT,
        RolloutState.HEALTH_CHECK_FAILED,
    }
)


class InvalidTransition(Exception):
    """Raised on a transition the state machine does not allow."""


@dataclass
class RolloutTracker:
    """State machine over one workload's rollout."""

    workload: str
    state: RolloutState = RolloutState.PENDING
    desired_replicas: int = 0
    ready_replicas: int = 0
    polls: int = 0
    probes: int = 0
    history: list[str] = field(default_factory=lambda: [RolloutState.PENDING.value])

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def observe(self, ready: int, desired: int) -> RolloutState:
        """Record one readiness observation and advance the state."""
        self.polls += 1
        self.ready_replicas = ready
        self.desired_replicas = desired
        if self.state == RolloutState.PENDING:
            self._transition(RolloutState.PROGRESSING)
        if self.state == RolloutState.PROGRESSING and ready >= desired:
            self._transition(RolloutState.READY)
        return self.state

    def observe_unknown(self) -> RolloutState:
        """Record a poll whose status could not be read."""
        self.polls += 1
        if self.state == RolloutState.PENDING:
            self._transition(RolloutState.PROGRESSING)
        return self.state

    def time_out(self) -> None:
        self._transition(RolloutState.TIMED_OUT)

    def health_verified(self) -> None:
        self._transition(RolloutState.HEALTH_VERIFIED)

    def health_failed(self) -> None:
        self._transition(RolloutState.HEALTH_CHECK_FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workload": self.workload,
            "state": self.state.value,
            "desired_replicas": self.desired_replicas,
            "ready_replicas": self.ready_replicas,
            "polls": self.polls,
            "probes": self.probes,
            "history": list(self.history),
        }

    def _transition(self, new_state: RolloutState) -> None:
        if new_state not in _ALLOWED.get(self.state, frozenset()):
            raise InvalidTransition(f"{self.state.value} → {new_state.value}")
        old = self.state
        self.state = new_state
        self.history.append(new_state.value)
        logger.info("Rollout '%s': %s → %s", self.workload, old.value, new_state.value)


def parse_replicas(deployment: dict) -> tuple[int, int]:
    """Return ``(ready, desired)`` from a Deployment object.

    Ready counts only pods of the current template: when the controller
    reports ``updatedReplicas``, ready is capped by it so old pods left
    over from the previous revision do not count.
    """
    spec = deployment.get("spec", {}) or {}
    status = deployment.get("status", {}) or {}
    desired = int(spec.get("replicas", 1) or 0)
    ready = int(status.get("readyReplicas", 0) or 0)
    if "updatedReplicas" in status:
        ready = min(ready, int(status.get("updatedReplicas") or 0))
    generation = deployment.get("metadata", {}).get("generation")
    observed = status.get("observedGeneration")
    if generation is not None and observed is not None and observed < generation:
        # Controller has not seen the new spec yet
        ready = 0
    return ready, desired


def next_interval(current: float, settings: RolloutSettings) -> float:
    """Fixed or exponential backoff between readiness polls."""
    if settings.poll_backoff == "exponential":
        return min(current * 2, settings.poll_max_interval)
    return current


def wait_until_ready(
    context: RunContext,
    toolchain: Toolchain,
    tracker: RolloutTracker,
    kubeconfig: str,
) -> None:
    """Poll the workload until READY or TIMED_OUT."""
    settings = toolchain.config.rollout
    deadline = toolchain.clock() + settings.timeout
    interval = settings.poll_interval

    while True:
        receipt = toolchain.call(
            context,
            "kubectl",
            "get-deployment",
            qualifier=f"poll-{tracker.polls + 1}",
            timeout=30,
            kubeconfig=kubeconfig,
            namespace=context.namespace,
            name=tracker.workload,
        )
        observed: tuple[int, int] | None = None
        if receipt.ok:
            try:
                observed = parse_replicas(json.loads(receipt.output))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Unreadable deployment status: %s", e)
        else:
            logger.warning("Deployment status unavailable: %s", receipt.error)

        if observed is None:
            tracker.observe_unknown()
        elif tracker.observe(*observed) == RolloutState.READY:
            return

        remaining = deadline - toolchain.clock()
        if remaining <= 0:
            tracker.time_out()
            return
        logger.info(
            "Waiting for %s: %d/%d ready (%.0fs left)",
            tracker.workload, tracker.ready_replicas, tracker.desired_replicas, remaining,
        )
        toolchain.sleep(min(interval, remaining))
        interval = next_interval(interval, settings)


def probe_health(
    context: RunContext,
    toolchain: Toolchain,
    tracker: RolloutTracker,
    kubeconfig: str,
) -> dict[str, Any]:
    """Probe the health endpoint through a tunnel; advance to a terminal state."""
    settings = toolchain.config.rollout
    deployment = toolchain.config.deployment
    tunnel = toolchain.tunnel_factory(
        kubeconfig,
        context.namespace,
        deployment.service,
        deployment.service_port,
        settings.local_port,
    )
    last: dict[str, Any] = {"status_code": 0, "error": ""}
    try:
        base_url = tunnel.open()
        url = base_url.rstrip("/") + settings.health_path
        for attempt in range(1, settings.health_attempts + 1):
            tracker.probes = attempt
            receipt = toolchain.call(
                context,
                "http",
                "get",
                qualifier=f"health-{attempt}",
                url=url,
                timeout=settings.health_timeout,
            )
            last = {
                "status_code": receipt.metadata.get("status_code", 0),
                "body": receipt.metadata.get("body"),
                "error": receipt.error or "",
            }
            if receipt.ok:
                tracker.health_verified()
                return last
            logger.info(
                "Health probe %d/%d failed: %s",
                attempt, settings.health_attempts, receipt.error,
            )
            if attempt < settings.health_attempts:
                toolchain.sleep(settings.health_interval)
    except (TunnelError, OSError) as e:
        last = {"status_code": 0, "error": f"tunnel: {e}"}
    finally:
        tunnel.close()

    tracker.health_failed()
    return last


def verify_rollout(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> StageResult:
    settings = toolchain.config.rollout
    workload = toolchain.config.deployment.workload
    kubeconfig = str(cluster_from(results).kubeconfig)
    tracker = RolloutTracker(workload=workload)
    started = toolchain.clock()

    wait_until_ready(context, toolchain, tracker, kubeconfig)
    if tracker.state == RolloutState.TIMED_OUT:
        raise RolloutTimeout(
            f"{workload}: {tracker.ready_replicas}/{tracker.desired_replicas} ready "
            f"after {settings.timeout:.0f}s",
            details={"rollout": tracker.to_dict()},
        )

    health = probe_health(context, toolchain, tracker, kubeconfig)
    outputs = {
        "rollout": tracker.to_dict(),
        "health": health,
        "elapsed_s": round(toolchain.clock() - started, 3),
    }
    if tracker.state == RolloutState.HEALTH_CHECK_FAILED:
        raise HealthCheckFailure(
            f"{settings.health_path} not healthy after {tracker.probes} attempt(s): "
            f"{health.get('error') or 'HTTP ' + str(health.get('status_code'))}",
            details=outputs,
        )

    return StageResult.success(
        ROLLOUT_VERIFIER,
        f"{workload} {tracker.ready_replicas}/{tracker.desired_replicas} ready, "
        f"{settings.health_path} returned {health.get('status_code')}",
        outputs=outputs,
    )
