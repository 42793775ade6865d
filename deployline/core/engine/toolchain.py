"""
Toolchain — everything a stage may use besides its inputs.

Stages receive ``(RunContext, StageResults, Toolchain)``. The toolchain
bundles the adapter registry, configuration, the clock and sleep used
by polling loops, the tunnel factory, and the run's scratch directory.
Tests build one with mock adapters and a fake clock.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from deployline.adapters.cluster.port_forward import PortForward, Tunnel
from deployline.adapters.registry import AdapterRegistry
from deployline.core.models.action import Action, Receipt
from deployline.core.models.config import PipelineConfig
from deployline.core.models.run import RunContext, StageResult

logger = logging.getLogger(__name__)

# Read-only view of the results produced so far, keyed by stage name
StageResults = Mapping[str, StageResult]

TunnelFactory = Callable[..., Tunnel]


def port_forward_factory(
    kubeconfig: Path,
    namespace: str,
    service: str,
    remote_port: int,
    local_port: int,
) -> Tunnel:
    return PortForward(kubeconfig, namespace, service, remote_port, local_port)


@dataclass
class Toolchain:
    """Collaborators shared by all stages of one run."""

    registry: AdapterRegistry
    config: PipelineConfig
    project_root: Path
    scratch_dir: Path
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    tunnel_factory: TunnelFactory = port_forward_factory

    def call(
        self,
        context: RunContext,
        adapter: str,
        operation: str,
        /,
        *,
        qualifier: str = "",
        timeout: float = 300,
        **params: Any,
    ) -> Receipt:
        """Dispatch one operation through the registry.

        The first three arguments are positional-only so adapter params
        such as docker's build ``context`` pass through ``params``.
        """
        action = Action.for_run(
            context.run_id, adapter, operation, qualifier, timeout=timeout, params=params
        )
        return self.registry.execute(action, working_dir=str(self.project_root))

    def kubeconfig_path(self, context: RunContext) -> Path:
        """Per-run kubeconfig location; deleted by the Run Reporter."""
        return self.scratch_dir / f"kubeconfig-{context.run_id}"

    def resolve(self, relative: str) -> Path:
        """Resolve a config path against the project root."""
        path = Path(relative)
        return path if path.is_absolute() else self.project_root / path
