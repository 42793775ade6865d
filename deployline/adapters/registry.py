"""
Adapter registry — central dispatch for all adapter operations.

Stages never talk to adapters directly — always through the registry,
which validates, executes, times, and guarantees a Receipt back.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from deployline.adapters.base import Adapter, ExecutionContext
from deployline.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters."""

    def __init__(self, working_dir: str = "."):
        self._adapters: dict[str, Adapter] = {}
        self._working_dir = working_dir

    @property
    def working_dir(self) -> str:
        return self._working_dir

    def register(self, adapter: Adapter) -> None:
        """Register an adapter under its name."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def unregister(self, name: str) -> None:
        """Remove an adapter from the registry."""
        self._adapters.pop(name, None)

    def get(self, name: str) -> Adapter | None:
        """Look up an adapter by name."""
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        """List all registered adapter names."""
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Get availability status of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute(self, action: Action, working_dir: str | None = None) -> Receipt:
        """Execute an action through the appropriate adapter.

        Resolves the adapter, validates the action, executes it, and
        returns a Receipt. Never raises.
        """
        start_time = time.monotonic()

        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        context = ExecutionContext(
            action=action,
            working_dir=working_dir or self._working_dir,
        )

        try:
            is_valid, error_msg = adapter.validate(context)
            if not is_valid:
                return Receipt.failure(
                    adapter=action.adapter,
                    action_id=action.id,
                    error=f"Validation failed: {error_msg}",
                )
        except Exception as e:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation error: {e}",
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            # Adapters should never raise
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        receipt = receipt.model_copy(update={"duration_ms": elapsed_ms})

        marker = "✓" if receipt.ok else "✗" if receipt.failed else "⊘"
        logger.debug("%s %s:%s (%dms)", marker, action.adapter, action.operation, elapsed_ms)
        return receipt


def default_registry(working_dir: str = ".") -> AdapterRegistry:
    """Registry wired with the real tool adapters."""
    from deployline.adapters.cloud.aws import AwsAdapter
    from deployline.adapters.cluster.kubectl import KubectlAdapter
    from deployline.adapters.containers.docker import DockerAdapter
    from deployline.adapters.http.client import HttpAdapter
    from deployline.adapters.vcs.git import GitAdapter

    registry = AdapterRegistry(working_dir=working_dir)
    registry.register(AwsAdapter())
    registry.register(DockerAdapter())
    registry.register(KubectlAdapter())
    registry.register(HttpAdapter())
    registry.register(GitAdapter())
    return registry
