"""
Preflight use case — are the external tools a run needs installed?
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from deployline.adapters.registry import AdapterRegistry, default_registry

REQUIRED_TOOLS = ("docker", "aws", "kubectl")
OPTIONAL_TOOLS = ("git",)


@dataclass
class PreflightResult:
    tools: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.missing

    @property
    def missing(self) -> list[str]:
        return [
            name for name in REQUIRED_TOOLS
            if not self.tools.get(name, {}).get("available", False)
        ]

    def to_dict(self) -> dict:
        return {"ok": self.ok, "missing": self.missing, "tools": self.tools}


def run_preflight(registry: AdapterRegistry | None = None) -> PreflightResult:
    """Report which of docker, aws, kubectl (and git) are on PATH."""
    registry = registry or default_registry()
    status = registry.adapter_status()
    result = PreflightResult()
    for name in (*REQUIRED_TOOLS, *OPTIONAL_TOOLS):
        entry = status.get(name, {"name": name, "available": False, "type": None})
        result.tools[name] = {**entry, "required": name in REQUIRED_TOOLS}
    return result
