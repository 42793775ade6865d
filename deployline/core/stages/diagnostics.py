"""Best-effort troubleshooting data for failed cluster stages."""

from __future__ import annotations

import logging
from typing import Any

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.models.run import CLUSTER_CONNECTOR, RunContext

logger = logging.getLogger(__name__)

_MAX_EVENTS = 20


def collect_diagnostics(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> dict[str, Any]:
    """Recent events and pod states for the workload. Never raises."""
    connected = results.get(CLUSTER_CONNECTOR)
    if connected is None or not connected.ok:
        return {"error": "no cluster connection"}

    kubeconfig = connected.outputs["cluster"]["kubeconfig"]
    selector = toolchain.config.deployment.selector
    diagnostics: dict[str, Any] = {}

    try:
        events = toolchain.call(
            context, "kubectl", "get-events",
            timeout=15, kubeconfig=kubeconfig, namespace=context.namespace,
        )
        if events.ok:
            diagnostics["events"] = _summarize_events(events.output_json())
        else:
            diagnostics["events_error"] = events.error

        pods = toolchain.call(
            context, "kubectl", "get-pods",
            timeout=15, kubeconfig=kubeconfig, namespace=context.namespace,
            selector=selector,
        )
        if pods.ok:
            diagnostics["pods"] = _summarize_pods(pods.output_json())
        else:
            diagnostics["pods_error"] = pods.error
    except Exception as e:
        logger.warning("Diagnostics collection incomplete: %s", e)
        diagnostics["error"] = str(e)

    return diagnostics


def _summarize_events(data: dict) -> list[dict]:
    events = []
    for item in (data.get("items", []) or [])[-_MAX_EVENTS:]:
        involved = item.get("involvedObject", {})
        events.append({
            "type": item.get("type", ""),
            "reason": item.get("reason", ""),
            "object": f"{involved.get('kind', '')}/{involved.get('name', '')}",
            "message": item.get("message", ""),
            "count": item.get("count", 1),
            "last_seen": item.get("lastTimestamp", ""),
        })
    return events


def _summarize_pods(data: dict) -> list[dict]:
    pods = []
    for item in data.get("items", []) or []:
        status = item.get("status", {})
        containers = status.get("containerStatuses", []) or []
        waiting = [
            c.get("state", {}).get("waiting", {}).get("reason", "")
            for c in containers
            if "waiting" in c.get("state", {})
        ]
        pods.append({
            "name": item.get("metadata", {}).get("name", ""),
            "phase": status.get("phase", ""),
            "ready": all(c.get("ready") for c in containers) if containers else False,
            "restarts": sum(c.get("restartCount", 0) for c in containers),
            "waiting": [w for w in waiting if w],
        })
    return pods
