"""
Kubectl adapter — online cluster reads and declarative apply.

Every operation is pinned to the run's kubeconfig file so the pipeline
never touches the operator's default context.
"""

from __future__ import annotations

import logging

from deployline.adapters.base import CommandAdapter

logger = logging.getLogger(__name__)


class KubectlAdapter(CommandAdapter):
    """Kubectl operations.

    Common params:
        kubeconfig (str): Path to the run's kubeconfig (required).
        namespace (str): Target namespace (default: 'default').

    Action operations and extra params:
        get-nodes                              → JSON node list
        apply           file                   → apply output
        get-deployment  name                   → JSON deployment
        get-events                             → JSON event list
        get-pods        selector               → JSON pod list
    """

    binary = "kubectl"
    required_params = {
        "get-nodes": ("kubeconfig",),
        "apply": ("kubeconfig", "file"),
        "get-deployment": ("kubeconfig", "name"),
        "get-events": ("kubeconfig",),
        "get-pods": ("kubeconfig", "selector"),
    }

    def _op_get_nodes(self, params: dict) -> tuple[list[str], str | None]:
        return [*_base(params, namespaced=False), "get", "nodes", "-o", "json"], None

    def _op_apply(self, params: dict) -> tuple[list[str], str | None]:
        return [*_base(params), "apply", "-f", str(params["file"])], None

    def _op_get_deployment(self, params: dict) -> tuple[list[str], str | None]:
        return [*_base(params), "get", "deployment", params["name"], "-o", "json"], None

    def _op_get_events(self, params: dict) -> tuple[list[str], str | None]:
        return [
            *_base(params), "get", "events",
            "--sort-by=.lastTimestamp", "-o", "json",
        ], None

    def _op_get_pods(self, params: dict) -> tuple[list[str], str | None]:
        return [*_base(params), "get", "pods", "-l", params["selector"], "-o", "json"], None


def _base(params: dict, namespaced: bool = True) -> list[str]:
    args = ["--kubeconfig", str(params["kubeconfig"])]
    if namespaced:
        args.extend(["-n", params.get("namespace") or "default"])
    return args
