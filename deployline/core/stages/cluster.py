"""
Cluster Connector — a run-scoped kubeconfig, verified by a node listing.

The kubeconfig is written to the run's scratch directory, never to the
operator's ~/.kube/config. The Run Reporter deletes it afterwards.
"""

from __future__ import annotations

import logging

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.errors import ClusterConnectFailure
from deployline.core.models.run import (
    CLUSTER_CONNECTOR,
    ClusterContext,
    RunContext,
    StageResult,
)

logger = logging.getLogger(__name__)


def connect_cluster(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> StageResult:
    kubeconfig = toolchain.kubeconfig_path(context)
    kubeconfig.parent.mkdir(parents=True, exist_ok=True)
    alias = f"deployline-{context.cluster_name}-{context.run_id}"

    updated = toolchain.call(
        context,
        "aws",
        "eks-update-kubeconfig",
        timeout=60,
        cluster=context.cluster_name,
        region=context.region,
        kubeconfig=str(kubeconfig),
        alias=alias,
    )
    if not updated.ok:
        raise ClusterConnectFailure(
            f"Cannot obtain credentials for cluster {context.cluster_name} "
            f"in {context.region}: {updated.error}"
        )

    nodes = toolchain.call(
        context,
        "kubectl",
        "get-nodes",
        timeout=30,
        kubeconfig=str(kubeconfig),
    )
    if not nodes.ok:
        raise ClusterConnectFailure(f"Cluster {context.cluster_name} unreachable: {nodes.error}")

    try:
        items = nodes.output_json().get("items", [])
    except (ValueError, AttributeError) as e:
        raise ClusterConnectFailure(f"Unexpected node listing: {e}") from e
    if not items:
        raise ClusterConnectFailure(f"Cluster {context.cluster_name} reports no nodes")

    ready = sum(1 for node in items if _node_ready(node))
    cluster = ClusterContext(
        cluster_name=context.cluster_name,
        region=context.region,
        kubeconfig=kubeconfig,
        context_name=alias,
        node_count=len(items),
    )
    logger.info("Connected to %s (%d/%d nodes ready)", alias, ready, len(items))

    return StageResult.success(
        CLUSTER_CONNECTOR,
        f"Connected to {context.cluster_name} ({ready}/{len(items)} nodes ready)",
        outputs={"cluster": cluster.model_dump(mode="json"), "nodes_ready": ready},
    )


def _node_ready(node: dict) -> bool:
    for condition in node.get("status", {}).get("conditions", []) or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def cluster_from(results: StageResults) -> ClusterContext:
    """Read the cluster context back from prior results."""
    return ClusterContext.model_validate(results[CLUSTER_CONNECTOR].outputs["cluster"])
