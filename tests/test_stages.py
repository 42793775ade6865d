"""
Tests for the identity, image, publish and cluster stages.
"""

import json

import pytest

from deployline.core.errors import (
    BuildFailure,
    ClusterConnectFailure,
    PushFailure,
    RegistryAuthFailure,
    RepositoryProvisionFailure,
)
from deployline.core.models.action import Receipt
from deployline.core.stages.cluster import cluster_from, connect_cluster
from deployline.core.stages.identity import identity_from, resolve_identity
from deployline.core.stages.image import build_image, references_from
from deployline.core.stages.publish import publish_image

from tests.conftest import ACCOUNT, IMAGE_ID, REGISTRY


# ── Identity Resolver ────────────────────────────────────────────


class TestResolveIdentity:
    def test_resolved(self, run_context, toolchain):
        result = resolve_identity(run_context, {}, toolchain)
        assert result.ok and not result.warning
        identity = identity_from({"IdentityResolver": result})
        assert identity.account_id == ACCOUNT
        assert identity.provenance == "resolved"
        assert result.outputs["registry"] == REGISTRY

    def test_lookup_failure_falls_back(self, run_context, toolchain, world):
        world.aws.fail_operation("caller-identity", "Unable to locate credentials")
        result = resolve_identity(run_context, {}, toolchain)
        assert result.ok
        assert result.warning
        identity = identity_from({"IdentityResolver": result})
        assert identity.account_id == "000000000000"
        assert identity.provenance == "fallback"

    @pytest.mark.parametrize("output", ["not json", "{}", '{"Account": ""}', "[]"])
    def test_unusable_output_falls_back(self, run_context, toolchain, world, output):
        world.aws.set_output("caller-identity", output)
        result = resolve_identity(run_context, {}, toolchain)
        assert result.warning
        assert result.outputs["identity"]["provenance"] == "fallback"

    def test_single_bounded_call(self, run_context, toolchain, world):
        world.aws.fail_operation("caller-identity")
        resolve_identity(run_context, {}, toolchain)
        calls = world.aws.calls("caller-identity")
        assert len(calls) == 1
        assert calls[0].action.timeout == 10


# ── Image Builder ────────────────────────────────────────────────


class TestBuildImage:
    def test_one_build_three_tags(self, run_context, toolchain, world, results_before):
        result = build_image(run_context, results_before("ImageBuilder"), toolchain)
        assert result.ok

        builds = world.docker.calls("build")
        assert len(builds) == 1
        assert builds[0].params["context"] == str(toolchain.resolve("."))
        assert builds[0].params["image"] == f"{REGISTRY}/sample-app:42"
        assert builds[0].params["labels"]["org.opencontainers.image.revision"] == "abcdef1234567"

        targets = [c.params["target"] for c in world.docker.calls("tag")]
        assert targets == [f"{REGISTRY}/sample-app:abcdef1", f"{REGISTRY}/sample-app:latest"]

        refs = references_from({"ImageBuilder": result})
        assert [r.tag for r in refs] == ["42", "abcdef1", "latest"]
        assert {r.image_id for r in refs} == {IMAGE_ID}

    def test_build_failure(self, run_context, toolchain, world, results_before):
        world.docker.fail_operation("build", "failed to solve: npm ci exited 1")
        with pytest.raises(BuildFailure, match="npm ci"):
            build_image(run_context, results_before("ImageBuilder"), toolchain)
        assert world.docker.calls("tag") == []

    def test_tag_failure(self, run_context, toolchain, world, results_before):
        world.docker.set_failure("42:docker:tag:latest", "no such image")
        with pytest.raises(BuildFailure, match="latest"):
            build_image(run_context, results_before("ImageBuilder"), toolchain)

    def test_missing_dockerfile(self, run_context, toolchain, world, results_before, project):
        (project.parent / "Dockerfile").unlink()
        results = results_before("ImageBuilder")
        with pytest.raises(BuildFailure, match="Dockerfile not found"):
            build_image(run_context, results, toolchain)
        assert world.docker.calls("build") == []

    def test_uninspectable_image(self, run_context, toolchain, world, results_before):
        world.docker.set_output("inspect", "")
        with pytest.raises(BuildFailure, match="cannot be inspected"):
            build_image(run_context, results_before("ImageBuilder"), toolchain)


# ── Registry Publisher ───────────────────────────────────────────


class TestPublishImage:
    def test_pushes_every_tag(self, run_context, toolchain, world, results_before):
        result = publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        assert result.ok and not result.warning
        assert result.outputs["pushed_tags"] == ["42", "abcdef1", "latest"]
        assert result.outputs["repository_created"] is False

        login = world.docker.calls("login")[0]
        assert login.params["password"] == "ecr-password"
        assert login.params["registry"] == REGISTRY

    def test_creates_missing_repository(self, run_context, toolchain, world, results_before):
        world.aws.fail_operation("ecr-describe-repository", "RepositoryNotFoundException")
        result = publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        assert result.outputs["repository_created"] is True
        assert len(world.aws.calls("ecr-create-repository")) == 1

    def test_already_exists_counts_as_success(self, run_context, toolchain, world, results_before):
        world.aws.fail_operation("ecr-describe-repository", "AccessDenied")
        world.aws.fail_operation(
            "ecr-create-repository",
            "An error occurred (RepositoryAlreadyExistsException) when calling CreateRepository",
        )
        result = publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        assert result.ok

    def test_repository_provision_failure(self, run_context, toolchain, world, results_before):
        world.aws.fail_operation("ecr-describe-repository", "AccessDenied")
        world.aws.fail_operation("ecr-create-repository", "AccessDenied")
        with pytest.raises(RepositoryProvisionFailure):
            publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        assert world.docker.calls("push") == []

    def test_auth_failure(self, run_context, toolchain, world, results_before):
        world.docker.fail_operation("login", "unauthorized")
        with pytest.raises(RegistryAuthFailure):
            publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        assert world.docker.calls("push") == []

    def test_run_tag_push_failure_is_fatal(self, run_context, toolchain, world, results_before):
        world.docker.set_failure("42:docker:push:42", "connection reset")
        with pytest.raises(PushFailure, match="connection reset"):
            publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        # Nothing else is pushed once the run tag is lost
        assert len(world.docker.calls("push")) == 1

    def test_secondary_push_failure_is_warning(self, run_context, toolchain, world, results_before):
        world.docker.set_failure("42:docker:push:latest", "tag immutable")
        result = publish_image(run_context, results_before("RegistryPublisher"), toolchain)
        assert result.ok
        assert result.warning
        assert result.outputs["pushed_tags"] == ["42", "abcdef1"]
        assert result.outputs["failed_tags"] == {"latest": "tag immutable"}


# ── Cluster Connector ────────────────────────────────────────────


class TestConnectCluster:
    def test_run_scoped_kubeconfig(self, run_context, toolchain, world, results_before):
        result = connect_cluster(run_context, results_before("ClusterConnector"), toolchain)
        cluster = cluster_from({"ClusterConnector": result})
        assert cluster.kubeconfig == toolchain.scratch_dir / "kubeconfig-42"
        assert cluster.kubeconfig.is_file()
        assert cluster.node_count == 2
        assert result.outputs["nodes_ready"] == 2

        update = world.aws.calls("eks-update-kubeconfig")[0]
        assert update.params["alias"] == "deployline-test-cluster-42"
        assert world.kubectl.calls("get-nodes")[0].params["kubeconfig"] == str(cluster.kubeconfig)

    def test_credentials_failure(self, run_context, toolchain, world, results_before):
        world.aws.fail_operation("eks-update-kubeconfig", "No cluster found for name: test-cluster")
        with pytest.raises(ClusterConnectFailure, match="No cluster found"):
            connect_cluster(run_context, results_before("ClusterConnector"), toolchain)

    def test_zero_nodes(self, run_context, toolchain, world, results_before):
        world.kubectl.set_output("get-nodes", json.dumps({"items": []}))
        with pytest.raises(ClusterConnectFailure, match="no nodes"):
            connect_cluster(run_context, results_before("ClusterConnector"), toolchain)

    def test_unreachable(self, run_context, toolchain, world, results_before):
        world.kubectl.set_handler("get-nodes", lambda ctx: Receipt.failure(
            adapter="kubectl", action_id=ctx.action.id, error="Unable to connect to the server",
        ))
        with pytest.raises(ClusterConnectFailure, match="unreachable"):
            connect_cluster(run_context, results_before("ClusterConnector"), toolchain)
