"""
Shared test fixtures and configuration.

The ``world`` fixture wires a registry of MockAdapters that behave like
a healthy AWS account, docker daemon and two-node cluster. Tests break
one piece of it to exercise a failure path.
"""

import json
import textwrap
from pathlib import Path

import pytest
import yaml

from deployline.adapters.cluster.port_forward import TunnelError
from deployline.adapters.mock import MockAdapter
from deployline.adapters.registry import AdapterRegistry
from deployline.core.config.loader import load_config
from deployline.core.engine.toolchain import Toolchain
from deployline.core.models.action import Receipt
from deployline.core.models.run import RunContext
from deployline.core.stages import DEFAULT_STAGES

ACCOUNT = "123456789012"
REVISION = "abcdef1234567"
REGISTRY = f"{ACCOUNT}.dkr.ecr.us-east-1.amazonaws.com"
IMAGE_ID = "sha256:4f1d0c9e8b7a"

MANIFEST = textwrap.dedent("""\
    apiVersion: apps/v1
    kind: Deployment
    metadata:
      name: sample-app
    spec:
      replicas: 2
      template:
        spec:
          containers:
          - name: sample-app
            image: IMAGE_URI
    ---
    apiVersion: v1
    kind: Service
    metadata:
      name: sample-app-service
    spec:
      ports:
      - port: 80
        targetPort: 3000
""")

CONFIG = textwrap.dedent("""\
    name: sample
    region: us-east-1
    repository: sample-app
    cluster: test-cluster
    image:
      context: "."
      dockerfile: Dockerfile
    deployment:
      namespace: default
      workload: sample-app
      service: sample-app-service
      service_port: 80
      manifests:
        - k8s/deployment.yml
        - path: k8s/network-policy.yml
          optional: true
    rollout:
      timeout: 300
      poll_interval: 5
      health_attempts: 3
      health_interval: 1
""")


# ── Fakes ────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTunnel:
    """Tunnel double recording its lifecycle."""

    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.open_error: Exception | None = None
        self.opened = 0
        self.closed = 0

    def open(self) -> str:
        self.opened += 1
        if self.open_error is not None:
            raise self.open_error
        if self.fail_open:
            raise TunnelError("port-forward exited early")
        return "http://127.0.0.1:18080"

    def close(self) -> None:
        self.closed += 1


class FakeCluster:
    """Declarative store behind the mocked ``kubectl apply``.

    Objects are keyed by ``(kind, name)``. Applying identical content
    reports ``unchanged``. Readiness comes from ``ready_sequence`` (then
    full), or stays at ``stuck_at`` when set.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str], dict] = {}
        self.applied_text: list[str] = []
        self.ready_sequence: list[int] = []
        self.desired = 2
        self.stuck_at: int | None = None
        self.last_output = ""

    def apply(self, ctx) -> Receipt:
        text = Path(ctx.params["file"]).read_text()
        self.applied_text.append(text)
        lines = []
        for doc in yaml.safe_load_all(text):
            if not doc:
                continue
            key = (doc["kind"], doc["metadata"]["name"])
            verb = "unchanged" if self.objects.get(key) == doc else (
                "configured" if key in self.objects else "created"
            )
            self.objects[key] = doc
            lines.append(f"{key[0].lower()}/{key[1]} {verb}")
        self.last_output = "\n".join(lines)
        return Receipt.success(adapter="kubectl", action_id=ctx.action.id, output=self.last_output)

    def deployment(self, ctx) -> Receipt:
        if self.stuck_at is not None:
            ready = self.stuck_at
        elif self.ready_sequence:
            ready = self.ready_sequence.pop(0)
        else:
            ready = self.desired
        body = {
            "metadata": {"name": ctx.params["name"], "generation": 2},
            "spec": {"replicas": self.desired},
            "status": {
                "observedGeneration": 2,
                "readyReplicas": ready,
                "updatedReplicas": ready,
            },
        }
        return Receipt.success(adapter="kubectl", action_id=ctx.action.id, output=json.dumps(body))


class World:
    """Mock adapters for every tool, configured for a healthy run."""

    def __init__(self):
        self.aws = MockAdapter("aws")
        self.docker = MockAdapter("docker")
        self.kubectl = MockAdapter("kubectl")
        self.http = MockAdapter("http")
        self.git = MockAdapter("git")
        self.cluster = FakeCluster()
        self.clock = FakeClock()
        self.tunnel = FakeTunnel()
        self.tunnel_args: list[tuple] = []

        self.registry = AdapterRegistry()
        for adapter in (self.aws, self.docker, self.kubectl, self.http, self.git):
            self.registry.register(adapter)

        self.aws.set_output(
            "caller-identity",
            json.dumps({"Account": ACCOUNT, "Arn": f"arn:aws:iam::{ACCOUNT}:user/ci"}),
        )
        self.aws.set_output("ecr-login-password", "ecr-password")
        self.aws.set_handler("eks-update-kubeconfig", self._write_kubeconfig)
        self.docker.set_output("inspect", IMAGE_ID)
        self.kubectl.set_output("get-nodes", json.dumps({"items": [_node(True), _node(True)]}))
        self.kubectl.set_handler("apply", self.cluster.apply)
        self.kubectl.set_handler("get-deployment", self.cluster.deployment)
        self.kubectl.set_output("get-events", json.dumps({"items": [{
            "type": "Warning",
            "reason": "BackOff",
            "involvedObject": {"kind": "Pod", "name": "sample-app-7d9f"},
            "message": "Back-off restarting failed container",
        }]}))
        self.kubectl.set_output("get-pods", json.dumps({"items": [{
            "metadata": {"name": "sample-app-7d9f"},
            "status": {
                "phase": "Running",
                "containerStatuses": [{
                    "ready": False,
                    "restartCount": 4,
                    "state": {"waiting": {"reason": "CrashLoopBackOff"}},
                }],
            },
        }]}))
        self.http.set_handler("get", self._healthy)
        self.git.set_output("rev-parse", REVISION)
        self.git.set_output("status", "")

    def tunnel_factory(self, *args):
        self.tunnel_args.append(args)
        return self.tunnel

    def _write_kubeconfig(self, ctx) -> Receipt:
        Path(ctx.params["kubeconfig"]).write_text("apiVersion: v1\nkind: Config\n")
        return Receipt.success(adapter="aws", action_id=ctx.action.id, output="Added context")

    def _healthy(self, ctx) -> Receipt:
        return Receipt.success(
            adapter="http",
            action_id=ctx.action.id,
            output='{"status": "healthy"}',
            metadata={"status_code": 200, "body": {"status": "healthy"}},
        )

    def unhealthy(self, status_code: int = 503) -> None:
        self.http.set_handler("get", lambda ctx: Receipt.failure(
            adapter="http",
            action_id=ctx.action.id,
            error=f"HTTP {status_code} from {ctx.params['url']}",
            metadata={"status_code": status_code},
        ))


def _node(ready: bool) -> dict:
    return {"status": {"conditions": [{"type": "Ready", "status": "True" if ready else "False"}]}}


# ── Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory with config, Dockerfile and manifest. Returns the config path."""
    config = tmp_path / "deployline.yml"
    config.write_text(CONFIG)
    (tmp_path / "Dockerfile").write_text("FROM node:18-alpine\n")
    (tmp_path / "k8s").mkdir()
    (tmp_path / "k8s" / "deployment.yml").write_text(MANIFEST)
    return config


@pytest.fixture
def manifest_path(project: Path) -> Path:
    return project.parent / "k8s" / "deployment.yml"


@pytest.fixture
def config(project: Path):
    return load_config(project, environ={})


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def toolchain(world: World, config, project: Path) -> Toolchain:
    root = project.parent
    return Toolchain(
        registry=world.registry,
        config=config,
        project_root=root,
        scratch_dir=root / ".state" / "tmp",
        clock=world.clock,
        sleep=world.clock.sleep,
        tunnel_factory=world.tunnel_factory,
    )


@pytest.fixture
def run_context() -> RunContext:
    return RunContext.create(
        run_id=42,
        revision=REVISION,
        region="us-east-1",
        repository_name="sample-app",
        cluster_name="test-cluster",
    )


@pytest.fixture
def results_before(run_context: RunContext, toolchain: Toolchain):
    """Run the default stages that precede ``name`` and return their results."""

    def _run(name: str) -> dict:
        results: dict = {}
        for stage in DEFAULT_STAGES:
            if stage.name == name:
                return results
            results[stage.name] = stage.run(run_context, results, toolchain)
        raise KeyError(name)

    return _run
