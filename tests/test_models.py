"""
Tests for core data models — run context, results, report, state.
"""

import pytest
from pydantic import ValidationError

from deployline.core.models.action import Action, Receipt
from deployline.core.models.config import DeploymentSettings, PipelineConfig
from deployline.core.models.run import (
    STAGE_ORDER,
    ClusterContext,
    Identity,
    ImageReference,
    RunContext,
    RunReport,
    StageResult,
)
from deployline.core.models.state import PipelineState, RunRecord


def _report(run: RunContext, *results: StageResult) -> RunReport:
    return RunReport(run=run, stages=results, started_at="t0", ended_at="t1")


def _all_success() -> list[StageResult]:
    return [StageResult.success(name, "ok") for name in STAGE_ORDER]


# ── RunContext ───────────────────────────────────────────────────


class TestRunContext:
    def test_tags_in_order(self):
        ctx = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        assert ctx.image_tags == ("42", "abcdef1", "latest")
        assert ctx.primary_tag == "42"
        assert ctx.secondary_tags == ("abcdef1", "latest")
        assert ctx.short_revision == "abcdef1"

    def test_strips_revision_whitespace(self):
        ctx = RunContext.create(1, "  abcdef1234567\n", "us-east-1", "app", "c1")
        assert ctx.revision == "abcdef1234567"

    def test_short_revision_rejected(self):
        with pytest.raises(ValueError, match="shorter than 7"):
            RunContext.create(1, "abc", "us-east-1", "app", "c1")

    def test_run_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            RunContext.create(0, "abcdef1234567", "us-east-1", "app", "c1")

    def test_frozen(self):
        ctx = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        with pytest.raises(ValidationError):
            ctx.run_id = 43


# ── Identity / references ────────────────────────────────────────


class TestIdentity:
    def test_registry_host(self):
        identity = Identity(account_id="123456789012", region="eu-west-1")
        assert identity.registry == "123456789012.dkr.ecr.eu-west-1.amazonaws.com"
        assert identity.warning is False

    def test_fallback_is_warning(self):
        identity = Identity(account_id="000000000000", region="us-east-1", provenance="fallback")
        assert identity.warning is True

    def test_reference_uri(self):
        ref = ImageReference(registry="r.example", repository="app", tag="42")
        assert ref.uri == "r.example/app:42"

    def test_cluster_context_round_trips_path(self, tmp_path):
        cluster = ClusterContext(cluster_name="c1", region="us-east-1", kubeconfig=tmp_path / "kc")
        restored = ClusterContext.model_validate(cluster.model_dump(mode="json"))
        assert restored.kubeconfig == tmp_path / "kc"


# ── StageResult / RunReport ──────────────────────────────────────


class TestStageResult:
    def test_factories(self):
        assert StageResult.success("ImageBuilder").ok
        assert StageResult.failure("ImageBuilder", "boom").failed
        assert StageResult.skip("ImageBuilder").skipped

    def test_timed_returns_copy(self):
        result = StageResult.success("ImageBuilder")
        timed = result.timed("a", "b", 1500)
        assert timed.duration_ms == 1500
        assert result.duration_ms == 0


class TestRunReport:
    def test_success_summary(self):
        run = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        results = _all_success()
        results[2] = StageResult.success(
            "RegistryPublisher", "ok", outputs={"image_uri": "r/app:42"}
        )
        report = _report(run, *results)
        summary = report.summary()
        assert report.succeeded
        assert summary["status"] == "success"
        assert summary["image"] == "r/app:42"
        assert summary["tags"] == ["42", "abcdef1", "latest"]
        assert summary["failed_stage"] is None
        assert [s["stage"] for s in summary["stages"]] == list(STAGE_ORDER)

    def test_failed_summary_carries_reason_and_hints(self):
        run = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        results = _all_success()
        results[5] = StageResult.failure(
            "RolloutVerifier", "0/2 ready", reason="TimedOut",
            error_kind="RolloutTimeout", hints=("look at events",),
        )
        report = _report(run, *results)
        summary = report.summary()
        assert report.status == "failed"
        assert report.failed_stage.stage == "RolloutVerifier"
        assert summary["failure_reason"] == "TimedOut"
        assert summary["hints"] == ["look at events"]

    def test_requires_every_stage_in_order(self):
        run = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        results = _all_success()
        with pytest.raises(ValidationError, match="stage results must follow"):
            _report(run, *reversed(results))
        with pytest.raises(ValidationError):
            _report(run, *results[:-1])

    def test_warnings_listed(self):
        run = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        results = _all_success()
        results[0] = StageResult.success("IdentityResolver", "fallback", warning=True)
        assert _report(run, *results).warnings == ["IdentityResolver"]

    def test_get_unknown_stage(self):
        run = RunContext.create(42, "abcdef1234567", "us-east-1", "app", "c1")
        report = _report(run, *_all_success())
        with pytest.raises(KeyError):
            report.get("Nope")


# ── Receipts ─────────────────────────────────────────────────────


class TestReceipt:
    def test_success(self):
        r = Receipt.success(adapter="docker", action_id="42:docker:push:42", output="done")
        assert r.ok and not r.failed

    def test_failure(self):
        r = Receipt.failure(adapter="docker", action_id="a", error="denied")
        assert r.failed and r.error == "denied"

    def test_output_json(self):
        assert Receipt.success(adapter="kubectl", action_id="a").output_json() == {}
        r = Receipt.success(adapter="kubectl", action_id="a", output='{"items": []}')
        assert r.output_json() == {"items": []}
        with pytest.raises(ValueError):
            Receipt.success(adapter="kubectl", action_id="a", output="nope").output_json()


class TestAction:
    def test_for_run_id(self):
        action = Action.for_run(42, "docker", "push", "latest")
        assert action.id == "42:docker:push:latest"
        assert Action.for_run(42, "aws", "caller-identity").id == "42:aws:caller-identity"

    def test_fractional_timeout_kept(self):
        assert Action.for_run(1, "http", "get", timeout=2.5).timeout == 2.5


# ── Config / state ───────────────────────────────────────────────


class TestConfigModel:
    def test_requires_repository_and_cluster(self):
        with pytest.raises(ValidationError):
            PipelineConfig.model_validate({"repository": "app"})

    def test_manifest_shorthand(self):
        settings = DeploymentSettings.model_validate(
            {"manifests": ["k8s/a.yml", {"path": "k8s/b.yml", "optional": True}]}
        )
        assert [m.path for m in settings.manifests] == ["k8s/a.yml", "k8s/b.yml"]
        assert settings.manifests[1].optional

    def test_selector_defaults_to_workload(self):
        assert DeploymentSettings(workload="web").selector == "app=web"
        assert DeploymentSettings(workload="web", app_label="frontend").selector == "app=frontend"


class TestPipelineState:
    def test_next_run_id(self):
        state = PipelineState()
        assert state.next_run_id() == 1
        state.record_run(RunRecord(run_id=7, status="success"))
        assert state.next_run_id() == 8

    def test_counters(self):
        state = PipelineState()
        state.record_run(RunRecord(run_id=1, status="success"))
        state.record_run(RunRecord(run_id=2, status="failed", failed_stage="ImageBuilder"))
        assert state.runs_total == 2
        assert state.runs_failed == 1
        assert state.last_run.failed_stage == "ImageBuilder"
