"""
Tests for the run loop, diagnostics and the Run Reporter.
"""

import json
from unittest.mock import patch

from deployline.core.engine.executor import run_pipeline
from deployline.core.engine.reporter import (
    local_image_uris,
    report_run,
    should_notify,
)
from deployline.core.errors import BuildFailure
from deployline.core.models.run import STAGE_ORDER, StageResult
from deployline.core.persistence.ledger import RunLedger
from deployline.core.persistence.state_file import default_state_path, load_state
from deployline.core.stages import DEFAULT_STAGES, Stage
from deployline.core.stages.diagnostics import collect_diagnostics

from tests.conftest import REGISTRY


def _replace(name: str, fn) -> tuple[Stage, ...]:
    return tuple(Stage(s.name, fn) if s.name == name else s for s in DEFAULT_STAGES)


# ── Run loop ─────────────────────────────────────────────────────


class TestRunPipeline:
    def test_one_result_per_stage(self, run_context, toolchain):
        report = run_pipeline(run_context, toolchain)
        assert tuple(r.stage for r in report.stages) == STAGE_ORDER
        assert report.succeeded
        assert all(r.ok for r in report.stages)

    def test_identity_fallback_is_warning_not_failure(self, run_context, toolchain, world):
        world.aws.fail_operation("caller-identity", "ExpiredToken")
        report = run_pipeline(run_context, toolchain)
        assert report.succeeded
        assert report.warnings == ["IdentityResolver"]
        push = world.docker.calls("push")[0]
        assert push.params["image"].startswith("000000000000.dkr.ecr.us-east-1.amazonaws.com/")

    def test_build_failure_skips_the_rest(self, run_context, toolchain, world):
        world.docker.fail_operation("build", "Dockerfile parse error")
        report = run_pipeline(run_context, toolchain)

        assert report.status == "failed"
        assert report.failed_stage.stage == "ImageBuilder"
        assert report.failed_stage.error_kind == "BuildFailure"
        assert report.failed_stage.hints  # default remediation hints
        assert [r.status for r in report.stages] == [
            "success", "failed", "skipped", "skipped", "skipped", "skipped",
        ]
        assert report.get("RegistryPublisher").detail == "Skipped: ImageBuilder failed"
        assert world.docker.calls("push") == []
        assert world.kubectl.call_count == 0

    def test_unexpected_exception_is_captured(self, run_context, toolchain):
        def crash(context, results, toolchain):
            raise KeyError("references")

        report = run_pipeline(run_context, toolchain, _replace("ClusterConnector", crash))
        failed = report.failed_stage
        assert failed.stage == "ClusterConnector"
        assert failed.error_kind == "UnexpectedError"
        assert report.get("ManifestApplier").skipped

    def test_stage_timing_recorded(self, run_context, toolchain):
        def slow(context, results, toolchain):
            toolchain.sleep(2.5)
            return StageResult.success("ImageBuilder", "built")

        report = run_pipeline(run_context, toolchain, _replace("ImageBuilder", slow))
        assert report.get("ImageBuilder").duration_ms == 2500

    def test_rollout_timeout_collects_diagnostics(self, run_context, toolchain, world):
        world.cluster.stuck_at = 0
        report = run_pipeline(run_context, toolchain)
        failed = report.failed_stage
        assert failed.stage == "RolloutVerifier"
        assert failed.reason == "TimedOut"
        assert failed.diagnostics["pods"][0]["waiting"] == ["CrashLoopBackOff"]
        assert failed.diagnostics["events"][0]["reason"] == "BackOff"
        assert failed.outputs["rollout"]["state"] == "TimedOut"

    def test_no_diagnostics_for_build_failure(self, run_context, toolchain, world):
        world.docker.fail_operation("build", "boom")
        report = run_pipeline(run_context, toolchain)
        assert report.failed_stage.diagnostics == {}
        assert world.kubectl.calls("get-events") == []


class TestCollectDiagnostics:
    def test_without_cluster_connection(self, run_context, toolchain):
        assert collect_diagnostics(run_context, {}, toolchain) == {
            "error": "no cluster connection"
        }

    def test_failed_kubectl_calls_recorded(self, run_context, toolchain, world, results_before):
        results = results_before("ManifestApplier")
        world.kubectl.fail_operation("get-events", "forbidden")
        world.kubectl.fail_operation("get-pods", "forbidden")
        diagnostics = collect_diagnostics(run_context, results, toolchain)
        assert diagnostics == {"events_error": "forbidden", "pods_error": "forbidden"}

    def test_pods_selected_by_app_label(self, run_context, toolchain, world, results_before):
        collect_diagnostics(run_context, results_before("ManifestApplier"), toolchain)
        assert world.kubectl.calls("get-pods")[0].params["selector"] == "app=sample-app"

    def test_unparseable_output_does_not_raise(self, run_context, toolchain, world,
                                               results_before):
        results = results_before("ManifestApplier")
        world.kubectl.set_output("get-events", "not json")
        diagnostics = collect_diagnostics(run_context, results, toolchain)
        assert "error" in diagnostics


# ── Reporter ─────────────────────────────────────────────────────


class TestReporter:
    def test_persists_ledger_and_state(self, run_context, toolchain, project):
        report = run_pipeline(run_context, toolchain)
        outcome = report_run(report, toolchain)

        root = project.parent
        entries = RunLedger(path=root / ".state" / "runs.ndjson").read_all()
        assert len(entries) == 1
        assert entries[0].run_id == 42
        assert entries[0].status == "success"
        assert entries[0].summary["image"] == f"{REGISTRY}/sample-app:42"

        state = load_state(default_state_path(root))
        assert state.last_run.run_id == 42
        assert state.last_run.tag == "42"
        assert state.pipeline_name == "sample"
        assert outcome.persisted

    def test_cleanup_removes_images_and_kubeconfig(self, run_context, toolchain, world):
        report = run_pipeline(run_context, toolchain)
        kubeconfig = toolchain.kubeconfig_path(run_context)
        assert kubeconfig.exists()

        outcome = report_run(report, toolchain)

        rmi = world.docker.calls("rmi")[0]
        assert rmi.params["force"] is True
        assert rmi.params["images"] == [
            f"{REGISTRY}/sample-app:42",
            f"{REGISTRY}/sample-app:abcdef1",
            f"{REGISTRY}/sample-app:latest",
        ]
        assert not kubeconfig.exists()
        assert outcome.cleanup_errors == []

    def test_cleanup_failure_does_not_change_status(self, run_context, toolchain, world):
        world.docker.fail_operation("rmi", "image is being used by running container")
        report = run_pipeline(run_context, toolchain)
        outcome = report_run(report, toolchain)
        assert outcome.summary["status"] == "success"
        assert outcome.cleanup_errors

    def test_no_rmi_when_build_skipped(self, run_context, toolchain, world):
        def boom(context, results, toolchain):
            raise BuildFailure("x")

        stages = tuple(
            Stage(s.name, boom) if s.name == "IdentityResolver" else s for s in DEFAULT_STAGES
        )
        report = run_pipeline(run_context, toolchain, stages)
        assert local_image_uris(report) == []
        report_run(report, toolchain)
        assert world.docker.calls("rmi") == []

    def test_failed_build_still_cleans_partial_tags(self, run_context, toolchain, world):
        world.docker.set_failure("42:docker:tag:latest", "no space left on device")
        report = run_pipeline(run_context, toolchain)
        assert len(local_image_uris(report)) == 3
        report_run(report, toolchain)
        assert len(world.docker.calls("rmi")) == 1

    def test_webhook_on_failure(self, run_context, toolchain, world):
        toolchain.config.notifications.webhook_url = "https://hooks.example/deploy"
        toolchain.config.notifications.on = "failure"
        world.docker.fail_operation("build", "boom")

        outcome = report_run(run_pipeline(run_context, toolchain), toolchain)

        post = world.http.calls("post")[0]
        assert outcome.notified
        assert post.params["url"] == "https://hooks.example/deploy"
        assert post.params["payload"]["failed_stage"] == "ImageBuilder"
        assert post.action.id == "42:http:post:notify"

    def test_webhook_skipped_on_success_when_failure_only(self, run_context, toolchain, world):
        toolchain.config.notifications.webhook_url = "https://hooks.example/deploy"
        toolchain.config.notifications.on = "failure"
        outcome = report_run(run_pipeline(run_context, toolchain), toolchain)
        assert not outcome.notified
        assert world.http.calls("post") == []

    def test_webhook_failure_is_logged_only(self, run_context, toolchain, world):
        toolchain.config.notifications.webhook_url = "https://hooks.example/deploy"
        world.http.fail_operation("post", "HTTP 500")
        outcome = report_run(run_pipeline(run_context, toolchain), toolchain)
        assert not outcome.notified
        assert outcome.summary["status"] == "success"

    def test_restores_leftover_backup(self, run_context, toolchain, manifest_path):
        report = run_pipeline(run_context, toolchain)
        original = manifest_path.read_text()
        manifest_path.with_name("deployment.yml.bak").write_text(original)
        manifest_path.write_text("substituted by a crashed process")

        outcome = report_run(report, toolchain)

        assert manifest_path.read_text() == original
        assert "restored k8s/deployment.yml" in outcome.cleanup

    def test_summary_is_json_serialisable(self, run_context, toolchain):
        outcome = report_run(run_pipeline(run_context, toolchain), toolchain)
        json.dumps(outcome.to_dict())

    def test_fractional_webhook_timeout(self, run_context, toolchain, world):
        toolchain.config.notifications.webhook_url = "https://hooks.example/deploy"
        toolchain.config.notifications.timeout = 2.5
        outcome = report_run(run_pipeline(run_context, toolchain), toolchain)
        assert outcome.notified
        assert world.http.calls("post")[0].action.timeout == 2.5

    def test_cleanup_runs_when_notify_raises(self, run_context, toolchain, world):
        report = run_pipeline(run_context, toolchain)
        kubeconfig = toolchain.kubeconfig_path(run_context)

        with patch("deployline.core.engine.reporter.notify", side_effect=RuntimeError("boom")):
            outcome = report_run(report, toolchain)

        assert not outcome.notified
        assert outcome.persisted
        assert len(world.docker.calls("rmi")) == 1
        assert not kubeconfig.exists()

    def test_cleanup_runs_when_persist_fails(self, run_context, toolchain, world):
        report = run_pipeline(run_context, toolchain)
        kubeconfig = toolchain.kubeconfig_path(run_context)

        with patch("deployline.core.engine.reporter.record_run",
                   side_effect=OSError("read-only file system")):
            outcome = report_run(report, toolchain)

        assert not outcome.persisted
        assert outcome.summary["status"] == "success"
        assert len(world.docker.calls("rmi")) == 1
        assert not kubeconfig.exists()


def test_should_notify():
    assert should_notify("always", "success")
    assert should_notify("failure", "failed")
    assert not should_notify("failure", "success")
    assert not should_notify("success", "failed")

