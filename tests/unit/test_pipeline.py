"""Unit tests for the release and branch pipeline controllers."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from pathlib import Path

import pytest
from pydantic import SecretStr

from conftest import ClusterApi, FakeBakeBackend, FakeIdentityProvider, FakeRegistry
from tagdeploy.config import DeployConfig
from tagdeploy.core import build_dispatcher
from tagdeploy.core.build_dispatcher import BuildDispatcher
from tagdeploy.core.credential_broker import CredentialBroker
from tagdeploy.core.pipeline import BUILD_JOB, TEST_JOB, BranchPipeline, ReleasePipeline
from tagdeploy.core.rollout import RolloutTrigger
from tagdeploy.errors import (
    BuildError,
    CommandError,
    CredentialError,
    MalformedRefError,
    RolloutError,
)
from tagdeploy.models.run import RunContext
from tagdeploy.models.states import BranchState, ReleaseState

# ---------------------------------------------------------------------------
# Release pipeline
# ---------------------------------------------------------------------------


class TestReleasePipeline:
    def test_done(
        self,
        make_pipeline: Callable[..., ReleasePipeline],
        run_context: RunContext,
        registry: FakeRegistry,
    ):
        pipeline = make_pipeline()
        outcome = pipeline.run(run_context)

        assert outcome.state == ReleaseState.DONE
        assert outcome.failed_stage is None
        assert registry.images.keys() == {"ghcr.io/hexium310/seitai:2.4.0"}
        assert [t.to_state for t in outcome.trail] == [
            "decoding",
            "building",
            "credential_pending",
            "deploying",
            "done",
        ]

    def test_exports_targets_and_version(
        self, make_pipeline: Callable[..., ReleasePipeline], run_context: RunContext
    ):
        make_pipeline().run(run_context)
        assert run_context.github_env.read_text(encoding="utf-8") == (
            "TARGETS=seitai\nVERSION=2.4.0\n"
        )

    def test_malformed_ref_stops_before_build(
        self,
        make_pipeline: Callable[..., ReleasePipeline],
        run_context: RunContext,
        registry: FakeRegistry,
        identity_provider: FakeIdentityProvider,
    ):
        pipeline = make_pipeline()
        with pytest.raises(MalformedRefError):
            pipeline.run(run_context.with_tag("nightly"))

        assert pipeline.state == ReleaseState.FAILED
        assert pipeline.outcome().failed_stage == "decoding"
        assert registry.images == {}
        assert identity_provider.requests == []

    def test_matrix_build_failure_never_deploys(
        self,
        make_pipeline: Callable[..., ReleasePipeline],
        run_context: RunContext,
        registry: FakeRegistry,
        identity_provider: FakeIdentityProvider,
        cluster_api: ClusterApi,
    ):
        pipeline = make_pipeline(fail=["b"])
        with pytest.raises(BuildError) as excinfo:
            pipeline.run(run_context.with_tag("a/b/1.0.0"))

        assert excinfo.value.target == "b"
        assert pipeline.state == ReleaseState.FAILED
        assert pipeline.outcome().failed_stage == "building"
        # a stays published, nothing downstream ran
        assert "ghcr.io/hexium310/a:1.0.0" in registry.images
        assert identity_provider.requests == []
        assert cluster_api.requests == []

    def test_credential_failure_never_deploys(
        self,
        deploy_config: DeployConfig,
        registry: FakeRegistry,
        cluster_api: ClusterApi,
        run_context: RunContext,
    ):
        pipeline = ReleasePipeline(
            deploy_config,
            BuildDispatcher(FakeBakeBackend(registry), deploy_config.image_namespace),
            CredentialBroker(FakeIdentityProvider(refuse=True)),
            RolloutTrigger(transport=cluster_api.transport),
        )
        with pytest.raises(CredentialError):
            pipeline.run(run_context)

        assert pipeline.outcome().failed_stage == "credential_pending"
        assert cluster_api.requests == []

    def test_missing_workload_fails_run(
        self,
        make_pipeline: Callable[..., ReleasePipeline],
        run_context: RunContext,
        cluster_api: ClusterApi,
    ):
        pipeline = make_pipeline(workload_name="does-not-exist")
        with pytest.raises(RolloutError) as excinfo:
            pipeline.run(run_context)

        assert excinfo.value.reason == "not_found"
        assert pipeline.state == ReleaseState.FAILED
        assert pipeline.outcome().failed_stage == "deploying"
        assert len(cluster_api.requests) == 1
        assert pipeline.outcome().trail[-1].to_state == "failed"

    def test_namespace_comes_from_config_not_tag(
        self,
        make_pipeline: Callable[..., ReleasePipeline],
        run_context: RunContext,
        cluster_api: ClusterApi,
    ):
        outcome = make_pipeline().run(run_context.with_tag("other/9.9.9"))
        assert outcome.rollout.request.namespace == "seitai"
        assert outcome.rollout.request.workload_name == "seitai"

    def test_cancellation_during_build_marks_failed(
        self,
        deploy_config: DeployConfig,
        cluster_api: ClusterApi,
        run_context: RunContext,
    ):
        class Cancelled:
            def bake(self, targets, *, overrides, push, variables):
                raise KeyboardInterrupt

        provider = FakeIdentityProvider()
        pipeline = ReleasePipeline(
            deploy_config,
            BuildDispatcher(Cancelled(), deploy_config.image_namespace),
            CredentialBroker(provider),
            RolloutTrigger(transport=cluster_api.transport),
        )
        with pytest.raises(KeyboardInterrupt):
            pipeline.run(run_context)

        assert pipeline.state == ReleaseState.FAILED
        assert pipeline.outcome().failed_stage == "building"
        assert provider.requests == []

    def test_from_config_logs_in_with_run_token(
        self,
        monkeypatch: pytest.MonkeyPatch,
        deploy_config: DeployConfig,
        run_context: RunContext,
    ):
        commands: list[dict] = []

        def _run(args, *, capture_output=True, cwd=None, env=None, input=None):
            commands.append({"args": list(args), "env": env, "input": input})
            if "--metadata-file" in args:
                path = Path(args[args.index("--metadata-file") + 1])
                path.write_text(json.dumps({"seitai": {}}), encoding="utf-8")
            return ""

        monkeypatch.setattr(build_dispatcher, "run_cmd", _run)
        context = run_context.model_copy(update={"github_token": SecretStr("ghs_run_token")})

        pipeline = ReleasePipeline.from_config(
            deploy_config, context, environ={"PATH": "/usr/bin"}
        )
        pipeline.dispatcher.build(["seitai"], "2.4.0")

        login, bake = commands
        assert login["args"][:3] == ["docker", "login", "ghcr.io"]
        assert login["args"][3:5] == ["--username", "hexium310"]
        assert login["input"] == "ghs_run_token"
        assert bake["args"][:3] == ["docker", "buildx", "bake"]
        assert bake["env"] == {"PATH": "/usr/bin", "VERSION": "2.4.0", "TARGETS": "seitai"}

    def test_from_config_without_token_skips_login(
        self,
        monkeypatch: pytest.MonkeyPatch,
        deploy_config: DeployConfig,
        run_context: RunContext,
    ):
        commands: list[list[str]] = []

        def _run(args, *, capture_output=True, cwd=None, env=None, input=None):
            commands.append(list(args))
            path = Path(args[args.index("--metadata-file") + 1])
            path.write_text(json.dumps({"seitai": {}}), encoding="utf-8")
            return ""

        monkeypatch.setattr(build_dispatcher, "run_cmd", _run)

        pipeline = ReleasePipeline.from_config(deploy_config, run_context)
        pipeline.dispatcher.build(["seitai"], "2.4.0")

        assert [c[:3] for c in commands] == [["docker", "buildx", "bake"]]


# ---------------------------------------------------------------------------
# Branch pipeline
# ---------------------------------------------------------------------------


class TestBranchPipeline:
    @pytest.fixture
    def branch_context(self) -> RunContext:
        return RunContext(ref="refs/heads/master", ref_name="master", ref_type="branch")

    def test_both_jobs_pass(self, registry: FakeRegistry, branch_context: RunContext):
        backend = FakeBakeBackend(registry)
        commands: list[list[str]] = []
        pipeline = BranchPipeline(
            BuildDispatcher(backend, "ghcr.io/hexium310"),
            ["cargo test --workspace", "cargo clippy --workspace"],
            runner=commands.append,
        )
        outcome = pipeline.run(branch_context)

        assert outcome.state == BranchState.DONE
        assert commands == [
            ["cargo", "test", "--workspace"],
            ["cargo", "clippy", "--workspace"],
        ]
        assert backend.calls[0]["push"] is False
        assert registry.images == {}

    def test_test_failure_does_not_cancel_build(
        self, registry: FakeRegistry, branch_context: RunContext
    ):
        backend = FakeBakeBackend(registry)

        def runner(args: list[str]) -> None:
            raise CommandError(args, "1 test failed")

        outcome = BranchPipeline(
            BuildDispatcher(backend, "ghcr.io/hexium310"), ["cargo test"], runner=runner
        ).run(branch_context)

        assert outcome.state == BranchState.FAILED
        assert outcome.jobs[TEST_JOB].passed is False
        assert "1 test failed" in outcome.jobs[TEST_JOB].error
        assert outcome.jobs[BUILD_JOB].passed is True
        assert len(backend.calls) == 1

    def test_build_failure_does_not_cancel_tests(self, branch_context: RunContext):
        class Broken:
            def bake(self, targets, *, overrides, push, variables):
                raise CommandError(["docker"], "failed to solve")

        commands: list[list[str]] = []
        outcome = BranchPipeline(
            BuildDispatcher(Broken(), "ghcr.io/hexium310"), ["cargo test"], runner=commands.append
        ).run(branch_context)

        assert outcome.state == BranchState.FAILED
        assert outcome.jobs[BUILD_JOB].passed is False
        assert outcome.jobs[TEST_JOB].passed is True
        assert commands == [["cargo", "test"]]

    def test_jobs_run_concurrently(self, registry: FakeRegistry, branch_context: RunContext):
        both_started = threading.Barrier(2, timeout=5)

        class WaitingBackend(FakeBakeBackend):
            def bake(self, *args, **kwargs):
                both_started.wait()
                return super().bake(*args, **kwargs)

        outcome = BranchPipeline(
            BuildDispatcher(WaitingBackend(registry), "ghcr.io/hexium310"),
            ["cargo test"],
            runner=lambda args: both_started.wait(),
        ).run(branch_context)

        assert outcome.state == BranchState.DONE
