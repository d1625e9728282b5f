"""Pipeline controllers — the release pipeline and the branch pipeline.

The release pipeline is a single sequential control flow:

    idle -> decoding -> building -> credential_pending -> deploying -> done

Any stage failure (or an external cancellation) moves the run to
``failed``, records the originating stage and cause, and re-raises.
Nothing after the failing stage runs; in particular no credential is
minted and no restart issued unless every target image was pushed.

The branch pipeline runs its Test job and sanity Build job concurrently.
Either failing marks the run ``failed`` without cancelling the other.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from tagdeploy.config import DeployConfig
from tagdeploy.core import cluster_context
from tagdeploy.core.build_dispatcher import BakeBackend, BuildDispatcher
from tagdeploy.core.commands import run_cmd, split_command
from tagdeploy.core.credential_broker import ActionsIdentityProvider, CredentialBroker
from tagdeploy.core.ref_decoder import decode
from tagdeploy.core.rollout import RolloutTrigger
from tagdeploy.core.state_machine import branch_machine, release_machine
from tagdeploy.errors import ReleaseError
from tagdeploy.models.release import (
    ClusterContext,
    DecodedRef,
    ImageReference,
    RegistryAuth,
    RolloutResult,
)
from tagdeploy.models.run import RunContext
from tagdeploy.models.states import BranchState, ReleaseState, StateTransition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class ReleaseOutcome(BaseModel):
    """Final (or current) picture of one release run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    state: ReleaseState
    decoded: DecodedRef | None = None
    images: dict[str, ImageReference] = {}
    rollout: RolloutResult | None = None
    failed_stage: str | None = None
    error: str | None = None
    trail: list[StateTransition] = []


class JobResult(BaseModel):
    """Result of one branch-pipeline job."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    error: str | None = None


class BranchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    state: BranchState
    jobs: dict[str, JobResult]
    trail: list[StateTransition] = []


def write_step_environment(path: Path, values: dict[str, str]) -> None:
    """Append ``NAME=value`` lines to the GitHub step-environment file."""
    with open(path, "a", encoding="utf-8") as handle:
        for key, value in values.items():
            handle.write(f"{key}={value}\n")


# ---------------------------------------------------------------------------
# Release pipeline
# ---------------------------------------------------------------------------


class ReleasePipeline:
    """Sequences decode -> build -> credential -> rollout for one tag.

    Parameters
    ----------
    config:
        Deployment configuration (registry, cluster, fixed workload).
    dispatcher:
        Build dispatcher used for the matrix build.
    broker:
        Credential broker for the cluster audience.
    rollout:
        Rollout trigger for the restart directive.
    """

    def __init__(
        self,
        config: DeployConfig,
        dispatcher: BuildDispatcher,
        broker: CredentialBroker,
        rollout: RolloutTrigger,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self.broker = broker
        self.rollout = rollout

        self._machine = release_machine()
        self._run_id = ""
        self._decoded: DecodedRef | None = None
        self._images: dict[str, ImageReference] = {}
        self._rollout_result: RolloutResult | None = None
        self._failed_stage: str | None = None
        self._error: str | None = None

    @classmethod
    def from_config(
        cls,
        config: DeployConfig,
        run_context: RunContext,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> ReleasePipeline:
        """Wire the default backends: buildx bake, Actions OIDC, cluster API.

        *environ* is the base process environment handed to docker.
        """
        registry_auth = None
        if run_context.github_token is not None:
            registry_auth = RegistryAuth(
                registry=config.registry,
                username=config.registry_owner,
                password=run_context.github_token,
            )
        dispatcher = BuildDispatcher(
            BakeBackend(bake_file=config.bake_file, builder=config.builder, environ=environ),
            config.image_namespace,
            registry_auth=registry_auth,
        )
        provider = ActionsIdentityProvider(
            run_context.id_token_request_url,
            run_context.id_token_request_token,
            timeout=config.request_timeout_seconds,
        )
        return cls(
            config,
            dispatcher,
            CredentialBroker(provider),
            RolloutTrigger(timeout=config.request_timeout_seconds),
        )

    @property
    def state(self) -> ReleaseState:
        return self._machine.state

    def outcome(self) -> ReleaseOutcome:
        return ReleaseOutcome(
            run_id=self._run_id,
            state=self._machine.state,
            decoded=self._decoded,
            images=dict(self._images),
            rollout=self._rollout_result,
            failed_stage=self._failed_stage,
            error=self._error,
            trail=self._machine.trail,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, run_context: RunContext) -> ReleaseOutcome:
        """Execute the release for the tag in *run_context*.

        Returns the ``done`` outcome. On failure the run is moved to
        ``failed`` and the stage error is re-raised.
        """
        self._run_id = run_context.run_id
        logger.info("Release run %s for ref %s", run_context.run_id, run_context.ref_name)

        decoded = self._stage(
            ReleaseState.DECODING,
            run_context.ref_name,
            self._decode,
            run_context,
        )
        self._decoded = decoded

        self._images = self._stage(
            ReleaseState.BUILDING,
            f"{decoded.target}@{decoded.version}",
            self.dispatcher.build,
            decoded.targets,
            decoded.version,
        )

        context = self._stage(
            ReleaseState.CREDENTIAL_PENDING,
            self.config.audience,
            self._cluster_context,
        )

        self._rollout_result = self._stage(
            ReleaseState.DEPLOYING,
            f"{self.config.workload_kind}/{self.config.workload_name}",
            self.rollout.restart,
            context,
            self.config.workload_kind,
            self.config.workload_name,
        )

        self._machine.transition(ReleaseState.DONE)
        logger.info("Release run %s done", run_context.run_id)
        return self.outcome()

    def _stage(
        self,
        state: ReleaseState,
        detail: str,
        func: Callable[..., Any],
        *args: Any,
    ) -> Any:
        self._machine.transition(state, detail)
        try:
            return func(*args)
        except (Exception, KeyboardInterrupt) as exc:
            self._fail(state, exc)
            raise

    def _fail(self, state: ReleaseState, exc: BaseException) -> None:
        self._failed_stage = state.value
        self._error = str(exc) or type(exc).__name__
        logger.error("Release failed during %s: %s", state.value, self._error)
        self._machine.transition(ReleaseState.FAILED, f"{state.value}: {self._error}")

    def _decode(self, run_context: RunContext) -> DecodedRef:
        decoded = decode(run_context.ref_name, self.config.ref_separator)
        logger.info(
            "Decoded %s -> targets=%s version=%s",
            run_context.ref_name,
            ", ".join(decoded.targets),
            decoded.version,
        )
        if run_context.github_env is not None:
            write_step_environment(run_context.github_env, decoded.environment())
        return decoded

    def _cluster_context(self) -> ClusterContext:
        credential = self.broker.mint(self.config.audience)
        return cluster_context.configure(
            self.config.cluster_endpoint,
            credential,
            self.config.namespace,
            cluster_name=self.config.cluster_name,
            user=self.config.cluster_user,
            ca_file=self.config.cluster_ca_file,
        )


# ---------------------------------------------------------------------------
# Branch pipeline
# ---------------------------------------------------------------------------

TEST_JOB = "test"
BUILD_JOB = "build"


class BranchPipeline:
    """Runs the Test job and sanity Build job side by side.

    Parameters
    ----------
    dispatcher:
        Build dispatcher used for the no-push sanity build.
    test_commands:
        Shell-style command lines run in order by the Test job.
    runner:
        Command runner; defaults to ``run_cmd``.
    """

    def __init__(
        self,
        dispatcher: BuildDispatcher,
        test_commands: Sequence[str],
        *,
        runner: Callable[[list[str]], Any] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.test_commands = list(test_commands)
        self._runner = runner or (lambda args: run_cmd(args, capture_output=False))
        self._machine = branch_machine()

    @classmethod
    def from_config(
        cls, config: DeployConfig, *, environ: Mapping[str, str] | None = None
    ) -> BranchPipeline:
        dispatcher = BuildDispatcher(
            BakeBackend(bake_file=config.bake_file, builder=config.builder, environ=environ),
            config.image_namespace,
        )
        return cls(dispatcher, config.test_commands)

    @property
    def state(self) -> BranchState:
        return self._machine.state

    def run(self, run_context: RunContext) -> BranchOutcome:
        """Run both jobs to completion and report the combined outcome."""
        logger.info("Branch run %s for %s", run_context.run_id, run_context.ref_name)
        self._machine.transition(BranchState.TESTING_AND_BUILDING)

        jobs: dict[str, Callable[[], None]] = {
            TEST_JOB: self._test,
            BUILD_JOB: self._build,
        }
        with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="branch") as pool:
            futures = {name: pool.submit(self._guarded, name, job) for name, job in jobs.items()}
            results = {name: future.result() for name, future in futures.items()}

        failed = [r.name for r in results.values() if not r.passed]
        if failed:
            self._machine.transition(BranchState.FAILED, ", ".join(failed))
        else:
            self._machine.transition(BranchState.DONE)

        return BranchOutcome(
            run_id=run_context.run_id,
            state=self._machine.state,
            jobs=results,
            trail=self._machine.trail,
        )

    def _guarded(self, name: str, job: Callable[[], None]) -> JobResult:
        try:
            job()
        except ReleaseError as exc:
            logger.error("%s job failed: %s", name, exc)
            return JobResult(name=name, passed=False, error=str(exc))
        except Exception as exc:
            logger.exception("%s job crashed", name)
            return JobResult(name=name, passed=False, error=f"{type(exc).__name__}: {exc}")
        logger.info("%s job passed", name)
        return JobResult(name=name, passed=True)

    def _test(self) -> None:
        for command in self.test_commands:
            logger.info("test: %s", command)
            self._runner(split_command(command))

    def _build(self) -> None:
        self.dispatcher.sanity_build()
