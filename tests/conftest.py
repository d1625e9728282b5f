"""Shared test fixtures for tagdeploy."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

import httpx
import pytest

from tagdeploy.config import DeployConfig
from tagdeploy.core.build_dispatcher import BuildDispatcher
from tagdeploy.core.credential_broker import CredentialBroker
from tagdeploy.core.pipeline import ReleasePipeline
from tagdeploy.core.rollout import RolloutTrigger
from tagdeploy.errors import BuildError, CredentialError
from tagdeploy.models.release import RegistryAuth
from tagdeploy.models.run import RunContext

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeRegistry:
    """Records pushed images as ``repository:tag -> digest``."""

    def __init__(self) -> None:
        self.images: dict[str, str] = {}


class FakeBakeBackend:
    """In-memory build backend.

    Builds targets in the order given and pushes each one into the fake
    registry. Targets listed in ``fail`` raise ``BuildError`` when reached,
    aborting the rest of the batch. ``events`` records logins and bakes in
    call order.
    """

    def __init__(self, registry: FakeRegistry, fail: Sequence[str] = ()) -> None:
        self.registry = registry
        self.fail = set(fail)
        self.calls: list[dict] = []
        self.logins: list[RegistryAuth] = []
        self.events: list[str] = []

    def login(self, auth: RegistryAuth) -> None:
        self.logins.append(auth)
        self.events.append("login")

    def bake(
        self,
        targets: Sequence[str],
        *,
        overrides: Sequence[str],
        push: bool,
        variables: Mapping[str, str],
    ) -> dict[str, str]:
        self.events.append("bake")
        self.calls.append(
            {
                "targets": list(targets),
                "overrides": list(overrides),
                "push": push,
                "variables": dict(variables),
            }
        )
        tags = {
            o.split(".tags=", 1)[0]: o.split(".tags=", 1)[1]
            for o in overrides
            if ".tags=" in o
        }
        digests: dict[str, str] = {}
        for target in targets:
            if target in self.fail:
                raise BuildError(target, "failed to solve: exit code 1")
            digest = f"sha256:{target}{len(self.registry.images)}"
            if push:
                self.registry.images[tags[target]] = digest
            digests[target] = digest
        return digests


class FakeIdentityProvider:
    """Issues a distinct token on every request."""

    def __init__(self, refuse: bool = False) -> None:
        self.refuse = refuse
        self.requests: list[str] = []

    def request_token(self, audience: str) -> str:
        self.requests.append(audience)
        if self.refuse:
            raise CredentialError(f"audience {audience!r} refused")
        return make_jwt({"aud": audience, "exp": 4102444800, "jti": len(self.requests)})


def make_jwt(claims: dict) -> str:
    """Build an unsigned JWT-shaped token carrying *claims*."""

    def _b64(data: dict) -> str:
        raw = json.dumps(data).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return f"{_b64({'alg': 'none'})}.{_b64(claims)}.sig"


class ClusterApi:
    """``httpx.MockTransport`` handler that acts as a tiny apps/v1 API."""

    def __init__(self, workloads: set[str], *, token_check: Callable[[str], bool] | None = None):
        self.workloads = workloads
        self.token_check = token_check or (lambda token: bool(token))
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer ") or not self.token_check(auth[len("Bearer "):]):
            return httpx.Response(401, json={"kind": "Status", "reason": "Unauthorized"})
        parts = request.url.path.strip("/").split("/")
        # apis/apps/v1/namespaces/<ns>/<resource>/<name>
        key = f"{parts[4]}/{parts[5]}/{parts[6]}"
        if key not in self.workloads:
            return httpx.Response(404, json={"kind": "Status", "reason": "NotFound"})
        return httpx.Response(200, json={"metadata": {"name": parts[6], "resourceVersion": "42"}})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def deploy_config() -> DeployConfig:
    """Deploy config with the production defaults, isolated from .env files."""
    return DeployConfig(_env_file=None)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def cluster_api() -> ClusterApi:
    return ClusterApi({"seitai/statefulsets/seitai"})


@pytest.fixture
def run_context(tmp_path: Path) -> RunContext:
    """Context for a push of tag ``seitai/2.4.0``."""
    return RunContext(
        event_name="push",
        ref="refs/tags/seitai/2.4.0",
        ref_name="seitai/2.4.0",
        ref_type="tag",
        sha="0123abcd",
        run_id="42",
        repository="hexium310/seitai",
        github_env=tmp_path / "github_env",
    )


@pytest.fixture
def make_pipeline(
    deploy_config: DeployConfig,
    registry: FakeRegistry,
    identity_provider: FakeIdentityProvider,
    cluster_api: ClusterApi,
) -> Callable[..., ReleasePipeline]:
    """Factory fixture: a ReleasePipeline wired to in-memory doubles."""

    def _factory(fail: Sequence[str] = (), **config_overrides) -> ReleasePipeline:
        config = deploy_config.model_copy(update=config_overrides)
        backend = FakeBakeBackend(registry, fail=fail)
        return ReleasePipeline(
            config,
            BuildDispatcher(backend, config.image_namespace),
            CredentialBroker(identity_provider),
            RolloutTrigger(transport=cluster_api.transport),
        )

    return _factory
