"""Release data models — decoded refs, build jobs, credentials, cluster contexts."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

REDACTED_TOKEN = "**********"


class DecodedRef(BaseModel):
    """A tag split into its target and version segments.

    ``targets`` preserves tag order; builds treat it as a set, logs use
    the order for attribution.
    """

    model_config = ConfigDict(frozen=True)

    ref: str
    target: str
    version: str
    targets: tuple[str, ...]

    def environment(self) -> dict[str, str]:
        """Values exported to downstream steps as ``TARGETS`` / ``VERSION``."""
        return {"TARGETS": self.target, "VERSION": self.version}


class BuildJob(BaseModel):
    """One matrix build: every target pushed under the same version."""

    model_config = ConfigDict(frozen=True)

    targets: tuple[str, ...]
    version: str
    cache_scopes: dict[str, str]
    push: bool = True

    @model_validator(mode="after")
    def _scopes_unique_per_target(self) -> BuildJob:
        if set(self.cache_scopes) != set(self.targets):
            raise ValueError("every target needs exactly one cache scope")
        scopes = list(self.cache_scopes.values())
        if len(set(scopes)) != len(scopes):
            raise ValueError(f"cache scopes overlap: {scopes}")
        return self

    def cache_from(self, target: str) -> str:
        return f"type=gha,scope={self.cache_scopes[target]}"

    def cache_to(self, target: str) -> str:
        return f"type=gha,scope={self.cache_scopes[target]},mode=max"


class ImageReference(BaseModel):
    """A pushed image: ``<repository>:<tag>`` plus its digest when known."""

    model_config = ConfigDict(frozen=True)

    target: str
    repository: str
    tag: str
    digest: str = ""

    @property
    def ref(self) -> str:
        return f"{self.repository}:{self.tag}"


class RegistryAuth(BaseModel):
    """Push credentials for the container registry, scoped to one run."""

    model_config = ConfigDict(frozen=True)

    registry: str
    username: str
    password: SecretStr


class FederatedCredential(BaseModel):
    """Short-lived OIDC bearer token scoped to one audience.

    Lives only in memory for the duration of one run. ``raw_token`` is a
    ``SecretStr`` so it never shows up in ``repr`` or dumps.
    """

    model_config = ConfigDict(frozen=True)

    audience: str
    raw_token: SecretStr
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime | None = None

    @property
    def bearer(self) -> str:
        return self.raw_token.get_secret_value()


class ClusterContext(BaseModel):
    """A single cluster / user / context triple, selected as current."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    cluster_endpoint: str
    user: str
    credential: FederatedCredential
    namespace: str
    ca_file: str | None = None

    @property
    def context_name(self) -> str:
        return self.cluster_name

    def kubeconfig(self, *, redact: bool = False) -> dict:
        """Render the context as an in-memory kubeconfig document.

        Equivalent to ``kubectl config set-cluster``, ``set-credentials``,
        ``set-context`` and ``use-context`` on an empty config. With
        *redact* the user token is replaced by ``REDACTED_TOKEN``.
        """
        token = REDACTED_TOKEN if redact else self.credential.bearer
        cluster: dict[str, str] = {"server": self.cluster_endpoint}
        if self.ca_file:
            cluster["certificate-authority"] = self.ca_file
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": self.cluster_name, "cluster": cluster}],
            "users": [{"name": self.user, "user": {"token": token}}],
            "contexts": [
                {
                    "name": self.context_name,
                    "context": {
                        "cluster": self.cluster_name,
                        "user": self.user,
                        "namespace": self.namespace,
                    },
                }
            ],
            "current-context": self.context_name,
        }


class RolloutRequest(BaseModel):
    """Identifies the workload to restart. Carries no image reference."""

    model_config = ConfigDict(frozen=True)

    workload_kind: str
    workload_name: str
    namespace: str


class RolloutResult(BaseModel):
    """Acknowledgement of a restart directive by the cluster API."""

    model_config = ConfigDict(frozen=True)

    request: RolloutRequest
    status_code: int
    restarted_at: str
    resource_version: str = ""
