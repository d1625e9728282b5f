"""Deployment configuration — env-driven.

Centralized config using pydantic-settings. Reads from a .env file and
TAGDEPLOY_* environment variables. The deploy namespace and workload are
fixed here rather than derived from the tag: the tag decides what to build,
this config decides where it lands.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tagdeploy.core.rollout import WORKLOAD_KINDS


class DeployConfig(BaseSettings):
    """Release pipeline configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export TAGDEPLOY_NAMESPACE=staging
        export TAGDEPLOY_LOG_LEVEL=DEBUG
        export TAGDEPLOY_TEST_COMMANDS='["pytest -q"]'

    Or via .env file::

        TAGDEPLOY_CLUSTER_ENDPOINT=https://k8s.example.com
        TAGDEPLOY_AUDIENCE=k8s.example.com
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TAGDEPLOY_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Tag layout
    ref_separator: str = "/"
    mainline_branch: str = "master"

    # Registry
    registry: str = "ghcr.io"
    registry_owner: str = "hexium310"

    # Build backend
    bake_file: Path | None = None
    builder: str | None = None

    # Branch pipeline test job, run in order
    test_commands: list[str] = [
        "cargo test --workspace",
        "cargo clippy --workspace",
    ]

    # Cluster and identity federation
    cluster_name: str = "k8s.chitoku.jp"
    cluster_endpoint: str = "https://k8s.chitoku.jp"
    cluster_ca_file: Path | None = None
    cluster_user: str = "github-actions"
    audience: str = "k8s.chitoku.jp"

    # Rollout target
    namespace: str = "seitai"
    workload_kind: str = "statefulset"
    workload_name: str = "seitai"

    request_timeout_seconds: float = 30.0

    @field_validator("ref_separator")
    @classmethod
    def _separator_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("ref_separator must not be empty")
        return value

    @field_validator("cluster_endpoint")
    @classmethod
    def _endpoint_is_url(cls, value: str) -> str:
        if not value.startswith(("https://", "http://")):
            raise ValueError(f"cluster_endpoint must be an http(s) URL, got {value!r}")
        return value

    @field_validator("audience", "namespace", "workload_name")
    @classmethod
    def _not_empty(cls, value: str, info: ValidationInfo) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value

    @field_validator("workload_kind")
    @classmethod
    def _supported_kind(cls, value: str) -> str:
        kind = value.lower()
        if kind not in WORKLOAD_KINDS:
            raise ValueError(
                f"workload_kind must be one of {sorted(WORKLOAD_KINDS)}, got {value!r}"
            )
        return kind

    @property
    def image_namespace(self) -> str:
        """Registry host plus lowercased owner, e.g. ``ghcr.io/hexium310``."""
        return f"{self.registry}/{self.registry_owner.lower()}"

