"""Run context — the immutable event metadata for one pipeline invocation."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, SecretStr

_TAG_PREFIX = "refs/tags/"
_BRANCH_PREFIX = "refs/heads/"


class Trigger(str, Enum):
    """Which pipeline an event starts."""

    RELEASE = "release"
    BRANCH = "branch"
    IGNORED = "ignored"


class RunContext(BaseModel):
    """Event and identity metadata, built once at entry and passed down.

    Components receive this value instead of reading the process
    environment themselves.
    """

    model_config = ConfigDict(frozen=True)

    event_name: str = "push"
    ref: str = ""
    ref_name: str = ""
    ref_type: str = ""
    sha: str = ""
    run_id: str = "local"
    repository: str = ""
    github_env: Path | None = None
    id_token_request_url: str | None = None
    id_token_request_token: str | None = None
    github_token: SecretStr | None = None

    @classmethod
    def from_environment(cls, environ: Mapping[str, str]) -> RunContext:
        """Build a context from a GitHub Actions style environment mapping."""
        ref = environ.get("GITHUB_REF", "")
        ref_type = environ.get("GITHUB_REF_TYPE", "")
        if not ref_type:
            if ref.startswith(_TAG_PREFIX):
                ref_type = "tag"
            elif ref.startswith(_BRANCH_PREFIX):
                ref_type = "branch"
        ref_name = environ.get("GITHUB_REF_NAME", "")
        if not ref_name and ref:
            ref_name = ref.removeprefix(_TAG_PREFIX).removeprefix(_BRANCH_PREFIX)
        github_env = environ.get("GITHUB_ENV")
        token = environ.get("GITHUB_TOKEN")
        return cls(
            event_name=environ.get("GITHUB_EVENT_NAME", "push"),
            ref=ref,
            ref_name=ref_name,
            ref_type=ref_type,
            sha=environ.get("GITHUB_SHA", ""),
            run_id=environ.get("GITHUB_RUN_ID", "local"),
            repository=environ.get("GITHUB_REPOSITORY", ""),
            github_env=Path(github_env) if github_env else None,
            id_token_request_url=environ.get("ACTIONS_ID_TOKEN_REQUEST_URL") or None,
            id_token_request_token=environ.get("ACTIONS_ID_TOKEN_REQUEST_TOKEN") or None,
            github_token=SecretStr(token) if token else None,
        )

    def with_tag(self, tag: str) -> RunContext:
        """Return a copy of this context describing a push of *tag*."""
        return self.model_copy(
            update={
                "event_name": "push",
                "ref": f"{_TAG_PREFIX}{tag}",
                "ref_name": tag,
                "ref_type": "tag",
            }
        )

    def trigger(self, mainline_branch: str) -> Trigger:
        """Classify the event: tag push, mainline push / pull request, or neither."""
        if self.event_name == "pull_request":
            return Trigger.BRANCH
        if self.event_name != "push":
            return Trigger.IGNORED
        if self.ref_type == "tag":
            return Trigger.RELEASE
        if self.ref_type == "branch" and self.ref_name == mainline_branch:
            return Trigger.BRANCH
        return Trigger.IGNORED
