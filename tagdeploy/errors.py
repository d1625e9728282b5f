"""Error taxonomy for the release and branch pipelines.

Every failure is fatal for the run that raised it. Nothing in tagdeploy
retries; a failed run is re-run by an operator.
"""

from __future__ import annotations


class ReleaseError(RuntimeError):
    """Base class for all pipeline stage failures.

    ``stage`` names the pipeline stage that raised the error so the
    controller and CLI can attribute the failure.
    """

    stage: str = "unknown"


class MalformedRefError(ReleaseError, ValueError):
    """Raised when a tag cannot be split into target and version."""

    stage = "decoding"

    def __init__(self, ref: str, reason: str) -> None:
        self.ref = ref
        self.reason = reason
        super().__init__(f"Malformed release ref {ref!r}: {reason}")


class CommandError(ReleaseError):
    """Raised when an external command exits non-zero."""

    def __init__(self, args: list[str], details: str) -> None:
        self.args_list = args
        self.details = details
        super().__init__(f"Command failed: {' '.join(args)}\n{details}")


class BuildError(ReleaseError):
    """Raised when a target build fails; remaining targets are aborted."""

    stage = "building"

    def __init__(self, target: str, cause: str | BaseException) -> None:
        self.target = target
        self.cause = cause
        super().__init__(f"Build failed for target {target!r}: {cause}")


class CredentialError(ReleaseError):
    """Raised when identity federation fails. Treated as a configuration fault."""

    stage = "credential_pending"


class RolloutError(ReleaseError):
    """Raised when the cluster rejects or cannot accept a restart directive.

    ``reason`` is one of ``unauthorized``, ``not_found``, ``unavailable``,
    ``rejected`` or ``unsupported_kind``.
    """

    stage = "deploying"

    def __init__(self, message: str, *, reason: str, status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)
