"""Build dispatcher — fans a release out into one pushed image per target.

Before a pushing build the backend logs in to the registry with the run's
token. The whole matrix is then handed to the build backend as a single
batch; the backend parallelizes internally. Each target reads and writes
its own layer cache scope (``cache-<target>``) so sibling targets and unrelated
branches never share cache entries. The branch pipeline's sanity build
uses one shared, scope-less cache because it never pushes.

Failure policy is fail-fast: the first failing target aborts the batch.
Images that were already pushed stay in the registry.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from tagdeploy.core.commands import run_cmd
from tagdeploy.errors import BuildError, CommandError
from tagdeploy.models.release import BuildJob, ImageReference, RegistryAuth

logger = logging.getLogger(__name__)

_SHARED_CACHE_FROM = "type=gha"
_SHARED_CACHE_TO = "type=gha,mode=max"
_FAILED_TARGET_RE = re.compile(r"target ([A-Za-z0-9_.-]+):")


def cache_scope(target: str) -> str:
    """Cache scope key for one target."""
    return f"cache-{target}"


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class BuildBackend(Protocol):
    """Protocol for image build backends.

    ``bake`` builds every target in one batch and returns a mapping of
    target to pushed image digest (empty string when not pushed). It raises
    ``BuildError`` naming the failing target, or ``CommandError`` when the
    failing target cannot be determined. ``login`` authenticates the
    backend against a registry before a pushing build.
    """

    def login(self, auth: RegistryAuth) -> None:
        ...

    def bake(
        self,
        targets: Sequence[str],
        *,
        overrides: Sequence[str],
        push: bool,
        variables: Mapping[str, str],
    ) -> dict[str, str]:
        ...


class BakeBackend:
    """``docker buildx bake`` backend.

    Parameters
    ----------
    bake_file:
        Optional bake definition; buildx falls back to its default lookup.
    builder:
        Optional buildx builder instance name.
    environ:
        Base process environment for docker (PATH, HOME, DOCKER_CONFIG).
        The entry point passes its own environment; bake variables are
        layered on top.
    """

    def __init__(
        self,
        bake_file: Path | None = None,
        builder: str | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._bake_file = bake_file
        self._builder = builder
        self._environ = dict(environ or {})

    def login(self, auth: RegistryAuth) -> None:
        """``docker login`` with the token on stdin."""
        run_cmd(
            ["docker", "login", auth.registry, "--username", auth.username, "--password-stdin"],
            capture_output=True,
            env=self._environ,
            input=auth.password.get_secret_value(),
        )

    def bake(
        self,
        targets: Sequence[str],
        *,
        overrides: Sequence[str],
        push: bool,
        variables: Mapping[str, str],
    ) -> dict[str, str]:
        with tempfile.TemporaryDirectory(prefix="tagdeploy-bake-") as tmp:
            metadata_path = Path(tmp) / "metadata.json"
            command = ["docker", "buildx", "bake"]
            if self._builder:
                command.extend(["--builder", self._builder])
            if self._bake_file:
                command.extend(["--file", str(self._bake_file)])
            command.extend(["--metadata-file", str(metadata_path)])
            if push:
                command.append("--push")
            for override in overrides:
                command.extend(["--set", override])
            command.extend(targets)

            # bake reads its variables from the environment
            env = {**self._environ, **variables}
            try:
                run_cmd(command, capture_output=True, env=env)
            except CommandError as exc:
                metadata = _read_metadata(metadata_path)
                failed = _failed_target(exc.details, targets, metadata)
                if failed is None:
                    raise
                raise BuildError(failed, exc.details) from exc

            metadata = _read_metadata(metadata_path)

        return {
            target: str(metadata.get(target, {}).get("containerimage.digest", ""))
            for target in (targets or metadata.keys())
            if not target.startswith("buildx.")
        }


def _read_metadata(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("Unreadable bake metadata file %s", path)
        return {}


def _failed_target(details: str, targets: Sequence[str], metadata: Mapping) -> str | None:
    match = _FAILED_TARGET_RE.search(details)
    if match and match.group(1) in targets:
        return match.group(1)
    # No metadata naming a target means nothing can be attributed.
    if not any(target in metadata for target in targets):
        return None
    for target in targets:
        if target not in metadata:
            return target
    return None


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class BuildDispatcher:
    """Plans and dispatches release and sanity builds.

    Parameters
    ----------
    backend:
        The build backend that executes the batch.
    image_namespace:
        Registry host and account, e.g. ``ghcr.io/hexium310``.
    registry_auth:
        Credentials used to log in before a pushing build. Without them the
        push relies on whatever docker credentials are already configured.
    """

    def __init__(
        self,
        backend: BuildBackend,
        image_namespace: str,
        *,
        registry_auth: RegistryAuth | None = None,
    ) -> None:
        self._backend = backend
        self._image_namespace = image_namespace.rstrip("/")
        self._registry_auth = registry_auth

    def plan(self, targets: Iterable[str], version: str) -> BuildJob:
        """Build the ``BuildJob`` for *targets*, one cache scope each."""
        ordered = tuple(dict.fromkeys(targets))
        return BuildJob(
            targets=ordered,
            version=version,
            cache_scopes={t: cache_scope(t) for t in ordered},
        )

    def overrides(self, job: BuildJob) -> list[str]:
        """Per-target ``--set`` overrides: cache scopes and the version tag."""
        result: list[str] = []
        for target in job.targets:
            result.append(f"{target}.cache-from={job.cache_from(target)}")
            result.append(f"{target}.cache-to={job.cache_to(target)}")
            result.append(f"{target}.tags={self.repository(target)}:{job.version}")
        return result

    def repository(self, target: str) -> str:
        return f"{self._image_namespace}/{target}"

    def build(self, targets: Iterable[str], version: str) -> dict[str, ImageReference]:
        """Build and push every target tagged with *version*.

        Returns a mapping of target to ``ImageReference``. Raises
        ``BuildError`` on the first failing target.
        """
        job = self.plan(targets, version)
        if not job.targets:
            raise BuildError("", "no targets to build")

        logger.info(
            "Building %d target(s) %s at version %s",
            len(job.targets),
            ", ".join(job.targets),
            version,
        )

        if job.push:
            self._login(job)

        try:
            digests = self._backend.bake(
                job.targets,
                overrides=self.overrides(job),
                push=job.push,
                variables={"VERSION": version, "TARGETS": ",".join(job.targets)},
            )
        except BuildError as exc:
            logger.error("Build failed for target %s: %s", exc.target, exc.cause)
            raise
        except CommandError as exc:
            logger.error("Build batch failed: %s", exc.details)
            raise BuildError(",".join(job.targets), exc) from exc

        images: dict[str, ImageReference] = {}
        for target in job.targets:
            if target not in digests:
                raise BuildError(target, "backend reported no pushed image")
            image = ImageReference(
                target=target,
                repository=self.repository(target),
                tag=version,
                digest=digests[target],
            )
            logger.info("Pushed %s %s", image.ref, image.digest or "(digest unknown)")
            images[target] = image
        return images

    def _login(self, job: BuildJob) -> None:
        auth = self._registry_auth
        if auth is None:
            logger.warning("No registry token; pushing with existing docker credentials")
            return
        logger.info("Logging in to %s as %s", auth.registry, auth.username)
        try:
            self._backend.login(auth)
        except CommandError as exc:
            logger.error("Registry login to %s failed: %s", auth.registry, exc.details)
            raise BuildError(
                ",".join(job.targets), f"registry login to {auth.registry} failed: {exc.details}"
            ) from exc

    def sanity_build(self) -> dict[str, str]:
        """Build the default bake group without pushing, on the shared cache."""
        logger.info("Running sanity build (no push, shared cache)")
        try:
            return self._backend.bake(
                [],
                overrides=[
                    f"*.cache-from={_SHARED_CACHE_FROM}",
                    f"*.cache-to={_SHARED_CACHE_TO}",
                ],
                push=False,
                variables={},
            )
        except CommandError as exc:
            raise BuildError("*", exc) from exc
