"""Thin wrapper around subprocess for external tools (docker, cargo, ...)."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence

from tagdeploy.errors import CommandError

logger = logging.getLogger(__name__)


def run_cmd(
    args: Sequence[str],
    *,
    capture_output: bool = True,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    input: str | None = None,
) -> str:
    """Run a command and return stdout, raising ``CommandError`` on failure.

    *input* is written to the process stdin; it is never logged.
    """
    logger.debug("Running: %s", shlex.join(args))
    try:
        result = subprocess.run(
            list(args),
            check=True,
            text=True,
            capture_output=capture_output,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            input=input,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        stdout = (exc.stdout or "").strip()
        details = stderr or stdout or str(exc)
        raise CommandError(list(args), details) from exc
    except FileNotFoundError as exc:
        raise CommandError(list(args), f"executable not found: {args[0]}") from exc

    if not capture_output:
        return ""
    return result.stdout


def split_command(command: str) -> list[str]:
    """Split a configured shell-style command line into argv."""
    return shlex.split(command)
