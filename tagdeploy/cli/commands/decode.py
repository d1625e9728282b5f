"""``tagdeploy decode REF`` — split a tag into TARGETS and VERSION.

Prints ``TARGETS=...`` and ``VERSION=...`` lines for scripting and, with
``--export``, appends them to the GitHub step-environment file.
"""

from __future__ import annotations

import os

import typer
from rich.console import Console

from tagdeploy.config import DeployConfig
from tagdeploy.core.pipeline import write_step_environment
from tagdeploy.core.ref_decoder import decode
from tagdeploy.errors import MalformedRefError
from tagdeploy.models.run import RunContext

console = Console()


def decode_cmd(
    ctx: typer.Context,
    ref: str = typer.Argument(
        None,
        help="Tag to decode. Defaults to the tag of the current event.",
    ),
    export: bool = typer.Option(
        False,
        "--export",
        "-e",
        help="Append TARGETS/VERSION to the file named by GITHUB_ENV.",
    ),
) -> None:
    """Decode a release tag into its target(s) and version."""
    config: DeployConfig = ctx.obj
    run_context = RunContext.from_environment(os.environ)
    ref = ref or run_context.ref_name

    try:
        decoded = decode(ref, config.ref_separator)
    except MalformedRefError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    values = decoded.environment()
    if export:
        if run_context.github_env is None:
            console.print("[bold red]GITHUB_ENV is not set; nothing to export to.[/bold red]")
            raise typer.Exit(code=1)
        write_step_environment(run_context.github_env, values)

    for key, value in values.items():
        typer.echo(f"{key}={value}")
