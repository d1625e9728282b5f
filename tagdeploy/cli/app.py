"""Main Typer application — imports and registers all CLI commands.

Entry point: ``tagdeploy`` (configured via pyproject.toml scripts).

Commands: decode, release, check, run, version.
"""

from __future__ import annotations

import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from tagdeploy.cli.commands.check import check_cmd
from tagdeploy.cli.commands.decode import decode_cmd
from tagdeploy.cli.commands.release import release_cmd
from tagdeploy.cli.commands.run import run_cmd
from tagdeploy.config import DeployConfig

app = typer.Typer(
    name="tagdeploy",
    help="tagdeploy: tag-driven image build and Kubernetes rollout.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to TAGDEPLOY_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Load the deploy config and configure logging once for every subcommand."""
    try:
        config = DeployConfig()
    except ValidationError as exc:
        Console(stderr=True).print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        raise typer.Exit(code=1)
    ctx.obj = config

    level = (log_level or config.log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="decode", help="Decode a tag into TARGETS and VERSION.")(decode_cmd)
app.command(name="release", help="Build, push and roll out a tag.")(release_cmd)
app.command(name="check", help="Run tests and a sanity build (branch pipeline).")(check_cmd)
app.command(name="run", help="Run the pipeline the current event triggers.")(run_cmd)


@app.command(name="version", help="Show the tagdeploy version.")
def version_cmd() -> None:
    """Print the installed tagdeploy version."""
    from tagdeploy import __version__

    typer.echo(f"tagdeploy {__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
