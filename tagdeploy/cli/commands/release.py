"""``tagdeploy release [REF]`` — build, push and roll out one tag.

Runs the release pipeline: decode the tag, build every target image and
push it tagged with the version, mint a federated cluster credential and
restart the configured workload. Exits non-zero on any stage failure.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

import typer
from rich.console import Console

from tagdeploy.config import DeployConfig
from tagdeploy.core.pipeline import ReleasePipeline
from tagdeploy.errors import ReleaseError
from tagdeploy.models.run import RunContext
from tagdeploy.monitor.renderer import OutcomeRenderer

console = Console()


def execute_release(
    config: DeployConfig, run_context: RunContext, environ: Mapping[str, str]
) -> None:
    """Run the release pipeline and render its outcome; exit 1 on failure."""
    pipeline = ReleasePipeline.from_config(config, run_context, environ=environ)
    renderer = OutcomeRenderer(console=console)

    try:
        pipeline.run(run_context)
    except ReleaseError as exc:
        renderer.print_release(pipeline.outcome())
        console.print(f"[bold red]Release failed ({exc.stage}):[/bold red] {exc}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        renderer.print_release(pipeline.outcome())
        console.print("[bold red]Release cancelled.[/bold red]")
        raise typer.Exit(code=130)
    except Exception as exc:
        outcome = pipeline.outcome()
        renderer.print_release(outcome)
        stage = outcome.failed_stage or "unknown"
        console.print(f"[bold red]Release failed ({stage}):[/bold red] {exc}")
        raise typer.Exit(code=1)

    renderer.print_release(pipeline.outcome())


def release_cmd(
    ctx: typer.Context,
    ref: str = typer.Argument(
        None,
        help="Tag to release, e.g. 'seitai/2.4.0'. Defaults to the pushed tag.",
    ),
) -> None:
    """Release a tag: build and push images, then restart the workload."""
    run_context = RunContext.from_environment(os.environ)

    if ref:
        run_context = run_context.with_tag(ref)
    elif run_context.ref_type != "tag":
        console.print(
            "[bold red]No tag given and the current event is not a tag push.[/bold red]"
        )
        raise typer.Exit(code=1)

    execute_release(ctx.obj, run_context, os.environ)
