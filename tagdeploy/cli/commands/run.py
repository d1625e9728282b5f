"""``tagdeploy run`` — pick the pipeline from the triggering event.

Tag push -> release pipeline. Push to the mainline branch or a pull
request -> branch pipeline. Anything else is a no-op.
"""

from __future__ import annotations

import os

import typer
from rich.console import Console

from tagdeploy.cli.commands.check import execute_check
from tagdeploy.cli.commands.release import execute_release
from tagdeploy.config import DeployConfig
from tagdeploy.models.run import RunContext, Trigger

console = Console()


def run_cmd(ctx: typer.Context) -> None:
    """Run whichever pipeline the current event triggers."""
    config: DeployConfig = ctx.obj
    run_context = RunContext.from_environment(os.environ)
    trigger = run_context.trigger(config.mainline_branch)

    if trigger == Trigger.RELEASE:
        execute_release(config, run_context, os.environ)
    elif trigger == Trigger.BRANCH:
        execute_check(config, run_context, os.environ)
    else:
        console.print(
            f"[dim]Event {run_context.event_name} on {run_context.ref or '(no ref)'} "
            "triggers no pipeline.[/dim]"
        )
        raise typer.Exit(code=0)
