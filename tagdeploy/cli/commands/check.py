"""``tagdeploy check`` — branch pipeline: tests and a sanity build in parallel."""

from __future__ import annotations

import os
from collections.abc import Mapping

import typer
from rich.console import Console

from tagdeploy.config import DeployConfig
from tagdeploy.core.pipeline import BranchPipeline
from tagdeploy.models.run import RunContext
from tagdeploy.models.states import BranchState
from tagdeploy.monitor.renderer import OutcomeRenderer

console = Console()


def execute_check(
    config: DeployConfig, run_context: RunContext, environ: Mapping[str, str]
) -> None:
    pipeline = BranchPipeline.from_config(config, environ=environ)
    outcome = pipeline.run(run_context)
    OutcomeRenderer(console=console).print_branch(outcome)
    if outcome.state != BranchState.DONE:
        raise typer.Exit(code=1)


def check_cmd(ctx: typer.Context) -> None:
    """Run the test commands and a no-push image build concurrently."""
    execute_check(ctx.obj, RunContext.from_environment(os.environ), os.environ)
