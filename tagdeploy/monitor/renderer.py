"""Rich terminal renderer for pipeline outcomes.

Color scheme
------------
- green     : done
- red       : failed
- yellow    : in-progress states
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tagdeploy.core.pipeline import BranchOutcome, ReleaseOutcome
from tagdeploy.models.states import StateTransition

_STATE_STYLES: dict[str, str] = {
    "done": "bold green",
    "failed": "bold red",
    "idle": "dim",
}


def _style(state: str) -> str:
    return _STATE_STYLES.get(state, "yellow")


class OutcomeRenderer:
    """Renders release and branch outcomes as Rich panels.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def _trail_table(self, trail: list[StateTransition]) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("From", min_width=18)
        table.add_column("To", min_width=18)
        table.add_column("Detail", min_width=20)
        table.add_column("At", style="dim", width=10)

        for i, step in enumerate(trail):
            style = _style(step.to_state)
            table.add_row(
                str(i),
                step.from_state,
                f"[{style}]{step.to_state}[/{style}]",
                step.detail or "[dim]-[/dim]",
                step.at.strftime("%H:%M:%S"),
            )
        return table

    def render_release(self, outcome: ReleaseOutcome) -> Panel:
        lines: list[str] = [f"[bold]Run:[/bold] {outcome.run_id}"]
        if outcome.decoded:
            lines.append(
                f"[bold]Targets:[/bold] {', '.join(outcome.decoded.targets)}  |  "
                f"[bold]Version:[/bold] {outcome.decoded.version}"
            )
        for image in outcome.images.values():
            digest = f" [dim]{image.digest}[/dim]" if image.digest else ""
            lines.append(f"[bold]Image:[/bold] {image.ref}{digest}")
        if outcome.rollout:
            req = outcome.rollout.request
            lines.append(
                f"[bold]Rollout:[/bold] {req.workload_kind}/{req.workload_name} "
                f"in {req.namespace} accepted at {outcome.rollout.restarted_at}"
            )
        if outcome.failed_stage:
            lines.append(
                f"[bold red]Failed during {outcome.failed_stage}:[/bold red] {outcome.error}"
            )

        style = _style(outcome.state.value)
        return Panel(
            Group(self._trail_table(outcome.trail), Text(""), Text.from_markup("\n".join(lines))),
            title=f"[bold]Release[/bold] [{style}]{outcome.state.value}[/{style}]",
            border_style="green" if outcome.state.value == "done" else "red",
            padding=(1, 2),
        )

    def render_branch(self, outcome: BranchOutcome) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Job", min_width=10)
        table.add_column("Result", justify="center", min_width=8)
        table.add_column("Error")
        for job in outcome.jobs.values():
            result = "[green]passed[/green]" if job.passed else "[bold red]failed[/bold red]"
            table.add_row(job.name, result, job.error or "[dim]-[/dim]")

        style = _style(outcome.state.value)
        return Panel(
            table,
            title=f"[bold]Branch checks[/bold] [{style}]{outcome.state.value}[/{style}]",
            subtitle=f"Run {outcome.run_id}",
            border_style="green" if outcome.state.value == "done" else "red",
            padding=(1, 2),
        )

    def print_release(self, outcome: ReleaseOutcome) -> None:
        self.console.print(self.render_release(outcome))

    def print_branch(self, outcome: BranchOutcome) -> None:
        self.console.print(self.render_branch(outcome))
