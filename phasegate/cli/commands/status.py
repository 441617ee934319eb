"""``phasegate status PROJECT_DIR`` -- show the saved pipeline state."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from phasegate.config import config
from phasegate.core.migration import to_legacy_phase
from phasegate.core.state_store import StateNotFoundError, StateStore
from phasegate.models.packets import ChangeRequestStatus

console = Console()

RECENT_TRANSITIONS = 10


def status_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory with a saved pipeline state.",
    ),
) -> None:
    """Show the current phase, budgets, roles and recent transitions."""
    try:
        state = StateStore(project_dir, config.state_path).load()
    except StateNotFoundError as exc:
        console.print(f"[bold red]No pipeline state:[/bold red] {exc}")
        raise typer.Exit(code=1)

    summary = Table(title="Pipeline Status", show_header=False)
    summary.add_column("Field", style="bold")
    summary.add_column("Value")
    summary.add_row("Phase", f"[cyan]{state.pipeline_phase.value}[/cyan]")
    summary.add_row("Legacy phase", to_legacy_phase(state.pipeline_phase).value)
    summary.add_row(
        "Recovery", f"{state.recovery_count} / {state.max_recovery_iterations}"
    )
    summary.add_row("Artifacts", str(len(state.artifacts)))
    summary.add_row("Active roles", ", ".join(r.value for r in state.active_roles) or "-")
    pending = [
        p for p in state.pending_change_requests if p.status == ChangeRequestStatus.PROPOSED
    ]
    summary.add_row("Pending change requests", str(len(pending)))
    if state.last_failure_reason:
        summary.add_row("Last failure", f"[red]{state.last_failure_reason}[/red]")
    console.print(summary)

    if state.history:
        history = Table(title="Recent Transitions")
        history.add_column("From", style="cyan")
        history.add_column("To", style="green")
        history.add_column("Reason")
        history.add_column("At", style="dim")
        for record in state.history[-RECENT_TRANSITIONS:]:
            history.add_row(
                record.from_phase.value,
                record.to_phase.value,
                record.reason,
                record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(history)
