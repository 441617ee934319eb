"""``phasegate reset PROJECT_DIR --to PHASE`` -- manual intervention.

The only way out of STUCK. Clears the recovery budget and the recorded
failure, then records the move in the transition history.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from phasegate.config import config
from phasegate.core.orchestrator import Orchestrator
from phasegate.core.phase_machine import InvalidTransitionError
from phasegate.core.state_store import StateNotFoundError
from phasegate.models.phases import PipelinePhase

console = Console()


def reset_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory with a saved pipeline state.",
    ),
    to_phase: PipelinePhase = typer.Option(
        ...,
        "--to",
        help="Phase to resume from.",
    ),
    reason: str = typer.Option("manual reset", "--reason", help="Recorded in the history."),
) -> None:
    """Move a run to *to_phase*, e.g. out of STUCK after fixing the cause."""
    orchestrator = Orchestrator(project_dir, settings=config)
    try:
        before = orchestrator.resume().pipeline_phase
        orchestrator.reset(to_phase, reason)
    except (StateNotFoundError, InvalidTransitionError) as exc:
        console.print(f"[bold red]Reset failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(
        f"[green]Reset[/green] {before.value} -> [bold]{to_phase.value}[/bold]. "
        "Run [bold]phasegate resume[/bold] to continue."
    )
