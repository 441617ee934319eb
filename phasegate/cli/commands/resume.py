"""``phasegate resume PROJECT_DIR`` -- continue a saved run."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from phasegate.cli.commands.run import print_progress, print_result
from phasegate.config import config
from phasegate.core.collaborators import CollaboratorLoadError, load_collaborators
from phasegate.core.orchestrator import resume_pipeline
from phasegate.core.state_store import StateNotFoundError

console = Console()


def resume_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory with a saved pipeline state.",
    ),
) -> None:
    """Resume the pipeline from its saved phase.

    A project that only has a legacy workflow state is migrated first.
    """
    try:
        collaborators = load_collaborators(config.collaborators)
        result = resume_pipeline(
            project_dir,
            collaborators=collaborators,
            settings=config,
            on_progress=print_progress,
        )
    except (StateNotFoundError, CollaboratorLoadError) as exc:
        console.print(f"[bold red]Cannot resume:[/bold red] {exc}")
        raise typer.Exit(code=1)

    print_result(result)
    if not result.success:
        raise typer.Exit(code=1)
