"""``phasegate verify PROJECT_DIR`` -- re-hash every artifact and the constitution."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from phasegate.config import config
from phasegate.core.artifact_store import ArtifactStore
from phasegate.core.constitution import verify_constitution
from phasegate.core.state_store import StateStore

console = Console()


def verify_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory to verify.",
    ),
) -> None:
    """Verify artifact hashes and the constitution. Exits 1 on any failure."""
    store = ArtifactStore(project_dir, config.docs_dir)
    entries = store.list_artifacts()

    table = Table(title=f"Artifact Integrity ({len(entries)} artifacts)")
    table.add_column("Type", style="cyan")
    table.add_column("Version", justify="right")
    table.add_column("Path")
    table.add_column("Status", justify="center")

    failures = 0
    for entry in entries:
        ok = store.verify(entry)
        failures += 0 if ok else 1
        table.add_row(
            entry.type.value,
            f"v{entry.version}",
            entry.path,
            "[green]OK[/green]" if ok else "[bold red]TAMPERED[/bold red]",
        )
    console.print(table)

    state_store = StateStore(project_dir, config.state_path)
    if state_store.exists():
        check = verify_constitution(state_store.load(), project_dir, config.skills_dir)
        if check.valid:
            console.print("[green]Constitution:[/green] unchanged since intake")
        else:
            failures += 1
            console.print(f"[bold red]Constitution:[/bold red] {check.reason}")
    else:
        console.print("[dim]No pipeline state; constitution not checked.[/dim]")

    if failures:
        console.print(f"[bold red]{failures} integrity failure(s)[/bold red]")
        raise typer.Exit(code=1)
    console.print("[bold green]All integrity checks passed.[/bold green]")
