"""``phasegate snapshot PROJECT_DIR`` -- show what the pipeline sees in a project."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from phasegate.config import config
from phasegate.core.command_resolver import detect_project_type, resolve_commands
from phasegate.core.repo_snapshot import SnapshotGenerator

console = Console()


def snapshot_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory to snapshot.",
    ),
    tree: bool = typer.Option(False, "--tree", help="Also print the directory tree."),
) -> None:
    """Print the repo snapshot summary and the resolved commands."""
    snapshot = SnapshotGenerator().generate(project_dir)
    commands = resolve_commands(snapshot, config.command_overrides())

    console.print(
        Panel(
            "\n".join([
                f"[bold]Project type:[/bold]    {detect_project_type(snapshot).value}",
                f"[bold]Languages:[/bold]       {', '.join(snapshot.languages_detected) or '-'}",
                f"[bold]Package manager:[/bold] {snapshot.package_manager or '-'}",
                f"[bold]Test framework:[/bold]  {snapshot.test_framework or '-'}",
                f"[bold]Build tool:[/bold]      {snapshot.build_tool or '-'}",
                f"[bold]Files / lines:[/bold]   {snapshot.total_files} / {snapshot.total_lines}",
                f"[bold]Config files:[/bold]    {len(snapshot.config_files)}",
                f"[bold]Env files:[/bold]       {', '.join(snapshot.env_files) or '-'}",
                f"[bold]Migrations:[/bold]      {'yes' if snapshot.migrations_present else 'no'}",
            ]),
            title=f"[bold]Snapshot {snapshot.snapshot_id}[/bold]",
            border_style="cyan",
            padding=(1, 2),
        )
    )

    table = Table(title=f"Resolved Commands (from {commands.resolved_from})")
    table.add_column("Check", style="cyan")
    table.add_column("Command")
    for name in ("build", "test", "lint", "typecheck", "migrations", "start"):
        command = getattr(commands, name)
        table.add_row(name, command or "[dim]-[/dim]")
    console.print(table)

    if tree and snapshot.tree_summary:
        console.print(snapshot.tree_summary)
