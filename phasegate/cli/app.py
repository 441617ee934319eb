"""Main Typer application: imports and registers all CLI commands.

Entry point: ``phasegate`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from phasegate.cli.commands.check import check_cmd
from phasegate.cli.commands.reset import reset_cmd
from phasegate.cli.commands.resume import resume_cmd
from phasegate.cli.commands.run import run_cmd
from phasegate.cli.commands.snapshot import snapshot_cmd
from phasegate.cli.commands.status import status_cmd
from phasegate.cli.commands.verify import verify_cmd
from phasegate.config import config

app = typer.Typer(
    name="phasegate",
    help="Phasegate: phase-gated, consensus-governed delivery pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging once for every subcommand."""
    logging.basicConfig(
        level="DEBUG" if verbose or config.debug else config.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


# Register subcommands
app.command(name="run", help="Start a new pipeline run.")(run_cmd)
app.command(name="resume", help="Resume a saved pipeline run.")(resume_cmd)
app.command(name="status", help="Show the saved pipeline state.")(status_cmd)
app.command(name="verify", help="Verify artifact and constitution integrity.")(verify_cmd)
app.command(name="snapshot", help="Show the repo snapshot and resolved commands.")(snapshot_cmd)
app.command(name="check", help="Run a single gate check.")(check_cmd)
app.command(name="reset", help="Move a run to another phase (leaves STUCK).")(reset_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
