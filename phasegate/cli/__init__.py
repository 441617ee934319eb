"""Phasegate CLI: Typer-based command-line interface.

Provides the ``phasegate`` command with subcommands for running and resuming
pipelines, inspecting state, verifying artifact integrity, snapshotting a
project, running a single check, and resetting a stuck run.

All output uses Rich for formatted terminal display.
"""
