"""Phasegate CLI subcommands."""
