"""Phasegate: phase-gated, consensus-governed delivery pipeline."""

from __future__ import annotations

__version__ = "0.1.0"
