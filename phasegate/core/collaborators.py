"""External collaborators the pipeline consumes but does not implement.

An :class:`Author` writes AI content (plans, audits, RCAs, release notes);
reviewer providers vote in consensus phases. Both are supplied by the host
application, usually through a ``module:callable`` entry point named in
``PHASEGATE_COLLABORATORS``::

    # myproject/ai.py
    def build_collaborators() -> Collaborators:
        return Collaborators(
            author=ClaudeAuthor(),
            reviewers=ProviderRegistry([OpenAIReviewer(), GeminiReviewer()]),
        )
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from phasegate.core.consensus import ProviderRegistry, Reviser
from phasegate.models.phases import PipelinePhase, PipelineRole

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelinePhase, str], None]


class CollaboratorLoadError(RuntimeError):
    """Raised when a collaborator entry point cannot be imported or called."""


@runtime_checkable
class Author(Protocol):
    """Produces text for a role given a fully built prompt."""

    def compose(self, role: PipelineRole, prompt: str) -> str: ...


@dataclass
class Collaborators:
    author: Author | None = None
    reviewers: ProviderRegistry = field(default_factory=ProviderRegistry)
    reviser: Reviser | None = None
    on_progress: ProgressCallback | None = None


def load_collaborators(entry_point: str) -> Collaborators:
    """Import ``module:callable`` and call it for a :class:`Collaborators` bundle.

    An empty entry point yields an empty bundle: deterministic phases still
    run, AI-authored phases fail their gates.
    """
    if not entry_point:
        logger.warning("No collaborators configured; AI-authored phases will fail")
        return Collaborators()

    module_name, sep, attr = entry_point.partition(":")
    if not sep or not module_name or not attr:
        raise CollaboratorLoadError(
            f"Invalid collaborators entry point {entry_point!r}; expected 'module:callable'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CollaboratorLoadError(f"Cannot import {module_name!r}: {exc}") from exc

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise CollaboratorLoadError(f"{entry_point!r} is not a callable")

    try:
        bundle = factory()
    except Exception as exc:
        raise CollaboratorLoadError(f"{entry_point!r} raised: {exc}") from exc

    if not isinstance(bundle, Collaborators):
        raise CollaboratorLoadError(
            f"{entry_point!r} returned {type(bundle).__name__}, expected Collaborators"
        )
    if bundle.author is not None and not isinstance(bundle.author, Author):
        raise CollaboratorLoadError("Collaborators.author does not implement compose()")
    logger.info(
        "Loaded collaborators from %s (author=%s, reviewers=%s)",
        entry_point,
        type(bundle.author).__name__ if bundle.author else None,
        bundle.reviewers.names(),
    )
    return bundle
