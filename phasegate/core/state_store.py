"""Pipeline state persistence: one JSON document per project, written atomically."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from phasegate.core.atomic_io import write_text_atomic
from phasegate.models.state import PipelineState

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = Path(".phasegate/pipeline-state.json")


class StateNotFoundError(RuntimeError):
    """Raised when a run is resumed but no saved state exists."""


class StateStore:
    """Load and save the :class:`PipelineState` of one project.

    Parameters
    ----------
    project_dir:
        Project root.
    state_path:
        State file, relative to *project_dir* unless absolute.
    """

    def __init__(self, project_dir: Path, state_path: Path = DEFAULT_STATE_PATH) -> None:
        self._project_dir = Path(project_dir)
        self._path = state_path if state_path.is_absolute() else self._project_dir / state_path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> PipelineState:
        """Read the saved state.

        Raises
        ------
        StateNotFoundError
            If no state file exists, or it cannot be parsed.
        """
        if not self.exists():
            raise StateNotFoundError(f"No pipeline state at {self._path}")
        try:
            return PipelineState.model_validate_json(self._path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise StateNotFoundError(f"Pipeline state at {self._path} is unreadable: {exc}") from exc

    def save(self, state: PipelineState) -> None:
        write_text_atomic(self._path, state.model_dump_json(indent=2) + "\n")
        logger.debug("Saved pipeline state (%s) to %s", state.pipeline_phase.value, self._path)

    def __repr__(self) -> str:
        return f"StateStore(path={self._path!r})"
