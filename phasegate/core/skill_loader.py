"""Skill loader: built-in role skills merged with per-project markdown overrides.

An override lives at ``<skills_dir>/<ROLE>.md``. It may open with a simple
``---`` delimited header carrying ``version``, ``required_outputs`` and
``constraints``; the body below the header becomes the system prompt.
Without a header the whole file is the system prompt.

Example
-------
::

    ---
    version: 2.0
    constraints:
      - no_orm
      - raw_sql_only
    ---
    You are the DB Expert for a latency-sensitive service...
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Iterable

from phasegate.models.phases import PipelineRole
from phasegate.models.skills import SkillDefinition
from phasegate.skills.defaults import get_default_skill

logger = logging.getLogger(__name__)

_HEADER = re.compile(r"\A---\n(.*?)\n---(?:\n(.*))?\Z", re.DOTALL)
_KEY_VALUE = re.compile(r"^(\w+):\s*(.*)$")
_LIST_ITEM = re.compile(r"^\s+-\s+(.*)$")

_SCALAR_FIELDS = frozenset({"version"})
_LIST_FIELDS = frozenset({"required_outputs", "constraints"})


# ---------------------------------------------------------------------------
# Markdown parsing
# ---------------------------------------------------------------------------

def _body_only_override(text: str) -> dict[str, Any]:
    """A document with no header replaces the system prompt and nothing else."""
    body = text.strip()
    return {"system_prompt": body} if body else {}


def _parse_header(header: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    key = ""
    items: list[str] = []

    def flush() -> None:
        if key in _LIST_FIELDS and items:
            fields[key] = list(items)

    for line in header.splitlines():
        kv = _KEY_VALUE.match(line)
        if kv:
            flush()
            key, value = kv.group(1), kv.group(2).strip()
            items = []
            if value:
                if key in _SCALAR_FIELDS:
                    fields[key] = value
                key = ""
            continue
        item = _LIST_ITEM.match(line)
        if item and key:
            items.append(item.group(1).strip())
    flush()
    return fields


def parse_skill_markdown(text: str) -> dict[str, Any]:
    """Parse an override document into the fields it sets.

    Pass one separates the header from the body; pass two reads
    ``key: value`` and ``  - item`` lines from the header. Unknown keys are
    ignored, and so is ``role``: the file name decides the role.
    """
    match = _HEADER.match(text.replace("\r\n", "\n"))
    if match is None:
        return _body_only_override(text)

    fields = _parse_header(match.group(1))
    body = (match.group(2) or "").strip()
    if body:
        fields["system_prompt"] = body
    return fields


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class SkillLoader:
    """Resolve skills for roles, caching each for the life of the loader.

    Parameters
    ----------
    skills_dir:
        Directory holding ``<ROLE>.md`` overrides, or None for defaults only.
    """

    def __init__(self, skills_dir: Path | None = None) -> None:
        self._skills_dir = Path(skills_dir) if skills_dir is not None else None
        self._cache: dict[PipelineRole, SkillDefinition] = {}

    def load_skill(self, role: PipelineRole) -> SkillDefinition:
        cached = self._cache.get(role)
        if cached is not None:
            return cached

        skill = get_default_skill(role)
        override = self._load_override(role)
        if override:
            skill = skill.model_copy(update=override)
            logger.debug("Applied skill override for %s: %s", role.value, sorted(override))
        self._cache[role] = skill
        return skill

    def load_all_skills(self, roles: Iterable[PipelineRole]) -> dict[PipelineRole, SkillDefinition]:
        return {role: self.load_skill(role) for role in roles}

    def clear_cache(self) -> None:
        self._cache.clear()

    def list_available_overrides(self) -> list[str]:
        if self._skills_dir is None or not self._skills_dir.is_dir():
            return []
        return sorted(p.stem for p in self._skills_dir.glob("*.md"))

    def _load_override(self, role: PipelineRole) -> dict[str, Any]:
        if self._skills_dir is None:
            return {}
        path = self._skills_dir / f"{role.value}.md"
        if not path.is_file():
            return {}
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable skill override %s: %s", path, exc)
            return {}
        return parse_skill_markdown(text)

    def __repr__(self) -> str:
        return f"SkillLoader(skills_dir={self._skills_dir!r}, cached={len(self._cache)})"


def create_skill_loader(project_dir: Path | None = None, skills_dir: Path = Path("skills")) -> SkillLoader:
    if project_dir is None:
        return SkillLoader(None)
    resolved = skills_dir if skills_dir.is_absolute() else Path(project_dir) / skills_dir
    return SkillLoader(resolved)
