"""Versioned, content-hashed artifact store under the project ``docs/`` tree.

Storage layout::

    docs/<subdir>/<type>_<sid>_v<version>_<date>.<md|json>   content
    docs/.artifacts/<id>.json                                manifest entry
    docs/INDEX.md                                            human index

Content and manifest are both written atomically before an entry is handed
to any caller. There is no update or delete: a new version is a new file.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from phasegate.core.atomic_io import write_bytes_atomic, write_text_atomic
from phasegate.core.hasher import sha256_hex
from phasegate.models.artifacts import ArtifactEntry, ArtifactRef, ArtifactType, ContentType
from phasegate.models.phases import PipelinePhase

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Artifact type -> subdirectory under docs/
ARTIFACT_DIRS: dict[ArtifactType, str] = {
    ArtifactType.MASTER_PLAN: "master-plan",
    ArtifactType.ARCHITECTURE: "architecture",
    ArtifactType.ROLE_PLAN: "role-plans",
    ArtifactType.CONSENSUS: "consensus",
    ArtifactType.ARBITRATION: "arbitration",
    ArtifactType.AUDIT_REPORT: "audit",
    ArtifactType.RCA_REPORT: "incidents",
    ArtifactType.PRODUCTION_READINESS: "production",
    ArtifactType.RELEASE_NOTES: "release",
    ArtifactType.DEPLOYMENT: "release",
    ArtifactType.ROLLBACK: "release",
    ArtifactType.REPO_SNAPSHOT: "snapshots",
    ArtifactType.BUILD_CHECK: "checks",
    ArtifactType.TEST_CHECK: "checks",
    ArtifactType.LINT_CHECK: "checks",
    ArtifactType.TYPECHECK_CHECK: "checks",
    ArtifactType.MIGRATION_CHECK: "checks",
    ArtifactType.PLACEHOLDER_SCAN: "checks",
    ArtifactType.START_CHECK: "checks",
    ArtifactType.ENV_CHECK: "checks",
    ArtifactType.QA_VALIDATION: "role-plans",
    ArtifactType.REVIEW_DECISION: "consensus",
    ArtifactType.STUCK_REPORT: "incidents",
    ArtifactType.JOURNALIST_TRACE: "journal",
    ArtifactType.RESOLVED_COMMANDS: "checks",
    ArtifactType.CONSTITUTION: "governance",
    ArtifactType.CHANGE_REQUEST: "governance",
}

DOCS_SUBDIRS: list[str] = sorted(set(ARTIFACT_DIRS.values()))

MANIFEST_DIR = ".artifacts"


class IntegrityError(RuntimeError):
    """Raised when stored bytes no longer match the recorded SHA-256."""


class ArtifactStore:
    """Immutable, versioned artifact store rooted at a project directory.

    Parameters
    ----------
    project_dir:
        Project root. Entry paths are recorded relative to it.
    docs_dir:
        Documentation directory, relative to *project_dir* unless absolute.
    """

    def __init__(self, project_dir: Path, docs_dir: Path = Path("docs")) -> None:
        self._project_dir = Path(project_dir)
        docs = Path(docs_dir)
        self._docs_dir = docs if docs.is_absolute() else self._project_dir / docs
        self._manifest_dir = self._docs_dir / MANIFEST_DIR

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def docs_dir(self) -> Path:
        return self._docs_dir

    def ensure_docs_structure(self) -> None:
        for subdir in DOCS_SUBDIRS:
            (self._docs_dir / subdir).mkdir(parents=True, exist_ok=True)
        self._manifest_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(
        self,
        artifact_type: ArtifactType,
        content: str,
        phase: PipelinePhase,
        *,
        group_id: str | None = None,
        content_type: ContentType = ContentType.MARKDOWN,
    ) -> ArtifactEntry:
        """Persist *content* and return its manifest entry.

        Parameters
        ----------
        artifact_type:
            Type tag of the artifact.
        content:
            Raw text content. It is hashed exactly as written (UTF-8).
        phase:
            Phase that produced the artifact.
        group_id:
            Logical identity. Versions increase within a group. Defaults to
            the artifact type, so e.g. every master plan is a new version of
            the same logical master plan.
        content_type:
            Markdown or JSON; selects the file extension.
        """
        self.ensure_docs_structure()

        group = group_id or artifact_type.value
        siblings = [e for e in self.list_artifacts(artifact_type) if e.group_id == group]
        previous = max(siblings, key=lambda e: e.version) if siblings else None
        version = previous.version + 1 if previous else 1

        data = content.encode("utf-8")
        digest = sha256_hex(data)
        artifact_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        ext = ".json" if content_type == ContentType.JSON else ".md"
        filename = (
            f"{artifact_type.value}_{artifact_id.split('-')[0]}"
            f"_v{version}_{now.strftime('%Y-%m-%d')}{ext}"
        )
        subdir = ARTIFACT_DIRS.get(artifact_type, "misc")
        file_path = self._docs_dir / subdir / filename

        write_bytes_atomic(file_path, data)

        entry = ArtifactEntry(
            id=artifact_id,
            type=artifact_type,
            phase=phase,
            version=version,
            path=file_path.relative_to(self._project_dir).as_posix(),
            sha256=digest,
            timestamp=now,
            content_type=content_type,
            group_id=group,
            previous_id=previous.id if previous else None,
        )
        write_text_atomic(
            self._manifest_dir / f"{artifact_id}.json",
            entry.model_dump_json(indent=2),
        )
        logger.debug(
            "Stored %s v%d (%s) sha256=%s", artifact_type.value, version, group, digest[:12]
        )
        return entry

    def store_structured(
        self,
        artifact_type: ArtifactType,
        value: BaseModel | dict[str, Any] | list[Any],
        phase: PipelinePhase,
        *,
        group_id: str | None = None,
    ) -> ArtifactEntry:
        """Serialize *value* as indented JSON and store it."""
        if isinstance(value, BaseModel):
            content = value.model_dump_json(indent=2)
        else:
            content = json.dumps(value, indent=2, default=str)
        return self.store(
            artifact_type, content, phase, group_id=group_id, content_type=ContentType.JSON
        )

    # ------------------------------------------------------------------
    # Fetch and verify
    # ------------------------------------------------------------------

    def fetch(self, ref: ArtifactRef | ArtifactEntry) -> str:
        """Return the artifact content after re-verifying its hash.

        Raises
        ------
        IntegrityError
            If the file is missing or its bytes no longer hash to the
            recorded SHA-256.
        """
        if isinstance(ref, ArtifactEntry):
            ref = ref.to_ref()
        path = self._project_dir / ref.path
        if not path.exists():
            raise IntegrityError(f"Artifact {ref.artifact_id} missing at {ref.path}")
        data = path.read_bytes()
        actual = sha256_hex(data)
        if actual != ref.sha256:
            raise IntegrityError(
                f"Artifact {ref.artifact_id} ({ref.type.value} v{ref.version}) "
                f"hash mismatch: expected {ref.sha256[:12]}, got {actual[:12]}"
            )
        return data.decode("utf-8")

    def fetch_structured(self, ref: ArtifactRef | ArtifactEntry, model: type[ModelT]) -> ModelT:
        """Fetch a JSON artifact and validate it into *model*."""
        return model.model_validate_json(self.fetch(ref))

    def verify(self, ref: ArtifactRef | ArtifactEntry) -> bool:
        try:
            self.fetch(ref)
        except IntegrityError:
            return False
        return True

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_artifacts(self, artifact_type: ArtifactType | None = None) -> list[ArtifactEntry]:
        """All manifest entries, oldest first, optionally filtered by type."""
        if not self._manifest_dir.exists():
            return []
        entries: list[ArtifactEntry] = []
        for meta in self._manifest_dir.glob("*.json"):
            try:
                entry = ArtifactEntry.model_validate_json(meta.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable manifest %s: %s", meta.name, exc)
                continue
            if artifact_type is None or entry.type == artifact_type:
                entries.append(entry)
        return sorted(entries, key=lambda e: (e.timestamp, e.version))

    def latest(
        self, artifact_type: ArtifactType, phase: PipelinePhase | None = None
    ) -> ArtifactEntry | None:
        entries = [
            e for e in self.list_artifacts(artifact_type)
            if phase is None or e.phase == phase
        ]
        return entries[-1] if entries else None

    @staticmethod
    def to_ref(entry: ArtifactEntry) -> ArtifactRef:
        return entry.to_ref()

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def update_index(self, entries: list[ArtifactEntry]) -> Path:
        """Rewrite ``docs/INDEX.md`` listing *entries* chronologically."""
        self.ensure_docs_structure()
        lines = [
            "# Documentation Index",
            "",
            f"> Generated by Phasegate at {datetime.now(timezone.utc).isoformat()}",
            "",
            "## Artifacts",
            "",
            "| Type | Version | Path | Phase | Timestamp |",
            "|------|---------|------|-------|-----------|",
        ]
        for e in sorted(entries, key=lambda e: e.timestamp):
            lines.append(
                f"| {e.type.value} | v{e.version} | {e.path} | {e.phase.value} "
                f"| {e.timestamp.isoformat()} |"
            )
        lines.append("")
        index_path = self._docs_dir / "INDEX.md"
        write_text_atomic(index_path, "\n".join(lines))
        return index_path

    def __repr__(self) -> str:
        return f"<ArtifactStore docs_dir={str(self._docs_dir)!r}>"
