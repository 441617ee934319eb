"""Artifact models: content-addressed, versioned, immutable work products."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from phasegate.models.phases import PipelinePhase


class ArtifactType(str, Enum):
    """Type tag carried by every stored artifact."""

    MASTER_PLAN = "master_plan"
    ARCHITECTURE = "architecture"
    ROLE_PLAN = "role_plan"
    CONSENSUS = "consensus"
    ARBITRATION = "arbitration"
    AUDIT_REPORT = "audit_report"
    RCA_REPORT = "rca_report"
    PRODUCTION_READINESS = "production_readiness"
    RELEASE_NOTES = "release_notes"
    DEPLOYMENT = "deployment"
    ROLLBACK = "rollback"
    REPO_SNAPSHOT = "repo_snapshot"
    BUILD_CHECK = "build_check"
    TEST_CHECK = "test_check"
    LINT_CHECK = "lint_check"
    TYPECHECK_CHECK = "typecheck_check"
    MIGRATION_CHECK = "migration_check"
    PLACEHOLDER_SCAN = "placeholder_scan"
    START_CHECK = "start_check"
    ENV_CHECK = "env_check"
    QA_VALIDATION = "qa_validation"
    REVIEW_DECISION = "review_decision"
    STUCK_REPORT = "stuck_report"
    JOURNALIST_TRACE = "journalist_trace"
    RESOLVED_COMMANDS = "resolved_commands"
    CONSTITUTION = "constitution"
    CHANGE_REQUEST = "change_request"
    ADDITIONAL_CONTEXT = "additional_context"


class ContentType(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"


class ArtifactRef(BaseModel):
    """Pointer to a stored artifact.

    Packets and votes reference artifacts only through this model, never by
    raw content, so any consumer can re-verify the exact bytes.
    """

    model_config = ConfigDict(frozen=True)

    artifact_id: str
    path: str  # relative to the project directory
    sha256: str
    version: int = Field(ge=1)
    type: ArtifactType


class ArtifactEntry(BaseModel):
    """Manifest entry for one stored artifact version."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: ArtifactType
    phase: PipelinePhase
    version: int = Field(ge=1)
    path: str
    sha256: str
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    immutable: bool = True
    content_type: ContentType = ContentType.MARKDOWN
    group_id: str  # logical identity; versions increase within a group
    previous_id: str | None = None

    def to_ref(self) -> ArtifactRef:
        return ArtifactRef(
            artifact_id=self.id,
            path=self.path,
            sha256=self.sha256,
            version=self.version,
            type=self.type,
        )
