"""Gate check models: sandboxed command outcomes and resolved commands."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from phasegate.models.artifacts import ArtifactRef, ArtifactType


class GateCheckType(str, Enum):
    BUILD = "build"
    TEST = "test"
    LINT = "lint"
    TYPECHECK = "typecheck"
    MIGRATION = "migration"
    PLACEHOLDER_SCAN = "placeholder_scan"
    START = "start"
    ENV_CHECK = "env_check"


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


# Artifact type used when a check result is persisted.
CHECK_ARTIFACT_TYPES: dict[GateCheckType, ArtifactType] = {
    GateCheckType.BUILD: ArtifactType.BUILD_CHECK,
    GateCheckType.TEST: ArtifactType.TEST_CHECK,
    GateCheckType.LINT: ArtifactType.LINT_CHECK,
    GateCheckType.TYPECHECK: ArtifactType.TYPECHECK_CHECK,
    GateCheckType.MIGRATION: ArtifactType.MIGRATION_CHECK,
    GateCheckType.PLACEHOLDER_SCAN: ArtifactType.PLACEHOLDER_SCAN,
    GateCheckType.START: ArtifactType.START_CHECK,
    GateCheckType.ENV_CHECK: ArtifactType.ENV_CHECK,
}


class GateCheckResult(BaseModel):
    """Outcome of a single sandboxed check."""

    model_config = ConfigDict(frozen=True)

    check_type: GateCheckType
    status: CheckStatus
    command: str
    exit_code: int
    stdout_artifact: ArtifactRef | None = None
    stderr_summary: str | None = None
    duration_ms: float = 0.0
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def passed(self) -> bool:
        return self.status == CheckStatus.PASS


class ResolvedCommands(BaseModel):
    """Project commands resolved from the repo snapshot plus overrides."""

    model_config = ConfigDict(frozen=True)

    build: str | None = None
    test: str | None = None
    lint: str | None = None
    typecheck: str | None = None
    migrations: str | None = None
    start: str | None = None
    resolved_from: str = "unknown"

    def for_check(self, check_type: GateCheckType) -> str | None:
        """Return the command backing *check_type*, if any."""
        if check_type == GateCheckType.MIGRATION:
            return self.migrations
        if check_type in (
            GateCheckType.BUILD,
            GateCheckType.TEST,
            GateCheckType.LINT,
            GateCheckType.TYPECHECK,
            GateCheckType.START,
        ):
            return getattr(self, check_type.value)
        return None
