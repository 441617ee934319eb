"""Audit findings, audit reports, and the production readiness summary."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from phasegate.models.artifacts import ArtifactRef
from phasegate.models.checks import CheckStatus
from phasegate.models.phases import PipelineRole


class AuditSeverity(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class AuditCategory(str, Enum):
    INTEGRATION = "integration"
    CONFIG = "config"
    TESTS = "tests"
    SCHEMA = "schema"
    SECURITY = "security"
    DEPLOYMENT = "deployment"


class AuditStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


BLOCKING_SEVERITIES: frozenset[AuditSeverity] = frozenset(
    {AuditSeverity.P0, AuditSeverity.P1}
)


class AuditFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    severity: AuditSeverity
    category: AuditCategory
    description: str
    evidence: list[ArtifactRef] = []
    file_path: str | None = None
    line_number: int | None = None
    suggested_owner: PipelineRole = PipelineRole.DEBUGGER
    blocking: bool = False


class AuditReport(BaseModel):
    """Structured audit result; ``recovery_required`` blocks the production gate."""

    model_config = ConfigDict(frozen=True)

    audit_id: str
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    repo_snapshot: ArtifactRef | None = None
    overall_status: AuditStatus
    findings: list[AuditFinding] = []
    system_risk_score: int = Field(ge=0, le=100)
    recovery_required: bool


class ProductionReadiness(BaseModel):
    model_config = ConfigDict(frozen=True)

    production_id: str
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    check_statuses: dict[str, CheckStatus] = {}
    audit_status: AuditStatus | None = None
    unresolved_blockers: list[str] = []
    final_verdict: AuditStatus
