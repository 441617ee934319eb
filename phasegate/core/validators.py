"""Artifact completeness validators: deterministic structural checks.

These run before any reviewer call in consensus phases, so an obviously
incomplete artifact never costs a model round-trip. Each validator is a
pure function of the content and returns blocking errors and non-blocking
warnings separately.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import NamedTuple

from phasegate.models.artifacts import ArtifactType

_I = re.IGNORECASE


class ValidationResult(NamedTuple):
    valid: bool
    errors: list[str]
    warnings: list[str]


class _Section(NamedTuple):
    name: str
    patterns: tuple[re.Pattern[str], ...]


def _missing_sections(content: str, sections: tuple[_Section, ...]) -> list[str]:
    return [
        s.name for s in sections
        if not any(p.search(content) for p in s.patterns)
    ]


def _result(errors: list[str], warnings: list[str]) -> ValidationResult:
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


# ---------------------------------------------------------------------------
# Per-type validators
# ---------------------------------------------------------------------------

_MASTER_PLAN_SECTIONS = (
    _Section("Goals/Objectives", (
        re.compile(r"#+\s*(goals?|objectives?)", _I),
        re.compile(r"\bgoals?\b.*:", _I),
    )),
    _Section("Milestones", (
        re.compile(r"#+\s*milestones?", _I),
        re.compile(r"\bmilestone\s+\d", _I),
    )),
    _Section("Success Criteria", (
        re.compile(r"#+\s*success\s+criteria", _I),
        re.compile(r"\bsuccess\s+criteria\b", _I),
        re.compile(r"#+\s*acceptance\s+criteria", _I),
    )),
)
_EMPTY_HEADING = re.compile(r"^(#+\s+.+)\n(?=#+\s+|\s*$)", re.MULTILINE)


def validate_master_plan(content: str) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    if len(content) < 200:
        errors.append("Master plan is too short (min 200 characters)")
    errors.extend(
        f"Missing required section: {name}"
        for name in _missing_sections(content, _MASTER_PLAN_SECTIONS)
    )
    empty = _EMPTY_HEADING.findall(content)
    if len(empty) > 2:
        warnings.append(f"{len(empty)} potentially empty sections detected")
    return _result(errors, warnings)


_ARCHITECTURE_SECTIONS = (
    _Section("Components/Modules", (
        re.compile(r"#+\s*(components?|modules?|services?)", _I),
        re.compile(r"\bcomponent\b", _I),
    )),
    _Section("Data Flow/Contracts", (
        re.compile(r"#+\s*(data\s+flow|contracts?|api|interfaces?)", _I),
        re.compile(r"\bcontract\b", _I),
        re.compile(r"\bdata\s+flow\b", _I),
    )),
    _Section("Tech Stack", (
        re.compile(r"#+\s*(tech\s+stack|technology|stack)", _I),
        re.compile(r"\btech\s+stack\b", _I),
    )),
)
_FILE_PATH_HINT = re.compile(r"(?:src/|app/|pages/|lib/|\.ts|\.js|\.py|\.go)")


def validate_architecture(content: str) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    if len(content) < 200:
        errors.append("Architecture document is too short (min 200 characters)")
    errors.extend(
        f"Missing required section: {name}"
        for name in _missing_sections(content, _ARCHITECTURE_SECTIONS)
    )
    if not _FILE_PATH_HINT.search(content):
        warnings.append("Architecture should reference at least one file path")
    return _result(errors, warnings)


_ROLE_PLAN_SECTIONS = (
    _Section("Tasks/Responsibilities", (
        re.compile(r"#+\s*(tasks?|responsibilities?|work\s+items?)", _I),
        re.compile(r"\btask\b", _I),
    )),
    _Section("Dependencies", (
        re.compile(r"#+\s*(dependenc|prerequisites?|requires?)", _I),
        re.compile(r"\bdepend", _I),
    )),
    _Section("Acceptance Criteria", (
        re.compile(r"#+\s*(acceptance|done\s+when|completion)", _I),
        re.compile(r"\bacceptance\b", _I),
        re.compile(r"\bdone\s+when\b", _I),
    )),
)
_ROLE_NAME = re.compile(
    r"\b(DISPATCHER|ARCHITECT|DB_EXPERT|BACKEND|FRONTEND|WEBSITE|QA_TESTER|REVIEWER|AUDITOR|JOURNALIST)",
    _I,
)


def validate_role_plan(content: str) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    if len(content) < 100:
        errors.append("Role plan is too short (min 100 characters)")
    errors.extend(
        f"Missing required section: {name}"
        for name in _missing_sections(content, _ROLE_PLAN_SECTIONS)
    )
    if not _ROLE_NAME.search(content):
        warnings.append("Role plan should reference the role name")
    return _result(errors, warnings)


_QA_SECTIONS = (
    _Section("Test Results", (
        re.compile(r"#+\s*(test\s+results?|results?)", _I),
        re.compile(r"\btest\s+results?\b", _I),
        re.compile(r"\bpass(?:ed|ing)?\b", _I),
    )),
    _Section("Coverage", (
        re.compile(r"#+\s*coverage", _I),
        re.compile(r"\bcoverage\b", _I),
        re.compile(r"\d+\s*%"),
    )),
)
_PASS_FAIL_COUNT = re.compile(r"\b\d+\s*(pass|fail|error|skip)", _I)


def validate_qa_validation(content: str) -> ValidationResult:
    errors = [
        f"Missing required section: {name}"
        for name in _missing_sections(content, _QA_SECTIONS)
    ]
    warnings: list[str] = []
    if not _PASS_FAIL_COUNT.search(content):
        warnings.append("QA validation should include pass/fail counts")
    return _result(errors, warnings)


def validate_audit_report(content: str) -> ValidationResult:
    """JSON structure first; markdown keywords when the content is not JSON."""
    errors: list[str] = []
    warnings: list[str] = []
    try:
        parsed = json.loads(content)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        if not isinstance(parsed.get("findings"), list):
            errors.append('Audit report must have a "findings" array')
        if not isinstance(parsed.get("overall_status"), str):
            errors.append('Audit report must have "overall_status"')
        score = parsed.get("system_risk_score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            errors.append('Audit report must have "system_risk_score"')
        return _result(errors, warnings)

    if "finding" not in content:
        errors.append("Audit report must contain findings")
    if "status" not in content and "PASS" not in content and "FAIL" not in content:
        errors.append("Audit report must contain overall status")
    if "risk" not in content and "score" not in content:
        warnings.append("Audit report should include risk score")
    return _result(errors, warnings)


VALIDATORS: dict[ArtifactType, Callable[[str], ValidationResult]] = {
    ArtifactType.MASTER_PLAN: validate_master_plan,
    ArtifactType.ARCHITECTURE: validate_architecture,
    ArtifactType.ROLE_PLAN: validate_role_plan,
    ArtifactType.QA_VALIDATION: validate_qa_validation,
    ArtifactType.AUDIT_REPORT: validate_audit_report,
}


def validate_artifact_completeness(artifact_type: ArtifactType, content: str) -> ValidationResult:
    """Validate *content* against the rules for *artifact_type*.

    Empty or whitespace-only content always fails. Types without a
    registered validator otherwise pass.
    """
    if not content or not content.strip():
        return ValidationResult(
            valid=False,
            errors=[f"{artifact_type.value} artifact has empty content"],
            warnings=[],
        )
    validator = VALIDATORS.get(artifact_type)
    if validator is None:
        return ValidationResult(valid=True, errors=[], warnings=[])
    return validator(content)


def validatable_types() -> list[ArtifactType]:
    return list(VALIDATORS)
