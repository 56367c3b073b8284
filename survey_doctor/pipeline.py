"""
pipeline.py: the four external operations.

    headers, rows = parse(text)
    report        = validate(headers, rows, "deflection")
    suggestions   = suggest_fixes(report, rows, "deflection")
    session       = report.session(suggestions)     # edit decisions here
    result        = apply_fixes(rows, session)

``validate`` never raises for data problems; every defect is collected in the
report. A profile is required on every call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from survey_doctor.apply import ApplyResult, apply_fixes as _apply
from survey_doctor.cells import Row
from survey_doctor.config import current_year as resolve_year
from survey_doctor.duplicates import DuplicateGroup, find_duplicate_groups
from survey_doctor.errors import ImportDefect
from survey_doctor.headers import HeaderReport, classify_headers
from survey_doctor.issue_taxonomy import build_issue
from survey_doctor.parser import parse as _parse
from survey_doctor.schemas import SchemaProfile, profile as resolve_profile
from survey_doctor.session import ReconciliationSession
from survey_doctor.suggest import SuggestionSet, suggest_fixes as _suggest
from survey_doctor.values import ValueIssue, validate_values


class PipelineState(str, Enum):
    IDLE = "Idle"
    PARSED = "Parsed"
    VALID = "Valid"
    INVALID = "Invalid"
    SUGGESTED = "Suggested"
    RESOLVED = "Resolved"
    APPLIED = "Applied"

    @property
    def is_hand_off(self) -> bool:
        return self in (PipelineState.VALID, PipelineState.APPLIED)


TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.PARSED},
    PipelineState.PARSED: {PipelineState.VALID, PipelineState.INVALID},
    PipelineState.INVALID: {PipelineState.SUGGESTED},
    PipelineState.SUGGESTED: {PipelineState.RESOLVED, PipelineState.IDLE},
    PipelineState.RESOLVED: {PipelineState.APPLIED, PipelineState.SUGGESTED, PipelineState.IDLE},
    PipelineState.VALID: set(),
    PipelineState.APPLIED: set(),
}


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    return target in TRANSITIONS[current]


def session_state(session: ReconciliationSession) -> PipelineState:
    if session.cancelled:
        return PipelineState.IDLE
    return PipelineState.RESOLVED if session.can_apply else PipelineState.SUGGESTED


@dataclass(frozen=True)
class ValidationReport:
    profile: SchemaProfile
    headers: tuple[str, ...]
    rows: tuple[Row, ...]
    header_report: HeaderReport
    value_issues: tuple[ValueIssue, ...]
    duplicate_groups: tuple[DuplicateGroup, ...]

    @property
    def current_year(self) -> int:
        return self.header_report.current_year

    def defects(self) -> list[ImportDefect]:
        found = self.header_report.defects(self.profile)
        found.extend(issue.to_error() for issue in self.value_issues)
        found.extend(group.to_error() for group in self.duplicate_groups)
        return found

    def issues(self) -> list[dict]:
        return [build_issue(defect) for defect in self.defects()]

    @property
    def is_valid(self) -> bool:
        return self.header_report.is_clean and not self.value_issues and not self.duplicate_groups

    @property
    def state(self) -> PipelineState:
        return PipelineState.VALID if self.is_valid else PipelineState.INVALID

    def session(self, suggestion_set: SuggestionSet | None = None) -> ReconciliationSession:
        if suggestion_set is None:
            suggestion_set = suggest_fixes(self, self.rows, self.profile)
        return ReconciliationSession.from_suggestions(
            self.headers, self.rows, self.profile, suggestion_set, self.current_year
        )

    def to_dict(self) -> dict:
        return {
            "profile": self.profile.name,
            "current_year": self.current_year,
            "state": self.state.value,
            "is_valid": self.is_valid,
            "row_count": len(self.rows),
            "headers": self.header_report.to_dict(),
            "value_issues": [issue.to_dict() for issue in self.value_issues],
            "duplicate_groups": [group.to_dict() for group in self.duplicate_groups],
            "issues": self.issues(),
        }


def parse(text: str) -> tuple[tuple[str, ...], tuple[Row, ...]]:
    return _parse(text)


def validate(
    headers: Sequence[str],
    rows: Sequence[Row],
    profile: SchemaProfile | str,
    current_year: int | None = None,
) -> ValidationReport:
    schema = resolve_profile(profile)
    year = resolve_year(current_year)
    headers = tuple(headers)
    rows = tuple(rows)
    header_report = classify_headers(headers, rows, schema, year)
    issues = validate_values(headers, rows, schema, year)
    groups = find_duplicate_groups(headers, rows, schema, year, issues)
    return ValidationReport(schema, headers, rows, header_report, issues, groups)


def suggest_fixes(
    report: ValidationReport | HeaderReport,
    rows: Sequence[Row],
    profile: SchemaProfile | str,
    current_year: int | None = None,
) -> SuggestionSet:
    header_report = report.header_report if isinstance(report, ValidationReport) else report
    return _suggest(header_report, tuple(rows), profile, current_year)


def apply_fixes(rows: Sequence[Row], session: ReconciliationSession) -> ApplyResult:
    return _apply(session.headers, rows, session)
