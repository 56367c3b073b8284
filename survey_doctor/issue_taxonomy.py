"""
Shared survey-doctor issue taxonomy.

Severity, auto-fixability and plain-English rule descriptions live here so the
report, the CLI ``explain`` command and the JSON payloads do not drift.
"""

from __future__ import annotations

from typing import Any

from survey_doctor.errors import MALFORMED_IDENTITY_COLUMN, NOT_DIVISIBLE, ImportDefect


ISSUE_DEFINITIONS = {
    "header_missing": {"severity": "critical"},
    "header_invalid_format": {"severity": "critical"},
    "header_duplicate": {"severity": "warning"},
    "value_invalid": {"severity": "critical"},
    "row_duplicate_key": {"severity": "warning"},
    "suggestion_collision": {"severity": "critical"},
}

EXPLAIN_RULES = {
    "header_missing": {
        "description": "A column the profile requires is not in the header row.",
        "evidence": "deflection sheets need DMI plus at least one season column; LTE sheets need every fixed column.",
        "auto_fixable": False,
        "disable_hint": "Add the column to the upload, or rename a misspelled header so it is recognised.",
    },
    "header_invalid_format": {
        "description": "A header does not match the profile's naming rules.",
        "evidence": "Malformed DMI variants, season headers with a bad or future year, or unknown column names.",
        "auto_fixable": True,
        "disable_hint": "Use canonical names such as DMI, Winter_2022, Year, Small, Medium or Large.",
    },
    "header_duplicate": {
        "description": "The same column name appears more than once.",
        "evidence": "Two headers normalise to the same name (Winter_22 and Winter 2022 count as the same column).",
        "auto_fixable": False,
        "disable_hint": "Delete or rename the extra copy; the occupancy count shows which copy holds data.",
    },
    "value_invalid": {
        "description": "An identity value (DMI or Year) is empty, malformed or out of range.",
        "evidence": "DMI must be a non-negative multiple of 50; Year must be 4 digits and not in the future.",
        "auto_fixable": True,
        "disable_hint": "DMI values off the 50 grid are rounded automatically; other values need a manual fix.",
    },
    "row_duplicate_key": {
        "description": "Several rows share the same identity value.",
        "evidence": "Identity values compared after trimming and number normalisation (050 and 50.0 both become 50).",
        "auto_fixable": True,
        "disable_hint": "The last row wins unless another row is chosen in the decisions file.",
    },
    "suggestion_collision": {
        "description": "Several columns would end up with the same name after fixing.",
        "evidence": "Two suggested or overridden names normalise to the same column, or one matches a kept header.",
        "auto_fixable": False,
        "disable_hint": "Rename or delete all but one of the colliding columns.",
    },
}


def is_auto_fixable(issue_id: str, reason: str | None = None, suggestion: Any = None) -> bool:
    if issue_id == "row_duplicate_key":
        return True
    if issue_id == "value_invalid":
        return reason == NOT_DIVISIBLE
    if issue_id == "header_invalid_format":
        return reason == MALFORMED_IDENTITY_COLUMN or bool(suggestion)
    return False


def build_issue(defect: ImportDefect, details: dict[str, Any] | None = None) -> dict[str, Any]:
    definition = ISSUE_DEFINITIONS[defect.rule_id]
    return {
        "id": defect.rule_id,
        "severity": definition["severity"],
        "plain_english": defect.message,
        "columns": [defect.column] if defect.column else [],
        "row_index": defect.row_index,
        "reason": defect.reason,
        "auto_fixable": is_auto_fixable(defect.rule_id, defect.reason, defect.suggestion),
        "details": details or {},
    }
