"""
Error taxonomy for survey uploads.

Data defects are modelled as exception instances so a report can hand them to
callers that prefer ``raise``, but the validation pipeline itself only collects
them. The one exception that is ever raised by the engine for a data run is
``ApplicationConsistencyError``.
"""

from __future__ import annotations

from typing import Any

MALFORMED_IDENTITY_COLUMN = "malformed-identity-column"
BAD_YEAR_FORMAT = "bad-year-format"
FUTURE_YEAR = "future-year"
UNRECOGNIZED_COLUMN = "unrecognized-column"

NOT_DIVISIBLE = "not-divisible"
OUT_OF_RANGE = "out-of-range"
BAD_FORMAT = "bad-format"
EMPTY_REQUIRED = "empty-required"


class SurveyDoctorError(Exception):
    """Base class for every error raised by survey_doctor."""


class UnknownProfileError(SurveyDoctorError, ValueError):
    def __init__(self, name: str, known: tuple[str, ...]) -> None:
        super().__init__(f"Unknown profile '{name}'. Supported: {', '.join(known)}")
        self.name = name


class ImportDefect(SurveyDoctorError):
    """One defect found in an uploaded sheet."""

    rule_id = "defect"

    def __init__(
        self,
        message: str,
        *,
        column: str | None = None,
        value: Any = None,
        row_index: int | None = None,
        reason: str | None = None,
        suggestion: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.column = column
        self.value = value
        self.row_index = row_index
        self.reason = reason
        self.suggestion = suggestion

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "rule_id": self.rule_id,
            "message": self.message,
            "column": self.column,
            "value": self.value,
            "row_index": self.row_index,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }


class MissingColumnError(ImportDefect):
    rule_id = "header_missing"


class InvalidColumnFormatError(ImportDefect):
    rule_id = "header_invalid_format"


class DuplicateColumnError(ImportDefect):
    rule_id = "header_duplicate"


class InvalidValueError(ImportDefect):
    rule_id = "value_invalid"


class DuplicateRowError(ImportDefect):
    rule_id = "row_duplicate_key"


class SuggestionCollisionError(ImportDefect):
    rule_id = "suggestion_collision"


class ApplicationError(SurveyDoctorError):
    """Returned (not raised) when a session is asked to apply before it is resolved."""

    def __init__(self, blockers: list[str]) -> None:
        super().__init__("Fixes cannot be applied yet: " + "; ".join(blockers))
        self.blockers = list(blockers)


class ApplicationConsistencyError(SurveyDoctorError):
    """The cleaned dataset still has defects; the resolution handed to apply was incomplete."""

    def __init__(self, defects: list[ImportDefect]) -> None:
        lines = [str(defect) for defect in defects[:10]]
        extra = f" (+{len(defects) - 10} more)" if len(defects) > 10 else ""
        super().__init__("Cleaned dataset failed re-validation: " + "; ".join(lines) + extra)
        self.defects = list(defects)
