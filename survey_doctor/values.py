"""Row-level value checks for identity columns (``DMI`` and ``Year``)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from survey_doctor.cells import Empty, Numeric, Row, format_number, four_digit_year
from survey_doctor.errors import (
    BAD_FORMAT,
    EMPTY_REQUIRED,
    NOT_DIVISIBLE,
    OUT_OF_RANGE,
    InvalidValueError,
)
from survey_doctor.schemas import DMI_STEP, SchemaProfile, profile as resolve_profile

OUT_OF_RANGE_KIND = "OutOfRange"
NOT_DIVISIBLE_KIND = "NotDivisible"
BAD_FORMAT_KIND = "BadFormat"
EMPTY_KIND = "Empty"

KIND_REASONS = {
    OUT_OF_RANGE_KIND: OUT_OF_RANGE,
    NOT_DIVISIBLE_KIND: NOT_DIVISIBLE,
    BAD_FORMAT_KIND: BAD_FORMAT,
    EMPTY_KIND: EMPTY_REQUIRED,
}


@dataclass(frozen=True)
class ValueIssue:
    row_index: int
    column: str
    kind: str
    detail: str
    value: str = ""

    def to_error(self) -> InvalidValueError:
        shown = self.value if self.value.strip() else "(empty)"
        return InvalidValueError(
            f"Row {self.row_index}: {self.column} value {shown} {self.detail}",
            column=self.column,
            value=self.value,
            row_index=self.row_index,
            reason=KIND_REASONS[self.kind],
        )

    def to_dict(self) -> dict:
        return {
            "row_index": self.row_index,
            "column": self.column,
            "kind": self.kind,
            "detail": self.detail,
            "value": self.value,
        }


def check_dmi(cell, row_index: int) -> ValueIssue | None:
    if isinstance(cell, Empty):
        return ValueIssue(row_index, "DMI", EMPTY_KIND, "is required", cell.text)
    if not isinstance(cell, Numeric):
        return ValueIssue(row_index, "DMI", BAD_FORMAT_KIND, "is not a number", cell.text)
    if cell.value < 0:
        return ValueIssue(row_index, "DMI", OUT_OF_RANGE_KIND, "must not be negative", cell.text)
    if cell.value % DMI_STEP != 0:
        return ValueIssue(
            row_index,
            "DMI",
            NOT_DIVISIBLE_KIND,
            f"is not divisible by {DMI_STEP} ({format_number(cell.value)} % {DMI_STEP} != 0)",
            cell.text,
        )
    return None


def check_year(cell, row_index: int, current_year: int) -> ValueIssue | None:
    if isinstance(cell, Empty):
        return ValueIssue(row_index, "Year", BAD_FORMAT_KIND, "is empty (4-digit year required)", cell.text)
    year = four_digit_year(cell)
    if year is None:
        return ValueIssue(row_index, "Year", BAD_FORMAT_KIND, "must be exactly 4 digits", cell.text)
    if year > current_year:
        return ValueIssue(row_index, "Year", OUT_OF_RANGE_KIND, f"is in the future (<= {current_year} required)", cell.text)
    return None


def check_cell(column: str, cell, row_index: int, current_year: int) -> ValueIssue | None:
    if column == "DMI":
        return check_dmi(cell, row_index)
    if column == "Year":
        return check_year(cell, row_index, current_year)
    return None


def validate_values(
    headers: Sequence[str],
    rows: Sequence[Row],
    schema: SchemaProfile | str,
    current_year: int,
) -> tuple[ValueIssue, ...]:
    schema = resolve_profile(schema)
    columns = [column for column in schema.value_validators if column in headers]
    issues: list[ValueIssue] = []
    for row_index, row in enumerate(rows):
        for column in columns:
            issue = check_cell(column, row.get(column), row_index, current_year)
            if issue is not None:
                issues.append(issue)
    return tuple(issues)
