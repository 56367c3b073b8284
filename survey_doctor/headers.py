"""Header classification: valid, invalid, duplicate and missing columns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from survey_doctor.cells import Row, is_empty
from survey_doctor.errors import (
    BAD_YEAR_FORMAT,
    FUTURE_YEAR,
    MALFORMED_IDENTITY_COLUMN,
    UNRECOGNIZED_COLUMN,
    DuplicateColumnError,
    ImportDefect,
    InvalidColumnFormatError,
    MissingColumnError,
)
from survey_doctor.schemas import (
    DMI_LIKE_RE,
    MISSING_SEASON_PLACEHOLDER,
    SEASON_KEY_RE,
    SchemaProfile,
    embedded_years,
    header_key,
    is_four_digit_year,
    parse_season_header,
    profile as resolve_profile,
)

VALID = "valid"
INVALID = "invalid"
DUPLICATE = "duplicate"


@dataclass(frozen=True)
class HeaderReport:
    headers: tuple[str, ...]
    classes: tuple[str, ...]
    reasons: tuple[str | None, ...]
    missing: tuple[str, ...]
    occupancy: tuple[tuple[int, int], ...]
    current_year: int

    def _names(self, kind: str) -> tuple[str, ...]:
        return tuple(header for header, cls in zip(self.headers, self.classes) if cls == kind)

    @property
    def valid(self) -> tuple[str, ...]:
        return self._names(VALID)

    @property
    def invalid(self) -> tuple[str, ...]:
        return self._names(INVALID)

    @property
    def duplicate(self) -> tuple[str, ...]:
        return self._names(DUPLICATE)

    def positions(self, kind: str) -> tuple[int, ...]:
        return tuple(index for index, cls in enumerate(self.classes) if cls == kind)

    def reason_for(self, header: str) -> str | None:
        for name, reason in zip(self.headers, self.reasons):
            if name == header and reason is not None:
                return reason
        return None

    def occupancy_for(self, position: int) -> int | None:
        return dict(self.occupancy).get(position)

    @property
    def is_clean(self) -> bool:
        return not self.missing and all(cls == VALID for cls in self.classes)

    def defects(self, schema: SchemaProfile) -> list[ImportDefect]:
        year = self.current_year
        found: list[ImportDefect] = []
        for name in self.missing:
            if name == MISSING_SEASON_PLACEHOLDER:
                message = "No season measurement columns found (expected columns like 'Winter_2022')"
            else:
                message = f"Missing column '{name}'"
            found.append(MissingColumnError(message, column=name))

        for position, (header, cls, reason) in enumerate(zip(self.headers, self.classes, self.reasons)):
            if cls == INVALID:
                if reason == MALFORMED_IDENTITY_COLUMN:
                    message = f"Malformed identity column '{header}' (expected exactly 'DMI')"
                elif reason == BAD_YEAR_FORMAT:
                    message = f"Invalid year in header '{header}' (must be 4 digits and <= {year})"
                elif reason == FUTURE_YEAR:
                    message = f"Header '{header}' has a future year (<= {year} required)"
                else:
                    message = f"Wrong format column '{header}' (expected {schema.expected_description()})"
                found.append(InvalidColumnFormatError(message, column=header, reason=reason))
            elif cls == DUPLICATE:
                count = self.occupancy_for(position) or 0
                state = f"has data in {count} row(s)" if count else "empty"
                found.append(
                    DuplicateColumnError(
                        f"Column '{header}' appears multiple times ({state})",
                        column=header,
                        value=count,
                    )
                )
        return found

    def to_dict(self) -> dict:
        return {
            "valid": list(self.valid),
            "invalid": [
                {"column": header, "reason": reason}
                for header, cls, reason in zip(self.headers, self.classes, self.reasons)
                if cls == INVALID
            ],
            "duplicate": [
                {"column": self.headers[position], "position": position, "non_empty_rows": count}
                for position, count in self.occupancy
            ],
            "missing": list(self.missing),
        }


def column_occupancy(rows: Sequence[Row], position: int) -> int:
    return sum(1 for row in rows if position < len(row.cells) and not is_empty(row.cells[position]))


def _unrecognized_reason(header: str, current_year: int) -> str:
    if any(year > current_year for year in embedded_years(header)):
        return FUTURE_YEAR
    return UNRECOGNIZED_COLUMN


def _deflection_reason(header: str, current_year: int) -> str | None:
    if header == "DMI":
        return None
    if DMI_LIKE_RE.match(header):
        return MALFORMED_IDENTITY_COLUMN
    parsed = parse_season_header(header)
    if parsed is None:
        return _unrecognized_reason(header, current_year)
    year = parsed[2]
    if not is_four_digit_year(year):
        return BAD_YEAR_FORMAT
    if year > current_year:
        return FUTURE_YEAR
    return None


def invalid_reason(header: str, schema: SchemaProfile, current_year: int) -> str | None:
    """Why ``header`` is not a valid column of ``schema``; ``None`` when it is."""
    if schema.is_dynamic:
        return _deflection_reason(header, current_year)
    if header in schema.required_columns:
        return None
    return _unrecognized_reason(header, current_year)


def missing_columns(headers: Sequence[str], schema: SchemaProfile) -> tuple[str, ...]:
    if schema.is_dynamic:
        missing = []
        if not any(DMI_LIKE_RE.match(header) for header in headers):
            missing.append(schema.identity_column)
        if not any(SEASON_KEY_RE.match(header.strip()) for header in headers):
            missing.append(MISSING_SEASON_PLACEHOLDER)
        return tuple(missing)
    return tuple(column for column in schema.required_columns if column not in headers)


def classify_headers(
    headers: Sequence[str],
    rows: Sequence[Row],
    schema: SchemaProfile | str,
    current_year: int,
) -> HeaderReport:
    schema = resolve_profile(schema)
    seen: set[str] = set()
    classes: list[str] = []
    reasons: list[str | None] = []
    occupancy: list[tuple[int, int]] = []

    for position, header in enumerate(headers):
        key = header_key(header, schema)
        if key in seen:
            classes.append(DUPLICATE)
            reasons.append(None)
            occupancy.append((position, column_occupancy(rows, position)))
            continue
        seen.add(key)
        reason = invalid_reason(header, schema, current_year)
        classes.append(VALID if reason is None else INVALID)
        reasons.append(reason)

    return HeaderReport(
        headers=tuple(headers),
        classes=tuple(classes),
        reasons=tuple(reasons),
        missing=missing_columns(headers, schema),
        occupancy=tuple(occupancy),
        current_year=current_year,
    )
