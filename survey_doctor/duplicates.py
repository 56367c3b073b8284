"""Duplicate-row detection keyed by the profile's identity column."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from survey_doctor.cells import Row, canonical_key
from survey_doctor.errors import DuplicateRowError
from survey_doctor.schemas import SchemaProfile, profile as resolve_profile
from survey_doctor.values import ValueIssue, validate_values


@dataclass(frozen=True)
class DuplicateGroup:
    identity_key: str
    column: str
    members: tuple[tuple[int, Row], ...]

    @property
    def row_indexes(self) -> tuple[int, ...]:
        return tuple(index for index, _row in self.members)

    @property
    def default_choice(self) -> int:
        # last occurrence in file order wins
        return self.members[-1][0]

    def to_error(self) -> DuplicateRowError:
        indexes = ", ".join(str(index) for index in self.row_indexes)
        return DuplicateRowError(
            f"{self.column} {self.identity_key} appears in {len(self.members)} rows ({indexes}); "
            f"row {self.default_choice} is kept unless another is chosen",
            column=self.column,
            value=self.identity_key,
            suggestion=self.default_choice,
        )

    def to_dict(self) -> dict:
        return {
            "identity_key": self.identity_key,
            "column": self.column,
            "row_indexes": list(self.row_indexes),
            "default_choice": self.default_choice,
            "members": [{"row_index": index, "values": row.to_dict()} for index, row in self.members],
        }


def find_duplicate_groups(
    headers: Sequence[str],
    rows: Sequence[Row],
    schema: SchemaProfile | str,
    current_year: int,
    issues: Iterable[ValueIssue] | None = None,
) -> tuple[DuplicateGroup, ...]:
    schema = resolve_profile(schema)
    column = schema.identity_column
    if column not in headers:
        return ()
    if issues is None:
        issues = validate_values(headers, rows, schema, current_year)
    flagged = {issue.row_index for issue in issues if issue.column == column}

    buckets: dict[str, list[tuple[int, Row]]] = {}
    for row_index, row in enumerate(rows):
        if row_index in flagged:
            continue
        key = canonical_key(row.get(column))
        if key is None:
            continue
        buckets.setdefault(key, []).append((row_index, row))

    return tuple(
        DuplicateGroup(key, column, tuple(members))
        for key, members in buckets.items()
        if len(members) > 1
    )
