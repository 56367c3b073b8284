"""
Applier: materialize a resolved ReconciliationSession into a CleanedDataset.

Steps run in a fixed order (rename/drop columns, substitute values, keep the
chosen duplicate rows, put columns in schema order) and every step is pure, so
applying the same session to the same rows twice gives identical output. The
result is serialized and pushed back through parse and validation before it is
handed over.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Any, Sequence

from survey_doctor.cells import Row
from survey_doctor.duplicates import find_duplicate_groups
from survey_doctor.errors import ApplicationConsistencyError, ApplicationError
from survey_doctor.headers import classify_headers
from survey_doctor.parser import parse
from survey_doctor.schemas import SchemaProfile, canonical_header
from survey_doctor.session import ReconciliationSession
from survey_doctor.transform import keep_rows, reorder_columns
from survey_doctor.values import validate_values

RENAME_COLUMN = "rename-column"
DROP_COLUMN = "drop-column"
CORRECT_VALUE = "correct-value"
DROP_ROW = "drop-duplicate-row"


@dataclass(frozen=True)
class Change:
    kind: str
    column: str | None = None
    row_index: int | None = None
    before: Any = None
    after: Any = None
    note: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "column": self.column,
            "row_index": self.row_index,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }


@dataclass(frozen=True)
class CleanedDataset:
    profile: SchemaProfile
    headers: tuple[str, ...]
    rows: tuple[dict[str, str], ...]
    changes: tuple[Change, ...] = ()
    source_rows: tuple[int, ...] = ()

    def to_records(self) -> list[dict[str, str]]:
        return [dict(row) for row in self.rows]

    def to_csv_text(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(self.headers)
        for row in self.rows:
            writer.writerow([row.get(header, "") for header in self.headers])
        return buffer.getvalue()

    def change_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for change in self.changes:
            counts[change.kind] = counts.get(change.kind, 0) + 1
        return counts

    def to_dict(self) -> dict:
        return {
            "profile": self.profile.name,
            "headers": list(self.headers),
            "row_count": len(self.rows),
            "rows": self.to_records(),
            "changes": [change.to_dict() for change in self.changes],
        }


@dataclass(frozen=True)
class ApplyResult:
    ok: bool
    dataset: CleanedDataset | None = None
    error: ApplicationError | None = None
    warnings: tuple[str, ...] = field(default=())


def _column_changes(session: ReconciliationSession) -> list[Change]:
    changes = []
    targets = session.resolved_targets()
    for position, source in enumerate(session.headers):
        target = targets[position] if position in targets else source
        if target is not None:
            target = canonical_header(target, session.schema)
        if target is None:
            changes.append(Change(DROP_COLUMN, column=source, note=f"position {position}"))
        elif target != source:
            changes.append(Change(RENAME_COLUMN, column=target, before=source, after=target))
    return changes


def _value_changes(column: str, before: Sequence[Row], after: Sequence[Row]) -> list[Change]:
    changes = []
    for row_index, (old, new) in enumerate(zip(before, after)):
        if old.get(column) != new.get(column):
            changes.append(
                Change(CORRECT_VALUE, column=column, row_index=row_index, before=old.text(column), after=new.text(column))
            )
    return changes


def revalidate(text: str, schema: SchemaProfile, current_year: int) -> list:
    """Re-parse serialized output and return every defect still present."""
    headers, rows = parse(text)
    report = classify_headers(headers, rows, schema, current_year)
    issues = validate_values(headers, rows, schema, current_year)
    groups = find_duplicate_groups(headers, rows, schema, current_year, issues)
    defects = report.defects(schema)
    defects.extend(issue.to_error() for issue in issues)
    defects.extend(group.to_error() for group in groups)
    return defects


def apply_fixes(
    headers: Sequence[str],
    rows: Sequence[Row],
    session: ReconciliationSession,
) -> ApplyResult:
    if tuple(headers) != session.headers or tuple(rows) != session.rows:
        raise ValueError("Session was built for a different sheet; build a new session from these rows")

    blockers = session.blockers()
    if blockers:
        return ApplyResult(ok=False, error=ApplicationError(blockers))

    schema = session.schema
    state = session.tentative()
    column = schema.identity_column
    changes = _column_changes(session)
    changes.extend(_value_changes(column, state.renamed_rows, state.rows))

    chosen = session.chosen_rows(state.duplicate_groups)
    dropped: set[int] = set()
    for group in state.duplicate_groups:
        keep = chosen[group.identity_key]
        for row_index in group.row_indexes:
            if row_index != keep:
                dropped.add(row_index)
                changes.append(
                    Change(
                        DROP_ROW,
                        column=group.column,
                        row_index=row_index,
                        before=group.identity_key,
                        note=f"kept row {keep}",
                    )
                )

    survivors = keep_rows(state.rows, dropped)
    ordered_headers, ordered_rows = reorder_columns(state.headers, [row for _index, row in survivors], schema)

    dataset = CleanedDataset(
        profile=schema,
        headers=ordered_headers,
        rows=tuple({header: cell.text for header, cell in row.items()} for row in ordered_rows),
        changes=tuple(changes),
        source_rows=tuple(index for index, _row in survivors),
    )

    remaining = revalidate(dataset.to_csv_text(), schema, session.current_year)
    if remaining:
        raise ApplicationConsistencyError(remaining)

    warnings = []
    if dropped:
        warnings.append(f"{len(dropped)} duplicate row(s) removed")
    if not dataset.rows:
        warnings.append("Cleaned dataset has no data rows")
    return ApplyResult(ok=True, dataset=dataset, warnings=tuple(warnings))
