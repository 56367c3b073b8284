"""Pure column/row transformations shared by the suggester, the session and the applier."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from survey_doctor.cells import Cell, Row, canonical_key, to_cell
from survey_doctor.schemas import SchemaProfile, canonical_header


def value_key(cell: Cell) -> str:
    """Distinct-value key: numeric cells by canonical number, everything else by trimmed text."""
    key = canonical_key(cell)
    if key is not None:
        return key
    return cell.text.strip()


def rename_columns(
    headers: Sequence[str],
    rows: Sequence[Row],
    targets: Mapping[int, str | None],
    schema: SchemaProfile,
) -> tuple[tuple[str, ...], tuple[Row, ...]]:
    """
    Rename or drop columns by position.

    ``targets[position] = None`` drops the column; positions without an entry
    keep their header, spelled canonically.
    """
    kept: list[int] = []
    new_headers: list[str] = []
    for position, header in enumerate(headers):
        if position in targets:
            target = targets[position]
            if target is None:
                continue
            new_headers.append(canonical_header(target, schema))
        else:
            new_headers.append(canonical_header(header, schema))
        kept.append(position)

    frozen = tuple(new_headers)
    new_rows = tuple(Row(frozen, tuple(row.cells[position] for position in kept)) for row in rows)
    return frozen, new_rows


def substitute_values(
    rows: Sequence[Row],
    column: str,
    row_overrides: Mapping[int, Any],
    corrections: Mapping[str, Any],
) -> tuple[Row, ...]:
    if not rows or column not in rows[0].headers:
        return tuple(rows)
    position = rows[0].headers.index(column)
    result: list[Row] = []
    for row_index, row in enumerate(rows):
        cell = row.cells[position]
        replacement: Cell | None = None
        if row_index in row_overrides:
            replacement = to_cell(row_overrides[row_index])
        elif value_key(cell) in corrections:
            replacement = to_cell(corrections[value_key(cell)])
        result.append(row if replacement is None or replacement == cell else row.with_cell(position, replacement))
    return tuple(result)


def keep_rows(rows: Sequence[Row], dropped: Iterable[int]) -> list[tuple[int, Row]]:
    dropped = set(dropped)
    return [(index, row) for index, row in enumerate(rows) if index not in dropped]


def reorder_columns(
    headers: Sequence[str],
    rows: Sequence[Row],
    schema: SchemaProfile,
) -> tuple[tuple[str, ...], tuple[Row, ...]]:
    ordered = tuple(schema.column_order(headers))
    positions = [list(headers).index(header) for header in ordered]
    return ordered, tuple(Row(ordered, tuple(row.cells[p] for p in positions)) for row in rows)
