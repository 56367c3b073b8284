"""
ReconciliationSession: the caller's decisions on top of a SuggestionSet.

The session only stores decisions. Everything derived from them (resolved
targets, collisions, duplicate groups, blockers, ``can_apply``) is recomputed
from the original rows on every access, so a later decision can never leave a
stale readiness flag behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from survey_doctor.cells import Row, canonical_key, to_cell
from survey_doctor.duplicates import DuplicateGroup, find_duplicate_groups
from survey_doctor.headers import DUPLICATE, invalid_reason, missing_columns
from survey_doctor.schemas import MISSING_SEASON_PLACEHOLDER, SchemaProfile, profile as resolve_profile
from survey_doctor.suggest import (
    Collision,
    Suggestion,
    SuggestionSet,
    ValueCorrection,
    find_collisions,
    value_corrections,
)
from survey_doctor.transform import rename_columns, substitute_values, value_key
from survey_doctor.values import ValueIssue, validate_values

ColumnRef = Any  # header text, column position, or "@<position>"


def identity_key_text(value: Any) -> str:
    """Duplicate-group key for a user-supplied identity value (``50.0`` and ``"050"`` give ``"50"``)."""
    cell = to_cell(value)
    key = canonical_key(cell)
    return key if key is not None else cell.text.strip()


@dataclass(frozen=True)
class TentativeState:
    headers: tuple[str, ...]
    renamed_rows: tuple[Row, ...]
    rows: tuple[Row, ...]
    pending_corrections: tuple[ValueCorrection, ...]
    corrections: dict[str, Any]
    value_issues: tuple[ValueIssue, ...]
    duplicate_groups: tuple[DuplicateGroup, ...]


@dataclass
class ReconciliationSession:
    headers: tuple[str, ...]
    rows: tuple[Row, ...]
    schema: SchemaProfile
    suggestions: SuggestionSet
    current_year: int
    manual_overrides: dict[int, str] = field(default_factory=dict)
    dropped_columns: set[int] = field(default_factory=set)
    duplicate_choices: dict[str, int] = field(default_factory=dict)
    value_overrides: dict[int, Any] = field(default_factory=dict)
    value_corrections: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False

    @classmethod
    def from_suggestions(
        cls,
        headers: Sequence[str],
        rows: Sequence[Row],
        schema: SchemaProfile | str,
        suggestion_set: SuggestionSet,
        current_year: int,
    ) -> "ReconciliationSession":
        return cls(
            headers=tuple(headers),
            rows=tuple(rows),
            schema=resolve_profile(schema),
            suggestions=suggestion_set,
            current_year=current_year,
        )

    # ── decisions ────────────────────────────────────────────────────────────

    def _positions(self, column: ColumnRef) -> list[int]:
        if isinstance(column, int) and not isinstance(column, bool):
            if not 0 <= column < len(self.headers):
                raise IndexError(f"Column position {column} out of range (0..{len(self.headers) - 1})")
            return [column]
        if isinstance(column, str) and column not in self.headers and column[1:].isdigit() and column.startswith("@"):
            return self._positions(int(column[1:]))
        suggested = [s.position for s in self.suggestions.suggestions if s.source == column]
        if suggested:
            return suggested
        found = [position for position, header in enumerate(self.headers) if header == column]
        if not found:
            raise KeyError(f"No column named '{column}'")
        return found

    def override(self, column: ColumnRef, name: str) -> None:
        name = str(name).strip()
        if not name:
            raise ValueError("Override name must not be empty; use drop_column to delete a column")
        for position in self._positions(column):
            self.manual_overrides[position] = name
            self.dropped_columns.discard(position)

    def drop_column(self, column: ColumnRef) -> None:
        for position in self._positions(column):
            self.dropped_columns.add(position)

    def restore_column(self, column: ColumnRef) -> None:
        for position in self._positions(column):
            self.dropped_columns.discard(position)

    def choose_duplicate(self, identity_key: Any, row_index: int) -> None:
        self.duplicate_choices[identity_key_text(identity_key)] = int(row_index)

    def override_value(self, row_index: int, value: Any) -> None:
        if not 0 <= int(row_index) < len(self.rows):
            raise IndexError(f"Row index {row_index} out of range (0..{len(self.rows) - 1})")
        self.value_overrides[int(row_index)] = value

    def correct_value(self, raw: Any, value: Any) -> None:
        self.value_corrections[value_key(to_cell(raw))] = value

    def cancel(self) -> None:
        self.manual_overrides.clear()
        self.dropped_columns.clear()
        self.duplicate_choices.clear()
        self.value_overrides.clear()
        self.value_corrections.clear()
        self.cancelled = True

    # ── derived state ────────────────────────────────────────────────────────

    def resolved_targets(self) -> dict[int, str | None]:
        """Position -> final header for every column the session touches; ``None`` drops it."""
        suggested = {s.position: s.target for s in self.suggestions.suggestions}
        targets: dict[int, str | None] = {}
        for position in sorted({*suggested, *self.manual_overrides, *self.dropped_columns}):
            if position in self.dropped_columns:
                targets[position] = None
            else:
                targets[position] = self.manual_overrides.get(position, suggested.get(position))
        return targets

    def unresolved(self) -> list[Suggestion]:
        return [
            s
            for s in self.suggestions.suggestions
            if s.position not in self.dropped_columns
            and s.position not in self.manual_overrides
            and not s.target
        ]

    def collisions(self) -> tuple[Collision, ...]:
        targets = self.resolved_targets()
        renamed = [
            (position, self.headers[position], target)
            for position, target in targets.items()
            if target is not None
        ]
        kept = [(position, header) for position, header in enumerate(self.headers) if position not in targets]
        return find_collisions(renamed, kept, self.schema)

    def tentative(self) -> TentativeState:
        headers, renamed = rename_columns(self.headers, self.rows, self.resolved_targets(), self.schema)
        column = self.schema.identity_column
        raw_issues = validate_values(headers, renamed, self.schema, self.current_year)
        pending = value_corrections(headers, renamed, raw_issues)
        corrections: dict[str, Any] = {
            c.original: c.suggested for c in pending if c.column == column and c.suggested is not None
        }
        corrections.update(self.value_corrections)
        rows = substitute_values(renamed, column, self.value_overrides, corrections)
        issues = validate_values(headers, rows, self.schema, self.current_year)
        groups = find_duplicate_groups(headers, rows, self.schema, self.current_year, issues)
        return TentativeState(headers, renamed, rows, pending, corrections, issues, groups)

    def duplicate_groups(self) -> tuple[DuplicateGroup, ...]:
        return self.tentative().duplicate_groups

    def chosen_rows(self, groups: Sequence[DuplicateGroup] | None = None) -> dict[str, int]:
        """Identity key -> surviving row index, falling back to each group's default."""
        if groups is None:
            groups = self.duplicate_groups()
        chosen = {}
        for group in groups:
            choice = self.duplicate_choices.get(group.identity_key)
            chosen[group.identity_key] = choice if choice in group.row_indexes else group.default_choice
        return chosen

    def blockers(self) -> list[str]:
        if self.cancelled:
            return ["Session was cancelled; start a new one from fresh suggestions"]

        found: list[str] = []
        for suggestion in self.unresolved():
            if suggestion.kind == DUPLICATE:
                found.append(f"Column '{suggestion.source}' appears more than once; rename or delete this copy")
            else:
                found.append(f"No confident fix for column '{suggestion.source}'; rename or delete it")

        for position, name in sorted(self.manual_overrides.items()):
            if position in self.dropped_columns:
                continue
            reason = invalid_reason(name, self.schema, self.current_year)
            if reason is not None:
                found.append(f"'{name}' is not a valid column name for '{self.headers[position]}' ({reason})")

        found.extend(collision.to_error().message for collision in self.collisions())

        state = self.tentative()
        for name in missing_columns(state.headers, self.schema):
            if name == MISSING_SEASON_PLACEHOLDER:
                found.append("No season measurement columns would remain")
            else:
                found.append(f"Required column '{name}' would be missing")

        for issue in state.value_issues:
            found.append(issue.to_error().message + "; set a value for this row or correct the value")

        groups = {group.identity_key: group for group in state.duplicate_groups}
        for key, row_index in sorted(self.duplicate_choices.items()):
            group = groups.get(key)
            if group is not None and row_index not in group.row_indexes:
                found.append(
                    f"Row {row_index} is not one of the duplicate rows for {group.column} {key} "
                    f"({', '.join(str(index) for index in group.row_indexes)})"
                )
        return found

    @property
    def can_apply(self) -> bool:
        return not self.blockers()

    def apply_decisions(self, decisions: Mapping[str, Any]) -> None:
        """Load a decisions document (the JSON shape written by ``survey-doctor suggest``)."""
        for source, name in (decisions.get("overrides") or {}).items():
            self.override(source, name)
        for source in decisions.get("drop") or []:
            self.drop_column(source)
        for key, row_index in (decisions.get("duplicates") or {}).items():
            self.choose_duplicate(key, row_index)
        for row_index, value in (decisions.get("values") or {}).items():
            self.override_value(int(row_index), value)
        for raw, value in (decisions.get("corrections") or {}).items():
            self.correct_value(raw, value)

    def to_dict(self) -> dict:
        targets = self.resolved_targets()
        state = self.tentative()
        blockers = self.blockers()
        return {
            "resolved_targets": [
                {"position": position, "from": self.headers[position], "to": target}
                for position, target in targets.items()
            ],
            "corrections": dict(sorted(state.corrections.items())),
            "duplicate_choices": self.chosen_rows(state.duplicate_groups),
            "blockers": blockers,
            "can_apply": not blockers,
        }


def starter_decisions(suggestion_set: SuggestionSet, groups: Sequence[DuplicateGroup] = ()) -> dict:
    """Editable decisions document pre-filled with every automatic choice."""
    overrides: dict[str, str] = {}
    drop: list[str] = []
    sources = [suggestion.source for suggestion in suggestion_set.suggestions]
    for suggestion in suggestion_set.suggestions:
        ref = suggestion.source if sources.count(suggestion.source) == 1 else f"@{suggestion.position}"
        if suggestion.target:
            overrides[ref] = suggestion.target
        elif suggestion.kind == DUPLICATE:
            drop.append(ref)
    corrections = {
        c.original: c.suggested for c in suggestion_set.value_corrections if c.suggested is not None
    }
    return {
        "overrides": overrides,
        "drop": drop,
        "duplicates": {group.identity_key: group.default_choice for group in groups},
        "values": {},
        "corrections": corrections,
    }
