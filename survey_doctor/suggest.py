"""
Fix suggestions for invalid headers and offending identity values.

Header matching is an explicit ordered list of ``Matcher`` entries per profile,
tried top to bottom; the first matcher whose pattern fires decides the target,
even when that decision is "no confident correction". Keeping the ladder as data
makes each rung testable on its own.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from rapidfuzz import fuzz, process

from survey_doctor.cells import Numeric, Row, format_number
from survey_doctor.errors import BAD_YEAR_FORMAT, FUTURE_YEAR, SuggestionCollisionError
from survey_doctor.headers import DUPLICATE, INVALID, HeaderReport, column_occupancy
from survey_doctor.schemas import (
    DMI_STEP,
    SEASONS,
    SchemaProfile,
    canonical_header,
    expand_year,
    header_key,
    is_four_digit_year,
    profile as resolve_profile,
    season_header,
)
from survey_doctor.transform import rename_columns, value_key
from survey_doctor.values import NOT_DIVISIBLE_KIND, ValueIssue, validate_values

FUZZY_CUTOFF = 75.0
DIGIT_RUN_RE = re.compile(r"\d+")
DECOMPOSE_RE = re.compile(r"^\s*([A-Za-z]+)[\s_\-.]*(\d*)[\s_\-.]*(\w*)\s*$")


@dataclass(frozen=True)
class Resolution:
    target: str | None
    reason: str


@dataclass(frozen=True)
class Matcher:
    name: str
    pattern: re.Pattern
    extract: Callable[[re.Match, str, int], Resolution]


@dataclass(frozen=True)
class Suggestion:
    source: str
    target: str | None
    position: int
    reason: str
    kind: str = INVALID

    def to_dict(self) -> dict:
        return {
            "from": self.source,
            "to": self.target,
            "position": self.position,
            "reason": self.reason,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class Collision:
    target: str
    sources: tuple[str, ...]
    positions: tuple[int, ...]

    def to_error(self) -> SuggestionCollisionError:
        names = ", ".join(f"'{source}'" for source in self.sources)
        return SuggestionCollisionError(
            f"Columns {names} would all be named '{self.target}'; choose one, rename or delete the others",
            column=self.target,
            value=list(self.sources),
        )

    def to_dict(self) -> dict:
        return {"target": self.target, "sources": list(self.sources), "positions": list(self.positions)}


@dataclass(frozen=True)
class ValueCorrection:
    column: str
    original: str
    suggested: str | None
    row_indexes: tuple[int, ...]
    kind: str

    @property
    def automatic(self) -> bool:
        return self.suggested is not None

    def to_dict(self) -> dict:
        return {
            "column": self.column,
            "original": self.original,
            "suggested": self.suggested,
            "rows": list(self.row_indexes),
            "kind": self.kind,
        }


@dataclass(frozen=True)
class SuggestionSet:
    suggestions: tuple[Suggestion, ...]
    collisions: tuple[Collision, ...]
    value_corrections: tuple[ValueCorrection, ...]
    occupancy: tuple[tuple[int, int], ...]

    def collision_errors(self) -> list[SuggestionCollisionError]:
        return [collision.to_error() for collision in self.collisions]

    def to_dict(self) -> dict:
        occupancy = dict(self.occupancy)
        return {
            "suggestions": [
                {**suggestion.to_dict(), "non_empty_rows": occupancy.get(suggestion.position, 0)}
                for suggestion in self.suggestions
            ],
            "collisions": [collision.to_dict() for collision in self.collisions],
            "value_corrections": [correction.to_dict() for correction in self.value_corrections],
        }


# ══════════════════════════════════════════════════════════════════════════════
# MATCHER LADDERS
# ══════════════════════════════════════════════════════════════════════════════

def year_token(header: str) -> str | None:
    """First 2- or 4-digit run in the header; ``None`` when no such run exists."""
    for run in DIGIT_RUN_RE.findall(header):
        if len(run) in (2, 4):
            return run
    return None


def _season_from(token: str) -> str:
    return "Winter" if token.strip().lower().startswith(("w", "e")) else "Summer"


def _season_resolution(season: str, header: str, current_year: int) -> Resolution:
    token = year_token(header)
    if token is None:
        return Resolution(None, BAD_YEAR_FORMAT)
    year = expand_year(token)
    if not is_four_digit_year(year):
        return Resolution(None, BAD_YEAR_FORMAT)
    if year > current_year:
        return Resolution(None, FUTURE_YEAR)
    return Resolution(season_header(season, year), "")


def _season_extractor(name: str) -> Callable[[re.Match, str, int], Resolution]:
    def extract(match: re.Match, header: str, current_year: int) -> Resolution:
        resolved = _season_resolution(_season_from(match.group(1)), header, current_year)
        if resolved.target is None:
            return resolved
        return Resolution(resolved.target, name)

    return extract


def _fixed(target: str, name: str) -> Callable[[re.Match, str, int], Resolution]:
    def extract(match: re.Match, header: str, current_year: int) -> Resolution:
        return Resolution(target, name)

    return extract


IDENTITY_MATCHERS: tuple[Matcher, ...] = (
    Matcher("canonical-variant", re.compile(r"^\s*dmi\s*$", re.I), _fixed("DMI", "canonical-variant")),
    Matcher("identity-variant", re.compile(r"^\s*dmi[\w\-]*\s*$", re.I), _fixed("DMI", "identity-variant")),
)

SEASON_MATCHERS: tuple[Matcher, ...] = (
    Matcher(
        "canonical-variant",
        re.compile(r"^\s*(winter|summer)[\s_\-]*\d+\s*$", re.I),
        _season_extractor("canonical-variant"),
    ),
    Matcher(
        "near-spelling",
        re.compile(r"(win(?:t)?e?r|sum(?:m)?e?r)", re.I),
        _season_extractor("near-spelling"),
    ),
    Matcher(
        "common-typo",
        re.compile(r"^\s*(einter|wintr|wntr|wint|winr|win|wi|sumer|summ|smr|sumr|sum|su)(?![a-z])", re.I),
        _season_extractor("common-typo"),
    ),
    Matcher(
        "season-initial",
        re.compile(r"^\s*([ws])(?=[\s_\-]?\d)", re.I),
        _season_extractor("season-initial"),
    ),
)

SEASON_ABBREVIATIONS = {
    "Year": re.compile(r"^(y(ea(r)?)?|yr|yrs|yyyy)$", re.I),
    "Winter": re.compile(r"^(w(in(t(er)?)?)?|wi|ww|wtr|wntr|wint?r)$", re.I),
    "Summer": re.compile(r"^(s(um(m(er)?)?)?|su|ss|smr|sume?r?)$", re.I),
}

CRACK_ABBREVIATIONS = {
    "Year": SEASON_ABBREVIATIONS["Year"],
    "Small": re.compile(r"^(s(ma(ll)?)?|sm|sml)$", re.I),
    "Medium": re.compile(r"^(m(ed(i(um)?)?)?|md|mid|mdm)$", re.I),
    "Large": re.compile(r"^(l(ar(ge)?)?|lg|lrg)$", re.I),
}


def _fixed_ladder(abbreviations: dict[str, re.Pattern]) -> tuple[Matcher, ...]:
    ladder = [
        Matcher("canonical-variant", re.compile(rf"^\s*{column}\s*$", re.I), _fixed(column, "canonical-variant"))
        for column in abbreviations
    ]
    for column, pattern in abbreviations.items():
        inner = pattern.pattern[1:-1]
        ladder.append(
            Matcher("abbreviation", re.compile(rf"^\s*{inner}\s*$", re.I), _fixed(column, "abbreviation"))
        )
    return tuple(ladder)


FIXED_MATCHERS: dict[str, tuple[Matcher, ...]] = {
    "lte_season": _fixed_ladder(SEASON_ABBREVIATIONS),
    "lte_crack": _fixed_ladder(CRACK_ABBREVIATIONS),
}


def run_ladder(ladder: Iterable[Matcher], header: str, current_year: int) -> Resolution | None:
    for matcher in ladder:
        match = matcher.pattern.search(header)
        if match:
            return matcher.extract(match, header, current_year)
    return None


def fuzzy_pick(word: str, choices: Sequence[str], cutoff: float = FUZZY_CUTOFF) -> str | None:
    """Best fuzzy choice for ``word``; ``None`` when nothing clears the cutoff or two choices tie."""
    lowered = {choice: choice.lower() for choice in choices}
    ranked = process.extract(word.lower(), lowered, scorer=fuzz.ratio, limit=2)
    if not ranked or ranked[0][1] < cutoff:
        return None
    if len(ranked) > 1 and ranked[1][1] == ranked[0][1]:
        return None
    return ranked[0][2]


def _decomposed_word(header: str) -> str | None:
    match = DECOMPOSE_RE.match(header)
    if not match:
        return None
    return match.group(1)


def suggest_header(header: str, schema: SchemaProfile | str, current_year: int) -> Resolution:
    """
    Propose a canonical name for one invalid header.

    Ladder: exact canonical variants, abbreviation expansions, then a
    letters-then-digits-then-suffix decomposition whose letter part is matched
    again and finally compared fuzzily against the profile's column names.
    """
    schema = resolve_profile(schema)
    if schema.is_dynamic:
        # any dmi-prefixed header is the identity column, whatever digits follow
        resolved = run_ladder(IDENTITY_MATCHERS, header, current_year)
        if resolved is not None:
            return resolved

    if any(year > current_year for year in map(int, re.findall(r"(?<!\d)\d{4}(?!\d)", header))):
        return Resolution(None, FUTURE_YEAR)

    if schema.is_dynamic:
        resolved = run_ladder(SEASON_MATCHERS, header, current_year)
        if resolved is not None:
            return resolved
        word = _decomposed_word(header)
        if word:
            season = fuzzy_pick(word, SEASONS)
            if season is not None:
                resolved = _season_resolution(season, header, current_year)
                return Resolution(resolved.target, "fuzzy" if resolved.target else resolved.reason)
        return Resolution(None, "no-confident-match")

    ladder = FIXED_MATCHERS[schema.name]
    resolved = run_ladder(ladder, header, current_year)
    if resolved is not None:
        return resolved
    word = _decomposed_word(header)
    if word and word != header.strip():
        resolved = run_ladder(ladder, word, current_year)
        if resolved is not None:
            return Resolution(resolved.target, "decomposition")
    if word:
        column = fuzzy_pick(word, schema.required_columns)
        if column is not None:
            return Resolution(column, "fuzzy")
    return Resolution(None, "no-confident-match")


# ══════════════════════════════════════════════════════════════════════════════
# COLLISIONS AND VALUE CORRECTIONS
# ══════════════════════════════════════════════════════════════════════════════

def find_collisions(
    renamed: Sequence[tuple[int, str, str]],
    kept: Sequence[tuple[int, str]],
    schema: SchemaProfile,
) -> tuple[Collision, ...]:
    """
    ``renamed`` holds ``(position, source, target)`` for every resolved
    suggestion, ``kept`` the ``(position, header)`` pairs left untouched. A
    collision is any canonical key claimed more than once where at least one
    claimant is a rename.
    """
    claims: dict[str, list[tuple[int, str, str, bool]]] = {}
    for position, header in kept:
        claims.setdefault(header_key(header, schema), []).append(
            (position, header, canonical_header(header, schema), False)
        )
    for position, source, target in renamed:
        claims.setdefault(header_key(target, schema), []).append((position, source, target, True))

    collisions = []
    for entries in claims.values():
        if len(entries) < 2 or not any(is_rename for *_rest, is_rename in entries):
            continue
        entries.sort(key=lambda entry: entry[0])
        target = next(target for _p, _s, target, is_rename in entries if is_rename)
        collisions.append(
            Collision(
                target=target,
                sources=tuple(source for _p, source, _t, _r in entries),
                positions=tuple(position for position, *_rest in entries),
            )
        )
    collisions.sort(key=lambda collision: collision.positions[0])
    return tuple(collisions)


def nearest_multiple(value: float, step: int = DMI_STEP) -> float:
    # half rounds up, matching the spreadsheet tools the surveys come from
    return math.floor(value / step + 0.5) * step


def automatic_correction(issue: ValueIssue, cell) -> str | None:
    if issue.kind == NOT_DIVISIBLE_KIND and isinstance(cell, Numeric) and cell.value >= 0:
        return format_number(nearest_multiple(cell.value))
    return None


def value_corrections(
    headers: Sequence[str],
    rows: Sequence[Row],
    issues: Sequence[ValueIssue],
) -> tuple[ValueCorrection, ...]:
    """One correction per distinct offending value, in order of first appearance."""
    grouped: dict[tuple[str, str], dict] = {}
    for issue in issues:
        cell = rows[issue.row_index].get(issue.column)
        key = (issue.column, value_key(cell))
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = {
                "original": key[1],
                "suggested": automatic_correction(issue, cell),
                "rows": [issue.row_index],
                "kind": issue.kind,
            }
        else:
            entry["rows"].append(issue.row_index)
    return tuple(
        ValueCorrection(column, entry["original"], entry["suggested"], tuple(entry["rows"]), entry["kind"])
        for (column, _key), entry in grouped.items()
    )


def suggest_fixes(
    report: HeaderReport,
    rows: Sequence[Row],
    schema: SchemaProfile | str,
    current_year: int | None = None,
) -> SuggestionSet:
    schema = resolve_profile(schema)
    year = report.current_year if current_year is None else current_year
    headers = report.headers

    suggestions: list[Suggestion] = []
    occupancy: list[tuple[int, int]] = []
    for position, (header, cls) in enumerate(zip(headers, report.classes)):
        if cls == INVALID:
            resolved = suggest_header(header, schema, year)
            suggestions.append(Suggestion(header, resolved.target, position, resolved.reason, INVALID))
        elif cls == DUPLICATE:
            suggestions.append(Suggestion(header, None, position, "duplicate-column", DUPLICATE))
        else:
            continue
        occupancy.append((position, column_occupancy(rows, position)))

    renamed = [(s.position, s.source, s.target) for s in suggestions if s.target]
    touched = {s.position for s in suggestions}
    kept = [(position, header) for position, header in enumerate(headers) if position not in touched]
    collisions = find_collisions(renamed, kept, schema)

    targets = {s.position: s.target for s in suggestions}
    tentative_headers, tentative_rows = rename_columns(headers, rows, targets, schema)
    issues = validate_values(tentative_headers, tentative_rows, schema, year)
    corrections = value_corrections(tentative_headers, tentative_rows, issues)

    return SuggestionSet(
        suggestions=tuple(suggestions),
        collisions=collisions,
        value_corrections=corrections,
        occupancy=tuple(occupancy),
    )
