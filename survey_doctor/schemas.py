"""
Schema registry: the three column shapes a survey upload may take.

``deflection`` sheets carry one ``DMI`` identity column plus any number of
season/year measurement columns (``Winter_2022``, ``Summer 24``...). The two LTE
profiles have a fixed column set keyed by ``Year``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from survey_doctor.errors import UnknownProfileError

SEASONS = ("Winter", "Summer")
SEASON_HEADER_RE = re.compile(r"^(Winter|Summer)[_\s]?(\d{2,4})$")
SEASON_KEY_RE = re.compile(r"^(winter|summer)[_\s]?(\d{2,4})$", re.IGNORECASE)
DMI_LIKE_RE = re.compile(r"^dmi[\w-]*$", re.IGNORECASE)
YEAR_TOKEN_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")
MISSING_SEASON_PLACEHOLDER = "<Season>_<Year>"

DMI_STEP = 50


@dataclass(frozen=True)
class SchemaProfile:
    name: str
    required_columns: tuple[str, ...]
    identity_column: str
    dynamic_pattern: re.Pattern | None = None
    value_validators: tuple[str, ...] = ()
    sample_rows: tuple[dict[str, Any], ...] = field(default=(), compare=False)

    @property
    def is_dynamic(self) -> bool:
        return self.dynamic_pattern is not None

    def expected_description(self) -> str:
        if self.is_dynamic:
            return "'DMI' plus season columns like 'Winter_2022', 'Summer 24' or 'Winter13'"
        return "one of: " + ", ".join(self.required_columns)

    def column_order(self, headers: Iterable[str]) -> list[str]:
        """Sort canonical headers into schema order."""
        headers = list(headers)
        ordered = [column for column in self.required_columns if column in headers]
        if self.is_dynamic:
            seasonal = [header for header in headers if parse_season_header(header) is not None]
            seasonal.sort(key=_season_sort_key)
            ordered.extend(seasonal)
        ordered.extend(header for header in headers if header not in ordered)
        return ordered


def _season_sort_key(header: str) -> tuple[int, int]:
    season, _token, year = parse_season_header(header)
    return (year if year is not None else 0, SEASONS.index(season))


def expand_year(token: str) -> int | None:
    """``'22'`` -> 2022; four-digit tokens unchanged; anything else keeps its own length."""
    text = str(token).strip()
    if not text.isdigit():
        return None
    if len(text) == 2:
        return int("20" + text)
    return int(text)


def is_four_digit_year(year: int | None) -> bool:
    return year is not None and 1000 <= year <= 9999


def season_header(season: str, year: int) -> str:
    return f"{season}_{year}"


def parse_season_header(header: str) -> tuple[str, str, int | None] | None:
    match = SEASON_HEADER_RE.match(header)
    if not match:
        return None
    season, token = match.group(1), match.group(2)
    return season, token, expand_year(token)


def embedded_years(header: str) -> list[int]:
    return [int(token) for token in YEAR_TOKEN_RE.findall(header)]


def header_key(header: str, profile: SchemaProfile) -> str:
    """Normalised identity of a header; two headers with the same key name the same column."""
    text = header.strip()
    if profile.is_dynamic:
        match = SEASON_KEY_RE.match(text)
        if match:
            year = expand_year(match.group(2))
            return f"{match.group(1).lower()}_{year}"
    return text.casefold()


def canonical_header(header: str, profile: SchemaProfile) -> str:
    """Canonical spelling of an already-valid header (season columns become ``Season_YYYY``)."""
    if profile.is_dynamic:
        parsed = parse_season_header(header)
        if parsed is not None and parsed[2] is not None:
            return season_header(parsed[0], parsed[2])
    return header


DEFLECTION = SchemaProfile(
    name="deflection",
    required_columns=("DMI",),
    identity_column="DMI",
    dynamic_pattern=SEASON_HEADER_RE,
    value_validators=("DMI",),
    sample_rows=(
        {"DMI": 0, "Winter_2022": 3.4, "Summer_2022": 3.2, "Winter_2023": 3.6, "Summer_2023": 3.5},
        {"DMI": 50, "Winter_2022": 3.1, "Summer_2022": 3.0, "Winter_2023": 3.3, "Summer_2023": 3.2},
    ),
)

LTE_SEASON = SchemaProfile(
    name="lte_season",
    required_columns=("Year", "Winter", "Summer"),
    identity_column="Year",
    value_validators=("Year",),
    sample_rows=(
        {"Year": 2022, "Winter": 1.2, "Summer": 1.4},
        {"Year": 2023, "Winter": 1.1, "Summer": 1.5},
    ),
)

LTE_CRACK = SchemaProfile(
    name="lte_crack",
    required_columns=("Year", "Small", "Medium", "Large"),
    identity_column="Year",
    value_validators=("Year",),
    sample_rows=(
        {"Year": 2022, "Small": 2, "Medium": 1, "Large": 0},
        {"Year": 2023, "Small": 3, "Medium": 2, "Large": 1},
    ),
)

PROFILES = {item.name: item for item in (DEFLECTION, LTE_SEASON, LTE_CRACK)}


def profile_names() -> tuple[str, ...]:
    return tuple(PROFILES)


def profile(name: str | SchemaProfile) -> SchemaProfile:
    if isinstance(name, SchemaProfile):
        return name
    try:
        return PROFILES[name]
    except KeyError:
        raise UnknownProfileError(str(name), profile_names()) from None


def template_rows(name: str | SchemaProfile) -> tuple[list[str], list[dict[str, Any]]]:
    schema = profile(name)
    rows = [dict(row) for row in schema.sample_rows]
    headers = list(rows[0]) if rows else list(schema.required_columns)
    return headers, rows
