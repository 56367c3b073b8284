"""
Tagged spreadsheet cells and the immutable row type built from them.

Every cell is one of ``Empty``, ``Numeric`` or ``Text``. Validators work on the
tag instead of coercing strings on the fly, so a blank cell can never turn into
a silent NaN halfway through a check.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterator, Union

NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
FOUR_DIGIT_RE = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class Empty:
    text: str = ""


@dataclass(frozen=True)
class Numeric:
    value: float
    text: str


@dataclass(frozen=True)
class Text:
    text: str


Cell = Union[Empty, Numeric, Text]
EMPTY = Empty()


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def to_cell(raw: Any) -> Cell:
    if isinstance(raw, (Empty, Numeric, Text)):
        return raw
    if raw is None:
        return EMPTY
    if isinstance(raw, bool):
        return Text(str(raw))
    if isinstance(raw, (int, float)):
        number = float(raw)
        if math.isnan(number):
            return EMPTY
        if math.isinf(number):
            return Text(str(raw))
        return Numeric(number, format_number(number))
    text = str(raw).replace("\x00", "")
    stripped = text.strip()
    if not stripped:
        return EMPTY
    if NUMBER_RE.fullmatch(stripped):
        number = float(stripped)
        if math.isfinite(number):
            return Numeric(number, text)
    return Text(text)


def is_empty(cell: Cell) -> bool:
    return isinstance(cell, Empty)


def canonical_key(cell: Cell) -> str | None:
    """Identity key for duplicate grouping: ``"050"`` and ``"50.0"`` both become ``"50"``."""
    if isinstance(cell, Numeric):
        return format_number(cell.value)
    return None


def four_digit_year(cell: Cell) -> int | None:
    stripped = cell.text.strip()
    if FOUR_DIGIT_RE.fullmatch(stripped):
        return int(stripped)
    return None


@dataclass(frozen=True)
class Row:
    """One parsed data row, positionally aligned with its sheet's headers."""

    headers: tuple[str, ...]
    cells: tuple[Cell, ...]

    @classmethod
    def build(cls, headers: tuple[str, ...] | list[str], values: list[Any] | tuple[Any, ...]) -> "Row":
        headers = tuple(headers)
        cells = [to_cell(value) for value in values[: len(headers)]]
        cells.extend([EMPTY] * (len(headers) - len(cells)))
        return cls(headers, tuple(cells))

    def position(self, column: str) -> int | None:
        try:
            return self.headers.index(column)
        except ValueError:
            return None

    def get(self, column: str, default: Cell = EMPTY) -> Cell:
        index = self.position(column)
        if index is None:
            return default
        return self.cells[index]

    def __getitem__(self, key: str | int) -> Cell:
        if isinstance(key, int):
            return self.cells[key]
        index = self.position(key)
        if index is None:
            raise KeyError(key)
        return self.cells[index]

    def __contains__(self, column: object) -> bool:
        return column in self.headers

    def __iter__(self) -> Iterator[str]:
        return iter(self.headers)

    def __len__(self) -> int:
        return len(self.headers)

    def items(self) -> list[tuple[str, Cell]]:
        return list(zip(self.headers, self.cells))

    def text(self, column: str) -> str:
        return self.get(column).text

    def with_cell(self, position: int, cell: Cell) -> "Row":
        cells = list(self.cells)
        cells[position] = cell
        return Row(self.headers, tuple(cells))

    def to_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for header, cell in zip(self.headers, self.cells):
            result.setdefault(header, cell.text)
        return result
