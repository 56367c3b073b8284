"""
parser.py: turn an uploaded sheet into headers and immutable rows.

Public API:
    headers, rows = parse(text)
    result        = parse_text(text)       # same, plus warnings
    text          = load_text("upload.csv") # .csv .tsv .txt .xlsx

Parsing never raises on malformed rows: short rows are padded, blank lines are
skipped (a line of bare delimiters is a row of empty cells) and anything
unusual is recorded in ``ParseResult.warnings``.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from pathlib import Path

from survey_doctor.cells import Row

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm"}
ALL_FORMATS = TEXT_FORMATS | EXCEL_FORMATS

BOM = "\ufeff"


@dataclass(frozen=True)
class ParseResult:
    headers: tuple[str, ...]
    rows: tuple[Row, ...]
    warnings: tuple[str, ...] = field(default=())


def _is_blank_line(record: list[str]) -> bool:
    # ",," is a row of empty cells, not a blank line
    return not record or (len(record) == 1 and not record[0].strip())


def parse_text(text: str) -> ParseResult:
    if text.startswith(BOM):
        text = text[len(BOM):]
    records = [
        record
        for record in csv.reader(io.StringIO(text.replace("\x00", "")))
        if not _is_blank_line(record)
    ]
    while records and not any(cell.strip() for cell in records[0]):
        records.pop(0)
    if not records:
        return ParseResult((), ())

    headers = tuple(records[0])
    width = len(headers)
    rows: list[Row] = []
    warnings: list[str] = []
    padded = 0
    overflow: list[int] = []
    for row_index, record in enumerate(records[1:]):
        if len(record) < width:
            padded += 1
        elif len(record) > width and any(cell.strip() for cell in record[width:]):
            overflow.append(row_index)
        rows.append(Row.build(headers, record))

    if padded:
        warnings.append(f"{padded} row(s) had fewer fields than the header and were padded with empty cells")
    if overflow:
        sample = ", ".join(str(number) for number in overflow[:10])
        extra = f" (+{len(overflow) - 10} more)" if len(overflow) > 10 else ""
        warnings.append(f"Values beyond the last header were dropped on row index(es) {sample}{extra}")
    return ParseResult(headers, tuple(rows), tuple(warnings))


def parse(text: str) -> tuple[tuple[str, ...], tuple[Row, ...]]:
    result = parse_text(text)
    return result.headers, result.rows


# ══════════════════════════════════════════════════════════════════════════════
# FILE LOADING
# ══════════════════════════════════════════════════════════════════════════════

def detect_encoding(raw: bytes) -> str:
    import chardet

    detected = chardet.detect(raw).get("encoding") or "utf-8"
    return detected


def decode_upload(raw: bytes) -> str:
    """
    Decode uploaded bytes line by line.

    UTF-8 first, then the chardet guess, then latin-1 so a single stray byte
    never makes the whole upload unreadable.
    """
    preferred = None
    try:
        raw.decode("utf-8")
    except UnicodeDecodeError:
        preferred = detect_encoding(raw)

    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for encoding in ("utf-8", preferred, "latin-1"):
            if not encoding:
                continue
            try:
                decoded = raw_line.decode(encoding)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def _workbook_to_text(path: Path) -> str:
    from openpyxl import load_workbook

    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    try:
        sheet = next(
            (ws for ws in workbook.worksheets if getattr(ws, "sheet_state", "visible") == "visible"),
            None,
        )
        if sheet is None:
            raise ValueError("Workbook has no visible sheets.")
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        for values in sheet.iter_rows(values_only=True):
            if all(value is None for value in values):
                continue
            writer.writerow(["" if value is None else _workbook_value(value) for value in values])
        return buffer.getvalue()
    finally:
        workbook.close()


def _workbook_value(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def load_text(path: str | Path) -> str:
    """
    Read an upload from disk as comma-delimited text.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if suffix not in ALL_FORMATS:
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {', '.join(sorted(ALL_FORMATS))}")
    if suffix in EXCEL_FORMATS:
        return _workbook_to_text(path)

    text = decode_upload(path.read_bytes())
    if suffix == ".tsv":
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerows(csv.reader(io.StringIO(text), delimiter="\t"))
        return buffer.getvalue()
    return text
