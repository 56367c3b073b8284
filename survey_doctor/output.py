"""Serializers for cleaned datasets: CSV text, styled workbook, DataFrame and blank templates."""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any

import openpyxl
import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from survey_doctor.apply import CORRECT_VALUE, CleanedDataset
from survey_doctor.cells import Numeric, to_cell
from survey_doctor.schemas import SchemaProfile, template_rows

CHANGE_LOG_HEADERS = ["original_row_index", "column_affected", "original_value", "new_value", "action_taken", "note"]

# Accent fill for corrected identity cells
FILL_MODIFIED = PatternFill("solid", fgColor="FFF2CC")   # soft yellow


def to_csv_text(dataset: CleanedDataset) -> str:
    return dataset.to_csv_text()


def _cell_value(text: str) -> Any:
    cell = to_cell(text)
    if isinstance(cell, Numeric):
        return int(cell.value) if cell.value.is_integer() else cell.value
    return cell.text if cell.text else None


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, col_widths: list[int], header_color: str):
    """Apply bold header, color, frozen row, and column widths."""
    fill = _header_fill(header_color)
    font = _header_font()
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str("" if val is None else val)) + 2))
    return [max(min_width, min(max_width, w)) for w in widths]


def write_workbook(dataset: CleanedDataset, output_path: Path) -> Path:
    """Write ``Clean Data`` and ``Change Log`` sheets; corrected identity cells are highlighted."""
    output_path = Path(output_path)
    wb = openpyxl.Workbook()

    # ── Sheet 1: Clean Data ──────────────────────────────────────────────
    ws1 = wb.active
    ws1.title = "Clean Data"
    headers = list(dataset.headers)
    rows_for_width: list[list] = [headers]
    ws1.append(headers)
    corrected = {
        (change.row_index, change.column) for change in dataset.changes if change.kind == CORRECT_VALUE
    }
    for out_index, row in enumerate(dataset.rows):
        row_out = [_cell_value(row.get(header, "")) for header in headers]
        ws1.append(row_out)
        rows_for_width.append(row_out)
        source_index = dataset.source_rows[out_index] if out_index < len(dataset.source_rows) else None
        for col_index, header in enumerate(headers, start=1):
            if (source_index, header) in corrected:
                ws1.cell(ws1.max_row, col_index).fill = FILL_MODIFIED
    _style_sheet(ws1, _infer_col_widths(rows_for_width), "4CAF50")   # green

    # ── Sheet 2: Change Log ──────────────────────────────────────────────
    ws2 = wb.create_sheet("Change Log")
    log_rows: list[list] = [CHANGE_LOG_HEADERS]
    ws2.append(CHANGE_LOG_HEADERS)
    for change in dataset.changes:
        row_out = [change.row_index, change.column, change.before, change.after, change.kind, change.note]
        ws2.append(row_out)
        log_rows.append(row_out)
    _style_sheet(ws2, _infer_col_widths(log_rows), "1565C0")   # blue

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path


def to_frame(dataset: CleanedDataset) -> pd.DataFrame:
    """Cleaned rows as a DataFrame; numeric columns come back as numbers."""
    frame = pd.DataFrame.from_records(
        [[_cell_value(row.get(header, "")) for header in dataset.headers] for row in dataset.rows],
        columns=list(dataset.headers),
    )
    for column in frame.columns:
        converted = pd.to_numeric(frame[column], errors="coerce")
        if converted.notna().sum() == frame[column].notna().sum():
            frame[column] = converted
    return frame


def template_csv(profile: str | SchemaProfile) -> str:
    headers, rows = template_rows(profile)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([row.get(header, "") for header in headers])
    return buffer.getvalue()
