"""
export.py — writes enriched records to .xlsx, .csv or .json

Public API:
    frame = records_to_frame(records)
    info  = export_records(records, "songs.xlsx", approved_only=True)

The workbook gets a styled header row, frozen panes and column widths
inferred from the data. CSV output is semicolon-delimited UTF-8 with a BOM so
spreadsheet apps open accented text correctly.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import openpyxl
import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from songsheet.models import ApprovalStatus, EnrichedRecord

logger = logging.getLogger(__name__)

# (record field, column label, exported by default)
EXPORT_COLUMNS: list[tuple[str, str, bool]] = [
    ("title", "Original Title", True),
    ("artist", "Original Artist", False),
    ("found_artist", "Found Artist", True),
    ("found_composer", "Found Composer", True),
    ("release_year", "Release Year", True),
    ("search_status", "Search Status", True),
    ("notes", "Notes", False),
    ("approval_status", "Approval Status", False),
    ("source", "Source", False),
    ("id", "ID", False),
]
DEFAULT_COLUMNS = [name for name, _, default in EXPORT_COLUMNS if default]
COLUMN_LABELS = {name: label for name, label, _ in EXPORT_COLUMNS}

EXPORT_FORMATS = {"xlsx", "csv", "json"}
SHEET_TITLE = "Songs"
HEADER_COLOR = "1565C0"
CSV_DELIMITER = ";"


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, col_widths: list[int], header_color: str):
    """Bold coloured header, frozen first row, column widths."""
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
    for row in rows[1:sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def _resolve_columns(columns: Optional[list[str]]) -> list[str]:
    chosen = list(columns) if columns else list(DEFAULT_COLUMNS)
    unknown = [name for name in chosen if name not in COLUMN_LABELS]
    if unknown:
        raise ValueError(f"Unknown export columns: {unknown}. Valid: {list(COLUMN_LABELS)}")
    return chosen


def records_to_frame(
    records: list[EnrichedRecord],
    columns: Optional[list[str]] = None,
    approved_only: bool = False,
) -> pd.DataFrame:
    chosen = _resolve_columns(columns)
    if approved_only:
        records = [r for r in records if r.approval_status == ApprovalStatus.APPROVED.value]
    rows = [{COLUMN_LABELS[name]: getattr(record, name) or "" for name in chosen} for record in records]
    return pd.DataFrame(rows, columns=[COLUMN_LABELS[name] for name in chosen])


def _write_xlsx(frame: pd.DataFrame, path: Path) -> None:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    headers = list(frame.columns)
    rows_for_width: list[list[Any]] = [headers]
    ws.append(headers)
    for row in frame.itertuples(index=False, name=None):
        values = list(row)
        ws.append(values)
        rows_for_width.append(values)
    _style_sheet(ws, _infer_col_widths(rows_for_width), HEADER_COLOR)

    if COLUMN_LABELS["notes"] in headers:
        notes_col = get_column_letter(headers.index(COLUMN_LABELS["notes"]) + 1)
        for cell in ws[notes_col][1:]:
            cell.alignment = Alignment(wrap_text=True, vertical="top")
    wb.save(path)


def export_records(
    records: list[EnrichedRecord],
    path: "str | Path",
    fmt: Optional[str] = None,
    approved_only: bool = False,
    columns: Optional[list[str]] = None,
) -> dict[str, Any]:
    """
    Write ``records`` to ``path``; the format defaults to the path suffix.

    Raises:
        ValueError if the format or a column name is unknown.
    """
    path = Path(path)
    fmt = (fmt or path.suffix.lstrip(".")).lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{fmt}'. Supported: {', '.join(sorted(EXPORT_FORMATS))}")

    frame = records_to_frame(records, columns=columns, approved_only=approved_only)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "xlsx":
        _write_xlsx(frame, path)
    elif fmt == "csv":
        frame.to_csv(path, sep=CSV_DELIMITER, index=False, encoding="utf-8-sig")
    else:
        path.write_text(
            json.dumps(frame.to_dict(orient="records"), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    logger.info("Exported %d records to %s", len(frame), path)
    return {"output_file": str(path), "format": fmt, "rows": len(frame), "columns": list(frame.columns)}
