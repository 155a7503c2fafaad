#!/usr/bin/env python3
"""
loader.py — spreadsheet decoder for songsheet

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods

Public API:
    loaded = load_grid("path/to/songs.xlsx")
    rows   = loaded.rows

The decoder only turns a workbook into a 2-D grid of raw cell values taken
from one sheet (the first by default). Styles and formulas are ignored;
formula cells contribute their cached value. Cells covered by a merged range
come back as ``MergedRef`` of the anchor value. Rows with no value at all
are dropped; ``loaded.row_numbers`` keeps the source index of every kept row.
"""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import chardet
import pandas as pd
from openpyxl import load_workbook

from songsheet.cells import row_is_empty, to_cell_value
from songsheet.models import MergedRef, RawGrid

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS   = {".csv", ".tsv", ".txt"}
OPENPYXL_FORMATS = {".xlsx", ".xlsm"}
LEGACY_FORMATS = {".xls"}
ODS_FORMATS    = {".ods"}
ALL_FORMATS    = TEXT_FORMATS | OPENPYXL_FORMATS | LEGACY_FORMATS | ODS_FORMATS


@dataclass
class LoadedGrid:
    rows: RawGrid
    filename: str
    detected_format: str
    sheet_name: Optional[str] = None
    sheet_names: Optional[list[str]] = None
    detected_encoding: Optional[str] = None
    delimiter: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    # source row index (0-based) of each entry in ``rows``
    row_numbers: list[int] = field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════════
# TEXT DECODING
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw)
    return result.get("encoding") or "utf-8"


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line:
      1. Try UTF-8
      2. Try preferred_encoding (chardet result)
      3. Try latin-1
      4. CP1252 with replace (never crashes)
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", "").rstrip("\r"))
    text = "\n".join(decoded_lines)
    return text.lstrip("\ufeff")


def _detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to the candidate that splits the most
    lines into the same number of fields.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = 0.0
    for delim in [",", ";", "\t", "|"]:
        widths = [len(row) for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)]
        if not widths:
            continue
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        if mode_width < 2:
            continue
        score = mode_width * (mode_count / len(widths))
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT READERS
# ══════════════════════════════════════════════════════════════════════════════

def _read_text(data: bytes, filename: str, suffix: str) -> LoadedGrid:
    encoding = _detect_encoding(data)
    text = _read_text_safely(data, encoding)
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)
    rows = [list(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    return LoadedGrid(
        rows=rows,
        filename=filename,
        detected_format=suffix.lstrip("."),
        detected_encoding=encoding,
        delimiter=delimiter,
    )


def _choose_sheet(all_sheets: list[str], sheet_name: Optional[str], warnings: list[str]) -> str:
    if not all_sheets:
        raise ValueError("Workbook does not contain any sheet")
    if sheet_name is not None:
        if sheet_name not in all_sheets:
            raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
        return sheet_name
    if len(all_sheets) > 1:
        warnings.append(
            f"Multiple sheets found ({len(all_sheets)} total); "
            f"used '{all_sheets[0]}'. Ignored: {all_sheets[1:]}"
        )
    return all_sheets[0]


def _read_openpyxl(data: bytes, filename: str, suffix: str, sheet_name: Optional[str]) -> LoadedGrid:
    try:
        wb = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    warnings: list[str] = []
    try:
        chosen = _choose_sheet(list(wb.sheetnames), sheet_name, warnings)
        ws = wb[chosen]

        anchors: dict[tuple[int, int], Any] = {}
        for merged in ws.merged_cells.ranges:
            min_col, min_row, max_col, max_row = merged.bounds
            anchor_value = ws.cell(min_row, min_col).value
            for row_idx in range(min_row, max_row + 1):
                for col_idx in range(min_col, max_col + 1):
                    if (row_idx, col_idx) != (min_row, min_col):
                        anchors[(row_idx, col_idx)] = anchor_value

        rows: RawGrid = []
        for row_idx, row in enumerate(ws.iter_rows(values_only=True), start=1):
            values = []
            for col_idx, value in enumerate(row, start=1):
                if (row_idx, col_idx) in anchors:
                    values.append(MergedRef(to_cell_value(anchors[(row_idx, col_idx)])))
                else:
                    values.append(value)
            rows.append(values)
        sheet_names = list(wb.sheetnames)
    finally:
        wb.close()

    return LoadedGrid(
        rows=rows,
        filename=filename,
        detected_format=suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=sheet_names,
        warnings=warnings,
    )


def _read_pandas_excel(data: bytes, filename: str, suffix: str, sheet_name: Optional[str]) -> LoadedGrid:
    if suffix == ".xls":
        engine = "xlrd"
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd — run: pip install xlrd")
    else:
        engine = "odf"
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy — run: pip install odfpy")

    warnings: list[str] = []
    try:
        with pd.ExcelFile(io.BytesIO(data), engine=engine) as xf:
            all_sheets = list(xf.sheet_names)
            chosen = _choose_sheet(all_sheets, sheet_name, warnings)
            df = xf.parse(chosen, header=None, dtype=object)
    except ValueError:
        raise
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    return LoadedGrid(
        rows=df.values.tolist(),
        filename=filename,
        detected_format=suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=all_sheets,
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def read_workbook_bytes(data: bytes, filename: str, sheet_name: Optional[str] = None) -> LoadedGrid:
    """
    Decode workbook bytes into a grid of raw cell values.

    Raises:
        ValueError   if the format is unsupported, unreadable or empty.
        ImportError  if a required optional engine is missing.
    """
    suffix = Path(filename).suffix.lower()
    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")
    if not data:
        raise ValueError(f"File is empty: {filename}")

    if suffix in TEXT_FORMATS:
        loaded = _read_text(data, filename, suffix)
    elif suffix in OPENPYXL_FORMATS:
        loaded = _read_openpyxl(data, filename, suffix, sheet_name)
    else:
        loaded = _read_pandas_excel(data, filename, suffix, sheet_name)

    total = len(loaded.rows)
    kept = [(idx, row) for idx, row in enumerate(loaded.rows) if not row_is_empty(row)]
    loaded.rows = [row for _, row in kept]
    loaded.row_numbers = [idx for idx, _ in kept]
    if not loaded.rows:
        raise ValueError(f"The file appears to be empty: {filename}")
    dropped = total - len(loaded.rows)
    if dropped:
        logger.debug("Dropped %d empty rows from %s", dropped, filename)

    logger.info(
        "Loaded %s: %d rows from %s",
        filename,
        len(loaded.rows),
        loaded.sheet_name or loaded.detected_format,
    )
    return loaded


def load_grid(path: "str | Path", sheet_name: Optional[str] = None) -> LoadedGrid:
    """
    Load a spreadsheet file into a grid of raw cell values.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported, unreadable or empty.
        ImportError        if a required optional engine is missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return read_workbook_bytes(path.read_bytes(), path.name, sheet_name=sheet_name)
