"""
cells.py — canonical text for raw spreadsheet cells.

Every other module reads cells through ``normalize_cell``; this is the only
place that branches on the raw Python type a decoder handed us.
"""

from __future__ import annotations

import math
import numbers
import re
import unicodedata
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

from songsheet.models import (
    BoolCell,
    CellValue,
    DateCell,
    EmptyCell,
    MergedRef,
    NumberCell,
    TextCell,
)

NULL_TEXTS = {"", "undefined", "null"}
WHITESPACE_RE = re.compile(r"\s+")

_CELL_TYPES = (EmptyCell, TextCell, NumberCell, BoolCell, DateCell, MergedRef)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bool)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_cell_value(raw: Any) -> CellValue:
    """Classify a raw decoder value into the closed cell variant."""
    if isinstance(raw, _CELL_TYPES):
        return raw
    if _is_missing(raw):
        return EmptyCell()
    if isinstance(raw, bool):
        return BoolCell(raw)
    if isinstance(raw, numbers.Real):
        return NumberCell(raw)
    if isinstance(raw, pd.Timestamp):
        return DateCell(raw.to_pydatetime())
    if isinstance(raw, (datetime, date)):
        return DateCell(raw)
    if isinstance(raw, bytes):
        return TextCell(raw.decode("utf-8", errors="replace"))
    if hasattr(raw, "value"):
        return MergedRef(to_cell_value(raw.value))
    return TextCell(str(raw))


def _format_number(number: float) -> str:
    if isinstance(number, numbers.Integral):
        return str(int(number))
    value = float(number)
    if math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_date(value: date | datetime) -> str:
    if isinstance(value, datetime) and (value.hour, value.minute, value.second, value.microsecond) != (0, 0, 0, 0):
        return value.isoformat(sep=" ")
    return value.strftime("%Y-%m-%d")


def normalize_cell(raw: Any) -> Optional[str]:
    """Return the trimmed text of a cell, or None when it carries no value."""
    cell = to_cell_value(raw)
    while isinstance(cell, MergedRef):
        cell = cell.inner

    if isinstance(cell, EmptyCell):
        return None
    if isinstance(cell, BoolCell):
        text = "true" if cell.flag else "false"
    elif isinstance(cell, NumberCell):
        text = _format_number(cell.number)
    elif isinstance(cell, DateCell):
        text = _format_date(cell.value)
    else:
        text = cell.text.replace("\ufeff", "").replace("\x00", "")

    text = text.strip()
    if text.lower() in NULL_TEXTS:
        return None
    return text


def cell_text(raw: Any) -> Optional[str]:
    """Normalized text of a text cell (merged refs unwrapped), else None."""
    cell = to_cell_value(raw)
    while isinstance(cell, MergedRef):
        cell = cell.inner
    if not isinstance(cell, TextCell):
        return None
    return normalize_cell(cell)


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold_text(text: Optional[str]) -> str:
    """Case- and accent-insensitive comparison form of a value."""
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", strip_accents(text).lower()).strip()


def row_is_empty(row: list[Any]) -> bool:
    return all(normalize_cell(cell) is None for cell in row)
