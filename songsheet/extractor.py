"""
extractor.py — turns a raw grid into song records

Public API:
    records = extract(grid, column_map, start_row, source="songs.xlsx")

Two layouts are understood:

  * tabular: one song per row, columns given by a ``ColumnMap``. Artist and
    composer cells left blank repeat the last value seen above them
    (fill-down). The title is never filled down.
  * alternating: a single column where a title row is followed by its artist
    row. Selected by passing ``column_map=None``.

Rows without a usable title are dropped silently.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from songsheet.cells import normalize_cell
from songsheet.models import UNIDENTIFIED, ColumnMap, RawGrid, SongRecord

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 2

TITLE_LABEL_RE = re.compile(r"^(nome da m[uú]sica|t[ií]tulo|m[uú]sica)\b\s*[:=\-]?\s*", re.IGNORECASE)
TITLE_NUMBERING_RE = re.compile(r"^\d+[.)\-\s]+")


def clean_title(raw: Optional[str]) -> str:
    """Strip a leading "Título:"-style label and ordinal numbering."""
    if not raw:
        return ""
    text = TITLE_LABEL_RE.sub("", raw.strip())
    text = TITLE_NUMBERING_RE.sub("", text)
    return text.strip()


def _cell(row: list, index: int) -> Optional[str]:
    if index < 0 or index >= len(row):
        return None
    return normalize_cell(row[index])


def _usable_title(raw: Optional[str]) -> Optional[str]:
    if raw is None or len(raw) < MIN_TITLE_LENGTH:
        return None
    title = clean_title(raw)
    return title or None


class _FillDownState:
    """Last non-empty artist/composer seen by one extraction call."""

    def __init__(self) -> None:
        self.artist: Optional[str] = None
        self.composer: Optional[str] = None

    def update(self, artist: Optional[str], composer: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        if artist is not None:
            self.artist = artist
        if composer is not None:
            self.composer = composer
        return self.artist, self.composer


# ══════════════════════════════════════════════════════════════════════════════
# LAYOUTS
# ══════════════════════════════════════════════════════════════════════════════

def _record_id(source: str, row_idx: int, row_numbers: Optional[list[int]]) -> str:
    return f"{source}-{row_numbers[row_idx] if row_numbers else row_idx}"


def _extract_tabular(
    grid: RawGrid,
    column_map: ColumnMap,
    start_row: int,
    source: str,
    row_numbers: Optional[list[int]] = None,
) -> list[SongRecord]:
    state = _FillDownState()
    records: list[SongRecord] = []
    skipped = 0

    for row_idx in range(max(start_row, 0), len(grid)):
        row = grid[row_idx]
        artist, composer = state.update(
            _cell(row, column_map.artist),
            _cell(row, column_map.composer),
        )

        title = _usable_title(_cell(row, column_map.title))
        if title is None:
            skipped += 1
            continue

        records.append(
            SongRecord(
                id=_record_id(source, row_idx, row_numbers),
                title=title,
                source=source,
                artist=artist,
                composer=composer,
                year=_cell(row, column_map.year),
                lyrics=_cell(row, column_map.lyrics),
            )
        )

    if skipped:
        logger.debug("Skipped %d rows without a usable title in %s", skipped, source)
    return records


def _first_value(row: list) -> Optional[str]:
    for cell in row:
        value = normalize_cell(cell)
        if value is not None:
            return value
    return None


def _extract_alternating(
    grid: RawGrid,
    start_row: int,
    source: str,
    row_numbers: Optional[list[int]] = None,
) -> list[SongRecord]:
    records: list[SongRecord] = []
    pending_title: Optional[str] = None
    pending_row = 0

    for row_idx in range(max(start_row, 0), len(grid)):
        value = _first_value(grid[row_idx])
        if value is None:
            continue
        if pending_title is None:
            title = _usable_title(value)
            if title is not None:
                pending_title = title
                pending_row = row_idx
            continue
        records.append(
            SongRecord(
                id=_record_id(source, pending_row, row_numbers),
                title=pending_title,
                source=source,
                artist=value,
            )
        )
        pending_title = None

    if pending_title is not None:
        records.append(
            SongRecord(
                id=_record_id(source, pending_row, row_numbers),
                title=pending_title,
                source=source,
                artist=UNIDENTIFIED,
            )
        )
    return records


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def extract(
    grid: RawGrid,
    column_map: Optional[ColumnMap],
    start_row: int = 0,
    source: str = "",
    row_numbers: Optional[list[int]] = None,
) -> list[SongRecord]:
    """
    Extract song records from ``grid`` beginning at ``start_row``.

    ``column_map=None`` selects the alternating layout. Record ids are
    ``"<source>-<row index>"`` so they stay stable across re-imports of the
    same file. Pass the loader's ``row_numbers`` to use source row indices
    rather than positions in ``grid``.
    """
    if column_map is None:
        records = _extract_alternating(grid, start_row, source, row_numbers)
    else:
        records = _extract_tabular(grid, column_map, start_row, source, row_numbers)
    logger.info("Extracted %d records from %s", len(records), source or "grid")
    return records
