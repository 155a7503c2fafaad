#!/usr/bin/env python3
"""
songsheet column_detector.py

Finds the header row of a song spreadsheet and infers which column holds the
title, artist, composer, year and lyrics, even when headers are missing.

Result confidence is "high" only when a header row was located and the title
column came from a keyword match. Anything else is a best-effort layout the
caller should confirm with the user before extracting.
"""

from __future__ import annotations

import logging
import re

from songsheet.cells import cell_text, fold_text, normalize_cell
from songsheet.models import ColumnMap, DetectionResult, RawGrid

logger = logging.getLogger(__name__)

MAX_SCAN_ROWS = 20

CONFIDENCE_HIGH = "high"
CONFIDENCE_LOW = "low"

LAYOUT_TABULAR = "tabular"
LAYOUT_ALTERNATING = "alternating"

# Checked in this order for every header cell; the first role that matches
# claims the cell. Lyrics goes before title so "Letra da música" is lyrics.
# Entries are (role, substrings, whole words, whole cell).
ROLE_KEYWORDS: list[tuple[str, tuple[str, ...], tuple[str, ...], tuple[str, ...]]] = [
    ("lyrics", ("letra", "lyric"), (), ()),
    ("title", ("musica", "titulo", "faixa", "song", "track", "title"), (), ("nome",)),
    ("artist", ("artista", "interprete", "cantor", "banda", "artist", "performer"), (), ()),
    ("composer", ("compositor", "composer", "autor", "writer"), (), ()),
    ("year", ("lancamento", "year"), ("ano",), ()),
]

TOKEN_RE = re.compile(r"[a-z0-9]+")


def match_role(header: str) -> str | None:
    folded = fold_text(header)
    if not folded:
        return None
    tokens = set(TOKEN_RE.findall(folded))
    for role, substrings, words, whole in ROLE_KEYWORDS:
        if any(needle in folded for needle in substrings):
            return role
        if any(word in tokens for word in words) or folded in whole:
            return role
    return None


def _row_width(row: list) -> int:
    width = 0
    for idx, cell in enumerate(row):
        if normalize_cell(cell) is not None:
            width = idx + 1
    return width


def detect(grid: RawGrid, max_scan_rows: int = MAX_SCAN_ROWS) -> DetectionResult:
    """
    Infer the column layout of a raw grid.

    Scans up to ``max_scan_rows`` rows. Every text cell (see ``cell_text``)
    is matched against the role keywords; when a column matches a role its
    index is recorded, later matches overriding earlier ones. The first row
    that yields a title column is the header row and scanning stops there.

    Without a header, a sheet whose first row spans two or more columns is
    read as artist (column 0) + title (column 1); a single-column sheet is
    reported as the alternating layout (title and artist on consecutive rows).

    Raises:
        ValueError if the grid has no rows.
    """
    if not grid:
        raise ValueError("Cannot detect columns: the spreadsheet has no rows")

    roles: dict[str, int] = {}
    header_row: int | None = None

    for row_idx, row in enumerate(grid[:max_scan_rows]):
        for col_idx, cell in enumerate(row):
            text = cell_text(cell)
            if text is None:
                continue
            role = match_role(text)
            if role is not None:
                roles[role] = col_idx
        if "title" in roles:
            header_row = row_idx
            break

    if header_row is not None:
        column_map = ColumnMap.from_mapping(roles, has_header_row=True)
        logger.debug("Header row %d detected: %s", header_row, column_map.resolved_roles())
        return DetectionResult(
            column_map=column_map,
            confidence=CONFIDENCE_HIGH,
            header_row=header_row,
            layout=LAYOUT_TABULAR,
            start_row=header_row + 1,
        )

    width = _row_width(grid[0])
    if width >= 2:
        logger.info("No header row found; assuming column A = artist, column B = title")
        return DetectionResult(
            column_map=ColumnMap(title=1, artist=0, has_header_row=False),
            confidence=CONFIDENCE_LOW,
            header_row=None,
            layout=LAYOUT_TABULAR,
            start_row=0,
        )

    logger.info("Single-column sheet without header; assuming alternating title/artist rows")
    return DetectionResult(
        column_map=None,
        confidence=CONFIDENCE_LOW,
        header_row=None,
        layout=LAYOUT_ALTERNATING,
        start_row=0,
    )
