"""
consolidate.py — duplicate consolidation for extracted song records

Public API:
    result = consolidate(records)          # global, by identity key
    records = clean_adjacent_duplicates(records)   # sorted adjacent pre-pass

Two records are duplicates when ``identity_key`` is equal: the trimmed,
lower-cased title and artist joined with "|". Duplicates are merged field by
field keeping the longer value (``choose_longer``); length stands in for
completeness, so "Zé Ramalho" beats "Zé", and a longer but wrong value
beats a shorter correct one. The first record of a group keeps
its id, title and source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from songsheet.cells import fold_text
from songsheet.models import SongRecord

logger = logging.getLogger(__name__)

MERGED_FIELDS = ("artist", "composer", "year", "lyrics")


@dataclass
class ConsolidationResult:
    unique: list[SongRecord]
    duplicates_removed: int
    total_original: int
    duplicate_groups: dict[str, list[SongRecord]] = field(default_factory=dict)


def identity_key(record: SongRecord) -> str:
    return f"{record.title.strip().lower()}|{(record.artist or '').strip().lower()}"


def _folded_key(record: SongRecord) -> tuple[str, str]:
    return fold_text(record.title), fold_text(record.artist)


def choose_longer(first: Optional[str], second: Optional[str]) -> Optional[str]:
    """Return the longer of two optional strings; ties keep ``first``."""
    if len(second or "") > len(first or ""):
        return second
    return first


def merge_records(first: SongRecord, second: SongRecord) -> SongRecord:
    merged = {name: choose_longer(getattr(first, name), getattr(second, name)) for name in MERGED_FIELDS}
    return replace(first, **merged)


def consolidate(records: list[SongRecord]) -> ConsolidationResult:
    """Merge records sharing an identity key, preserving first-seen order."""
    groups: dict[str, list[SongRecord]] = {}
    for record in records:
        groups.setdefault(identity_key(record), []).append(record)

    unique: list[SongRecord] = []
    duplicate_groups: dict[str, list[SongRecord]] = {}
    for key, group in groups.items():
        merged = group[0]
        for other in group[1:]:
            merged = merge_records(merged, other)
        unique.append(merged)
        if len(group) > 1:
            duplicate_groups[key] = group

    removed = len(records) - len(unique)
    if removed:
        logger.info("Merged %d duplicate records into %d groups", removed, len(duplicate_groups))
    return ConsolidationResult(
        unique=unique,
        duplicates_removed=removed,
        total_original=len(records),
        duplicate_groups=duplicate_groups,
    )


def clean_adjacent_duplicates(
    records: list[SongRecord],
    log: Optional[Callable[[str], None]] = None,
) -> list[SongRecord]:
    """
    Sort by accent-folded title/artist and merge neighbouring duplicates.

    Only pairs that land next to each other after sorting are merged, and a
    merged pair is not compared with the record after it. Meant for sources
    that emit a metadata row followed by a metadata+lyrics row for the same
    song; run ``consolidate`` afterwards for the rest.
    """
    emit = log or logger.info
    ordered = sorted(records, key=_folded_key)
    cleaned: list[SongRecord] = []

    i = 0
    while i < len(ordered):
        current = ordered[i]
        if i + 1 < len(ordered) and _folded_key(ordered[i + 1]) == _folded_key(current):
            cleaned.append(merge_records(current, ordered[i + 1]))
            emit(f"Merged adjacent duplicate: {current.title} - {current.artist or ''}")
            i += 2
        else:
            cleaned.append(current)
            i += 1
    return cleaned
