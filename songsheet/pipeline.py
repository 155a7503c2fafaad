"""
pipeline.py — detection, extraction and consolidation in one call

Public API:
    result  = ingest_file("songs.xlsx", column_mapper=ask_user)
    summary = build_ingest_summary(result, input_path=Path("songs.xlsx"))

When column detection is not confident, ``column_mapper`` is handed a
``ColumnMappingRequest`` and answers with a ``ColumnMap`` (or None to accept
the detected fallback layout). Without a mapper ``ColumnMappingRequired`` is
raised so the caller can collect the mapping and try again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from songsheet import __version__ as TOOL_VERSION
from songsheet.column_detector import CONFIDENCE_LOW, LAYOUT_TABULAR, detect
from songsheet.consolidate import clean_adjacent_duplicates, consolidate
from songsheet.contracts import build_contract, build_run_summary
from songsheet.extractor import extract
from songsheet.loader import load_grid
from songsheet.models import ColumnMap, DetectionResult, RawGrid, SongRecord

logger = logging.getLogger(__name__)


@dataclass
class ColumnMappingRequest:
    filename: str
    raw_rows: RawGrid
    detection: Optional[DetectionResult] = None


class ColumnMappingRequired(Exception):
    def __init__(self, request: ColumnMappingRequest):
        super().__init__(
            f"Could not confidently detect the song columns in {request.filename}; "
            "a manual column mapping is required"
        )
        self.request = request


ColumnMapper = Callable[[ColumnMappingRequest], Optional[ColumnMap]]


@dataclass
class IngestResult:
    filename: str
    records: list[SongRecord]
    detection: DetectionResult
    column_map: Optional[ColumnMap]
    total_extracted: int
    duplicates_removed: int
    adjacent_merged: int = 0
    manual_mapping: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def layout(self) -> str:
        return "alternating" if self.column_map is None else LAYOUT_TABULAR


def _manual_start_row(column_map: ColumnMap, detection: DetectionResult) -> int:
    if not column_map.has_header_row:
        return 0
    if detection.header_row is not None:
        return detection.header_row + 1
    return 1


def ingest_grid(
    grid: RawGrid,
    filename: str,
    column_mapper: Optional[ColumnMapper] = None,
    scraper_clean: bool = False,
    column_map: Optional[ColumnMap] = None,
    row_numbers: Optional[list[int]] = None,
) -> IngestResult:
    """
    Turn a raw grid into consolidated song records.

    An explicit ``column_map`` skips the confidence check; extraction then
    starts below the detected header row (row 1 when none was found) when
    the map says the sheet has a header row. ``row_numbers`` maps grid rows
    back to source rows for record ids.

    Raises:
        ValueError             if the grid has no rows.
        ColumnMappingRequired  if detection is low-confidence and no mapper
                               was supplied.
    """
    if not grid:
        raise ValueError(f"No rows to ingest in {filename}")

    detection = detect(grid)
    warnings: list[str] = []
    manual = column_map is not None

    if column_map is not None:
        start_row = _manual_start_row(column_map, detection)
    elif detection.confidence == CONFIDENCE_LOW:
        request = ColumnMappingRequest(filename=filename, raw_rows=grid, detection=detection)
        if column_mapper is None:
            raise ColumnMappingRequired(request)
        column_map = column_mapper(request)
        if column_map is not None:
            manual = True
            start_row = _manual_start_row(column_map, detection)
        else:
            column_map = detection.column_map
            start_row = detection.start_row
            warnings.append(
                f"Column layout guessed without a header row ({detection.layout}); review the extracted songs"
            )
    else:
        column_map = detection.column_map
        start_row = detection.start_row

    records = extract(grid, column_map, start_row, source=filename, row_numbers=row_numbers)
    total_extracted = len(records)

    adjacent_merged = 0
    if scraper_clean:
        cleaned = clean_adjacent_duplicates(records)
        adjacent_merged = len(records) - len(cleaned)
        records = cleaned

    consolidated = consolidate(records)
    if not consolidated.unique:
        warnings.append("No rows with a usable song title were found")

    logger.info(
        "Ingested %s: %d extracted, %d unique",
        filename,
        total_extracted,
        len(consolidated.unique),
    )
    return IngestResult(
        filename=filename,
        records=consolidated.unique,
        detection=detection,
        column_map=column_map,
        total_extracted=total_extracted,
        duplicates_removed=consolidated.duplicates_removed,
        adjacent_merged=adjacent_merged,
        manual_mapping=manual,
        warnings=warnings,
    )


def ingest_file(
    path: "str | Path",
    column_mapper: Optional[ColumnMapper] = None,
    scraper_clean: bool = False,
    column_map: Optional[ColumnMap] = None,
    sheet_name: Optional[str] = None,
) -> IngestResult:
    loaded = load_grid(path, sheet_name=sheet_name)
    result = ingest_grid(
        loaded.rows,
        loaded.filename,
        column_mapper=column_mapper,
        scraper_clean=scraper_clean,
        column_map=column_map,
        row_numbers=loaded.row_numbers,
    )
    result.warnings = list(loaded.warnings) + result.warnings
    return result


def build_ingest_summary(
    result: IngestResult,
    *,
    input_path: Optional[Path] = None,
    output_path: Optional[Path] = None,
) -> dict[str, Any]:
    contract = build_contract("songsheet.ingest")
    detection = result.detection
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "filename": result.filename,
        "detection": {
            "confidence": detection.confidence,
            "layout": detection.layout,
            "header_row": detection.header_row,
            "start_row": detection.start_row,
        },
        "column_map": result.column_map.resolved_roles() if result.column_map else None,
        "layout": result.layout,
        "manual_mapping": result.manual_mapping,
        "total_extracted": result.total_extracted,
        "adjacent_merged": result.adjacent_merged,
        "duplicates_removed": result.duplicates_removed,
        "unique_songs": len(result.records),
        "warnings": list(result.warnings),
        "run_summary": build_run_summary(
            command="ingest",
            input_path=input_path,
            output_path=output_path,
            metrics={
                "total_extracted": result.total_extracted,
                "unique_songs": len(result.records),
                "duplicates_removed": result.duplicates_removed,
            },
            warnings=result.warnings,
        ),
    }
