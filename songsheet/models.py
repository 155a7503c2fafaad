"""Shared record types for the ingestion and enrichment pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

ROLES = ("title", "artist", "composer", "year", "lyrics")
NOT_PRESENT = -1

UNIDENTIFIED = "Unidentified"
UNKNOWN_YEAR = "0000"


# ── Cell variants ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmptyCell:
    pass


@dataclass(frozen=True)
class TextCell:
    text: str


@dataclass(frozen=True)
class NumberCell:
    number: float


@dataclass(frozen=True)
class BoolCell:
    flag: bool


@dataclass(frozen=True)
class DateCell:
    value: Union[date, datetime]


@dataclass(frozen=True)
class MergedRef:
    inner: "CellValue"


CellValue = Union[EmptyCell, TextCell, NumberCell, BoolCell, DateCell, MergedRef]
RawGrid = list[list[Any]]


# ── Layout detection ──────────────────────────────────────────────────────────

@dataclass
class ColumnMap:
    title: int = NOT_PRESENT
    artist: int = NOT_PRESENT
    composer: int = NOT_PRESENT
    year: int = NOT_PRESENT
    lyrics: int = NOT_PRESENT
    has_header_row: bool = False

    @classmethod
    def from_mapping(cls, mapping: dict[str, int], has_header_row: bool = False) -> "ColumnMap":
        unknown = set(mapping) - set(ROLES)
        if unknown:
            raise ValueError(f"Unknown column roles: {sorted(unknown)}. Valid roles: {list(ROLES)}")
        indices = {role: int(mapping.get(role, NOT_PRESENT)) for role in ROLES}
        if indices["title"] < 0:
            raise ValueError("A column map must resolve the title column")
        for role, index in indices.items():
            if index < NOT_PRESENT:
                raise ValueError(f"Invalid column index for {role}: {index}")
        return cls(has_header_row=has_header_row, **indices)

    def index_of(self, role: str) -> int:
        return getattr(self, role)

    def resolved_roles(self) -> dict[str, int]:
        return {role: self.index_of(role) for role in ROLES if self.index_of(role) >= 0}


@dataclass
class DetectionResult:
    column_map: Optional[ColumnMap]
    confidence: str
    header_row: Optional[int]
    layout: str
    start_row: int

    @property
    def is_alternating(self) -> bool:
        return self.layout == "alternating"


# ── Records ───────────────────────────────────────────────────────────────────

@dataclass
class SongRecord:
    id: str
    title: str
    source: str
    artist: Optional[str] = None
    composer: Optional[str] = None
    year: Optional[str] = None
    lyrics: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})


class SearchStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NOT_FOUND = "not_found"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


@dataclass
class EnrichedRecord(SongRecord):
    found_artist: str = UNIDENTIFIED
    found_composer: str = UNIDENTIFIED
    release_year: str = UNKNOWN_YEAR
    search_status: str = SearchStatus.SUCCESS.value
    notes: str = ""
    approval_status: str = ApprovalStatus.PENDING.value


# ── Processing state ──────────────────────────────────────────────────────────

class ProcessingStatus(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    ENRICHING = "enriching"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class ProcessingProgress:
    current: int = 0
    total: int = 0
    speed: float = 0.0
    eta: Optional[float] = None

    @property
    def percentage(self) -> float:
        return (self.current / self.total) * 100 if self.total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["percentage"] = round(self.percentage, 2)
        return payload


@dataclass
class ProcessingError:
    timestamp: str
    message: str
    details: str = ""
    failed_items: list[str] = field(default_factory=list)
