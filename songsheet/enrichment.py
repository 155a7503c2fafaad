"""
enrichment.py — the enrichment function contract and an HTTP implementation

An enrichment function takes a batch of ``SongRecord`` and returns one
``EnrichedRecord`` per input, or raises. The processor's retry logic relies on
exceptions, so nothing here reports failure in-band.

Public API:
    enrich = HttpEnricher("https://example.org/enrich", api_key="...")
    enriched = enrich(batch)

    validate_year("1990")                      -> "1990"
    normalize_enriched(record, {"artist": ...}) -> EnrichedRecord
    failed_record(record, "why")               -> EnrichedRecord (status failed)
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import date
from typing import Any, Callable, Optional

import requests

from songsheet.cells import fold_text
from songsheet.models import (
    UNIDENTIFIED,
    UNKNOWN_YEAR,
    ApprovalStatus,
    EnrichedRecord,
    SearchStatus,
    SongRecord,
)

logger = logging.getLogger(__name__)

EnrichFn = Callable[[list[SongRecord]], list[EnrichedRecord]]

MIN_YEAR = 1900
YEAR_RE = re.compile(r"\d{4}")

UNIDENTIFIED_VALUES = {
    "",
    "n/a",
    "na",
    "none",
    "null",
    "unknown",
    "unidentified",
    "desconhecido",
    "nao identificado",
}

YEAR_NOTE = "Year not found or invalid"
FAILED_NOTE = "Batch enrichment failed"


class EnrichmentError(Exception):
    """Raised when the enrichment backend cannot produce a usable answer."""


# ══════════════════════════════════════════════════════════════════════════════
# PAYLOAD NORMALIZATION
# ══════════════════════════════════════════════════════════════════════════════

def validate_year(value: Any, today: Optional[date] = None) -> str:
    """Return a plausible 4-digit release year, or "0000"."""
    if value is None:
        return UNKNOWN_YEAR
    text = str(value).strip()
    if isinstance(value, float) and value.is_integer():
        text = str(int(value))
    max_year = (today or date.today()).year + 1
    for candidate in YEAR_RE.findall(text):
        if MIN_YEAR <= int(candidate) <= max_year:
            return candidate
    return UNKNOWN_YEAR


def _clean_name(value: Any) -> str:
    if value is None:
        return UNIDENTIFIED
    text = str(value).strip()
    if fold_text(text) in UNIDENTIFIED_VALUES:
        return UNIDENTIFIED
    return text


def _song_fields(record: SongRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in SongRecord.__dataclass_fields__}


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) not in (None, ""):
            return payload[key]
    return None


def normalize_enriched(record: SongRecord, payload: dict[str, Any], today: Optional[date] = None) -> EnrichedRecord:
    """
    Build an ``EnrichedRecord`` from a raw backend answer for ``record``.

    Accepts snake_case, camelCase and plain keys (``found_artist``,
    ``foundArtist``, ``artist``). The search status starts as ``success`` and
    is downgraded to ``partial`` when either the artist or the year is
    missing, and to ``not_found`` when both are.
    """
    artist = _clean_name(_pick(payload, "found_artist", "foundArtist", "artist"))
    composer = _clean_name(_pick(payload, "found_composer", "foundComposer", "composer"))
    year = validate_year(_pick(payload, "release_year", "releaseYear", "year"), today=today)

    notes = [str(payload["notes"]).strip()] if payload.get("notes") else []
    missing_artist = artist == UNIDENTIFIED
    missing_year = year == UNKNOWN_YEAR
    if missing_artist and missing_year:
        status = SearchStatus.NOT_FOUND
    elif missing_artist or missing_year:
        status = SearchStatus.PARTIAL
    else:
        status = SearchStatus.SUCCESS
    if missing_year:
        notes.append(YEAR_NOTE)

    return EnrichedRecord(
        **_song_fields(record),
        found_artist=artist,
        found_composer=composer,
        release_year=year,
        search_status=status.value,
        notes="; ".join(note for note in notes if note),
        approval_status=ApprovalStatus.PENDING.value,
    )


def failed_record(record: SongRecord, note: str = FAILED_NOTE) -> EnrichedRecord:
    """Synthetic record for an item whose batch exhausted its retries."""
    return EnrichedRecord(
        **_song_fields(record),
        found_artist=UNIDENTIFIED,
        found_composer=UNIDENTIFIED,
        release_year=UNKNOWN_YEAR,
        search_status=SearchStatus.FAILED.value,
        notes=note,
        approval_status=ApprovalStatus.PENDING.value,
    )


# ══════════════════════════════════════════════════════════════════════════════
# HTTP ENRICHMENT FUNCTION
# ══════════════════════════════════════════════════════════════════════════════

class HttpEnricher:
    """
    Enrichment function backed by a JSON endpoint.

    Request body: ``{"songs": [{"id", "title", "artist"}, ...]}``.
    The response is either a JSON list or an object with a ``results`` (or
    ``songs``) list; every item must carry the ``id`` of an input song.

    The processor calls this from several worker threads, so each thread gets
    its own ``requests.Session``. A session passed in explicitly is shared by
    every thread and must be safe for that.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._shared_session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def _post(self, batch: list[SongRecord]) -> Any:
        body = {"songs": [{"id": item.id, "title": item.title, "artist": item.artist or ""} for item in batch]}
        try:
            response = self.session.post(self.url, json=body, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise EnrichmentError(f"Enrichment request failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise EnrichmentError("Enrichment response is not valid JSON") from exc

    def __call__(self, batch: list[SongRecord]) -> list[EnrichedRecord]:
        if not batch:
            return []
        payload = self._post(batch)
        if isinstance(payload, dict):
            payload = payload.get("results", payload.get("songs"))
        if not isinstance(payload, list):
            raise EnrichmentError("Enrichment response does not contain a result list")

        by_id: dict[str, dict[str, Any]] = {}
        for item in payload:
            if isinstance(item, dict) and item.get("id") is not None:
                by_id[str(item["id"])] = item

        missing = [record.id for record in batch if record.id not in by_id]
        if missing:
            raise EnrichmentError(
                f"Enrichment response is missing {len(missing)} of {len(batch)} songs (first: {missing[0]})"
            )
        logger.debug("Enriched %d songs via %s", len(batch), self.url)
        return [normalize_enriched(record, by_id[record.id]) for record in batch]
