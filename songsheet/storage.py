"""
storage.py — on-disk snapshot of an enrichment run

Public API:
    store = ResultStore("~/.songsheet/session")
    store.save_results(records)
    store.save_metadata("enriching", progress)
    records = store.load_results()
    meta    = store.load_metadata()     # {"status", "progress", "timestamp"} or None
    store.clear_all()

The store only knows "set the full array", "get the full array" and "clear".
Missing or unreadable files load as an empty list / None.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from songsheet.contracts import utc_now_iso
from songsheet.models import EnrichedRecord, ProcessingProgress

logger = logging.getLogger(__name__)

RESULTS_FILE = "results.json"
METADATA_FILE = "metadata.json"


class ResultStore:
    def __init__(self, directory: "str | Path"):
        self.directory = Path(directory).expanduser()

    @property
    def results_path(self) -> Path:
        return self.directory / RESULTS_FILE

    @property
    def metadata_path(self) -> Path:
        return self.directory / METADATA_FILE

    def _write_json(self, path: Path, payload: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable %s: %s", path, exc)
            return None

    # ── results ───────────────────────────────────────────────────────────────

    def save_results(self, records: list[EnrichedRecord]) -> None:
        self._write_json(self.results_path, [record.to_dict() for record in records])
        logger.debug("Saved %d results to %s", len(records), self.results_path)

    def load_results(self) -> list[EnrichedRecord]:
        payload = self._read_json(self.results_path)
        if not isinstance(payload, list):
            return []
        return [EnrichedRecord.from_dict(item) for item in payload if isinstance(item, dict)]

    def clear_results(self) -> None:
        self.results_path.unlink(missing_ok=True)

    # ── metadata ──────────────────────────────────────────────────────────────

    def save_metadata(self, status: str, progress: Optional[ProcessingProgress] = None) -> None:
        self._write_json(
            self.metadata_path,
            {
                "status": str(getattr(status, "value", status)),
                "progress": (progress or ProcessingProgress()).to_dict(),
                "timestamp": utc_now_iso(),
            },
        )

    def load_metadata(self) -> Optional[dict[str, Any]]:
        payload = self._read_json(self.metadata_path)
        return payload if isinstance(payload, dict) else None

    def clear_all(self) -> None:
        self.clear_results()
        self.metadata_path.unlink(missing_ok=True)
        logger.info("Cleared saved session in %s", self.directory)
