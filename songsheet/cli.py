from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from songsheet import __version__ as TOOL_VERSION
from songsheet.contracts import build_contract, build_run_summary
from songsheet.controller import ProcessingController
from songsheet.enrichment import HttpEnricher
from songsheet.export import EXPORT_FORMATS, export_records
from songsheet.models import ColumnMap, ProcessingStatus, SongRecord
from songsheet.pipeline import (
    ColumnMappingRequest,
    ColumnMappingRequired,
    build_ingest_summary,
    ingest_file,
)
from songsheet.processor import BatchEnrichmentProcessor, remaining_items
from songsheet.storage import ResultStore

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_MAPPING_REQUIRED = 3
EXIT_BATCH_FAILURES = 4
EXIT_PARTIAL = 6

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PREVIEW_ROWS = 5


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SongsheetArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False) or getattr(args, "json", False):
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def timestamp_token() -> str:
    override = os.environ.get("SONGSHEET_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "songsheet-output" / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json_dumps(payload), encoding="utf-8")


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ColumnMappingRequired):
        return EXIT_MAPPING_REQUIRED
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{value}'")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_column_spec(spec: str, has_header_row: bool) -> ColumnMap:
    """Parse ``title=2,artist=1`` into a ColumnMap (zero-based indices)."""
    mapping: dict[str, int] = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        role, sep, index = part.partition("=")
        if not sep:
            raise CliError(f"Invalid --columns entry '{part}'. Expected role=index, e.g. title=1", EXIT_COMMAND_ERROR)
        try:
            mapping[role.strip().lower()] = int(index)
        except ValueError:
            raise CliError(f"Invalid column index in '{part}'", EXIT_COMMAND_ERROR)
    try:
        return ColumnMap.from_mapping(mapping, has_header_row=has_header_row)
    except ValueError as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc


def render_mapping_request(request: ColumnMappingRequest) -> str:
    detection = request.detection
    lines = [
        "songsheet ingest",
        f"File: {request.filename}",
        "Column detection is not confident; a manual mapping is required.",
    ]
    if detection is not None:
        lines.append(f"Detected layout: {detection.layout}")
        if detection.column_map is not None:
            guess = ",".join(f"{role}={idx}" for role, idx in detection.column_map.resolved_roles().items())
            lines.append(f"Best guess: {guess}")
    lines.append("First rows:")
    for idx, row in enumerate(request.raw_rows[:PREVIEW_ROWS]):
        cells = " | ".join("" if value is None else str(value) for value in row)
        lines.append(f"  {idx}: {cells}")
    lines.append("Re-run with --columns title=N,artist=N[,composer=N,year=N,lyrics=N] or --accept-detected.")
    return "\n".join(lines)


def render_ingest_text(summary: dict[str, Any], output_path: Path) -> str:
    lines = [
        "songsheet ingest",
        f"File: {summary['filename']}",
        f"Layout: {summary['layout']} (confidence {summary['detection']['confidence']})",
        f"Columns: {summary['column_map'] or 'alternating rows'}",
        f"Extracted: {summary['total_extracted']}",
        f"Duplicates removed: {summary['duplicates_removed']}",
        f"Unique songs: {summary['unique_songs']}",
        f"Output: {output_path}",
    ]
    if summary["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in summary["warnings"])
    return "\n".join(lines)


def render_enrich_text(summary: dict[str, Any]) -> str:
    lines = [
        "songsheet enrich",
        f"Status: {summary['status']}",
        f"Results: {summary['results']} / {summary['total_items']}",
        f"Failed batches: {summary['failed_batches']}",
    ]
    for status, count in sorted(summary["search_status_counts"].items()):
        lines.append(f"{status}: {count}")
    if summary["errors"]:
        lines.append("Errors:")
        lines.extend(f"- {error['message']}: {error['details']}" for error in summary["errors"])
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = SongsheetArgumentParser(prog="songsheet", description="Song spreadsheet ingestion and batch enrichment.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Detect columns, extract and deduplicate songs.")
    ingest.add_argument("input", help="Spreadsheet path (.xlsx .xlsm .xls .ods .csv .tsv .txt)")
    ingest.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    ingest.add_argument("--columns", help="Manual column mapping, e.g. title=1,artist=0 (zero-based)")
    ingest.add_argument("--header-row", action="store_true", help="With --columns: the first row is a header")
    ingest.add_argument("--accept-detected", action="store_true", help="Accept a low-confidence detected layout")
    ingest.add_argument("--scraper-clean", action="store_true", help="Merge adjacent duplicate rows before consolidating")
    ingest.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name (default: first sheet)")
    ingest.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    ingest.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    ingest.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    enrich = subparsers.add_parser("enrich", help="Enrich ingested songs through an HTTP endpoint.")
    enrich.add_argument("input", help="songs.json from ingest, or a spreadsheet")
    enrich.add_argument("--endpoint", required=True, help="Enrichment endpoint URL")
    enrich.add_argument("--api-key", default=os.environ.get("SONGSHEET_API_KEY"), help="Bearer token (default: $SONGSHEET_API_KEY)")
    enrich.add_argument("--batch-size", type=positive_int, default=None, help="Songs per batch (default 50)")
    enrich.add_argument("--concurrency", type=positive_int, default=None, help="Batches per wave (default 3)")
    enrich.add_argument("--max-retries", type=positive_int, default=None, help="Attempts per batch (default 3)")
    enrich.add_argument("--timeout", type=float, default=60, help="HTTP timeout in seconds")
    enrich.add_argument("--store", help="Session directory for results and metadata")
    enrich.add_argument("--resume", action="store_true", help="Continue from results already in --store")
    enrich.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    enrich.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    enrich.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    enrich.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    export = subparsers.add_parser("export", help="Export stored enrichment results.")
    export.add_argument("output", help="Output path (.xlsx, .csv or .json)")
    export.add_argument("--store", required=True, help="Session directory written by enrich")
    export.add_argument("--format", choices=sorted(EXPORT_FORMATS), help="Override the format implied by the suffix")
    export.add_argument("--approved-only", action="store_true", help="Only export approved songs")
    export.add_argument("--columns", help="Comma-separated record fields to export")
    export.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    export.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    export.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    subparsers.add_parser("version", help="Print version")
    return parser


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_ingest(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR
    if args.columns and args.accept_detected:
        eprint("Use either --columns or --accept-detected, not both.")
        return EXIT_COMMAND_ERROR

    try:
        column_map = parse_column_spec(args.columns, args.header_row) if args.columns else None
        out_dir = determine_output_dir(args, input_path)
        songs_path = safe_output_path(out_dir / "songs.json")
        summary_path = out_dir / "ingest-summary.json"

        result = ingest_file(
            input_path,
            column_mapper=(lambda request: None) if args.accept_detected else None,
            scraper_clean=args.scraper_clean,
            column_map=column_map,
            sheet_name=args.sheet_name,
        )
        summary = build_ingest_summary(result, input_path=input_path, output_path=songs_path)
        write_json(songs_path, [record.to_dict() for record in result.records])
        write_json(summary_path, summary)

        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_ingest_text(summary, songs_path), quiet=args.quiet)
        return EXIT_SUCCESS
    except ColumnMappingRequired as exc:
        eprint(render_mapping_request(exc.request))
        if args.json:
            detection = exc.request.detection
            maybe_emit_json_stdout(
                {
                    "status": "mapping_required",
                    "filename": exc.request.filename,
                    "layout": detection.layout if detection else None,
                    "preview": [
                        ["" if value is None else str(value) for value in row]
                        for row in exc.request.raw_rows[:PREVIEW_ROWS]
                    ],
                },
                True,
            )
        return EXIT_MAPPING_REQUIRED
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def load_songs(input_path: Path) -> list[SongRecord]:
    if input_path.suffix.lower() != ".json":
        return ingest_file(input_path).records
    payload = json.loads(input_path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"{input_path} must contain a JSON list of songs")
    songs = []
    for idx, item in enumerate(payload):
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            raise ValueError(f"Song #{idx} in {input_path} has no title")
        item = dict(item)
        item.setdefault("id", f"{input_path.name}-{idx}")
        item.setdefault("source", input_path.name)
        songs.append(SongRecord.from_dict(item))
    return songs


def build_enrich_summary(
    *,
    input_path: Path,
    output_path: Path,
    controller: ProcessingController,
    processor: BatchEnrichmentProcessor,
    total_items: int,
) -> dict[str, Any]:
    contract = build_contract("songsheet.enrich_summary")
    results = controller.results
    status = controller.status.value
    counts = Counter(record.search_status for record in results)
    errors = [
        {"timestamp": e.timestamp, "message": e.message, "details": e.details, "failed_items": e.failed_items}
        for e in controller.errors
    ]
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "status": status,
        "total_items": total_items,
        "results": len(results),
        "failed_batches": processor.failed_batches,
        "search_status_counts": dict(counts),
        "progress": controller.progress.to_dict(),
        "errors": errors,
        "run_summary": build_run_summary(
            command="enrich",
            input_path=input_path,
            status="ok" if status == ProcessingStatus.COMPLETED.value else status,
            output_path=output_path,
            metrics={"results": len(results), "failed_batches": processor.failed_batches},
        ),
    }


def run_enrich(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR
    if args.resume and not args.store:
        eprint("--resume requires --store.")
        return EXIT_COMMAND_ERROR

    try:
        songs = load_songs(input_path)
        out_dir = determine_output_dir(args, input_path)
        store = ResultStore(Path(args.store) if args.store else out_dir / "session")
        controller = ProcessingController(store)

        initial = []
        if args.resume and controller.restore():
            initial = controller.results
            emit_human(f"Resuming with {len(initial)} stored results", quiet=args.quiet)
        elif not args.resume:
            controller.clear_saved_state()
        pending = remaining_items(songs, initial)

        processor = BatchEnrichmentProcessor(
            HttpEnricher(args.endpoint, api_key=args.api_key, timeout=args.timeout),
            controller,
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            max_retries=args.max_retries,
        )
        try:
            processor.start(pending, initial_results=initial)
        except KeyboardInterrupt:
            controller.cancel()
            eprint("Interrupted; results so far are kept in the session store.")

        summary_path = out_dir / "enrich-summary.json"
        summary = build_enrich_summary(
            input_path=input_path,
            output_path=store.results_path,
            controller=controller,
            processor=processor,
            total_items=len(songs),
        )
        write_json(summary_path, summary)
        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_enrich_text(summary), quiet=args.quiet)
            emit_human(f"Session: {store.directory}", quiet=args.quiet)

        if controller.status != ProcessingStatus.COMPLETED:
            return EXIT_PARTIAL
        if processor.failed_batches:
            return EXIT_BATCH_FAILURES
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_export(args: argparse.Namespace) -> int:
    store = ResultStore(args.store)
    output_path = Path(args.output)
    try:
        records = store.load_results()
        if not records:
            raise CliError(f"No stored results in {store.directory}", EXIT_COMMAND_ERROR)
        columns = [name.strip() for name in args.columns.split(",") if name.strip()] if args.columns else None
        info = export_records(
            records,
            safe_output_path(output_path),
            fmt=args.format,
            approved_only=args.approved_only,
            columns=columns,
        )
        contract = build_contract("songsheet.export_summary")
        payload = {
            "contract": contract,
            "schema_version": contract["version"],
            "tool_version": TOOL_VERSION,
            "approved_only": args.approved_only,
            **info,
            "run_summary": build_run_summary(
                command="export",
                input_path=store.results_path,
                output_path=output_path,
                metrics={"rows": info["rows"], "stored_results": len(records)},
            ),
        }
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(f"Exported {info['rows']} songs to {output_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: Optional[list[str]] = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "ingest":
            return run_ingest(args)
        if args.command == "enrich":
            return run_enrich(args)
        if args.command == "export":
            return run_export(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
