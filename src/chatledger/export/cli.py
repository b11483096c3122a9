"""Command-line export of customer reports and partner batch workflows."""

from __future__ import annotations

import argparse
import json
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from chatledger.api.schemas import BatchWorkflowResponse, CustomerReportResponse
from chatledger.catalog import CONVERSATIONS, build_filters, sanitize_filters
from chatledger.config import Settings, get_settings
from chatledger.dates import format_iso, to_datetime
from chatledger.errors import ChatLedgerError, InvalidRequest
from chatledger.metrics.observability import get_logger
from chatledger.models import BatchRequest, ChunkOptions, ReportRequest, ResumeCursor, WorkflowStatus
from chatledger.orchestration import BatchWorkflow
from chatledger.reconciliation import ReportAssembler
from chatledger.store import DocumentReader, build_reader

logger = get_logger("export")


def parse_resume_cursor(occurred_at: str | None, row_key: str | None) -> ResumeCursor | None:
    if not occurred_at:
        return None
    parsed = to_datetime(occurred_at)
    if parsed is None:
        raise InvalidRequest("--resume-occurred-at must be a valid datetime string")
    return ResumeCursor(occurred_at=format_iso(parsed), row_key=(row_key or "").strip() or None)


def parse_filters(raw: str | None, channel: str | None = None) -> dict[str, Any] | None:
    """Decode a stored JSON filter set, keeping only keys the conversations catalog knows."""

    values: dict[str, Any] = {}
    if raw:
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidRequest(f"--filters must be a JSON object: {exc}") from exc
        if not isinstance(decoded, dict):
            raise InvalidRequest("--filters must be a JSON object")
        values = sanitize_filters(CONVERSATIONS, decoded)
    if channel:
        values["channel"] = channel
    return build_filters(CONVERSATIONS, values)


def _safe_name(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", value) or "export"


def run_report(args: argparse.Namespace, reader: DocumentReader, settings: Settings) -> int:
    request = ReportRequest(
        customer_id=args.customer_id,
        start=args.start,
        end=args.end,
        filters=parse_filters(args.filters, args.channel),
        page_size=args.page_size,
        sort_order=args.sort_order,
        match_window_sec=args.match_window_sec,
    )
    result = ReportAssembler(reader, settings).build_report(request)
    print(CustomerReportResponse.from_result(result).model_dump_json(by_alias=True, indent=2))
    return 0


def run_batch(args: argparse.Namespace, reader: DocumentReader, settings: Settings) -> int:
    cursor = parse_resume_cursor(args.resume_occurred_at, args.resume_row_key)
    request = BatchRequest(
        start=args.start,
        end=args.end,
        partner_id=args.partner_id,
        customer_ids=tuple(args.customer_id or ()),
        channel_ids=tuple(args.channel_id or ()),
        chunk_options=ChunkOptions(
            customer_batch_size=args.customer_batch_size,
            channel_chunk_size=args.channel_chunk_size,
            max_workers=args.max_workers,
            pause_ms=args.pause_ms,
            max_retries=args.max_retries,
        ),
        row_limit=args.row_limit,
        include_total=args.include_total,
        resume=cursor,
    )
    result = BatchWorkflow(reader, settings).run(request)
    rows = result.rows
    last = rows[-1] if rows else None
    response = BatchWorkflowResponse.from_result(result)

    output_dir: Path = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
    base = f"conversations-{_safe_name(args.partner_id or 'explicit')}-{stamp}"
    rows_file = output_dir / f"{base}.json"
    summary_file = output_dir / f"{base}.summary.json"

    rows_file.write_text(json.dumps([row.to_dict() for row in rows], ensure_ascii=False, indent=2), encoding="utf-8")
    summary = {
        "status": result.status.value,
        "partnerId": result.meta.partner_id,
        "dateRange": {"start": args.start, "end": args.end},
        "resume": {"occurredAt": cursor.occurred_at, "rowKey": cursor.row_key} if cursor else None,
        "resultCount": len(rows),
        "lastRow": {"occurredAt": format_iso(last.occurred_at), "rowKey": last.row_key} if last else None,
        "hasMore": result.has_more,
        "total": result.total,
        "meta": response.meta.model_dump(by_alias=True),
        "outputFile": str(rows_file),
        "summaryFile": str(summary_file),
    }
    summary_file.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    print(json.dumps(summary, ensure_ascii=False, indent=2))

    if result.status is WorkflowStatus.FAILED:
        print(f"Export failed: {len(result.meta.failed_chunks)} chunk(s) exhausted retries", file=sys.stderr)
        return 1
    return 0


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export reconciled conversation reports.")
    sub = parser.add_subparsers(dest="command", required=True)

    report = sub.add_parser("report", help="Build one customer report")
    report.add_argument("--customer-id", required=True)
    report.add_argument("--start", required=True, help="ISO-8601 range start")
    report.add_argument("--end", required=True, help="ISO-8601 range end")
    report.add_argument("--channel", default=None, help="Restrict to one channel id")
    report.add_argument("--filters", default=None, help="Stored filter set as a JSON object")
    report.add_argument("--page-size", type=int, default=None)
    report.add_argument("--sort-order", choices=("asc", "desc"), default="asc")
    report.add_argument("--match-window-sec", type=float, default=None)

    batch = sub.add_parser("batch", help="Run the partner or explicit-scope batch workflow")
    batch.add_argument("--start", required=True, help="ISO-8601 range start")
    batch.add_argument("--end", required=True, help="ISO-8601 range end")
    batch.add_argument("--partner-id", default=None)
    batch.add_argument("--customer-id", action="append", help="Explicit customer id (repeatable)")
    batch.add_argument("--channel-id", action="append", help="Explicit channel id (repeatable)")
    batch.add_argument("--customer-batch-size", type=int, default=None)
    batch.add_argument("--channel-chunk-size", type=int, default=None)
    batch.add_argument("--max-workers", type=int, default=None)
    batch.add_argument("--pause-ms", type=int, default=None)
    batch.add_argument("--max-retries", type=int, default=None)
    batch.add_argument("--row-limit", type=int, default=None)
    batch.add_argument("--include-total", action="store_true")
    batch.add_argument("--resume-occurred-at", default=None, help="Skip rows at or before this time")
    batch.add_argument("--resume-row-key", default=None, help="Tie-breaker row key for the resume time")
    batch.add_argument("--output-dir", type=Path, default=Path("exports"))
    return parser.parse_args(argv)


def main(
    argv: Sequence[str] | None = None,
    *,
    reader: DocumentReader | None = None,
    settings: Settings | None = None,
) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    settings = settings or get_settings()
    try:
        reader = reader or build_reader(settings)
        if args.command == "report":
            return run_report(args, reader, settings)
        return run_batch(args, reader, settings)
    except ChatLedgerError as exc:
        logger.error("export.failed", command=args.command, detail=str(exc))
        print(f"Export error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
