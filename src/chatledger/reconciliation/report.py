"""Customer conversation report assembly."""

from __future__ import annotations

import time
from typing import Any

from chatledger.catalog import CONVERSATIONS, filter_conditions
from chatledger.config import Settings
from chatledger.dates import parse_date_range, to_store_datetime
from chatledger.errors import InvalidRequest
from chatledger.metrics.observability import PipelineMetrics, get_logger
from chatledger.models import MatchSource, ReportRequest, ReportResult, ReportRow, ReportSummary, Turn
from chatledger.reconciliation.feedback import FEEDBACK_EXTRACTORS, resolve_feedback
from chatledger.reconciliation.turns import SORT_ORDERS, build_turns, group_by_session, parse_messages, sort_turns
from chatledger.reconciliation.usage import (
    FALLBACK_WINDOW,
    MODEL_FIELDS,
    UsageMatch,
    UsageMatcher,
    build_timeline,
    group_usage,
    round_half_up,
    usage_from_document,
)
from chatledger.store.identifiers import id_candidates, normalize_id
from chatledger.store.reader import DocumentReader

MESSAGE_PROJECTION: dict[str, int] = {
    "_id": 1,
    "creator": 1,
    "creatorType": 1,
    "channel": 1,
    "session": 1,
    "text": 1,
    "createdAt": 1,
    **{name: 1 for name in MODEL_FIELDS},
    **{extractor.field: 1 for extractor in FEEDBACK_EXTRACTORS},
}
USAGE_PROJECTION = {"_id": 1, "channel": 1, "creator": 1, "amount": 1, "createdAt": 1, "aiModel": 1, "model": 1}
BOT_PROJECTION = {"_id": 1, "channel": 1, "aiModel": 1, "createdAt": 1}
ASCENDING = [("createdAt", 1), ("_id", 1)]


class ReportAssembler:
    """Builds reconciled report rows for one customer over a date range."""

    def __init__(self, reader: DocumentReader, settings: Settings) -> None:
        self._reader = reader
        self._settings = settings
        self._logger = get_logger("report")

    def resolve_page_size(self, page_size: int | None) -> int:
        if page_size is None:
            page_size = self._settings.default_page_size
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
            raise InvalidRequest("pageSize must be a positive integer")
        return min(page_size, self._settings.max_export_rows)

    def build_report(self, request: ReportRequest) -> ReportResult:
        start_clock = time.perf_counter()
        customer_id = (request.customer_id or "").strip()
        if not customer_id:
            raise InvalidRequest("customerId is required for customer report mode")
        start, end = parse_date_range(request.start, request.end)
        page_size = self.resolve_page_size(request.page_size)
        sort_order = request.sort_order or "asc"
        if sort_order not in SORT_ORDERS:
            raise InvalidRequest(f"sortOrder must be one of: {list(SORT_ORDERS)}")

        question_filter: dict[str, Any] = {
            **filter_conditions(CONVERSATIONS, request.filters),
            "creator": {"$in": id_candidates([customer_id])},
            "createdAt": {"$gte": to_store_datetime(start), "$lte": to_store_datetime(end)},
        }
        direction = 1 if sort_order == "asc" else -1
        candidates = self._reader.find(
            self._settings.chats_collection,
            question_filter,
            projection=MESSAGE_PROJECTION,
            sort=[("createdAt", direction), ("_id", 1)],
            limit=page_size + 1,
        )
        has_more = len(candidates) > page_size
        visible = candidates[:page_size]

        session_ids = {normalize_id(doc.get("session")) for doc in visible} - {""}
        channel_ids = {normalize_id(doc.get("channel")) for doc in visible} - {""}
        if not session_ids or not channel_ids:
            return ReportResult(rows=[], summary=ReportSummary(), page_size=page_size, has_more=has_more)

        session_documents = self._reader.find(
            self._settings.chats_collection,
            {"session": {"$in": id_candidates(sorted(session_ids))}},
            projection=MESSAGE_PROJECTION,
            sort=ASCENDING,
        )
        padded = {
            "channel": {"$in": id_candidates(sorted(channel_ids))},
            "createdAt": {
                "$gte": to_store_datetime(start - FALLBACK_WINDOW),
                "$lte": to_store_datetime(end + FALLBACK_WINDOW),
            },
        }
        usage_documents = self._reader.find(
            self._settings.usage_collection, padded, projection=USAGE_PROJECTION, sort=ASCENDING
        )
        bot_documents = self._reader.find(self._settings.bot_collection, padded, projection=BOT_PROJECTION, sort=ASCENDING)

        usage = [record for record in map(usage_from_document, usage_documents) if record is not None]
        matcher = UsageMatcher(
            group_usage(usage),
            build_timeline(usage, bot_documents),
            match_window_sec=(
                request.match_window_sec
                if request.match_window_sec is not None
                else self._settings.default_match_window_sec
            ),
        )

        turns: list[Turn] = []
        for messages in group_by_session(parse_messages(session_documents, customer_id)).values():
            turns.extend(build_turns(messages))
        rows, summary = self._assemble(sort_turns(turns, sort_order), matcher)

        duration = time.perf_counter() - start_clock
        PipelineMetrics.observe_report(duration, len(rows))
        self._logger.info(
            "report.complete",
            customer_id=customer_id,
            row_count=len(rows),
            has_more=has_more,
            fallback_count=summary.fallback_count,
            unmatched_count=summary.unmatched_count,
            duration_seconds=duration,
        )
        return ReportResult(rows=rows, summary=summary, page_size=page_size, has_more=has_more)

    @staticmethod
    def _assemble(turns: list[Turn], matcher: UsageMatcher) -> tuple[list[ReportRow], ReportSummary]:
        rows: list[ReportRow] = []
        session_totals: dict[str, float] = {}
        total_credit = 0.0
        fallback_count = 0
        unmatched_count = 0
        for turn in turns:
            match: UsageMatch = matcher.match(turn)
            PipelineMetrics.observe_match(match.match_source.value)
            session_key = f"{turn.channel_id}::{turn.session_id}"
            session_total = round_half_up(session_totals.get(session_key, 0.0) + match.credit, 3)
            session_totals[session_key] = session_total
            total_credit = round_half_up(total_credit + match.credit, 3)
            if match.match_source is MatchSource.FALLBACK:
                fallback_count += 1
            elif match.match_source is MatchSource.UNMATCHED:
                unmatched_count += 1

            feedback = resolve_feedback(turn)
            question = turn.question
            rows.append(
                ReportRow(
                    occurred_at=question.created_at,
                    answer_at=turn.answer.created_at if turn.answer else None,
                    response_latency_ms=turn.response_latency_ms,
                    channel=turn.channel_id,
                    session_id=turn.session_id,
                    customer_id=turn.customer_id,
                    question_creator_type=question.creator_type or "unknown",
                    question_creator_raw=question.creator_id,
                    question_text=question.text,
                    answer_text=turn.answer.text if turn.answer else "",
                    answer_model=match.model,
                    model_confidence=match.confidence,
                    credit_used=match.credit,
                    session_credit_total=session_total,
                    match_source=match.match_source,
                    feedback=feedback.value,
                    feedback_confidence=round_half_up(feedback.confidence, 2),
                )
            )
        summary = ReportSummary(
            total_rows=len(rows),
            total_credit_used=total_credit,
            fallback_count=fallback_count,
            unmatched_count=unmatched_count,
        )
        return rows, summary
