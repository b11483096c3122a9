"""Attribute metered usage and model identity to turns."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Sequence

from chatledger.dates import to_datetime
from chatledger.models import MatchSource, ModelTimelineEntry, Turn, UsageRecord
from chatledger.store.identifiers import normalize_id
from chatledger.store.reader import Document, first_text

DEFAULT_MATCH_WINDOW_SEC = 60
MIN_MATCH_WINDOW_SEC = 1
MAX_MATCH_WINDOW_SEC = 300
FALLBACK_WINDOW = timedelta(minutes=5)

UNKNOWN_MODEL = "unknown"
MODEL_FIELDS = ("aiModel", "model")

ANSWER_MODEL_CONFIDENCE = 1.0
TIER_CONFIDENCE = {MatchSource.DIRECT: 0.92, MatchSource.NEARBY: 0.80}
TIMELINE_CONFIDENCE = 0.65


def round_half_up(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def clamp_match_window(value: float | None) -> int:
    """Whole seconds within [1, 300]; missing or non-finite values use the 60 s default."""

    if value is None or isinstance(value, bool):
        return DEFAULT_MATCH_WINDOW_SEC
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_MATCH_WINDOW_SEC
    if not math.isfinite(number) or number == 0:
        return DEFAULT_MATCH_WINDOW_SEC
    return max(MIN_MATCH_WINDOW_SEC, min(MAX_MATCH_WINDOW_SEC, math.floor(number)))


def positive_amount(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if not math.isfinite(value) or value <= 0:
        return 0.0
    return float(value)


def usage_from_document(document: Document) -> UsageRecord | None:
    channel_id = normalize_id(document.get("channel"))
    created_at = to_datetime(document.get("createdAt"))
    if not channel_id or created_at is None:
        return None
    return UsageRecord(
        channel_id=channel_id,
        creator_id=normalize_id(document.get("creator")),
        amount=positive_amount(document.get("amount")),
        created_at=created_at,
        model=first_text(document, MODEL_FIELDS),
    )


def group_usage(records: Iterable[UsageRecord]) -> dict[str, list[UsageRecord]]:
    grouped: dict[str, list[UsageRecord]] = {}
    for record in records:
        grouped.setdefault(record.channel_id, []).append(record)
    return grouped


def build_timeline(
    usage: Iterable[UsageRecord],
    bot_documents: Iterable[Document],
) -> dict[str, list[ModelTimelineEntry]]:
    """Per-channel model observations from usage and bot responses, ascending by time."""

    timeline: dict[str, list[ModelTimelineEntry]] = {}
    for record in usage:
        if record.model:
            timeline.setdefault(record.channel_id, []).append(
                ModelTimelineEntry(channel_id=record.channel_id, at=record.created_at, model=record.model)
            )
    for document in bot_documents:
        channel_id = normalize_id(document.get("channel"))
        at = to_datetime(document.get("createdAt"))
        model = first_text(document, ("aiModel",))
        if not channel_id or at is None or not model:
            continue
        timeline.setdefault(channel_id, []).append(ModelTimelineEntry(channel_id=channel_id, at=at, model=model))
    for entries in timeline.values():
        entries.sort(key=lambda entry: entry.at)
    return timeline


def latest_model_before(anchor: datetime, timeline: Sequence[ModelTimelineEntry]) -> str | None:
    for entry in reversed(timeline):
        if entry.at <= anchor:
            return entry.model
    return None


def closest_usage(anchor: datetime, candidates: Iterable[UsageRecord]) -> UsageRecord | None:
    picked = None
    best: timedelta | None = None
    for candidate in candidates:
        diff = abs(candidate.created_at - anchor)
        if best is None or diff < best:
            best = diff
            picked = candidate
    return picked


@dataclass(frozen=True)
class UsageMatch:
    match_source: MatchSource
    credit: float
    model: str
    confidence: float
    usage: UsageRecord | None = None


class UsageMatcher:
    """Resolves credit and model for turns of one report through ordered tiers."""

    def __init__(
        self,
        usage_by_channel: Mapping[str, Sequence[UsageRecord]],
        timeline_by_channel: Mapping[str, Sequence[ModelTimelineEntry]],
        *,
        match_window_sec: float | None = None,
    ) -> None:
        self._usage = usage_by_channel
        self._timeline = timeline_by_channel
        self._direct_window = timedelta(seconds=clamp_match_window(match_window_sec))

    def match(self, turn: Turn) -> UsageMatch:
        anchor = turn.anchor_at
        candidates = self._usage.get(turn.channel_id, ())

        source = MatchSource.DIRECT
        picked = closest_usage(anchor, (u for u in candidates if abs(u.created_at - anchor) <= self._direct_window))
        if picked is None:
            source = MatchSource.NEARBY
            picked = closest_usage(
                anchor, (u for u in candidates if timedelta(0) <= anchor - u.created_at <= FALLBACK_WINDOW)
            )
        timeline_model = latest_model_before(anchor, self._timeline.get(turn.channel_id, ()))
        if picked is not None:
            model, confidence = self._resolve_model(turn, picked, source, timeline_model)
        elif timeline_model is not None:
            # fallback ignores the answer's own model
            source, model, confidence = MatchSource.FALLBACK, timeline_model, TIMELINE_CONFIDENCE
        else:
            source, model, confidence = MatchSource.UNMATCHED, UNKNOWN_MODEL, 0.0
        return UsageMatch(
            match_source=source,
            credit=round_half_up(picked.amount, 3) if picked else 0.0,
            model=model,
            confidence=round_half_up(confidence, 2),
            usage=picked,
        )

    @staticmethod
    def _resolve_model(
        turn: Turn,
        usage: UsageRecord,
        source: MatchSource,
        timeline_model: str | None,
    ) -> tuple[str, float]:
        if turn.answer is not None and turn.answer.model:
            return turn.answer.model, ANSWER_MODEL_CONFIDENCE
        if usage.model:
            return usage.model, TIER_CONFIDENCE[source]
        if timeline_model:
            return timeline_model, TIMELINE_CONFIDENCE
        return UNKNOWN_MODEL, 0.0
