"""Like/dislike resolution from loosely structured feedback fields."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

from chatledger.models import FeedbackValue, Turn

LIKE_TOKENS = frozenset({"like", "liked", "up", "upvote", "thumbsup", "positive", "good", FeedbackValue.LIKE.value})
DISLIKE_TOKENS = frozenset(
    {"dislike", "disliked", "down", "downvote", "thumbsdown", "negative", "bad", FeedbackValue.DISLIKE.value}
)
NESTED_KEYS = ("like", "dislike", "status", "value", "type", "sentiment")


@dataclass(frozen=True)
class FeedbackExtractor:
    source: str  # "answer" or "question"
    field: str
    weight: float


FEEDBACK_EXTRACTORS: Sequence[FeedbackExtractor] = (
    FeedbackExtractor("answer", "like", 1.0),
    FeedbackExtractor("answer", "dislike", 1.0),
    FeedbackExtractor("answer", "feedback", 0.95),
    FeedbackExtractor("answer", "feedbackType", 0.95),
    FeedbackExtractor("answer", "reaction", 0.9),
    FeedbackExtractor("answer", "review", 0.85),
    FeedbackExtractor("answer", "rating", 0.85),
    FeedbackExtractor("question", "like", 0.8),
    FeedbackExtractor("question", "dislike", 0.8),
    FeedbackExtractor("question", "feedback", 0.75),
    FeedbackExtractor("question", "feedbackType", 0.75),
    FeedbackExtractor("question", "reaction", 0.7),
    FeedbackExtractor("question", "review", 0.65),
    FeedbackExtractor("question", "rating", 0.65),
)


@dataclass(frozen=True)
class FeedbackResolution:
    value: FeedbackValue = FeedbackValue.NONE
    confidence: float = 0.0


def interpret_signal(value: Any, *, nested: bool = True) -> FeedbackValue:
    """Map a raw feedback value onto like/dislike, or ``NONE`` when it carries no signal."""

    if isinstance(value, bool):
        return FeedbackValue.LIKE if value else FeedbackValue.DISLIKE
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value == 0:
            return FeedbackValue.NONE
        return FeedbackValue.LIKE if value > 0 else FeedbackValue.DISLIKE
    if isinstance(value, str):
        token = value.strip().lower()
        if token in LIKE_TOKENS:
            return FeedbackValue.LIKE
        if token in DISLIKE_TOKENS:
            return FeedbackValue.DISLIKE
        return FeedbackValue.NONE
    if nested and isinstance(value, dict):
        for key in NESTED_KEYS:
            resolved = interpret_signal(value.get(key), nested=False)
            if resolved is not FeedbackValue.NONE:
                return resolved
    return FeedbackValue.NONE


def resolve_feedback(turn: Turn) -> FeedbackResolution:
    documents = {
        "answer": turn.answer.document if turn.answer is not None else {},
        "question": turn.question.document,
    }
    for extractor in FEEDBACK_EXTRACTORS:
        resolved = interpret_signal(documents[extractor.source].get(extractor.field))
        if resolved is not FeedbackValue.NONE:
            return FeedbackResolution(value=resolved, confidence=extractor.weight)
    return FeedbackResolution()
