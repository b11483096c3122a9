from __future__ import annotations

from datetime import timedelta

import pytest

from builders import BASE, message
from chatledger.models import MatchSource, MessageRole, Turn, UsageRecord
from chatledger.reconciliation.usage import (
    UsageMatcher,
    build_timeline,
    clamp_match_window,
    round_half_up,
    usage_from_document,
)


def usage(seconds: float, amount: float = 1.0, model: str | None = None, channel: str = "ch-1") -> UsageRecord:
    return UsageRecord(
        channel_id=channel,
        creator_id="cust-1",
        amount=amount,
        created_at=BASE + timedelta(seconds=seconds),
        model=model,
    )


def answered_turn(answer_seconds: float = 0, answer_model: str | None = None) -> Turn:
    return Turn(
        question=message(MessageRole.QUESTION, seconds=answer_seconds - 5),
        answer=message(MessageRole.ANSWER, seconds=answer_seconds, creator="bot", model=answer_model),
    )


def matcher(records, bots=(), window=None) -> UsageMatcher:
    records = list(records)
    by_channel: dict[str, list[UsageRecord]] = {}
    for record in records:
        by_channel.setdefault(record.channel_id, []).append(record)
    return UsageMatcher(by_channel, build_timeline(records, bots), match_window_sec=window)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 60), (0, 60), (float("nan"), 60), (0.4, 1), (-10, 1), (45.9, 45), (301, 300), (10_000, 300)],
)
def test_clamp_match_window(value, expected):
    assert clamp_match_window(value) == expected


def test_round_half_up_rounds_ties_away_from_zero():
    assert round_half_up(0.0005, 3) == 0.001
    assert round_half_up(2.675, 2) == 2.68
    assert round_half_up(0.125, 2) == 0.13


def test_usage_from_document_coerces_amount_and_model():
    record = usage_from_document({"channel": "ch-1", "createdAt": BASE, "amount": -3, "model": " gpt "})
    assert record is not None
    assert record.amount == 0.0
    assert record.model == "gpt"
    assert usage_from_document({"channel": "ch-1", "amount": 1}) is None


def test_direct_match_beats_older_nearby_usage():
    result = matcher([usage(10, 1.5, "direct-model"), usage(-240, 9, "old-model")]).match(answered_turn())
    assert result.match_source is MatchSource.DIRECT
    assert result.credit == 1.5
    assert result.model == "direct-model"
    assert result.confidence == 0.92


def test_direct_match_ignores_usage_four_minutes_after_answer():
    result = matcher([usage(10, 1.5, "direct-model"), usage(240, 9, "late-model")]).match(answered_turn())
    assert result.match_source is MatchSource.DIRECT
    assert result.credit == 1.5
    assert result.model == "direct-model"


def test_direct_picks_minimum_absolute_difference():
    result = matcher([usage(-30, 1), usage(20, 2), usage(50, 3)]).match(answered_turn())
    assert result.credit == 2


def test_nearby_is_backward_only():
    before = matcher([usage(-180, 2.25, "nearby-model")]).match(answered_turn())
    assert before.match_source is MatchSource.NEARBY
    assert before.model == "nearby-model"
    assert before.confidence == 0.8

    after = matcher([usage(180, 2.25, "later-model")]).match(answered_turn(answer_seconds=0))
    assert after.match_source is MatchSource.UNMATCHED
    assert after.credit == 0


def test_fallback_uses_latest_timeline_entry_before_anchor():
    bots = [{"channel": "ch-1", "createdAt": BASE - timedelta(minutes=15), "aiModel": "bot-model"}]
    records = [usage(-3600, 1, "older"), usage(3600, 1, "future")]
    result = matcher(records, bots).match(answered_turn())
    assert result.match_source is MatchSource.FALLBACK
    assert result.model == "bot-model"
    assert result.confidence == 0.65
    assert result.credit == 0


def test_unmatched_forces_unknown_model_even_with_answer_model():
    result = matcher([]).match(answered_turn(answer_model="answer-model"))
    assert result.match_source is MatchSource.UNMATCHED
    assert result.model == "unknown"
    assert result.confidence == 0


def test_fallback_takes_timeline_model_over_answer_model():
    bots = [{"channel": "ch-1", "createdAt": BASE - timedelta(minutes=15), "aiModel": "bot-model"}]
    result = matcher([], bots).match(answered_turn(answer_model="answer-model"))
    assert result.match_source is MatchSource.FALLBACK
    assert result.model == "bot-model"
    assert result.confidence == 0.65
    assert result.credit == 0


def test_answer_model_wins_over_usage_model():
    result = matcher([usage(5, 1, "usage-model")]).match(answered_turn(answer_model="answer-model"))
    assert result.match_source is MatchSource.DIRECT
    assert result.model == "answer-model"
    assert result.confidence == 1.0


def test_usage_without_model_falls_back_to_timeline_model():
    bots = [{"channel": "ch-1", "createdAt": BASE - timedelta(minutes=1), "aiModel": "bot-model"}]
    result = matcher([usage(5, 0.5)], bots).match(answered_turn())
    assert result.match_source is MatchSource.DIRECT
    assert result.model == "bot-model"
    assert result.confidence == 0.65


def test_custom_window_narrows_direct_tier():
    result = matcher([usage(-20, 1, "m")], window=10).match(answered_turn())
    assert result.match_source is MatchSource.NEARBY


def test_tiers_are_exclusive():
    records = [usage(-200, 1, "a"), usage(30, 2, "b")]
    sources = {matcher(records, window=w).match(answered_turn()).match_source for w in (1, 60)}
    assert sources == {MatchSource.NEARBY, MatchSource.DIRECT}


def test_usage_in_other_channel_is_ignored():
    result = matcher([usage(1, 5, "m", channel="ch-2")]).match(answered_turn())
    assert result.match_source is MatchSource.UNMATCHED
