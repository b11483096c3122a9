from __future__ import annotations

import pytest
from bson import ObjectId

from builders import ts
from chatledger.errors import InvalidRequest
from chatledger.models import FeedbackValue, MatchSource, ReportRequest
from chatledger.reconciliation.report import ReportAssembler

START = "2024-03-01T10:00:00Z"
END = "2024-03-01T12:00:00Z"


def chat(creator, creator_type, channel, session, at, text="", **extra):
    return {
        "creator": creator,
        "creatorType": creator_type,
        "channel": channel,
        "session": session,
        "createdAt": at,
        "text": text,
        **extra,
    }


@pytest.fixture()
def seeded(database):
    database["chats"].insert_many(
        [
            chat("cust-1", "user", "ch-1", "s-1", ts(1, 10, 0, 0), "how do I reset?"),
            chat("bot-1", "bot", "ch-1", "s-1", ts(1, 10, 0, 5), "click reset", like=True),
            chat("cust-1", "user", "ch-1", "s-1", ts(1, 10, 30, 0), "and then?", feedback="thumbsdown"),
            chat("bot-1", "bot", "ch-1", "s-1", ts(1, 10, 30, 10), "wait a minute"),
            chat("cust-1", "user", "ch-1", "s-1", ts(1, 11, 0, 0), "hello?", rating={"value": -1}),
            chat("cust-1", "user", "ch-2", "s-2", ts(1, 11, 30, 0), "other channel"),
            chat("bot-2", "assistant", "ch-2", "s-2", ts(1, 11, 30, 2), "sure", aiModel="answer-model"),
            chat("cust-2", "user", "ch-1", "s-9", ts(1, 10, 15, 0), "someone else"),
        ]
    )
    database["usagelogs"].insert_many(
        [
            {"channel": "ch-1", "creator": "cust-1", "amount": 1.5, "createdAt": ts(1, 10, 0, 15), "aiModel": "gpt-4o"},
            {"channel": "ch-1", "creator": "cust-1", "amount": 9, "createdAt": ts(1, 9, 56, 5), "aiModel": "old"},
            {"channel": "ch-1", "creator": "cust-1", "amount": 2.25, "createdAt": ts(1, 10, 27, 10), "model": "claude"},
        ]
    )
    database["botchats"].insert_one({"channel": "ch-1", "aiModel": "bot-model", "createdAt": ts(1, 10, 45, 0)})
    return database


def test_report_reconciles_all_match_tiers(seeded, reader, settings):
    result = ReportAssembler(reader, settings).build_report(ReportRequest(customer_id="cust-1", start=START, end=END))

    assert result.has_more is False
    assert result.page_size == settings.default_page_size
    assert [row.question_text for row in result.rows] == ["how do I reset?", "and then?", "hello?", "other channel"]

    direct, nearby, fallback, unmatched = result.rows
    assert direct.match_source is MatchSource.DIRECT
    assert (direct.credit_used, direct.answer_model, direct.model_confidence) == (1.5, "gpt-4o", 0.92)
    assert direct.answer_text == "click reset"
    assert direct.response_latency_ms == 5000
    assert (direct.feedback, direct.feedback_confidence) == (FeedbackValue.LIKE, 1.0)

    assert nearby.match_source is MatchSource.NEARBY
    assert (nearby.credit_used, nearby.answer_model, nearby.model_confidence) == (2.25, "claude", 0.8)
    assert nearby.session_credit_total == 3.75
    assert (nearby.feedback, nearby.feedback_confidence) == (FeedbackValue.DISLIKE, 0.75)

    assert fallback.match_source is MatchSource.FALLBACK
    assert (fallback.credit_used, fallback.answer_model, fallback.model_confidence) == (0, "bot-model", 0.65)
    assert fallback.answer_at is None and fallback.response_latency_ms is None
    assert fallback.session_credit_total == 3.75
    assert (fallback.feedback, fallback.feedback_confidence) == (FeedbackValue.DISLIKE, 0.65)

    assert unmatched.match_source is MatchSource.UNMATCHED
    assert (unmatched.answer_model, unmatched.model_confidence) == ("unknown", 0)
    assert unmatched.channel == "ch-2"

    summary = result.summary
    assert (summary.total_rows, summary.total_credit_used) == (4, 3.75)
    assert (summary.fallback_count, summary.unmatched_count) == (1, 1)


def test_report_rows_serialize_with_camel_case_keys(seeded, reader, settings):
    result = ReportAssembler(reader, settings).build_report(ReportRequest(customer_id="cust-1", start=START, end=END))
    payload = result.rows[0].to_dict()
    assert payload["occurredAt"] == "2024-03-01T10:00:00.000Z"
    assert payload["like"] == "좋아요"
    assert payload["matchSource"] == "direct"


def test_descending_sort_and_page_size(seeded, reader, settings):
    assembler = ReportAssembler(reader, settings)
    result = assembler.build_report(
        ReportRequest(customer_id="cust-1", start=START, end=END, sort_order="desc", page_size=1)
    )
    assert result.has_more is True
    assert result.page_size == 1
    assert {row.session_id for row in result.rows} == {"s-2"}


def test_page_covering_one_session_has_more(seeded, reader, settings):
    result = ReportAssembler(reader, settings).build_report(
        ReportRequest(customer_id="cust-1", start=START, end=END, page_size=2)
    )
    assert result.has_more is True
    assert {row.session_id for row in result.rows} == {"s-1"}


def test_channel_filter_restricts_questions(seeded, reader, settings):
    result = ReportAssembler(reader, settings).build_report(
        ReportRequest(customer_id="cust-1", start=START, end=END, filters={"channel": "ch-2"})
    )
    assert [row.channel for row in result.rows] == ["ch-2"]


def test_page_size_is_capped_at_max_export_rows(seeded, reader, settings):
    result = ReportAssembler(reader, settings).build_report(
        ReportRequest(customer_id="cust-1", start=START, end=END, page_size=10**6)
    )
    assert result.page_size == settings.max_export_rows


def test_empty_range_returns_empty_report(seeded, reader, settings):
    result = ReportAssembler(reader, settings).build_report(
        ReportRequest(customer_id="cust-1", start="2023-01-01T00:00:00Z", end="2023-01-02T00:00:00Z")
    )
    assert result.rows == []
    assert result.summary.total_rows == 0


def test_object_id_creators_and_channels_match_text_ids(database, reader, settings):
    customer, channel = ObjectId(), ObjectId()
    database["chats"].insert_many(
        [
            chat(customer, "customer", channel, "s-1", ts(1, 10, 0, 0), "q"),
            chat(ObjectId(), "ai", channel, "s-1", ts(1, 10, 0, 1), "a"),
        ]
    )
    database["usagelogs"].insert_one({"channel": channel, "amount": 0.1234, "createdAt": ts(1, 10, 0, 2)})
    result = ReportAssembler(reader, settings).build_report(
        ReportRequest(customer_id=str(customer), start=START, end=END, filters={"channel": str(channel)})
    )
    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.customer_id == str(customer)
    assert row.channel == str(channel)
    assert row.credit_used == 0.123
    assert row.answer_text == "a"


@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"customer_id": "  "},
        {"start": END, "end": START},
        {"start": "yesterday"},
        {"page_size": 0},
        {"sort_order": "sideways"},
        {"filters": {"$where": "1"}},
        {"filters": {"unknownKey": "x"}},
    ],
)
def test_invalid_requests_are_rejected(reader, settings, request_kwargs):
    params = {"customer_id": "cust-1", "start": START, "end": END, **request_kwargs}
    with pytest.raises(InvalidRequest):
        ReportAssembler(reader, settings).build_report(ReportRequest(**params))


def test_three_sessions_choose_closest_usage_never_the_late_one(database, reader, settings):
    database["chats"].insert_many(
        [
            chat("cust-3", "user", "ch-a", "s-a", ts(1, 10, 0, 0), "first session"),
            chat("bot", "bot", "ch-a", "s-a", ts(1, 10, 0, 2), "answer a"),
            chat("cust-3", "user", "ch-b", "s-b", ts(1, 10, 10, 0), "second session"),
            chat("bot", "bot", "ch-b", "s-b", ts(1, 10, 10, 3), "answer b"),
            chat("cust-3", "user", "ch-c", "s-c", ts(1, 10, 20, 0), "third session"),
        ]
    )
    database["usagelogs"].insert_many(
        [
            {"channel": "ch-a", "amount": 1.2, "createdAt": ts(1, 10, 0, 6), "aiModel": "near"},
            {"channel": "ch-a", "amount": 0.4, "createdAt": ts(1, 10, 0, 12), "aiModel": "edge"},
            {"channel": "ch-a", "amount": 5, "createdAt": ts(1, 10, 4, 2), "aiModel": "late"},
            {"channel": "ch-b", "amount": 0.3, "createdAt": ts(1, 10, 10, 20), "aiModel": "other"},
        ]
    )

    result = ReportAssembler(reader, settings).build_report(ReportRequest(customer_id="cust-3", start=START, end=END))

    first, second, third = result.rows
    assert (first.match_source, first.credit_used, first.answer_model) == (MatchSource.DIRECT, 1.2, "near")
    assert (second.match_source, second.credit_used) == (MatchSource.DIRECT, 0.3)
    assert (third.match_source, third.credit_used, third.answer_model) == (MatchSource.UNMATCHED, 0, "unknown")
    assert result.summary.total_credit_used == 1.5


def test_answer_model_field_wins_over_usage_model(database, reader, settings):
    database["chats"].insert_many(
        [
            chat("cust-7", "user", "ch-7", "s-7", ts(1, 10, 0, 0), "which model?"),
            chat("bot-7", "bot", "ch-7", "s-7", ts(1, 10, 0, 4), "this one", model="answer-gen"),
        ]
    )
    database["usagelogs"].insert_one(
        {"channel": "ch-7", "creator": "cust-7", "amount": 0.5, "createdAt": ts(1, 10, 0, 6), "aiModel": "usage-model"}
    )

    result = ReportAssembler(reader, settings).build_report(ReportRequest(customer_id="cust-7", start=START, end=END))

    (row,) = result.rows
    assert row.match_source is MatchSource.DIRECT
    assert (row.credit_used, row.answer_model, row.model_confidence) == (0.5, "answer-gen", 1.0)
