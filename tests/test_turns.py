from __future__ import annotations

from bson import ObjectId

from builders import message, ts
from chatledger.models import MessageRole
from chatledger.reconciliation.turns import (
    build_turns,
    classify_role,
    group_by_session,
    message_from_document,
    parse_messages,
    sort_turns,
)


def test_classify_role_prefers_customer_identity():
    assert classify_role("cust-1", "bot", "cust-1") is MessageRole.QUESTION
    assert classify_role("someone", "guest", "cust-1") is MessageRole.QUESTION
    assert classify_role("bot-1", "assistant", "cust-1") is MessageRole.ANSWER
    assert classify_role("agent", "operator", "cust-1") is MessageRole.OTHER


def test_message_from_document_normalizes_ids_and_role():
    channel = ObjectId()
    parsed = message_from_document(
        {
            "_id": ObjectId(),
            "creator": "cust-1",
            "creatorType": " User ",
            "channel": channel,
            "session": "s-1",
            "text": "  hello ",
            "createdAt": ts(1, 10),
        },
        "cust-1",
    )
    assert parsed is not None
    assert parsed.channel_id == str(channel)
    assert parsed.creator_type == "user"
    assert parsed.text == "hello"
    assert parsed.created_at.tzinfo is not None


def test_message_model_reads_either_model_field():
    base = {"creator": "bot-1", "creatorType": "bot", "channel": "ch-1", "session": "s-1", "createdAt": ts(1, 10)}

    assert message_from_document({**base, "model": "claude-3"}, "cust-1").model == "claude-3"
    assert message_from_document({**base, "aiModel": "gpt-4o", "model": "claude-3"}, "cust-1").model == "gpt-4o"
    assert message_from_document(base, "cust-1").model is None


def test_malformed_documents_are_dropped():
    documents = [
        {"creator": "cust-1", "creatorType": "user", "session": "s-1", "createdAt": ts(1, 10)},
        {"creator": "cust-1", "creatorType": "user", "channel": "ch-1", "createdAt": ts(1, 10)},
        {"creator": "cust-1", "creatorType": "user", "channel": "ch-1", "session": "s-1"},
        {"creatorType": "user", "channel": "ch-1", "session": "s-1", "createdAt": ts(1, 10)},
        {"creator": "cust-1", "creatorType": "user", "channel": "ch-1", "session": "s-1", "createdAt": ts(1, 10)},
    ]
    assert len(parse_messages(documents, "cust-1")) == 1


def test_question_pairs_with_first_later_answer_in_session():
    messages = [
        message(MessageRole.QUESTION, seconds=0, text="q1"),
        message(MessageRole.OTHER, seconds=1, creator="agent"),
        message(MessageRole.ANSWER, seconds=3, creator="bot", text="a1"),
        message(MessageRole.ANSWER, seconds=4, creator="bot", text="a1-followup"),
        message(MessageRole.QUESTION, seconds=10, text="q2"),
    ]
    turns = build_turns(messages)
    assert [turn.question.text for turn in turns] == ["q1", "q2"]
    assert turns[0].answer is not None and turns[0].answer.text == "a1"
    assert turns[0].response_latency_ms == 3000
    assert turns[1].answer is None
    assert turns[1].response_latency_ms is None


def test_answer_is_never_earlier_than_question():
    turns = build_turns([message(MessageRole.QUESTION, seconds=5), message(MessageRole.ANSWER, seconds=5)])
    assert turns[0].answer is not None
    assert turns[0].answer.created_at >= turns[0].question.created_at
    assert turns[0].response_latency_ms == 0


def test_group_by_session_keeps_channel_and_session_apart():
    grouped = group_by_session(
        [
            message(MessageRole.QUESTION, session="s-1", channel="ch-1"),
            message(MessageRole.QUESTION, session="s-1", channel="ch-2"),
            message(MessageRole.ANSWER, session="s-1", channel="ch-1", seconds=2),
        ]
    )
    assert set(grouped) == {"ch-1::s-1", "ch-2::s-1"}
    assert len(grouped["ch-1::s-1"]) == 2


def test_sort_turns_orders_by_question_time_and_breaks_ties():
    turns = build_turns(
        [
            message(MessageRole.QUESTION, seconds=20, text="late"),
            message(MessageRole.QUESTION, seconds=0, text="b"),
            message(MessageRole.QUESTION, seconds=0, text="a"),
        ]
    )
    assert [t.question.text for t in sort_turns(turns, "asc")] == ["a", "b", "late"]
    assert [t.question.text for t in sort_turns(turns, "desc")] == ["late", "b", "a"]
