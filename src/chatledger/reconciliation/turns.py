"""Pair question messages with the answers that follow them."""

from __future__ import annotations

from typing import Iterable, Sequence

from chatledger.dates import to_datetime
from chatledger.models import Message, MessageRole, Turn
from chatledger.reconciliation.usage import MODEL_FIELDS
from chatledger.store.identifiers import normalize_id
from chatledger.store.reader import Document, first_text

QUESTION_TYPES = frozenset({"user", "guest", "customer", "human"})
ANSWER_TYPES = frozenset({"assistant", "bot", "ai", "system"})

SORT_ORDERS = ("asc", "desc")


def classify_role(creator_id: str, creator_type: str, customer_id: str) -> MessageRole:
    """Question if written by the customer or tagged as a human role, answer if tagged as a bot role."""

    if customer_id and creator_id == customer_id:
        return MessageRole.QUESTION
    if creator_type in QUESTION_TYPES:
        return MessageRole.QUESTION
    if creator_type in ANSWER_TYPES:
        return MessageRole.ANSWER
    return MessageRole.OTHER


def message_from_document(document: Document, customer_id: str) -> Message | None:
    """Parse a chats document, returning ``None`` for records that cannot be placed in a session."""

    created_at = to_datetime(document.get("createdAt"))
    channel_id = normalize_id(document.get("channel"))
    session_id = normalize_id(document.get("session"))
    if created_at is None or not channel_id or not session_id:
        return None
    creator_id = normalize_id(document.get("creator"))
    creator_type = normalize_id(document.get("creatorType")).lower()
    role = classify_role(creator_id, creator_type, customer_id)
    if role is MessageRole.QUESTION and not creator_id:
        return None
    text = document.get("text")
    return Message(
        message_id=normalize_id(document.get("_id")),
        creator_id=creator_id,
        creator_type=creator_type,
        role=role,
        channel_id=channel_id,
        session_id=session_id,
        text=text.strip() if isinstance(text, str) else "",
        created_at=created_at,
        model=first_text(document, MODEL_FIELDS),
        document=document,
    )


def parse_messages(documents: Iterable[Document], customer_id: str) -> list[Message]:
    messages = []
    for document in documents:
        message = message_from_document(document, customer_id)
        if message is not None:
            messages.append(message)
    return messages


def group_by_session(messages: Iterable[Message]) -> dict[str, list[Message]]:
    """Messages keyed by ``channel::session`` in arrival order."""

    grouped: dict[str, list[Message]] = {}
    for message in messages:
        grouped.setdefault(f"{message.channel_id}::{message.session_id}", []).append(message)
    return grouped


def build_turns(messages: Sequence[Message]) -> list[Turn]:
    """Build turns from one session's messages, ordered by ``created_at`` ascending.

    Every question-like message becomes a turn. Its answer is the first later
    answer-like message of the same session; there may be none.
    """

    turns: list[Turn] = []
    for index, message in enumerate(messages):
        if message.role is not MessageRole.QUESTION:
            continue
        answer = None
        for candidate in messages[index + 1 :]:
            if candidate.session_id != message.session_id:
                continue
            if candidate.role is not MessageRole.ANSWER:
                continue
            if candidate.created_at < message.created_at:
                continue
            answer = candidate
            break
        turns.append(Turn(question=message, answer=answer))
    return turns


def turn_sort_key(turn: Turn) -> tuple:
    question = turn.question
    return (question.created_at, question.channel_id, question.session_id, question.creator_id, question.text)


def sort_turns(turns: Iterable[Turn], sort_order: str = "asc") -> list[Turn]:
    return sorted(turns, key=turn_sort_key, reverse=sort_order == "desc")
