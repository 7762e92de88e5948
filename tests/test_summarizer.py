"""Tests for rolling conversation summaries."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from turnengine.conversations.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Conversation,
    ConversationSummary,
    Message,
)
from turnengine.conversations.store import ConversationStore
from turnengine.conversations.summarizer import (
    SUMMARY_SYSTEM,
    ConversationSummarizer,
    summary_due,
)


@pytest.mark.parametrize(
    ("turn_count", "last", "interval", "expected"),
    [
        (12, 0, 12, True),
        (11, 0, 12, False),
        (24, 12, 12, True),
        (12, 12, 12, False),
        (0, 0, 12, False),
        (12, 0, 0, False),
    ],
)
def test_summary_due(turn_count: int, last: int, interval: int, expected: bool) -> None:
    assert summary_due(turn_count, last, interval) is expected


@pytest.fixture
def invoker() -> MagicMock:
    mock = MagicMock()
    mock.complete_text = AsyncMock(return_value="  User is planning a move.  ")
    return mock


async def _add_turns(store: ConversationStore, count: int) -> None:
    messages = []
    for i in range(count):
        messages.append(Message(conversation_id="conv1", role=ROLE_USER, text=f"q{i}",
                                created_at=f"2025-06-01T10:{i:02d}:00+00:00"))
        messages.append(Message(conversation_id="conv1", role=ROLE_ASSISTANT, text=f"a{i}",
                                created_at=f"2025-06-01T10:{i:02d}:30+00:00"))
    await store.insert_messages(messages)


async def test_summarize_window_and_store(
    conversations: ConversationStore, conversation: Conversation, invoker: MagicMock
) -> None:
    await _add_turns(conversations, 5)
    summarizer = ConversationSummarizer(conversations, invoker, max_tokens=300)

    summary = await summarizer.summarize("conv1", 4, 5)

    assert summary.summary_text == "User is planning a move."
    assert (summary.from_turn, summary.to_turn) == (4, 5)
    prompt = invoker.complete_text.call_args.args[0]
    assert "User: q3" in prompt
    assert "Assistant: a4" in prompt
    assert "q2" not in prompt
    kwargs = invoker.complete_text.call_args.kwargs
    assert kwargs == {"system": SUMMARY_SYSTEM, "max_tokens": 300}
    assert (await conversations.latest_summary("conv1")).summary_text == summary.summary_text


async def test_previous_summary_folded_in(
    conversations: ConversationStore, conversation: Conversation, invoker: MagicMock
) -> None:
    await _add_turns(conversations, 2)
    await conversations.add_summary(ConversationSummary("conv1", "Earlier: likes tea", 1, 12))
    summarizer = ConversationSummarizer(conversations, invoker)

    await summarizer.summarize("conv1", 13, 14)
    prompt = invoker.complete_text.call_args.args[0]
    assert prompt.startswith("Earlier summary:\nEarlier: likes tea")


async def test_no_messages(
    conversations: ConversationStore, conversation: Conversation, invoker: MagicMock
) -> None:
    summarizer = ConversationSummarizer(conversations, invoker)
    assert await summarizer.summarize("conv1", 1, 12) is None
    invoker.complete_text.assert_not_awaited()


async def test_empty_model_output_not_stored(
    conversations: ConversationStore, conversation: Conversation, invoker: MagicMock
) -> None:
    await _add_turns(conversations, 1)
    invoker.complete_text.return_value = "   "
    summarizer = ConversationSummarizer(conversations, invoker)

    assert await summarizer.summarize("conv1", 1, 1) is None
    assert await conversations.latest_summary("conv1") is None
