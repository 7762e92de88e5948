"""Rolling conversation summaries, regenerated every few turns."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from turnengine.conversations.models import ROLE_ASSISTANT, ConversationSummary

if TYPE_CHECKING:
    from turnengine.conversations.store import ConversationStore
    from turnengine.llm.client import ModelInvoker

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM = """\
You summarize conversations so they can be continued later.

Distill the conversation into a brief summary (100-200 tokens) that captures:
- the user's concerns, questions and goals
- recurring themes and emotional patterns
- decisions made and open threads

Leave out greetings and small talk. Write in a neutral, observational tone."""


def summary_due(turn_count: int, last_summary_at_turn: int, interval: int) -> bool:
    """True when *turn_count* is a new positive multiple of *interval*."""
    return (
        interval > 0
        and turn_count > 0
        and turn_count % interval == 0
        and turn_count > last_summary_at_turn
    )


class ConversationSummarizer:
    def __init__(
        self, store: ConversationStore, invoker: ModelInvoker, max_tokens: int = 400
    ) -> None:
        self._store = store
        self._invoker = invoker
        self._max_tokens = max_tokens

    async def summarize(
        self, conversation_id: str, from_turn: int, to_turn: int
    ) -> ConversationSummary | None:
        """Summarize turns ``from_turn``..``to_turn`` and store the result.

        Each turn is a user message plus a reply, so the window is the last
        ``2 × (to_turn − from_turn + 1)`` messages. The previous summary, if
        any, is folded in so context older than the window is kept.
        """
        window = 2 * max(1, to_turn - from_turn + 1)
        messages = await self._store.transcript(conversation_id, window)
        if not messages:
            logger.info("No messages to summarize for %s", conversation_id)
            return None

        lines = [
            f"{'Assistant' if m.role == ROLE_ASSISTANT else 'User'}: {m.text}" for m in messages
        ]
        prompt = "Summarize this conversation:\n\n" + "\n\n".join(lines)
        previous = await self._store.latest_summary(conversation_id)
        if previous is not None:
            prompt = (
                f"Earlier summary:\n{previous.summary_text}\n\n"
                f"Update it with the newer conversation below.\n\n{prompt}"
            )

        text = (
            await self._invoker.complete_text(
                prompt, system=SUMMARY_SYSTEM, max_tokens=self._max_tokens
            )
        ).strip()
        if not text:
            logger.warning(
                "Empty summary for %s (turns %d-%d)", conversation_id, from_turn, to_turn
            )
            return None

        return await self._store.add_summary(ConversationSummary(
            conversation_id=conversation_id,
            summary_text=text,
            from_turn=from_turn,
            to_turn=to_turn,
        ))
