"""Memory Ranker — score and select durable facts for the system instruction.

score = type_weight × confidence × usage_boost × recency_factor

- type_weight: goal 1.0 > pattern 0.9 > emotion 0.8 > fact 0.7 > relationship 0.6
- usage_boost: 1 + ln(1 + reference_count)
- recency_factor: 1 / (1 + age_days / 30)
"""

from __future__ import annotations

import logging
import math
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from turnengine.memory.models import MemoryFact, MemorySelection

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from turnengine.conversations.store import ConversationStore
    from turnengine.memory.store import MemoryFactStore

logger = logging.getLogger(__name__)

TYPE_WEIGHTS: dict[str, float] = {
    "goal": 1.0,
    "pattern": 0.9,
    "emotion": 0.8,
    "fact": 0.7,
    "relationship": 0.6,
}
UNKNOWN_TYPE_WEIGHT = 0.5
RECENCY_HALF_LIFE_DAYS = 30.0
SECONDS_PER_DAY = 86_400.0


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def score_fact(fact: MemoryFact, now: datetime) -> float:
    """Relevance score for a single fact at time *now*."""
    type_weight = TYPE_WEIGHTS.get(fact.type, UNKNOWN_TYPE_WEIGHT)
    usage_boost = 1 + math.log(1 + max(0, fact.reference_count))
    age_days = max(0.0, (now - _aware(fact.created_at)).total_seconds() / SECONDS_PER_DAY)
    recency_factor = 1 / (1 + age_days / RECENCY_HALF_LIFE_DAYS)
    return type_weight * fact.confidence_score * usage_boost * recency_factor


def rank_facts(facts: Sequence[MemoryFact], now: datetime) -> list[MemoryFact]:
    """Sort by score descending; ties go to the more recently created fact."""
    return sorted(
        facts,
        key=lambda f: (score_fact(f, now), _aware(f.created_at)),
        reverse=True,
    )


def format_facts(facts: Sequence[MemoryFact]) -> str:
    return "\n".join(f"• {f.text}" for f in facts)


class MemoryRanker:
    """Selects the top-K facts for a conversation, cached briefly per conversation."""

    def __init__(
        self,
        facts: MemoryFactStore,
        conversations: ConversationStore,
        *,
        fetch_limit: int = 20,
        top_k: int = 10,
        cache_ttl_seconds: float = 120.0,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._facts = facts
        self._conversations = conversations
        self._fetch_limit = fetch_limit
        self._top_k = top_k
        self._ttl = cache_ttl_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._monotonic = monotonic
        self._cache: dict[str, tuple[float, MemorySelection]] = {}

    async def select(self, conversation_id: str) -> MemorySelection:
        """Return the ranked memory block for *conversation_id*.

        Never raises: a failed lookup yields an empty selection.
        """
        cached = self._cache.get(conversation_id)
        if cached is not None and cached[0] > self._monotonic():
            return cached[1]

        try:
            selection = await self._compute(conversation_id)
        except Exception:
            logger.exception("Memory selection failed for %s", conversation_id)
            return MemorySelection()

        now = self._monotonic()
        self._prune(now)
        self._cache[conversation_id] = (now + self._ttl, selection)
        return selection

    def _prune(self, now: float) -> None:
        expired = [cid for cid, (expires, _) in self._cache.items() if expires <= now]
        for cid in expired:
            del self._cache[cid]

    async def _compute(self, conversation_id: str) -> MemorySelection:
        conversation = await self._conversations.get_conversation(conversation_id)
        if conversation is None or not conversation.profile_id:
            return MemorySelection()

        candidates = await self._facts.candidates(
            conversation.owner_id, conversation.profile_id, self._fetch_limit
        )
        if not candidates:
            return MemorySelection()

        top = rank_facts(candidates, self._clock())[: self._top_k]
        logger.debug(
            "Selected %d of %d memory facts for %s", len(top), len(candidates), conversation_id
        )
        return MemorySelection(text=format_facts(top), ids=[f.id for f in top])

    async def record_usage(self, fact_ids: Sequence[str]) -> int:
        """Post-use update after a turn that used *fact_ids*."""
        if not fact_ids:
            return 0
        updated = await self._facts.mark_referenced(list(fact_ids), self._clock())
        logger.info("Updated %d memory usage counts", updated)
        return updated

    def invalidate(self, conversation_id: str | None = None) -> None:
        """Drop cached selections (one conversation, or all)."""
        if conversation_id is None:
            self._cache.clear()
        else:
            self._cache.pop(conversation_id, None)
