"""Tests for memory scoring, ranking and selection."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from turnengine.conversations.models import Conversation
from turnengine.conversations.store import ConversationStore
from turnengine.memory.models import MemoryFact
from turnengine.memory.ranker import MemoryRanker, rank_facts, score_fact
from turnengine.memory.store import MemoryFactStore

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def _fact(fact_id: str, *, days_old: float = 0, **kwargs) -> MemoryFact:
    defaults = {
        "owner_id": "owner1",
        "profile_id": "p1",
        "text": f"fact {fact_id}",
        "created_at": FIXED_NOW - timedelta(days=days_old),
    }
    defaults.update(kwargs)
    return MemoryFact(id=fact_id, **defaults)


class _Monotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


# -- score_fact / rank_facts ---------------------------------------------------


class TestScore:
    def test_fresh_goal_unreferenced(self):
        assert score_fact(_fact("a", type="goal"), FIXED_NOW) == pytest.approx(1.0)

    def test_type_weights_ordered(self):
        types = ["goal", "pattern", "emotion", "fact", "relationship", "mystery"]
        scores = [score_fact(_fact(t, type=t), FIXED_NOW) for t in types]
        assert scores == sorted(scores, reverse=True)
        assert scores[-1] == pytest.approx(0.5)

    def test_usage_boost(self):
        fact = _fact("a", type="goal", reference_count=3)
        assert score_fact(fact, FIXED_NOW) == pytest.approx(1 + 1.3862943611)

    def test_recency_halves_at_thirty_days(self):
        fact = _fact("a", type="goal", days_old=30)
        assert score_fact(fact, FIXED_NOW) == pytest.approx(0.5)

    def test_confidence_scales(self):
        fact = _fact("a", type="goal", confidence_score=0.4)
        assert score_fact(fact, FIXED_NOW) == pytest.approx(0.4)


class TestRank:
    def test_descending_by_score(self):
        facts = [
            _fact("rel", type="relationship"),
            _fact("goal", type="goal"),
            _fact("emo", type="emotion"),
        ]
        assert [f.id for f in rank_facts(facts, FIXED_NOW)] == ["goal", "emo", "rel"]

    def test_equal_attributes_newer_first(self):
        # identical type/confidence/reference_count; created a second apart
        older = _fact("older", days_old=0.00002)
        newer = _fact("newer", days_old=0)
        ranked = rank_facts([older, newer], FIXED_NOW)
        assert ranked[0].id == "newer"


# -- MemoryRanker.select -------------------------------------------------------


@pytest.fixture
def ranker(memory_store: MemoryFactStore, conversations: ConversationStore) -> MemoryRanker:
    return MemoryRanker(
        memory_store, conversations, fetch_limit=20, top_k=3, clock=lambda: FIXED_NOW
    )


async def test_select_top_k_formatted(
    ranker: MemoryRanker, memory_store: MemoryFactStore, conversation: Conversation
) -> None:
    await memory_store.add(_fact("g", type="goal", text="Wants to run a marathon"))
    await memory_store.add(_fact("p", type="pattern", text="Journals at night"))
    await memory_store.add(_fact("f", type="fact", text="Has a dog"))
    await memory_store.add(_fact("r", type="relationship", text="Close to sister"))

    selection = await ranker.select(conversation.id)
    assert selection.ids == ["g", "p", "f"]
    assert selection.text == "• Wants to run a marathon\n• Journals at night\n• Has a dog"


async def test_select_ignores_inactive_and_other_profiles(
    ranker: MemoryRanker, memory_store: MemoryFactStore, conversation: Conversation
) -> None:
    await memory_store.add(_fact("keep"))
    await memory_store.add(_fact("off", is_active=False))
    await memory_store.add(_fact("other", profile_id="p2"))
    await memory_store.add(_fact("stranger", owner_id="owner2"))

    selection = await ranker.select(conversation.id)
    assert selection.ids == ["keep"]


async def test_no_profile_means_empty(
    ranker: MemoryRanker, memory_store: MemoryFactStore, conversations: ConversationStore
) -> None:
    await conversations.add_conversation(Conversation(id="bare", owner_id="owner1"))
    await memory_store.add(_fact("x", profile_id=""))
    selection = await ranker.select("bare")
    assert selection.empty
    assert selection.text == ""


async def test_selection_cached_until_ttl(
    memory_store: MemoryFactStore, conversations: ConversationStore, conversation: Conversation
) -> None:
    mono = _Monotonic()
    ranker = MemoryRanker(
        memory_store, conversations, cache_ttl_seconds=120, clock=lambda: FIXED_NOW, monotonic=mono
    )
    await memory_store.add(_fact("first"))
    assert (await ranker.select(conversation.id)).ids == ["first"]

    await memory_store.add(_fact("second", type="goal"))
    mono.value += 119
    assert (await ranker.select(conversation.id)).ids == ["first"]

    mono.value += 2
    assert (await ranker.select(conversation.id)).ids == ["second", "first"]


async def test_fetch_failure_degrades_to_empty(conversations: ConversationStore) -> None:
    facts = AsyncMock()
    facts.candidates.side_effect = RuntimeError("boom")
    await conversations.add_conversation(Conversation(id="c", owner_id="o", profile_id="p"))
    ranker = MemoryRanker(facts, conversations)

    selection = await ranker.select("c")
    assert selection.empty


async def test_record_usage_bumps_counts(
    ranker: MemoryRanker, memory_store: MemoryFactStore
) -> None:
    await memory_store.add(_fact("a"))
    await memory_store.add(_fact("b", reference_count=4))

    updated = await ranker.record_usage(["a", "b"])
    assert updated == 2
    a = await memory_store.get("a")
    b = await memory_store.get("b")
    assert a.reference_count == 1
    assert b.reference_count == 5
    assert a.last_referenced_at == FIXED_NOW


async def test_record_usage_noop_for_empty(ranker: MemoryRanker) -> None:
    assert await ranker.record_usage([]) == 0


async def test_expired_selections_pruned(
    memory_store: MemoryFactStore, conversations: ConversationStore, conversation: Conversation
) -> None:
    mono = _Monotonic()
    ranker = MemoryRanker(
        memory_store, conversations, cache_ttl_seconds=120, clock=lambda: FIXED_NOW, monotonic=mono
    )
    await conversations.add_conversation(
        Conversation(id="conv2", owner_id="owner1", profile_id="p1")
    )
    await ranker.select(conversation.id)
    assert conversation.id in ranker._cache

    mono.value += 121
    await ranker.select("conv2")
    assert set(ranker._cache) == {"conv2"}
