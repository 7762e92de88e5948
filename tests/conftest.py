"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from turnengine.artifacts import ArtifactStore
from turnengine.config import DEFAULT_PLAN_LIMITS
from turnengine.conversations.models import Conversation
from turnengine.conversations.store import ConversationStore
from turnengine.effects.broadcast import BroadcastHub
from turnengine.memory.store import MemoryFactStore
from turnengine.quota.guard import QuotaGuard
from turnengine.quota.store import UsageStore

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def conversations(db_path: Path) -> ConversationStore:
    return ConversationStore(db_path)


@pytest.fixture
def usage_store(db_path: Path) -> UsageStore:
    return UsageStore(db_path)


@pytest.fixture
def quota(usage_store: UsageStore) -> QuotaGuard:
    return QuotaGuard(usage_store, DEFAULT_PLAN_LIMITS, clock=lambda: FIXED_NOW)


@pytest.fixture
def memory_store(db_path: Path) -> MemoryFactStore:
    return MemoryFactStore(db_path)


@pytest.fixture
def artifacts(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def broadcast() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
async def conversation(conversations: ConversationStore) -> Conversation:
    """A stored conversation owned by ``owner1`` with memory profile ``p1``."""
    return await conversations.add_conversation(
        Conversation(id="conv1", owner_id="owner1", profile_id="p1", title="First chat")
    )
