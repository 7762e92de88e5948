"""Durable user memory and its ranking."""

from turnengine.memory.models import MemoryFact, MemorySelection
from turnengine.memory.ranker import MemoryRanker
from turnengine.memory.store import MemoryFactStore

__all__ = ["MemoryFact", "MemoryFactStore", "MemoryRanker", "MemorySelection"]
