"""MemoryFactStore — durable user memory facts in SQLite."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from turnengine.db import SqliteStore, placeholders
from turnengine.memory.models import MemoryFact

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, owner_id, profile_id, text, type, confidence_score, reference_count, "
    "created_at, last_referenced_at, is_active"
)


def _from_row(row: tuple) -> MemoryFact:
    return MemoryFact(
        id=row[0],
        owner_id=row[1],
        profile_id=row[2],
        text=row[3],
        type=row[4],
        confidence_score=float(row[5]),
        reference_count=int(row[6]),
        created_at=datetime.fromisoformat(row[7]),
        last_referenced_at=datetime.fromisoformat(row[8]) if row[8] else None,
        is_active=bool(row[9]),
    )


class MemoryFactStore(SqliteStore):
    """Reads candidate facts and records their use.

    Facts are written by an extraction process outside this package;
    ``add`` exists for that process and for tests.
    """

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS memory_facts (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            profile_id TEXT NOT NULL,
            text TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'fact',
            confidence_score REAL NOT NULL DEFAULT 1.0,
            reference_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            last_referenced_at TEXT,
            is_active INTEGER NOT NULL DEFAULT 1
        )
        """,
    )

    async def add(self, fact: MemoryFact) -> MemoryFact:
        await self._write(
            f"INSERT INTO memory_facts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                fact.id,
                fact.owner_id,
                fact.profile_id,
                fact.text,
                fact.type,
                fact.confidence_score,
                fact.reference_count,
                fact.created_at.isoformat(),
                fact.last_referenced_at.isoformat() if fact.last_referenced_at else None,
                int(fact.is_active),
            ),
        )
        return fact

    async def get(self, fact_id: str) -> MemoryFact | None:
        row = await self._fetchone(f"SELECT {_COLUMNS} FROM memory_facts WHERE id = ?", (fact_id,))
        return _from_row(row) if row else None

    async def candidates(self, owner_id: str, profile_id: str, limit: int) -> list[MemoryFact]:
        """Active facts, most-referenced then most-recent first."""
        rows = await self._fetchall(
            f"""
            SELECT {_COLUMNS} FROM memory_facts
            WHERE owner_id = ? AND profile_id = ? AND is_active = 1
            ORDER BY reference_count DESC, created_at DESC
            LIMIT ?
            """,
            (owner_id, profile_id, limit),
        )
        return [_from_row(r) for r in rows]

    async def mark_referenced(self, fact_ids: Sequence[str], when: datetime | None = None) -> int:
        """Bump reference_count and stamp last_referenced_at. Returns rows touched."""
        if not fact_ids:
            return 0
        stamp = (when or datetime.now(UTC)).isoformat()
        return await self._write(
            f"""
            UPDATE memory_facts
            SET reference_count = reference_count + 1, last_referenced_at = ?
            WHERE id IN ({placeholders(len(fact_ids))})
            """,
            (stamp, *fact_ids),
        )

    async def deactivate(self, fact_id: str) -> bool:
        """Soft-delete a fact."""
        return await self._write(
            "UPDATE memory_facts SET is_active = 0 WHERE id = ?", (fact_id,)
        ) > 0
