"""Entity stores — documents, notes, transcripts and reports fetched by id."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import aiosqlite

from turnengine.db import SqliteStore, placeholders
from turnengine.errors import PersistenceError, ToolResolutionError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from turnengine.conversations.store import ConversationStore

logger = logging.getLogger(__name__)

TYPE_DOCUMENT = "document"
TYPE_NOTE = "note"
TYPE_TRANSCRIPT = "transcript"
TYPE_REPORT = "report"

_TABLES = {TYPE_DOCUMENT: "documents", TYPE_NOTE: "notes", TYPE_REPORT: "reports"}
TRANSCRIPT_MESSAGE_LIMIT = 60


@dataclass(frozen=True)
class Entity:
    id: str
    title: str
    type: str
    content: str


class EntityStore(Protocol):
    entity_type: str

    async def fetch(self, ids: Sequence[str], owner_id: str) -> list[Entity]: ...


class TableEntityStore(SqliteStore):
    """Owner-scoped entities of one type kept in their own table."""

    def __init__(self, db_path: Path, entity_type: str) -> None:
        if entity_type not in _TABLES:
            msg = f"No table for entity type {entity_type!r}"
            raise ValueError(msg)
        super().__init__(db_path)
        self.entity_type = entity_type
        self._table = _TABLES[entity_type]
        self._SCHEMA = (
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                content TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            )
            """,
        )

    async def add(self, entity: Entity, owner_id: str) -> Entity:
        await self._write(
            f"""
            INSERT INTO {self._table} (id, owner_id, title, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET title = excluded.title, content = excluded.content
            """,
            (entity.id, owner_id, entity.title, entity.content, datetime.now(UTC).isoformat()),
        )
        return entity

    async def fetch(self, ids: Sequence[str], owner_id: str) -> list[Entity]:
        if not ids:
            return []
        try:
            rows = await self._fetchall(
                f"""
                SELECT id, title, content FROM {self._table}
                WHERE owner_id = ? AND id IN ({placeholders(len(ids))})
                """,
                (owner_id, *ids),
            )
        except aiosqlite.Error as exc:
            msg = f"Failed to load {self._table}: {exc}"
            raise ToolResolutionError(msg, store=self.entity_type) from exc
        return [Entity(id=r[0], title=r[1], type=self.entity_type, content=r[2]) for r in rows]


class TranscriptEntityStore:
    """Earlier conversations of the same owner, rendered as transcripts."""

    entity_type = TYPE_TRANSCRIPT

    def __init__(
        self, conversations: ConversationStore, message_limit: int = TRANSCRIPT_MESSAGE_LIMIT
    ) -> None:
        self._conversations = conversations
        self._message_limit = message_limit

    async def fetch(self, ids: Sequence[str], owner_id: str) -> list[Entity]:
        try:
            found = await self._conversations.get_conversations(ids)
            entities = []
            for conversation in found:
                if conversation.owner_id != owner_id:
                    continue
                messages = await self._conversations.transcript(
                    conversation.id, self._message_limit
                )
                content = "\n".join(f"{m.role.capitalize()}: {m.text}" for m in messages)
                entities.append(Entity(
                    id=conversation.id,
                    title=conversation.title or "Untitled conversation",
                    type=TYPE_TRANSCRIPT,
                    content=content,
                ))
        except (aiosqlite.Error, PersistenceError) as exc:
            msg = f"Failed to load transcripts: {exc}"
            raise ToolResolutionError(msg, store=TYPE_TRANSCRIPT) from exc
        return entities


@dataclass
class FetchOutcome:
    entities: list[Entity]
    missing_ids: list[str]
    failed_stores: list[str]


async def fetch_entities(
    stores: Sequence[EntityStore], ids: Sequence[str], owner_id: str
) -> FetchOutcome:
    """Query every store for *ids*. A failing store is logged and skipped."""
    results = await asyncio.gather(
        *(store.fetch(ids, owner_id) for store in stores), return_exceptions=True
    )
    entities: list[Entity] = []
    failed: list[str] = []
    for store, result in zip(stores, results, strict=True):
        if isinstance(result, ToolResolutionError):
            logger.warning("Entity store %s failed: %s", store.entity_type, result)
            failed.append(store.entity_type)
        elif isinstance(result, BaseException):
            logger.error(
                "Entity store %s raised unexpectedly", store.entity_type, exc_info=result
            )
            failed.append(store.entity_type)
        else:
            entities.extend(result)

    seen: dict[str, Entity] = {}
    for entity in entities:
        seen.setdefault(entity.id, entity)
    ordered = [seen[i] for i in ids if i in seen]
    missing = [i for i in ids if i not in seen]
    return FetchOutcome(entities=ordered, missing_ids=missing, failed_stores=failed)


def format_grounding_block(outcome: FetchOutcome) -> str:
    """Render fetched entities as one block for the follow-up model call."""
    parts = []
    for entity in outcome.entities:
        parts.append(
            f'<entity id="{entity.id}" type="{entity.type}" title="{entity.title}">\n'
            f"{entity.content.strip()}\n</entity>"
        )
    if outcome.missing_ids:
        parts.append(f"Not available: {', '.join(outcome.missing_ids)}")
    if not parts:
        return "None of the requested material could be loaded."
    return "\n\n".join(parts)
