"""ConversationStore — conversations, messages and summaries in SQLite."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from turnengine.conversations.models import (
    ROLE_SYSTEM,
    STATUS_COMPLETE,
    Conversation,
    ConversationSummary,
    Message,
)
from turnengine.db import SqliteStore, placeholders

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = (
    "id, conversation_id, owner_id, role, text, status, mode, metadata, created_at"
)


class ConversationStore(SqliteStore):
    """Persists conversations, their messages and rolling summaries."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            profile_id TEXT NOT NULL DEFAULT '',
            title TEXT NOT NULL DEFAULT '',
            mode TEXT NOT NULL DEFAULT 'chat',
            turn_count INTEGER NOT NULL DEFAULT 0,
            last_summary_at_turn INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL,
            owner_id TEXT NOT NULL DEFAULT '',
            role TEXT NOT NULL,
            text TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL,
            mode TEXT NOT NULL DEFAULT 'chat',
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_messages_conversation
            ON messages (conversation_id, created_at)
        """,
        """
        CREATE TABLE IF NOT EXISTS conversation_summaries (
            conversation_id TEXT NOT NULL,
            summary_text TEXT NOT NULL,
            from_turn INTEGER NOT NULL DEFAULT 0,
            to_turn INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """,
    )

    # -- Conversations ---------------------------------------------------------

    async def add_conversation(self, conversation: Conversation) -> Conversation:
        await self._write(
            """
            INSERT INTO conversations
                (id, owner_id, profile_id, title, mode, turn_count,
                 last_summary_at_turn, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            conversation.to_row(),
        )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await self._fetchone(
            """
            SELECT id, owner_id, profile_id, title, mode, turn_count,
                   last_summary_at_turn, created_at
            FROM conversations WHERE id = ?
            """,
            (conversation_id,),
        )
        return Conversation.from_row(row) if row else None

    async def get_conversations(self, conversation_ids: Sequence[str]) -> list[Conversation]:
        if not conversation_ids:
            return []
        rows = await self._fetchall(
            f"""
            SELECT id, owner_id, profile_id, title, mode, turn_count,
                   last_summary_at_turn, created_at
            FROM conversations WHERE id IN ({placeholders(len(conversation_ids))})
            """,
            tuple(conversation_ids),
        )
        return [Conversation.from_row(r) for r in rows]

    async def increment_turn(self, conversation_id: str) -> tuple[int, int] | None:
        """Atomically add one turn.

        Returns ``(turn_count, last_summary_at_turn)`` after the update, or
        None if the conversation does not exist.
        """
        row = await self._write_returning(
            """
            UPDATE conversations SET turn_count = turn_count + 1
            WHERE id = ?
            RETURNING turn_count, last_summary_at_turn
            """,
            (conversation_id,),
        )
        return (int(row[0]), int(row[1])) if row else None

    async def claim_summary_checkpoint(self, conversation_id: str, turn: int) -> bool:
        """Move last_summary_at_turn forward to *turn*.

        Succeeds for exactly one caller per checkpoint, and never lets the
        checkpoint overtake turn_count.
        """
        count = await self._write(
            """
            UPDATE conversations SET last_summary_at_turn = ?
            WHERE id = ? AND last_summary_at_turn < ? AND turn_count >= ?
            """,
            (turn, conversation_id, turn, turn),
        )
        return count > 0

    # -- Messages --------------------------------------------------------------

    async def insert_message(self, message: Message) -> Message:
        await self._write(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            message.to_row(),
        )
        return message

    async def insert_messages(self, messages: Sequence[Message]) -> list[Message]:
        """Insert a batch of messages in one transaction."""
        if not messages:
            return []
        await self._write_many(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (m.to_row() for m in messages),
        )
        return list(messages)

    async def get_message(self, message_id: str) -> Message | None:
        row = await self._fetchone(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
        )
        return Message.from_row(row) if row else None

    async def update_message(
        self,
        message_id: str,
        *,
        status: str,
        text: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Update a message in place (last write wins). Returns True if a row changed."""
        assignments = ["status = ?"]
        params: list[Any] = [status]
        if text is not None:
            assignments.append("text = ?")
            params.append(text)
        if metadata is not None:
            assignments.append("metadata = ?")
            params.append(json.dumps(metadata))
        params.append(message_id)
        count = await self._write(
            f"UPDATE messages SET {', '.join(assignments)} WHERE id = ?", tuple(params)
        )
        return count > 0

    async def get_grounding_text(self, conversation_id: str) -> str:
        """Return the first complete system message (the grounding data)."""
        row = await self._fetchone(
            """
            SELECT text FROM messages
            WHERE conversation_id = ? AND role = ? AND status = ? AND text <> ''
            ORDER BY created_at ASC, rowid ASC
            LIMIT 1
            """,
            (conversation_id, ROLE_SYSTEM, STATUS_COMPLETE),
        )
        return str(row[0]) if row else ""

    async def recent_history(
        self,
        conversation_id: str,
        limit: int,
        *,
        exclude_message_id: str | None = None,
    ) -> list[Message]:
        """Return up to *limit* usable messages, newest first."""
        rows = await self._fetchall(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE conversation_id = ? AND role <> ? AND status = ?
                  AND TRIM(text) <> '' AND id <> ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (conversation_id, ROLE_SYSTEM, STATUS_COMPLETE, exclude_message_id or "", limit),
        )
        return [Message.from_row(r) for r in rows]

    async def transcript(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        """Return usable messages oldest first, optionally only the last *limit*."""
        if limit is not None:
            return list(reversed(await self.recent_history(conversation_id, limit)))
        rows = await self._fetchall(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE conversation_id = ? AND role <> ? AND status = ? AND TRIM(text) <> ''
            ORDER BY created_at ASC, rowid ASC
            """,
            (conversation_id, ROLE_SYSTEM, STATUS_COMPLETE),
        )
        return [Message.from_row(r) for r in rows]

    # -- Summaries -------------------------------------------------------------

    async def add_summary(self, summary: ConversationSummary) -> ConversationSummary:
        await self._write(
            """
            INSERT INTO conversation_summaries
                (conversation_id, summary_text, from_turn, to_turn, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                summary.conversation_id,
                summary.summary_text,
                summary.from_turn,
                summary.to_turn,
                summary.created_at,
            ),
        )
        logger.info(
            "Stored summary for %s (turns %d-%d)",
            summary.conversation_id,
            summary.from_turn,
            summary.to_turn,
        )
        return summary

    async def latest_summary(self, conversation_id: str) -> ConversationSummary | None:
        row = await self._fetchone(
            """
            SELECT conversation_id, summary_text, from_turn, to_turn, created_at
            FROM conversation_summaries
            WHERE conversation_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
            """,
            (conversation_id,),
        )
        if row is None:
            return None
        return ConversationSummary(
            conversation_id=row[0],
            summary_text=row[1],
            from_turn=int(row[2]),
            to_turn=int(row[3]),
            created_at=row[4],
        )
