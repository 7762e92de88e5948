"""Context cache — content-addressed handles for the assembled system text.

A handle is derived from a SHA-256 over the canonicalized system text.
Canonicalization only folds different encodings of the same text (NFC
forms, line-ending style), so any single-character change, trailing
whitespace included, yields a different handle and an old entry is never
served for new content. SHA-256 collisions are possible in principle but
negligible in practice.

A valid handle tells the invoker to send the system text as a cacheable
prefix (Anthropic prompt caching). The text itself is always sent, so the
cache path and the embed path carry identical instructions.
"""

from __future__ import annotations

import hashlib
import logging
import unicodedata
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import aiosqlite

from turnengine.db import SqliteStore
from turnengine.errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

logger = logging.getLogger(__name__)

HANDLE_PREFIX = "cache-"
HANDLE_HEX_CHARS = 24


def canonicalize(text: str) -> str:
    """NFC-normalize and unify line endings. Whitespace is kept as is."""
    normalized = unicodedata.normalize("NFC", text)
    return normalized.replace("\r\n", "\n").replace("\r", "\n")


def content_hash(text: str) -> str:
    return hashlib.sha256(canonicalize(text).encode("utf-8")).hexdigest()


def handle_for(digest: str) -> str:
    return f"{HANDLE_PREFIX}{digest[:HANDLE_HEX_CHARS]}"


@dataclass
class ContextCacheEntry:
    conversation_id: str
    cache_handle: str
    content_hash: str
    expires_at: datetime

    def is_valid(self, now: datetime, current_hash: str) -> bool:
        return now < self.expires_at and self.content_hash == current_hash


class ContextCache(SqliteStore):
    """One cache entry per conversation, replaced when the text changes."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS context_caches (
            conversation_id TEXT PRIMARY KEY,
            cache_handle TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
        """,
    )

    def __init__(
        self,
        db_path: Path,
        *,
        ttl_seconds: int = 59 * 60,
        paid_plans: set[str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(db_path)
        self._ttl = timedelta(seconds=ttl_seconds)
        self._paid_plans = paid_plans if paid_plans is not None else {"plus", "pro"}
        self._clock = clock or (lambda: datetime.now(UTC))

    def is_eligible(self, plan: str) -> bool:
        return plan.lower() in self._paid_plans

    async def get_entry(self, conversation_id: str) -> ContextCacheEntry | None:
        row = await self._fetchone(
            """
            SELECT conversation_id, cache_handle, content_hash, expires_at
            FROM context_caches WHERE conversation_id = ?
            """,
            (conversation_id,),
        )
        if row is None:
            return None
        return ContextCacheEntry(
            conversation_id=row[0],
            cache_handle=row[1],
            content_hash=row[2],
            expires_at=datetime.fromisoformat(row[3]),
        )

    async def get_valid(self, conversation_id: str, system_text: str) -> str | None:
        """Return the handle if the stored entry is unexpired and matches *system_text*.

        A stale entry (expired, or built from different text) is deleted.
        """
        entry = await self.get_entry(conversation_id)
        if entry is None:
            return None

        if entry.is_valid(self._clock(), content_hash(system_text)):
            return entry.cache_handle

        logger.info("Discarding stale context cache for %s", conversation_id)
        await self.delete(conversation_id)
        return None

    async def create(self, conversation_id: str, system_text: str) -> str:
        """Create (or replace) the entry for *conversation_id*. Returns the handle."""
        digest = content_hash(system_text)
        handle = handle_for(digest)
        expires_at = self._clock() + self._ttl
        await self._write(
            """
            INSERT INTO context_caches (conversation_id, cache_handle, content_hash, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(conversation_id) DO UPDATE SET
                cache_handle = excluded.cache_handle,
                content_hash = excluded.content_hash,
                expires_at = excluded.expires_at
            """,
            (conversation_id, handle, digest, expires_at.isoformat()),
        )
        logger.info("Created context cache %s for %s", handle, conversation_id)
        return handle

    async def delete(self, conversation_id: str) -> bool:
        count = await self._write(
            "DELETE FROM context_caches WHERE conversation_id = ?", (conversation_id,)
        )
        return count > 0

    async def resolve(self, conversation_id: str, system_text: str, plan: str) -> str | None:
        """Return a usable handle for this turn, or None for the embed path.

        Free-tier plans always get None. Store failures also fall back to
        the embed path since the text is sent either way.
        """
        if not self.is_eligible(plan):
            return None
        try:
            handle = await self.get_valid(conversation_id, system_text)
            if handle is None:
                handle = await self.create(conversation_id, system_text)
        except (PersistenceError, aiosqlite.Error):
            logger.exception("Context cache unavailable for %s", conversation_id)
            return None
        return handle
