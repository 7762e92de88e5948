"""Shared aiosqlite plumbing for the engine's stores.

Every store owns a handful of tables in the same SQLite file. Tables are
created lazily on first connection (``CREATE TABLE IF NOT EXISTS``); schema
management beyond that is out of scope.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiosqlite

from turnengine.errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)


class SqliteStore:
    """Base class for aiosqlite-backed stores.

    Subclasses list their DDL in ``_SCHEMA``. Pass an explicit *db_path*
    per store; tests use ``tmp_path / "test.db"``.
    """

    _SCHEMA: tuple[str, ...] = ()

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        try:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA busy_timeout=5000")
            if not self._initialised:
                for statement in self._SCHEMA:
                    await db.execute(statement)
                await db.commit()
                self._initialised = True
            yield db
        finally:
            await db.close()

    async def _write(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run a single write statement and commit. Returns the rowcount."""
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, params)
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as exc:
            msg = f"Write failed on {self._db_path.name}: {exc}"
            raise PersistenceError(msg) from exc

    async def _write_returning(self, sql: str, params: tuple[Any, ...] = ()) -> tuple | None:
        """Run a write with a ``RETURNING`` clause and commit. Returns the first row."""
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, params)
                row = await cursor.fetchone()
                await db.commit()
                return row
        except aiosqlite.Error as exc:
            msg = f"Write failed on {self._db_path.name}: {exc}"
            raise PersistenceError(msg) from exc

    async def _write_many(self, sql: str, rows: Iterable[tuple[Any, ...]]) -> None:
        """Run one statement for many rows inside a single transaction."""
        try:
            async with self._connect() as db:
                await db.executemany(sql, list(rows))
                await db.commit()
        except aiosqlite.Error as exc:
            msg = f"Batch write failed on {self._db_path.name}: {exc}"
            raise PersistenceError(msg) from exc

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> tuple | None:
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple]:
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            return list(await cursor.fetchall())


def placeholders(count: int) -> str:
    """Return ``?, ?, ...`` for an ``IN (...)`` clause."""
    return ", ".join("?" for _ in range(count))
