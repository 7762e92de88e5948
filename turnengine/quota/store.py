"""UsageStore — accounts and per-period usage counters."""

from __future__ import annotations

import logging

from turnengine.db import SqliteStore
from turnengine.quota.models import PLAN_FREE, Account

logger = logging.getLogger(__name__)


class UsageStore(SqliteStore):
    """Persists account tiers and daily usage counters."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS accounts (
            owner_id TEXT PRIMARY KEY,
            plan TEXT NOT NULL DEFAULT 'free',
            is_unlimited INTEGER NOT NULL DEFAULT 0
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS usage_counters (
            owner_id TEXT NOT NULL,
            feature_key TEXT NOT NULL,
            period TEXT NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (owner_id, feature_key, period)
        )
        """,
    )

    async def get_account(self, owner_id: str) -> Account:
        """Return the owner's account. Unknown owners are on the free plan."""
        row = await self._fetchone(
            "SELECT owner_id, plan, is_unlimited FROM accounts WHERE owner_id = ?",
            (owner_id,),
        )
        if row is None:
            return Account(owner_id=owner_id, plan=PLAN_FREE)
        return Account(owner_id=row[0], plan=row[1] or PLAN_FREE, is_unlimited=bool(row[2]))

    async def save_account(self, account: Account) -> None:
        await self._write(
            """
            INSERT INTO accounts (owner_id, plan, is_unlimited) VALUES (?, ?, ?)
            ON CONFLICT(owner_id) DO UPDATE SET
                plan = excluded.plan,
                is_unlimited = excluded.is_unlimited
            """,
            (account.owner_id, account.plan, int(account.is_unlimited)),
        )

    async def get_usage(self, owner_id: str, feature_key: str, period: str) -> int:
        row = await self._fetchone(
            """
            SELECT count FROM usage_counters
            WHERE owner_id = ? AND feature_key = ? AND period = ?
            """,
            (owner_id, feature_key, period),
        )
        return int(row[0]) if row else 0

    async def add_usage(self, owner_id: str, feature_key: str, period: str, amount: int) -> None:
        """Add *amount* to the counter, creating it on first use."""
        await self._write(
            """
            INSERT INTO usage_counters (owner_id, feature_key, period, count)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(owner_id, feature_key, period) DO UPDATE SET
                count = count + excluded.count
            """,
            (owner_id, feature_key, period, amount),
        )
