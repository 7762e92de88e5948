"""Quota Guard — per-owner, per-feature daily usage limits.

``check_limit`` and ``increment_usage`` are separate calls. Two concurrent
turns from the same owner can both pass the check before either increments,
so a limit can be overrun by at most the number of in-flight turns.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from turnengine.quota.models import (
    ERROR_CHECK_FAILED,
    ERROR_LIMIT_REACHED,
    ERROR_UNKNOWN_FEATURE,
    FEATURE_CHAT_TURNS,
    FEATURE_IMAGE_GENERATION,
    PLAN_FREE,
    Account,
    IncrementResult,
    LimitCheckResult,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from turnengine.quota.store import UsageStore

logger = logging.getLogger(__name__)


_FEATURE_LABELS = {
    FEATURE_CHAT_TURNS: "messages",
    FEATURE_IMAGE_GENERATION: "images",
}


def current_period(now: datetime) -> str:
    """Daily period key (UTC calendar date)."""
    return now.astimezone(UTC).strftime("%Y-%m-%d")


def decline_message(feature_key: str, result: LimitCheckResult) -> str:
    """Conversational text shown instead of a reply when a check is denied."""
    label = _FEATURE_LABELS.get(feature_key, "requests")
    if result.error_code == ERROR_LIMIT_REACHED and result.limit is not None:
        return (
            f"You've reached today's limit of {result.limit} {label} on your plan. "
            "It resets at midnight UTC, or you can upgrade for a higher limit."
        )
    return (
        f"I can't process more {label} right now because your usage couldn't be "
        "verified. Please try again in a moment."
    )


class QuotaGuard:
    """Checks and records feature usage against plan limits.

    Args:
        store: Account and counter persistence.
        plan_limits: ``{plan: {feature_key: daily_limit | None}}``; None
            means unlimited for that feature on that plan.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: UsageStore,
        plan_limits: dict[str, dict[str, int | None]],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._plan_limits = plan_limits
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get_account(self, owner_id: str) -> Account:
        return await self._store.get_account(owner_id)

    def _limit_for(self, plan: str, feature_key: str) -> tuple[bool, int | None]:
        """Return (known, limit) for a plan/feature pair."""
        features = self._plan_limits.get(plan) or self._plan_limits.get(PLAN_FREE, {})
        if feature_key not in features:
            return False, None
        return True, features[feature_key]

    async def check_limit(
        self, owner_id: str, feature_key: str, amount: int = 1
    ) -> LimitCheckResult:
        """Return whether *amount* more units of *feature_key* fit today."""
        try:
            account = await self._store.get_account(owner_id)
            if account.is_unlimited:
                return LimitCheckResult(allowed=True, is_unlimited=True)

            known, limit = self._limit_for(account.plan, feature_key)
            if not known:
                return LimitCheckResult(
                    allowed=False,
                    error_code=ERROR_UNKNOWN_FEATURE,
                    reason=f"Unknown feature: {feature_key}",
                )
            if limit is None:
                return LimitCheckResult(allowed=True, is_unlimited=True)

            period = current_period(self._clock())
            used = await self._store.get_usage(owner_id, feature_key, period)
        except Exception:
            logger.exception("Quota check failed for %s/%s", owner_id, feature_key)
            return LimitCheckResult(
                allowed=False,
                error_code=ERROR_CHECK_FAILED,
                reason="Unable to verify usage",
            )

        if used + amount > limit:
            logger.info(
                "Quota denied: owner=%s feature=%s used=%d limit=%d",
                owner_id,
                feature_key,
                used,
                limit,
            )
            return LimitCheckResult(
                allowed=False,
                current_usage=used,
                limit=limit,
                remaining=max(0, limit - used),
                error_code=ERROR_LIMIT_REACHED,
                reason=f"Daily limit reached ({used}/{limit})",
            )

        return LimitCheckResult(
            allowed=True,
            current_usage=used,
            limit=limit,
            remaining=limit - used - amount,
        )

    async def increment_usage(
        self, owner_id: str, feature_key: str, amount: int = 1
    ) -> IncrementResult:
        """Record *amount* units of usage for today's period."""
        if amount <= 0:
            return IncrementResult(success=False, reason=f"Invalid amount: {amount}")
        period = current_period(self._clock())
        try:
            await self._store.add_usage(owner_id, feature_key, period, amount)
        except Exception as exc:
            logger.exception("Failed to increment %s for %s", feature_key, owner_id)
            return IncrementResult(success=False, reason=str(exc))
        return IncrementResult(success=True)
