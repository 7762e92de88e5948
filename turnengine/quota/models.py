"""Quota data models."""

from __future__ import annotations

from dataclasses import dataclass

FEATURE_CHAT_TURNS = "chat_turns"
FEATURE_IMAGE_GENERATION = "image_generation"

PLAN_FREE = "free"

ERROR_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
ERROR_UNKNOWN_FEATURE = "UNKNOWN_FEATURE"
ERROR_CHECK_FAILED = "QUOTA_CHECK_FAILED"


@dataclass
class Account:
    """Billing-facing view of an owner: plan tier and the unlimited flag."""

    owner_id: str
    plan: str = PLAN_FREE
    is_unlimited: bool = False


@dataclass
class LimitCheckResult:
    """Outcome of a quota check.

    ``limit`` and ``remaining`` are None for unlimited owners or features.
    """

    allowed: bool
    current_usage: int = 0
    limit: int | None = None
    remaining: int | None = None
    is_unlimited: bool = False
    error_code: str | None = None
    reason: str | None = None


@dataclass
class IncrementResult:
    success: bool
    reason: str | None = None
