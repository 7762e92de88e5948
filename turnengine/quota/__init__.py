"""Per-owner daily usage quotas."""

from turnengine.quota.guard import QuotaGuard
from turnengine.quota.store import UsageStore

__all__ = ["QuotaGuard", "UsageStore"]
