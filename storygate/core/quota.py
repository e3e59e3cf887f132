"""Quota policy: plan -> daily limit, and usage/limit -> allow or deny.

Pure and synchronous. Limits are data taken from settings (PLAN_LIMITS) so they can be
tuned without a code change. Usage is partitioned into UTC calendar-day buckets.
"""
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from storygate.core.config import Settings


def day_bucket(now: Optional[datetime] = None) -> str:
    """UTC calendar day as ``YYYY-MM-DD``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date().isoformat()


def seconds_until_reset(now: Optional[datetime] = None) -> int:
    """Seconds until the next UTC midnight (at least 1)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    midnight = datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)
    return max(1, int((midnight - now).total_seconds()))


class QuotaPolicy:
    def __init__(self, limits: Mapping[str, int], default_plan: str = "free"):
        if default_plan not in limits:
            raise ValueError(f"Default plan '{default_plan}' has no configured limit")
        self._limits = dict(limits)
        self.default_plan = default_plan

    @classmethod
    def from_settings(cls, settings: Settings) -> "QuotaPolicy":
        return cls(settings.plan_limits, settings.default_plan)

    @property
    def limits(self) -> dict:
        return dict(self._limits)

    def daily_limit(self, plan: str) -> int:
        """Daily request limit for a plan. Unknown plans get the default plan's limit."""
        limit = self._limits.get(plan)
        if limit is None:
            limit = self._limits[self.default_plan]
        return max(0, int(limit))

    @staticmethod
    def is_allowed(usage_count: int, limit: int) -> bool:
        # Negative counts cannot happen in a store; treat as zero anyway
        return max(0, usage_count) < limit
