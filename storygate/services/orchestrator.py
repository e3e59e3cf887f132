"""Quota-gated generation pipeline.

For an authenticated user key:

    plan + day bucket -> quota check -> request shape -> dispatch -> result check -> commit

Usage is incremented only after the upstream result has been confirmed usable. Denials,
bad requests, timeouts, upstream failures and rejected results never touch the counter.
A store failure during the final increment is logged as degraded accounting and the
successful result is still returned.

Concurrent requests from one user may both pass the quota check before either commits
(bounded overshoot). No lock is held across the upstream call; the only atomic step is
the store's increment.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from storygate.core.errors import QuotaExceeded, StoreError, ValidationError
from storygate.core.quota import QuotaPolicy, day_bucket, seconds_until_reset
from storygate.services.accounts import AccountStore
from storygate.services.providers import AudioResult, GenerationProviderAdapter, ImageResult, TextResult
from storygate.services.validation import ResultValidator, parse_generation_request

logger = logging.getLogger(__name__)

CAPABILITIES = ("text", "image", "audio")


@dataclass(frozen=True)
class UsageSnapshot:
    day_bucket: str
    plan: str
    daily_limit: int
    used_today: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayBucket": self.day_bucket,
            "plan": self.plan,
            "dailyLimit": self.daily_limit,
            "usedToday": self.used_today,
        }


@dataclass(frozen=True)
class GenerationOutcome:
    result: Union[TextResult, ImageResult, AudioResult]
    usage: UsageSnapshot
    accounting_degraded: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationOrchestrator:
    def __init__(
        self,
        store: AccountStore,
        policy: QuotaPolicy,
        adapter: GenerationProviderAdapter,
        validator: ResultValidator,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.policy = policy
        self.adapter = adapter
        self.validator = validator
        self.clock = clock

    async def _resolve(self, user_key: str):
        """Plan, day bucket and current usage. Store failures are fatal here."""
        bucket = day_bucket(self.clock())
        plan = await self.store.get_or_create_plan(user_key)
        used = await self.store.get_usage(user_key, bucket)
        return UsageSnapshot(
            day_bucket=bucket,
            plan=plan,
            daily_limit=self.policy.daily_limit(plan),
            used_today=max(0, used),
        )

    async def usage_status(self, user_key: str) -> UsageSnapshot:
        return await self._resolve(user_key)

    async def _dispatch(self, capability: str, request):
        if capability == "text":
            return await self.adapter.generate_text(request.messages)
        if capability == "image":
            return await self.adapter.generate_image(request.prompt)
        return await self.adapter.generate_audio(request.text, request.voice)

    async def run(self, capability: str, user_key: str, raw_body: Optional[bytes]) -> GenerationOutcome:
        """
        Run one generation for an authenticated user.

        Raises:
            QuotaExceeded: daily limit reached (no dispatch, no increment)
            ValidationError: request body unusable for the capability
            StoreError: plan/usage lookup failed
            UpstreamTimeout / UpstreamError / ConfigurationError: dispatch failed
            ResultInvalid: upstream answered but the result is not usable (not counted)
        """
        if capability not in CAPABILITIES:
            raise ValidationError(f"Unknown capability '{capability}'")

        snapshot = await self._resolve(user_key)

        if not self.policy.is_allowed(snapshot.used_today, snapshot.daily_limit):
            logger.info(
                f"Quota exceeded: user={user_key} plan={snapshot.plan} "
                f"used={snapshot.used_today}/{snapshot.daily_limit} bucket={snapshot.day_bucket}"
            )
            raise QuotaExceeded(
                "Daily generation limit reached",
                details=snapshot.to_dict(),
                retry_after=seconds_until_reset(self.clock()),
            )

        request = parse_generation_request(capability, raw_body)

        result = await self._dispatch(capability, request)
        self.validator.check(result)

        try:
            new_count = await self.store.increment_usage(user_key, snapshot.day_bucket)
        except StoreError as e:
            logger.error(
                f"accounting_degraded: usage increment failed after successful {capability} generation "
                f"(user={user_key}, bucket={snapshot.day_bucket}): {e}"
            )
            return GenerationOutcome(result=result, usage=snapshot, accounting_degraded=True)

        usage = UsageSnapshot(
            day_bucket=snapshot.day_bucket,
            plan=snapshot.plan,
            daily_limit=snapshot.daily_limit,
            used_today=new_count,
        )
        logger.info(f"{capability} generation committed: user={user_key} used={new_count}/{usage.daily_limit}")
        return GenerationOutcome(result=result, usage=usage)
