"""Account store: user -> plan, and per-day usage counters.

Three implementations share one async interface:
- InMemoryAccountStore: reference implementation for a single process (tests, local dev)
- SqlAccountStore: SQLAlchemy (SQLite / PostgreSQL), atomic upserts with RETURNING
- RedisAccountStore: HSETNX for plans, INCR for usage counters

increment_usage is the one truly racy operation in the gateway (parallel requests from the
same user) and must never lose an update. Every implementation does it as a single atomic
primitive, never as read-modify-write.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Tuple

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storygate.core.config import Settings
from storygate.core.errors import ConfigurationError, StoreError
from storygate.models.usage import Account, DailyUsage

logger = logging.getLogger(__name__)


class AccountStore(ABC):
    def __init__(self, default_plan: str = "free"):
        self.default_plan = default_plan

    @abstractmethod
    async def get_or_create_plan(self, user_key: str) -> str:
        """Existing plan, or create the account with the default plan. Concurrent first calls collapse to one record."""

    @abstractmethod
    async def get_usage(self, user_key: str, day_bucket: str) -> int:
        """Usage count for the bucket; 0 when absent. Never creates a record."""

    @abstractmethod
    async def increment_usage(self, user_key: str, day_bucket: str) -> int:
        """Atomically add one (creating the record at 1) and return the new count."""

    @abstractmethod
    async def set_plan(self, user_key: str, plan: str) -> None:
        """Upgrade/downgrade path. Not used by the generation pipeline."""

    async def close(self) -> None:
        return None


class InMemoryAccountStore(AccountStore):
    def __init__(self, default_plan: str = "free"):
        super().__init__(default_plan)
        self._plans: Dict[str, str] = {}
        self._usage: Dict[Tuple[str, str], int] = {}
        self._lock = asyncio.Lock()

    async def get_or_create_plan(self, user_key: str) -> str:
        async with self._lock:
            return self._plans.setdefault(user_key, self.default_plan)

    async def get_usage(self, user_key: str, day_bucket: str) -> int:
        return self._usage.get((user_key, day_bucket), 0)

    async def increment_usage(self, user_key: str, day_bucket: str) -> int:
        async with self._lock:
            new_count = self._usage.get((user_key, day_bucket), 0) + 1
            self._usage[(user_key, day_bucket)] = new_count
            return new_count

    async def set_plan(self, user_key: str, plan: str) -> None:
        async with self._lock:
            self._plans[user_key] = plan


class SqlAccountStore(AccountStore):
    """
    SQL-backed store. Blocking driver calls run in worker threads so the event loop is never
    blocked; each operation is a single statement (plus a read for plans) in its own session.
    """

    def __init__(self, session_factory: Callable[[], Session], default_plan: str = "free"):
        super().__init__(default_plan)
        self._session_factory = session_factory

    def _insert(self, session: Session, model):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise ConfigurationError(f"Unsupported database dialect for account store: {dialect}")

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error(f"Account store error in {fn.__name__}: {e}")
            raise StoreError("Account store unavailable") from e

    def _get_or_create_plan_sync(self, user_key: str) -> str:
        now = datetime.now(timezone.utc)
        with self._session_factory() as session:
            stmt = self._insert(session, Account).values(
                user_key=user_key, plan=self.default_plan, created_at=now, updated_at=now
            ).on_conflict_do_nothing(index_elements=[Account.user_key])
            session.execute(stmt)
            session.commit()
            return session.execute(
                select(Account.plan).where(Account.user_key == user_key)
            ).scalar_one()

    def _get_usage_sync(self, user_key: str, day_bucket: str) -> int:
        with self._session_factory() as session:
            count = session.execute(
                select(DailyUsage.count).where(
                    DailyUsage.user_key == user_key,
                    DailyUsage.day_bucket == day_bucket,
                )
            ).scalar_one_or_none()
            return count or 0

    def _increment_usage_sync(self, user_key: str, day_bucket: str) -> int:
        now = datetime.now(timezone.utc)
        with self._session_factory() as session:
            stmt = self._insert(session, DailyUsage).values(
                user_key=user_key, day_bucket=day_bucket, count=1, updated_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[DailyUsage.user_key, DailyUsage.day_bucket],
                set_={"count": DailyUsage.count + 1, "updated_at": now},
            ).returning(DailyUsage.count)
            new_count = session.execute(stmt).scalar_one()
            session.commit()
            return new_count

    def _set_plan_sync(self, user_key: str, plan: str) -> None:
        now = datetime.now(timezone.utc)
        with self._session_factory() as session:
            stmt = self._insert(session, Account).values(
                user_key=user_key, plan=plan, created_at=now, updated_at=now
            ).on_conflict_do_update(
                index_elements=[Account.user_key],
                set_={"plan": plan, "updated_at": now},
            )
            session.execute(stmt)
            session.commit()

    async def get_or_create_plan(self, user_key: str) -> str:
        return await self._run(self._get_or_create_plan_sync, user_key)

    async def get_usage(self, user_key: str, day_bucket: str) -> int:
        return await self._run(self._get_usage_sync, user_key, day_bucket)

    async def increment_usage(self, user_key: str, day_bucket: str) -> int:
        return await self._run(self._increment_usage_sync, user_key, day_bucket)

    async def set_plan(self, user_key: str, plan: str) -> None:
        await self._run(self._set_plan_sync, user_key, plan)


class RedisAccountStore(AccountStore):
    PLANS_KEY = "storygate:plans"

    def __init__(self, client, default_plan: str = "free", retention_seconds: int = 35 * 86400):
        super().__init__(default_plan)
        self._client = client
        self._retention_seconds = retention_seconds

    @classmethod
    def from_url(cls, url: str, default_plan: str = "free", retention_days: int = 35) -> "RedisAccountStore":
        client = redis_asyncio.from_url(url, decode_responses=True)
        return cls(client, default_plan=default_plan, retention_seconds=retention_days * 86400)

    @staticmethod
    def usage_key(user_key: str, day_bucket: str) -> str:
        return f"storygate:usage:{user_key}:{day_bucket}"

    async def get_or_create_plan(self, user_key: str) -> str:
        try:
            await self._client.hsetnx(self.PLANS_KEY, user_key, self.default_plan)
            plan = await self._client.hget(self.PLANS_KEY, user_key)
        except RedisError as e:
            logger.error(f"Redis plan lookup failed: {e}")
            raise StoreError("Account store unavailable") from e
        return plan or self.default_plan

    async def get_usage(self, user_key: str, day_bucket: str) -> int:
        try:
            value = await self._client.get(self.usage_key(user_key, day_bucket))
        except RedisError as e:
            logger.error(f"Redis usage lookup failed: {e}")
            raise StoreError("Account store unavailable") from e
        return int(value) if value else 0

    async def increment_usage(self, user_key: str, day_bucket: str) -> int:
        key = self.usage_key(user_key, day_bucket)
        # INCR and EXPIRE commit together in one MULTI/EXEC; NX keeps the first bucket TTL
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, self._retention_seconds, nx=True)
        try:
            new_count, _ = await pipe.execute()
            new_count = int(new_count)
        except RedisError as e:
            logger.error(f"Redis usage increment failed: {e}")
            raise StoreError("Account store unavailable") from e
        return new_count

    async def set_plan(self, user_key: str, plan: str) -> None:
        try:
            await self._client.hset(self.PLANS_KEY, user_key, plan)
        except RedisError as e:
            raise StoreError("Account store unavailable") from e

    async def close(self) -> None:
        await self._client.aclose()


def build_account_store(settings: Settings, session_factory: Callable[[], Session] = None) -> AccountStore:
    """Construct the configured store once at process start."""
    backend = settings.account_store_backend
    if backend == "memory":
        return InMemoryAccountStore(default_plan=settings.default_plan)
    if backend == "redis":
        return RedisAccountStore.from_url(
            settings.redis_url,
            default_plan=settings.default_plan,
            retention_days=settings.usage_retention_days,
        )
    if session_factory is None:
        from storygate.database import SessionLocal
        session_factory = SessionLocal
    return SqlAccountStore(session_factory, default_plan=settings.default_plan)
