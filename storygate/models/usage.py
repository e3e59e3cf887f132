"""Database models for accounts, daily usage counters and saved stories."""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, PrimaryKeyConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    """One row per user key; plan is only changed by the upgrade path."""
    __tablename__ = "accounts"

    user_key = Column(String, primary_key=True)
    plan = Column(String, nullable=False, default="free")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class DailyUsage(Base):
    """Successful generations per user per UTC day bucket (YYYY-MM-DD)."""
    __tablename__ = "daily_usage"

    user_key = Column(String, nullable=False)
    day_bucket = Column(String(10), nullable=False, index=True)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("user_key", "day_bucket"),
    )


class Story(Base):
    """A story a user saved to their library."""
    __tablename__ = "stories"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_key = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    child_name = Column(String, nullable=True)
    age = Column(String, nullable=True)
    theme = Column(String, nullable=True)
    style = Column(String, nullable=True)
    length = Column(String, nullable=True)
    moral = Column(Text, nullable=True)
    pages = Column(JSON, nullable=False)
    cover_image_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
