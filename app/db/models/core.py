"""SQLAlchemy models backing the persistent accounting store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.datetime import utc_now


class RegisteredUser(Base):
    __table_args__ = (UniqueConstraint("user_key", name="uq_registered_users_user_key"),)

    user_key: Mapped[str] = mapped_column(String(32), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class PremiumUser(Base):
    __table_args__ = (UniqueConstraint("user_key", "kind", name="uq_premium_users_key_kind"),)

    user_key: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(
        Enum("number", "lid", name="premium_kind"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class UsageCounter(Base):
    __table_args__ = (
        UniqueConstraint("user_key", "feature", name="uq_usage_counters_user_feature"),
    )

    user_key: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    feature: Mapped[str] = mapped_column(String(64), nullable=False)
    used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_at: Mapped[datetime | None] = mapped_column(DateTime)


class UsageTotal(Base):
    __table_args__ = (UniqueConstraint("user_key", name="uq_usage_totals_user_key"),)

    user_key: Mapped[str] = mapped_column(String(32), nullable=False)
    used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


class UsageEvent(Base):
    type: Mapped[str] = mapped_column(
        Enum("denied", "run", "error", name="usage_event_type"), nullable=False
    )
    user: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    cmd: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(32))
    error: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


__all__ = [
    "PremiumUser",
    "RegisteredUser",
    "UsageCounter",
    "UsageEvent",
    "UsageTotal",
]
