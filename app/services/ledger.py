"""Usage accounting: per-feature and global counters, registration and premium sets.

The dispatcher talks to a single :class:`AccountingStore`. One implementation is
chosen at startup (:func:`build_accounting_store`): SQL when a database DSN is
configured, process memory otherwise. Callers never branch on the backend.

Backends must make the increments atomic per key and return the post-increment
value, and ``charge`` must check and spend quota as one unit so concurrent
messages from one sender cannot overdraw it. The memory store gets this for
free because none of its operations suspend.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque

from app.bot.identity import normalize_number
from app.domain.models import (
    ResetSummary,
    TelemetryEvent,
    TotalUsage,
    UsageRecord,
    UsageSnapshot,
)
from app.utils.datetime import utc_now

RECENT_EVENTS_LIMIT = 500
_NON_DIGIT_RE = re.compile(r"\D")


def clamp_count(count: Any) -> int:
    try:
        value = int(count or 1)
    except (TypeError, ValueError):
        value = 1
    return max(1, value)


def user_key(user: str) -> str:
    return normalize_number(user)


def lid_key(lid: str) -> str:
    return _NON_DIGIT_RE.sub("", str(lid or ""))


class AccountingStore(ABC):
    name: str = "abstract"

    # Per-feature usage -------------------------------------------------

    @abstractmethod
    async def get(self, user: str, feature: str) -> UsageRecord: ...

    @abstractmethod
    async def increment_by(self, user: str, feature: str, count: int = 1) -> UsageRecord: ...

    @abstractmethod
    async def get_all(self, user: str) -> dict[str, UsageRecord]: ...

    # Global usage ------------------------------------------------------

    @abstractmethod
    async def get_total(self, user: str) -> TotalUsage: ...

    @abstractmethod
    async def increment_total_by(self, user: str, count: int = 1) -> TotalUsage: ...

    @abstractmethod
    async def charge(self, user: str, feature: str, cost: int, quota: int) -> TotalUsage | None:
        """Spend ``cost`` against the global quota and the ``feature`` counter.

        The remaining-quota check and both increments happen as one unit. Returns
        the global usage after the charge, or ``None`` when fewer than ``cost``
        units remain, in which case nothing is written.
        """

    @abstractmethod
    async def reset_all(self) -> UsageSnapshot:
        """Clear every counter and return what they held."""

    # Registration ------------------------------------------------------

    @abstractmethod
    async def is_registered(self, user: str) -> bool: ...

    @abstractmethod
    async def register(self, user: str) -> bool: ...

    @abstractmethod
    async def unregister(self, user: str) -> bool:
        """Drop the registration together with all usage of ``user``."""

    # Premium -----------------------------------------------------------

    @abstractmethod
    async def is_premium(self, user: str) -> bool: ...

    @abstractmethod
    async def add_premium_by_number(self, number: str) -> bool: ...

    @abstractmethod
    async def add_premium_by_lid(self, lid: str) -> bool: ...

    # Telemetry ---------------------------------------------------------

    @abstractmethod
    async def log_event(self, event: TelemetryEvent) -> None: ...

    async def close(self) -> None:
        return None

    @staticmethod
    def make_summary(snapshot: UsageSnapshot) -> ResetSummary:
        users = set(snapshot.totals) | set(snapshot.features)
        return ResetSummary(
            total_users=len(users),
            total_hits=sum(snapshot.totals.values()),
        )


class MemoryAccountingStore(AccountingStore):
    """Process-local fallback used when no database is configured."""

    name = "memory"

    def __init__(self) -> None:
        self._usage: dict[str, dict[str, UsageRecord]] = {}
        self._totals: dict[str, int] = {}
        self._registered: set[str] = set()
        self._premium_phones: set[str] = set()
        self._premium_lids: set[str] = set()
        self.recent_events: Deque[TelemetryEvent] = deque(maxlen=RECENT_EVENTS_LIMIT)

    async def get(self, user: str, feature: str) -> UsageRecord:
        record = self._usage.get(user_key(user), {}).get(feature)
        return record.model_copy() if record else UsageRecord()

    async def increment_by(self, user: str, feature: str, count: int = 1) -> UsageRecord:
        count = clamp_count(count)
        features = self._usage.setdefault(user_key(user), {})
        record = features.setdefault(feature, UsageRecord())
        record.used += count
        record.last_at = utc_now()
        return record.model_copy()

    async def get_all(self, user: str) -> dict[str, UsageRecord]:
        return {
            feature: record.model_copy()
            for feature, record in self._usage.get(user_key(user), {}).items()
        }

    async def get_total(self, user: str) -> TotalUsage:
        return TotalUsage(used=self._totals.get(user_key(user), 0))

    async def increment_total_by(self, user: str, count: int = 1) -> TotalUsage:
        key = user_key(user)
        used = self._totals.get(key, 0) + clamp_count(count)
        self._totals[key] = used
        return TotalUsage(used=used)

    async def charge(self, user: str, feature: str, cost: int, quota: int) -> TotalUsage | None:
        cost = clamp_count(cost)
        key = user_key(user)
        used = self._totals.get(key, 0)
        if max(0, quota - used) < cost:
            return None
        self._totals[key] = used + cost
        record = self._usage.setdefault(key, {}).setdefault(feature, UsageRecord())
        record.used += cost
        record.last_at = utc_now()
        return TotalUsage(used=used + cost)

    async def reset_all(self) -> UsageSnapshot:
        snapshot = UsageSnapshot(features=self._usage, totals=self._totals)
        self._usage = {}
        self._totals = {}
        return snapshot

    async def is_registered(self, user: str) -> bool:
        return user_key(user) in self._registered

    async def register(self, user: str) -> bool:
        key = user_key(user)
        if not key:
            return False
        self._registered.add(key)
        return True

    async def unregister(self, user: str) -> bool:
        key = user_key(user)
        self._registered.discard(key)
        self._totals.pop(key, None)
        self._usage.pop(key, None)
        return True

    async def is_premium(self, user: str) -> bool:
        key = user_key(user)
        return key in self._premium_phones or key in self._premium_lids

    async def add_premium_by_number(self, number: str) -> bool:
        key = normalize_number(number)
        if not key:
            return False
        self._premium_phones.add(key)
        return True

    async def add_premium_by_lid(self, lid: str) -> bool:
        key = lid_key(lid)
        if not key:
            return False
        self._premium_lids.add(key)
        return True

    async def log_event(self, event: TelemetryEvent) -> None:
        self.recent_events.append(event)


def build_accounting_store(settings, database=None) -> AccountingStore:
    """Pick the backend once: SQL when a DSN and database are available, else memory."""

    if database is not None and settings.database.dsn:
        from app.services.ledger_sql import SqlAccountingStore

        return SqlAccountingStore(database.session)
    return MemoryAccountingStore()


__all__ = [
    "AccountingStore",
    "MemoryAccountingStore",
    "build_accounting_store",
    "clamp_count",
    "lid_key",
    "user_key",
]
