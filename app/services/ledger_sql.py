"""SQLAlchemy-backed accounting store."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.core import (
    PremiumUser,
    RegisteredUser,
    UsageCounter,
    UsageEvent,
    UsageTotal,
)
from app.domain.models import TelemetryEvent, TotalUsage, UsageRecord, UsageSnapshot
from app.logging import logger
from app.services.exceptions import LedgerError
from app.services.ledger import AccountingStore, clamp_count, lid_key, user_key
from app.utils.datetime import utc_now

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# A concurrent first insert for the same key loses on the unique constraint;
# the loser retries as an update.
_UPSERT_ATTEMPTS = 2


class SqlAccountingStore(AccountingStore):
    """Counters live in ``usage_counters``/``usage_totals``.

    Increments are issued as ``UPDATE ... SET used = used + n`` so the database
    does the arithmetic, and :meth:`charge` puts the quota condition in the same
    statement. Reads select columns rather than entities so a long-lived session
    never serves stale counter values.
    """

    name = "sql"

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("ledger_operation_failed", operation=operation, error=str(exc))
            raise LedgerError(f"{operation} failed: {exc}") from exc

    async def get(self, user: str, feature: str) -> UsageRecord:
        async with self._session("get") as session:
            stmt = select(UsageCounter.used, UsageCounter.last_at).where(
                UsageCounter.user_key == user_key(user),
                UsageCounter.feature == feature,
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                return UsageRecord()
            return UsageRecord(used=row.used, last_at=row.last_at)

    async def increment_by(self, user: str, feature: str, count: int = 1) -> UsageRecord:
        count = clamp_count(count)
        key = user_key(user)
        async with self._session("increment_by") as session:
            for attempt in range(_UPSERT_ATTEMPTS):
                try:
                    now = utc_now()
                    await self._bump_counter(session, key, feature, count, now)
                    used = await self._counter_used(session, key, feature)
                    await session.commit()
                    return UsageRecord(used=used, last_at=now)
                except IntegrityError:
                    await session.rollback()
                    if attempt + 1 >= _UPSERT_ATTEMPTS:
                        raise
        raise LedgerError("increment_by did not complete")

    async def get_all(self, user: str) -> dict[str, UsageRecord]:
        async with self._session("get_all") as session:
            stmt = select(UsageCounter.feature, UsageCounter.used, UsageCounter.last_at).where(
                UsageCounter.user_key == user_key(user)
            )
            rows = (await session.execute(stmt)).all()
            return {row.feature: UsageRecord(used=row.used, last_at=row.last_at) for row in rows}

    async def get_total(self, user: str) -> TotalUsage:
        async with self._session("get_total") as session:
            return TotalUsage(used=await self._total_used(session, user_key(user)))

    async def increment_total_by(self, user: str, count: int = 1) -> TotalUsage:
        count = clamp_count(count)
        key = user_key(user)
        async with self._session("increment_total_by") as session:
            for attempt in range(_UPSERT_ATTEMPTS):
                try:
                    if not await self._bump_total(session, key, count):
                        await self._insert_total(session, key, count)
                    used = await self._total_used(session, key)
                    await session.commit()
                    return TotalUsage(used=used)
                except IntegrityError:
                    await session.rollback()
                    if attempt + 1 >= _UPSERT_ATTEMPTS:
                        raise
        raise LedgerError("increment_total_by did not complete")

    async def charge(self, user: str, feature: str, cost: int, quota: int) -> TotalUsage | None:
        cost = clamp_count(cost)
        key = user_key(user)
        async with self._session("charge") as session:
            for attempt in range(_UPSERT_ATTEMPTS):
                try:
                    charged = await self._bump_total(session, key, cost, quota=quota)
                    if not charged:
                        if cost > quota or await self._total_exists(session, key):
                            return None
                        await self._insert_total(session, key, cost)
                    await self._bump_counter(session, key, feature, cost, utc_now())
                    used = await self._total_used(session, key)
                    await session.commit()
                    return TotalUsage(used=used)
                except IntegrityError:
                    await session.rollback()
                    if attempt + 1 >= _UPSERT_ATTEMPTS:
                        raise
        raise LedgerError("charge did not complete")

    async def reset_all(self) -> UsageSnapshot:
        async with self._session("reset_all") as session:
            counters = (
                await session.execute(
                    select(
                        UsageCounter.user_key,
                        UsageCounter.feature,
                        UsageCounter.used,
                        UsageCounter.last_at,
                    ).with_for_update()
                )
            ).all()
            totals = (
                await session.execute(select(UsageTotal.user_key, UsageTotal.used).with_for_update())
            ).all()
            snapshot = UsageSnapshot()
            for counter in counters:
                snapshot.features.setdefault(counter.user_key, {})[counter.feature] = UsageRecord(
                    used=counter.used, last_at=counter.last_at
                )
            for total in totals:
                snapshot.totals[total.user_key] = total.used
            await session.execute(delete(UsageCounter))
            await session.execute(delete(UsageTotal))
            await session.commit()
            return snapshot

    async def is_registered(self, user: str) -> bool:
        async with self._session("is_registered") as session:
            return await self._registration(session, user_key(user)) is not None

    async def register(self, user: str) -> bool:
        key = user_key(user)
        if not key:
            return False
        async with self._session("register") as session:
            if await self._registration(session, key) is None:
                session.add(RegisteredUser(user_key=key))
                await session.commit()
            return True

    async def unregister(self, user: str) -> bool:
        key = user_key(user)
        async with self._session("unregister") as session:
            await session.execute(delete(RegisteredUser).where(RegisteredUser.user_key == key))
            await session.execute(delete(UsageTotal).where(UsageTotal.user_key == key))
            await session.execute(delete(UsageCounter).where(UsageCounter.user_key == key))
            await session.commit()
            return True

    async def is_premium(self, user: str) -> bool:
        async with self._session("is_premium") as session:
            stmt = select(PremiumUser.id).where(PremiumUser.user_key == user_key(user)).limit(1)
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def add_premium_by_number(self, number: str) -> bool:
        return await self._add_premium(user_key(number), "number")

    async def add_premium_by_lid(self, lid: str) -> bool:
        return await self._add_premium(lid_key(lid), "lid")

    async def log_event(self, event: TelemetryEvent) -> None:
        async with self._session("log_event") as session:
            session.add(
                UsageEvent(
                    type=event.type,
                    user=event.user,
                    cmd=event.cmd,
                    role=event.role,
                    scope=event.scope,
                    reason=event.reason,
                    error=event.error,
                    payload=event.model_dump(mode="json", exclude_none=True),
                )
            )
            await session.commit()

    # Internal helpers -------------------------------------------------

    async def _add_premium(self, key: str, kind: str) -> bool:
        if not key:
            return False
        async with self._session("add_premium") as session:
            stmt = select(PremiumUser).where(PremiumUser.user_key == key, PremiumUser.kind == kind)
            if (await session.execute(stmt)).scalar_one_or_none() is None:
                session.add(PremiumUser(user_key=key, kind=kind))
                await session.commit()
            return True

    @staticmethod
    async def _bump_total(
        session: AsyncSession, key: str, count: int, *, quota: int | None = None
    ) -> bool:
        """Add ``count`` to an existing total, staying within ``quota`` when given.

        Returns whether a row was updated.
        """

        stmt = update(UsageTotal).where(UsageTotal.user_key == key)
        if quota is not None:
            stmt = stmt.where(UsageTotal.used + count <= quota)
        stmt = stmt.values(used=UsageTotal.used + count, updated_at=utc_now())
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount > 0

    @staticmethod
    async def _insert_total(session: AsyncSession, key: str, count: int) -> None:
        await session.execute(
            insert(UsageTotal).values(user_key=key, used=count, updated_at=utc_now())
        )

    @staticmethod
    async def _bump_counter(
        session: AsyncSession, key: str, feature: str, count: int, now: datetime
    ) -> None:
        stmt = (
            update(UsageCounter)
            .where(UsageCounter.user_key == key, UsageCounter.feature == feature)
            .values(used=UsageCounter.used + count, last_at=now)
            .execution_options(synchronize_session=False)
        )
        if (await session.execute(stmt)).rowcount == 0:
            await session.execute(
                insert(UsageCounter).values(user_key=key, feature=feature, used=count, last_at=now)
            )

    @staticmethod
    async def _total_used(session: AsyncSession, key: str) -> int:
        stmt = select(UsageTotal.used).where(UsageTotal.user_key == key)
        return (await session.execute(stmt)).scalar_one_or_none() or 0

    @staticmethod
    async def _total_exists(session: AsyncSession, key: str) -> bool:
        stmt = select(UsageTotal.id).where(UsageTotal.user_key == key)
        return (await session.execute(stmt)).scalar_one_or_none() is not None

    @staticmethod
    async def _counter_used(session: AsyncSession, key: str, feature: str) -> int:
        stmt = select(UsageCounter.used).where(
            UsageCounter.user_key == key, UsageCounter.feature == feature
        )
        return (await session.execute(stmt)).scalar_one_or_none() or 0

    @staticmethod
    async def _registration(session: AsyncSession, key: str) -> RegisteredUser | None:
        stmt = select(RegisteredUser).where(RegisteredUser.user_key == key)
        return (await session.execute(stmt)).scalar_one_or_none()


__all__ = ["SqlAccountingStore"]
