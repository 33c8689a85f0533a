"""SQL accounting store against an in-memory SQLite session."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from app.db.models.core import UsageEvent
from app.domain.models import TelemetryEvent
from app.services.exceptions import LedgerError
from app.services.ledger_sql import SqlAccountingStore

USER = "6281234567890@s.whatsapp.net"


@pytest.mark.asyncio
async def test_increment_total_creates_and_accumulates(session_factory):
    store = SqlAccountingStore(session_factory)

    assert (await store.get_total(USER)).used == 0
    assert (await store.increment_total_by(USER, 2)).used == 2
    assert (await store.increment_total_by(USER, 0)).used == 3
    assert (await store.get_total("6281234567890")).used == 3


@pytest.mark.asyncio
async def test_feature_counters(session_factory):
    store = SqlAccountingStore(session_factory)

    await store.increment_by(USER, "sticker", 2)
    record = await store.increment_by(USER, "sticker", 1)
    await store.increment_by(USER, "ai", 1)

    assert record.used == 3
    assert record.last_at is not None
    assert (await store.get(USER, "sticker")).used == 3
    assert sorted(await store.get_all(USER)) == ["ai", "sticker"]


@pytest.mark.asyncio
async def test_reset_all_snapshots_and_clears(session_factory):
    store = SqlAccountingStore(session_factory)
    await store.increment_total_by(USER, 5)
    await store.increment_by(USER, "ai", 5)
    await store.increment_total_by("6289999@s.whatsapp.net", 1)

    snapshot = await store.reset_all()

    assert snapshot.totals == {"6281234567890": 5, "6289999": 1}
    assert snapshot.features["6281234567890"]["ai"].used == 5
    assert (await store.get_total(USER)).used == 0
    assert await store.get_all(USER) == {}
    assert store.make_summary(snapshot).total_hits == 6


@pytest.mark.asyncio
async def test_registration_and_premium(session_factory):
    store = SqlAccountingStore(session_factory)

    assert await store.register(USER)
    assert await store.register(USER)
    assert await store.is_registered("6281234567890")

    await store.increment_total_by(USER, 2)
    await store.unregister(USER)
    assert not await store.is_registered(USER)
    assert (await store.get_total(USER)).used == 0

    assert await store.add_premium_by_lid("777@lid")
    assert await store.add_premium_by_lid("777")
    assert await store.is_premium("777@s.whatsapp.net")
    assert not await store.is_premium(USER)
    assert not await store.add_premium_by_number("")


@pytest.mark.asyncio
async def test_log_event_persists_row(session_factory, session):
    store = SqlAccountingStore(session_factory)
    event = TelemetryEvent(
        type="denied", user=USER, cmd="ai", role="user", scope="private", reason="limit", remaining=0
    )

    await store.log_event(event)

    row = (await session.execute(select(UsageEvent))).scalar_one()
    assert row.reason == "limit"
    assert row.payload["remaining"] == 0


@pytest.mark.asyncio
async def test_database_errors_surface_as_ledger_error(session):
    from contextlib import asynccontextmanager

    from sqlalchemy.exc import OperationalError

    @asynccontextmanager
    async def broken_factory():
        raise OperationalError("SELECT 1", {}, Exception("db down"))
        yield session

    store = SqlAccountingStore(broken_factory)
    with pytest.raises(LedgerError):
        await store.get_total(USER)


@pytest.mark.asyncio
async def test_charge_is_conditional_on_remaining_quota(session_factory):
    store = SqlAccountingStore(session_factory)

    assert await store.charge(USER, "ai", 5, quota=4) is None
    assert (await store.get_total(USER)).used == 0

    first = await store.charge(USER, "ai", 3, quota=4)
    assert first.used == 3
    assert await store.charge(USER, "ai", 2, quota=4) is None
    second = await store.charge(USER, "sticker", 1, quota=4)

    assert second.used == 4
    assert (await store.get(USER, "ai")).used == 3
    assert (await store.get(USER, "sticker")).used == 1
    assert (await store.get_total(USER)).used == 4


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(session_factory):
    store = SqlAccountingStore(session_factory)
    await store.increment_total_by(USER, 1)
    await store.increment_by(USER, "ai", 1)

    await asyncio.gather(*(store.increment_total_by(USER, 2) for _ in range(5)))
    await asyncio.gather(*(store.increment_by(USER, "ai", 1) for _ in range(4)))

    assert (await store.get_total(USER)).used == 11
    assert (await store.get(USER, "ai")).used == 5
