"""In-memory accounting store behaviour."""

from __future__ import annotations

import pytest

from app.domain.models import UsageSnapshot
from app.services.ledger import AccountingStore, MemoryAccountingStore, build_accounting_store, clamp_count

from tests.conftest import make_settings

USER = "6281234567890@s.whatsapp.net"


def test_clamp_count():
    assert clamp_count(0) == 1
    assert clamp_count(-5) == 1
    assert clamp_count(None) == 1
    assert clamp_count("3") == 3
    assert clamp_count("x") == 1


@pytest.mark.asyncio
async def test_total_accumulates_costs():
    store = MemoryAccountingStore()
    costs = [1, 3, 2, 5]
    for cost in costs:
        await store.increment_total_by(USER, cost)

    assert (await store.get_total(USER)).used == sum(costs)
    assert (await store.get_total("6281234567890")).used == sum(costs)


@pytest.mark.asyncio
async def test_feature_counters_are_independent_of_total():
    store = MemoryAccountingStore()
    record = await store.increment_by(USER, "sticker", 2)
    await store.increment_by(USER, "sticker", 0)
    await store.increment_by(USER, "menu")

    assert record.used == 2
    assert record.last_at is not None
    assert (await store.get(USER, "sticker")).used == 3
    assert (await store.get(USER, "missing")).used == 0
    assert set(await store.get_all(USER)) == {"sticker", "menu"}
    assert (await store.get_total(USER)).used == 0


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = MemoryAccountingStore()
    record = await store.increment_by(USER, "ai", 1)
    record.used = 100

    assert (await store.get(USER, "ai")).used == 1


@pytest.mark.asyncio
async def test_reset_all_returns_snapshot_and_zeroes_everyone():
    store = MemoryAccountingStore()
    await store.increment_total_by(USER, 4)
    await store.increment_by(USER, "ai", 4)
    await store.increment_total_by("6289999@s.whatsapp.net", 2)

    snapshot = await store.reset_all()

    assert snapshot.totals == {"6281234567890": 4, "6289999": 2}
    assert snapshot.features["6281234567890"]["ai"].used == 4
    assert (await store.get_total(USER)).used == 0
    assert (await store.get_total("6289999")).used == 0
    assert await store.get_all(USER) == {}

    summary = AccountingStore.make_summary(snapshot)
    assert summary.total_users == 2
    assert summary.total_hits == 6


def test_summary_of_empty_snapshot():
    summary = AccountingStore.make_summary(UsageSnapshot())
    assert summary.total_users == 0
    assert summary.total_hits == 0


@pytest.mark.asyncio
async def test_registration_and_unregister_clears_usage():
    store = MemoryAccountingStore()
    assert not await store.is_registered(USER)

    assert await store.register(USER)
    assert await store.is_registered("6281234567890")

    await store.increment_total_by(USER, 3)
    await store.increment_by(USER, "ai", 3)
    await store.unregister(USER)

    assert not await store.is_registered(USER)
    assert (await store.get_total(USER)).used == 0
    assert await store.get_all(USER) == {}
    assert not await store.register("")


@pytest.mark.asyncio
async def test_premium_partitions_are_unioned():
    store = MemoryAccountingStore()
    assert await store.add_premium_by_number("+62 812-3456-7890")
    assert await store.add_premium_by_lid("55443322@lid")
    assert not await store.add_premium_by_number("")

    assert await store.is_premium(USER)
    assert await store.is_premium("55443322@s.whatsapp.net")
    assert not await store.is_premium("6280000@s.whatsapp.net")


def test_build_store_defaults_to_memory():
    store = build_accounting_store(make_settings())
    assert isinstance(store, MemoryAccountingStore)
    assert store.name == "memory"


def test_build_store_picks_sql_when_configured(session_factory):
    from app.services.ledger_sql import SqlAccountingStore

    class DummyDatabase:
        session = staticmethod(session_factory)

    settings = make_settings(database={"dsn": "sqlite+aiosqlite:///:memory:"})
    store = build_accounting_store(settings, DummyDatabase())
    assert isinstance(store, SqlAccountingStore)


@pytest.mark.asyncio
async def test_charge_spends_total_and_feature_within_quota():
    store = MemoryAccountingStore()
    await store.increment_total_by(USER, 47)

    after = await store.charge(USER, "ai", 3, quota=50)

    assert after.used == 50
    assert (await store.get(USER, "ai")).used == 3
    assert await store.charge(USER, "ai", 1, quota=50) is None
    assert (await store.get_total(USER)).used == 50
    assert (await store.get(USER, "ai")).used == 3


@pytest.mark.asyncio
async def test_charge_refuses_cost_above_quota_for_new_user():
    store = MemoryAccountingStore()

    assert await store.charge(USER, "ai", 5, quota=4) is None
    assert await store.get_all(USER) == {}
    assert (await store.charge(USER, "ai", 0, quota=4)).used == 1
