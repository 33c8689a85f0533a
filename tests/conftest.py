"""Shared pytest fixtures for dispatcher and accounting tests."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.bot.context import ContextBuilder
from app.bot.pipeline import DispatchPipeline
from app.bot.privilege import OwnerSet, PrivilegeClassifier
from app.bot.registry import PluginRegistry
from app.config import BotSettings
from app.db import models  # noqa: F401
from app.db.base import Base
from app.domain.models import GroupMetadata
from app.services.exceptions import TransportError
from app.services.ledger import MemoryAccountingStore
from app.services.telemetry import Telemetry

OWNER = "6280000000001"
USER = "6281234567890"
ADMIN = "6289999999999"
GROUP = "120363000000000001@g.us"


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        # yield like a network round trip so concurrent tasks interleave
        await asyncio.sleep(0)
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def close(self) -> None:
        self._sync.close()


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest.fixture
def session_factory(session):
    @asynccontextmanager
    async def factory():
        yield session

    return factory


class FakeTransport:
    def __init__(
        self,
        groups: dict[str, GroupMetadata] | None = None,
        *,
        fail_metadata: bool = False,
        fail_send_to: set[str] | None = None,
    ) -> None:
        self.groups = groups or {}
        self.fail_metadata = fail_metadata
        self.fail_send_to = fail_send_to or set()
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.metadata_calls = 0

    async def send_message(self, chat_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        if chat_id in self.fail_send_to:
            raise TransportError(f"cannot reach {chat_id}")
        self.sent.append((chat_id, payload))
        return {"key": {"id": f"MSG{len(self.sent)}"}}

    async def group_metadata(self, chat_id: str) -> GroupMetadata:
        self.metadata_calls += 1
        if self.fail_metadata or chat_id not in self.groups:
            raise TransportError("metadata unavailable")
        return self.groups[chat_id]

    def texts(self) -> list[str]:
        return [payload.get("text") or payload.get("caption") or "" for _, payload in self.sent]


def make_settings(**overrides) -> BotSettings:
    values = {"owner_numbers": [OWNER], "default_limit_quota": 50, "default_language": "id"}
    values.update(overrides)
    return BotSettings(_env_file=None, **values)


def make_event(
    text: str,
    *,
    chat: str | None = None,
    sender: str = USER,
    message: dict[str, Any] | None = None,
) -> dict[str, Any]:
    sender_jid = sender if "@" in sender else f"{sender}@s.whatsapp.net"
    key: dict[str, Any] = {"remoteJid": chat or sender_jid, "id": "3EB0ABCDEF", "fromMe": False}
    if chat and chat.endswith("@g.us"):
        key["participant"] = sender_jid
    return {"key": key, "message": message if message is not None else {"conversation": text}}


def build_pipeline(
    descriptors,
    *,
    settings: BotSettings | None = None,
    store=None,
    transport: FakeTransport | None = None,
):
    settings = settings or make_settings()
    store = store or MemoryAccountingStore()
    transport = transport or FakeTransport()
    registry = PluginRegistry(descriptors)
    classifier = PrivilegeClassifier(OwnerSet.from_settings(settings))
    pipeline = DispatchPipeline(
        registry=registry,
        builder=ContextBuilder(transport, store, classifier, settings),
        store=store,
        telemetry=Telemetry(store),
        settings=settings,
    )
    return pipeline, store, transport


@pytest.fixture
def settings() -> BotSettings:
    return make_settings()


@pytest.fixture
def memory_store() -> MemoryAccountingStore:
    return MemoryAccountingStore()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
