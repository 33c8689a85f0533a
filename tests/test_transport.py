"""HTTP bridge transport and send helpers."""

from __future__ import annotations

import json

import httpx
import pytest

from app.bot.transport import (
    HttpBridgeTransport,
    message_id,
    reply_image,
    safe_group_metadata,
    send_with_status,
)
from app.config import BridgeSettings
from app.services.exceptions import TransportError

from tests.conftest import GROUP, FakeTransport


def _bridge(handler, **settings) -> HttpBridgeTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpBridgeTransport(client, BridgeSettings(base_url="http://bridge.local/", **settings))


@pytest.mark.asyncio
async def test_send_message_posts_payload_with_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"key": {"id": "ABC"}})

    bridge = _bridge(handler, api_token="s3cret")
    sent = await bridge.send_message("123@s.whatsapp.net", {"text": "hi"})

    assert seen["url"] == "http://bridge.local/messages"
    assert seen["auth"] == "Bearer s3cret"
    assert seen["body"] == {"chatId": "123@s.whatsapp.net", "payload": {"text": "hi"}}
    assert message_id(sent) == "ABC"
    await bridge.http_client.aclose()


@pytest.mark.asyncio
async def test_group_metadata_is_parsed():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.startswith("/groups/120363000000000001")
        assert request.url.path.endswith("/metadata")
        return httpx.Response(
            200,
            json={"subject": "Kelas", "participants": [{"id": "62811@s.whatsapp.net", "admin": "superadmin"}]},
        )

    bridge = _bridge(handler)
    metadata = await bridge.group_metadata(GROUP)

    assert metadata.subject == "Kelas"
    assert metadata.participants[0].admin == "superadmin"
    await bridge.http_client.aclose()


@pytest.mark.asyncio
async def test_http_errors_become_transport_errors():
    bridge = _bridge(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(TransportError):
        await bridge.send_message("123@s.whatsapp.net", {"text": "hi"})
    assert await safe_group_metadata(bridge, GROUP) is None
    await bridge.http_client.aclose()


@pytest.mark.asyncio
async def test_send_with_status_retries_then_gives_up(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("app.utils.retry.asyncio.sleep", fake_sleep)
    transport = FakeTransport(fail_send_to={"dead@s.whatsapp.net"})

    assert await send_with_status(transport, "dead@s.whatsapp.net", {"text": "x"}) is None
    assert len(delays) == 2


@pytest.mark.asyncio
async def test_send_with_status_recovers_after_transient_failure(monkeypatch):
    async def fake_sleep(delay):
        return None

    monkeypatch.setattr("app.utils.retry.asyncio.sleep", fake_sleep)

    class FlakyTransport(FakeTransport):
        attempts = 0

        async def send_message(self, chat_id, payload):
            self.attempts += 1
            if self.attempts == 1:
                raise TransportError("timeout")
            return await super().send_message(chat_id, payload)

    transport = FlakyTransport()
    sent = await send_with_status(transport, "1@s.whatsapp.net", {"text": "x"})

    assert message_id(sent) == "MSG1"
    assert transport.attempts == 2


@pytest.mark.asyncio
async def test_reply_image_wraps_url():
    transport = FakeTransport()

    await reply_image(transport, "1@s.whatsapp.net", "ACCESS DENIED\nLimit Habis", "https://img/x.jpg")

    assert transport.sent == [
        (
            "1@s.whatsapp.net",
            {"image": {"url": "https://img/x.jpg"}, "caption": "ACCESS DENIED\nLimit Habis"},
        )
    ]
