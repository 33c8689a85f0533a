"""Messaging transport boundary.

The protocol client itself (connection, encryption, session state) runs in a
sidecar bridge. The dispatcher only needs two calls from it, expressed by
:class:`Transport`; :class:`HttpBridgeTransport` forwards them over HTTP.
"""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote

import httpx

from app.config import BridgeSettings
from app.domain.models import GroupMetadata
from app.logging import logger
from app.services.exceptions import TransportError
from app.utils.retry import retry_async

SEND_MAX_ATTEMPTS = 3
SEND_BASE_DELAY = 0.3


class Transport(Protocol):
    async def send_message(self, chat_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def group_metadata(self, chat_id: str) -> GroupMetadata: ...


class HttpBridgeTransport:
    def __init__(self, http_client: httpx.AsyncClient, settings: BridgeSettings) -> None:
        self.http_client = http_client
        self.settings = settings
        self.base_url = str(settings.base_url).rstrip("/")

    async def send_message(self, chat_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", "/messages", json={"chatId": chat_id, "payload": payload})
        return data or {}

    async def group_metadata(self, chat_id: str) -> GroupMetadata:
        data = await self._request("GET", f"/groups/{quote(chat_id, safe='')}/metadata")
        return GroupMetadata.model_validate(data or {})

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {}
        if self.settings.api_token:
            headers["Authorization"] = f"Bearer {self.settings.api_token.get_secret_value()}"
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.settings.request_timeout_seconds,
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if not response.content:
            return None
        return response.json()


def message_id(sent: Any) -> str | None:
    if isinstance(sent, dict):
        return (sent.get("key") or {}).get("id")
    return None


async def send_with_status(transport: Transport, chat_id: str, payload: dict[str, Any]) -> Any:
    """Send with retry; failures are logged and reported as ``None``."""

    async def _send():
        return await transport.send_message(chat_id, payload)

    try:
        sent = await retry_async(
            _send,
            max_attempts=SEND_MAX_ATTEMPTS,
            base_delay=SEND_BASE_DELAY,
            retry_on=(TransportError,),
            logger=logger,
            operation_name="transport_send_message",
        )
    except Exception as exc:
        logger.error("message_send_failed", chat_id=chat_id, status="failed", error=str(exc))
        return None
    logger.debug("message_status", message_id=message_id(sent), status="sent")
    return sent


async def reply_text(transport: Transport, chat_id: str, text: str) -> Any:
    return await send_with_status(transport, chat_id, {"text": text})


async def reply_image(
    transport: Transport, chat_id: str, caption: str, image: str | dict[str, Any]
) -> Any:
    source = {"url": image} if isinstance(image, str) else image
    return await send_with_status(transport, chat_id, {"image": source, "caption": caption or ""})


async def safe_group_metadata(transport: Transport, chat_id: str) -> GroupMetadata | None:
    try:
        return await transport.group_metadata(chat_id)
    except Exception as exc:
        logger.warning("group_metadata_failed", chat_id=chat_id, error=str(exc))
        return None


__all__ = [
    "HttpBridgeTransport",
    "Transport",
    "message_id",
    "reply_image",
    "reply_text",
    "safe_group_metadata",
    "send_with_status",
]
