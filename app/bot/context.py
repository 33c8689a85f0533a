"""Per-message request context."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Mapping

from app.bot.identity import LidDirectory, get_body, get_sender_jid, is_group
from app.bot.privilege import PrivilegeClassifier
from app.bot.transport import Transport, reply_image, reply_text, safe_group_metadata
from app.config import BotSettings
from app.domain.models import LimitInfo, Role
from app.logging import logger
from app.services.ledger import AccountingStore


@dataclass(frozen=True)
class RequestContext:
    transport: Transport
    store: AccountingStore
    settings: BotSettings
    message: Mapping[str, Any]
    chat_id: str
    sender: str
    text: str
    role: Role
    is_group: bool
    premium: bool
    unlimited: bool
    group_name: str | None = None
    registry: tuple = field(default=(), repr=False)
    limit: LimitInfo | None = None

    @property
    def scope(self) -> str:
        return "group" if self.is_group else "private"

    async def reply(self, text: str) -> Any:
        return await reply_text(self.transport, self.chat_id, text)

    async def reply_image(self, caption: str, image: str | dict[str, Any] | None = None) -> Any:
        return await reply_image(
            self.transport, self.chat_id, caption, image or self.settings.denied_image_url
        )

    def extend(self, **changes: Any) -> "RequestContext":
        return dataclasses.replace(self, **changes)


class ContextBuilder:
    def __init__(
        self,
        transport: Transport,
        store: AccountingStore,
        classifier: PrivilegeClassifier,
        settings: BotSettings,
        *,
        lid_directory: LidDirectory | None = None,
    ) -> None:
        self.transport = transport
        self.store = store
        self.classifier = classifier
        self.settings = settings
        self.lid_directory = lid_directory if lid_directory is not None else LidDirectory()

    async def build(self, message: Mapping[str, Any]) -> RequestContext | None:
        """Return ``None`` when the sender cannot be determined."""

        chat_id = (message.get("key") or {}).get("remoteJid")
        self.lid_directory.observe(message)
        sender = get_sender_jid(message, self.lid_directory)
        if not chat_id or not sender:
            return None

        group = is_group(chat_id)
        metadata = await safe_group_metadata(self.transport, chat_id) if group else None
        try:
            premium = await self.store.is_premium(sender)
        except Exception as exc:
            logger.warning("premium_lookup_failed", sender=sender, error=str(exc))
            premium = False
        privilege = self.classifier.classify(sender, chat_id, metadata, premium=premium)

        return RequestContext(
            transport=self.transport,
            store=self.store,
            settings=self.settings,
            message=message,
            chat_id=chat_id,
            sender=sender,
            text=get_body(message),
            role=privilege.role,
            is_group=group,
            premium=privilege.premium,
            unlimited=privilege.unlimited,
            group_name=metadata.subject if metadata else None,
        )


__all__ = ["ContextBuilder", "RequestContext"]
