"""Sender and chat-scope resolution for raw inbound message events."""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Any, Callable, Mapping, Optional

GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"
LID_SUFFIX = "@lid"

ENVELOPE_KINDS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
)

CONTEXT_INFO_SOURCES = (
    "extendedTextMessage",
    "imageMessage",
    "videoMessage",
    "buttonsMessage",
    "listResponseMessage",
    "templateButtonReplyMessage",
    "interactiveResponseMessage",
    "templateMessage",
)

_NON_DIGIT_RE = re.compile(r"\D")

LidMapping = Callable[[str], Optional[str]]


def _is_unknown_envelope(key: str, value: Any) -> bool:
    return (
        key.endswith("Message")
        and key not in ENVELOPE_KINDS
        and isinstance(value, Mapping)
        and isinstance(value.get("message"), Mapping)
    )


def unwrap(content: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return the innermost content of a possibly wrapped message.

    Known wrappers are peeled until plain content remains. Content that still
    looks like a wrapper of an unrecognized kind yields an empty mapping.
    """

    current: Any = content
    while isinstance(current, Mapping):
        for kind in ENVELOPE_KINDS:
            wrapper = current.get(kind)
            if wrapper:
                current = wrapper.get("message") if isinstance(wrapper, Mapping) else None
                break
        else:
            if any(_is_unknown_envelope(key, value) for key, value in current.items()):
                return {}
            return dict(current)
    return {}


def get_body(event: Mapping[str, Any] | None) -> str:
    msg = unwrap((event or {}).get("message") or {})
    candidates = (
        msg.get("conversation"),
        (msg.get("extendedTextMessage") or {}).get("text"),
        (msg.get("imageMessage") or {}).get("caption"),
        (msg.get("videoMessage") or {}).get("caption"),
        (msg.get("documentMessage") or {}).get("caption"),
    )
    for candidate in candidates:
        if candidate:
            return str(candidate).strip()
    return ""


def _context_info(msg: Mapping[str, Any]) -> Mapping[str, Any] | None:
    for source in CONTEXT_INFO_SOURCES:
        info = (msg.get(source) or {}).get("contextInfo")
        if info:
            return info
    return msg.get("messageContextInfo") or None


def get_sender_jid(
    event: Mapping[str, Any] | None,
    lid_mapping: LidMapping | None = None,
) -> str | None:
    """Resolve the sender of an event in the canonical user namespace."""

    event = event or {}
    key = event.get("key") or {}
    jid = key.get("participant")
    if not jid:
        info = _context_info(unwrap(event.get("message") or {}))
        jid = (info or {}).get("participant") or key.get("remoteJid")
    if jid and jid.endswith(LID_SUFFIX):
        jid = normalize_lid(jid, lid_mapping)
    return jid or None


def normalize_lid(jid: str, lid_mapping: LidMapping | None = None) -> str:
    if lid_mapping is not None:
        mapped = lid_mapping(jid)
        if mapped:
            return mapped
    return jid[: -len(LID_SUFFIX)] + USER_SUFFIX


def is_group(jid: str | None) -> bool:
    return isinstance(jid, str) and jid.endswith(GROUP_SUFFIX)


def normalize_number(value: Any) -> str:
    """Digit-only identity key for a JID, LID or plain phone number."""

    if not value:
        return ""
    left = str(value).split("@")[0].split(":")[0]
    return _NON_DIGIT_RE.sub("", left)


def user_jid(number: str) -> str:
    return f"{normalize_number(number)}{USER_SUFFIX}"


class LidDirectory:
    """Alternate-ID to phone JID mappings learned from inbound event keys.

    The bridge reports the phone-number form of a ``@lid`` sender next to it on
    the message key (``participantPn``/``senderPn``, or ``participantAlt``/
    ``remoteJidAlt`` on newer bridges). Instances are callable and can be passed
    wherever a :data:`LidMapping` is expected.
    """

    ALTERNATE_FIELDS = (
        ("participant", "participantPn"),
        ("participant", "participantAlt"),
        ("remoteJid", "senderPn"),
        ("remoteJid", "remoteJidAlt"),
    )

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, str] = OrderedDict()

    def learn(self, lid: str | None, jid: str | None) -> bool:
        if not lid or not jid or not lid.endswith(LID_SUFFIX) or jid.endswith(LID_SUFFIX):
            return False
        key, number = normalize_number(lid), normalize_number(jid)
        if not key or not number:
            return False
        self._entries[key] = f"{number}{USER_SUFFIX}"
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return True

    def observe(self, event: Mapping[str, Any] | None) -> None:
        key = (event or {}).get("key") or {}
        for id_field, alternate_field in self.ALTERNATE_FIELDS:
            self.learn(key.get(id_field), key.get(alternate_field))

    def __call__(self, jid: str) -> Optional[str]:
        return self._entries.get(normalize_number(jid))

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "CONTEXT_INFO_SOURCES",
    "ENVELOPE_KINDS",
    "GROUP_SUFFIX",
    "LidDirectory",
    "LidMapping",
    "get_body",
    "get_sender_jid",
    "is_group",
    "normalize_lid",
    "normalize_number",
    "unwrap",
    "user_jid",
]
