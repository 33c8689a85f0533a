"""Owner/admin/user classification."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from app.bot.identity import is_group, normalize_number
from app.config import BotSettings
from app.domain.models import GroupMetadata, Role

_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(frozen=True)
class Privilege:
    role: Role
    premium: bool
    unlimited: bool


class OwnerSet:
    """Owner identities configured as phone numbers and as alternate IDs."""

    def __init__(self, phones: Iterable[str] = (), lids: Iterable[str] = ()) -> None:
        self.phones = tuple(dict.fromkeys(key for key in map(normalize_number, phones) if key))
        self.lids = tuple(
            dict.fromkeys(key for key in (_NON_DIGIT_RE.sub("", str(lid)) for lid in lids) if key)
        )
        self._keys = frozenset(self.phones) | frozenset(self.lids)

    @classmethod
    def from_settings(cls, settings: BotSettings) -> "OwnerSet":
        phones = [settings.owner_number, *settings.owner_numbers]
        lids = [settings.owner_lid, *settings.owner_lids]
        return cls(
            phones=[phone for phone in phones if phone],
            lids=[lid for lid in lids if lid],
        )

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    def __contains__(self, jid_or_number: object) -> bool:
        key = normalize_number(jid_or_number)
        return bool(key) and key in self._keys

    def __bool__(self) -> bool:
        return bool(self._keys)


def is_group_admin(metadata: GroupMetadata | None, sender: str) -> bool:
    if metadata is None:
        return False
    sender_key = normalize_number(sender)
    return any(
        participant.admin and normalize_number(participant.id) == sender_key
        for participant in metadata.participants
    )


class PrivilegeClassifier:
    def __init__(self, owners: OwnerSet) -> None:
        self.owners = owners

    def is_owner(self, sender: str | None) -> bool:
        return sender in self.owners

    def classify(
        self,
        sender: str,
        chat_id: str | None,
        metadata: GroupMetadata | None,
        *,
        premium: bool,
    ) -> Privilege:
        """Resolve the role for ``sender``; a missing group lookup means plain user."""

        owner = self.is_owner(sender)
        if owner:
            role: Role = "owner"
        elif is_group(chat_id) and is_group_admin(metadata, sender):
            role = "admin"
        else:
            role = "user"
        return Privilege(role=role, premium=premium, unlimited=owner or premium)


def role_allowed(required: object, role: Role) -> bool:
    if not required or required in ("all", "user"):
        return True
    if required == "admin":
        return role in ("admin", "owner")
    if required == "owner":
        return role == "owner"
    if isinstance(required, (list, tuple, set, frozenset)):
        return role in required
    return False


__all__ = [
    "OwnerSet",
    "Privilege",
    "PrivilegeClassifier",
    "is_group_admin",
    "role_allowed",
]
