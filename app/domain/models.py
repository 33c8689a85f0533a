"""Pydantic models shared across logic/application layers."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["owner", "admin", "user"]
Scope = Literal["group", "private"]
DenyReason = Literal["owner", "admin", "premium", "group-only", "private-only", "limit"]


class UsageRecord(BaseModel):
    used: int = 0
    last_at: datetime | None = None


class TotalUsage(BaseModel):
    used: int = 0


class UsageSnapshot(BaseModel):
    """State of every counter right before a reset."""

    features: dict[str, dict[str, UsageRecord]] = Field(default_factory=dict)
    totals: dict[str, int] = Field(default_factory=dict)


class ResetSummary(BaseModel):
    total_users: int
    total_hits: int


class LimitInfo(BaseModel):
    key: str
    quota: int
    used: int
    remaining: int
    cost: int


class Participant(BaseModel):
    id: str
    admin: str | None = None


class GroupMetadata(BaseModel):
    subject: str | None = None
    participants: list[Participant] = Field(default_factory=list)


class TelemetryEvent(BaseModel):
    type: Literal["denied", "run", "error"]
    user: str
    cmd: str
    role: Role
    scope: Scope
    reason: DenyReason | None = None
    remaining: int | None = None
    total_used: int | None = None
    total_remaining: int | None = None
    unlimited: bool | None = None
    error: str | None = None
    group_name: str | None = None
    file: str | None = None


__all__ = [
    "DenyReason",
    "GroupMetadata",
    "LimitInfo",
    "Participant",
    "ResetSummary",
    "Role",
    "Scope",
    "TelemetryEvent",
    "TotalUsage",
    "UsageRecord",
    "UsageSnapshot",
]
