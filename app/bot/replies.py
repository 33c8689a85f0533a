"""User-facing denial captions, usage receipts and failure notices."""

from __future__ import annotations

from app.domain.models import DenyReason
from app.i18n import I18nService

DENY_REASONS: tuple[DenyReason, ...] = (
    "owner",
    "admin",
    "premium",
    "group-only",
    "private-only",
    "limit",
)


def denial_subtitle(reason: str, i18n: I18nService, *, locale: str | None = None) -> str:
    if reason in DENY_REASONS:
        return i18n.gettext(f"deny.{reason}", locale=locale)
    return i18n.gettext("deny.default", locale=locale)


def denial_caption(reason: str, i18n: I18nService, *, locale: str | None = None) -> str:
    title = i18n.gettext("deny.title", locale=locale)
    return f"{title}\n{denial_subtitle(reason, i18n, locale=locale)}"


def usage_receipt(used: int, remaining: int, i18n: I18nService, *, locale: str | None = None) -> str:
    return i18n.gettext("usage.receipt", locale=locale, used=used, remaining=remaining)


def failure_notice(
    i18n: I18nService,
    *,
    group_name: str | None,
    unlimited: bool,
    used: int,
    quota: int,
    locale: str | None = None,
) -> str:
    lines = [i18n.gettext("error.title", locale=locale)]
    if group_name:
        lines.append(i18n.gettext("error.group", locale=locale, group=group_name))
    if unlimited:
        lines.append(i18n.gettext("usage.unlimited", locale=locale))
    else:
        lines.append(i18n.gettext("error.usage", locale=locale, used=used, quota=quota))
    return "\n".join(lines)


__all__ = [
    "DENY_REASONS",
    "denial_caption",
    "denial_subtitle",
    "failure_notice",
    "usage_receipt",
]
