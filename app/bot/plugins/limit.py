"""Show the sender's global usage and per-feature breakdown."""

from __future__ import annotations

from app.bot.registry import command, prefixed
from app.i18n import I18nService

i18n = I18nService()


@command(prefixed("limit", "ceklimit"), key="limit", nolimit=True)
async def limit(ctx):
    locale = ctx.settings.default_language
    if ctx.unlimited:
        await ctx.reply(i18n.gettext("usage.unlimited", locale=locale))
        return

    quota = ctx.limit.quota if ctx.limit else ctx.settings.default_limit_quota
    total = await ctx.store.get_total(ctx.sender)
    lines = [
        i18n.gettext(
            "usage.summary",
            locale=locale,
            used=total.used,
            quota=quota,
            remaining=max(0, quota - total.used),
        )
    ]
    features = await ctx.store.get_all(ctx.sender)
    for feature, record in sorted(features.items()):
        lines.append(
            i18n.gettext("usage.feature_line", locale=locale, feature=feature, used=record.used)
        )
    await ctx.reply("\n".join(lines))
