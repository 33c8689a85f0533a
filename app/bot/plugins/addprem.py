"""Owner command granting premium by phone number or alternate ID."""

from __future__ import annotations

from app.bot.registry import command, prefixed, split_command
from app.i18n import I18nService

i18n = I18nService()


@command(prefixed("addprem"), key="addprem", role="owner", nolimit=True)
async def addprem(ctx):
    locale = ctx.settings.default_language
    prefix = ctx.settings.prefixes[0]
    _, args = split_command(ctx.text, ctx.settings.prefixes) or ("", "")
    parts = args.split()
    if not parts:
        await ctx.reply(i18n.gettext("premium.usage", locale=locale, prefix=prefix))
        return

    if parts[0].lower() == "lid" and len(parts) > 1:
        target = parts[1]
        added = await ctx.store.add_premium_by_lid(target)
    else:
        target = parts[0]
        added = await ctx.store.add_premium_by_number(target)

    if not added:
        await ctx.reply(i18n.gettext("premium.invalid", locale=locale))
        return
    await ctx.reply(i18n.gettext("premium.added", locale=locale, target=target))
