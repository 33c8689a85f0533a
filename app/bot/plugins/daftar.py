"""Onboarding: add the sender to the registration set."""

from __future__ import annotations

from app.bot.registry import command, prefixed
from app.i18n import I18nService

i18n = I18nService()


@command(prefixed("daftar", "register"), key="daftar", register=False, nolimit=True)
async def daftar(ctx):
    locale = ctx.settings.default_language
    if await ctx.store.is_registered(ctx.sender):
        await ctx.reply(i18n.gettext("register.already", locale=locale))
        return
    await ctx.store.register(ctx.sender)
    await ctx.reply(i18n.gettext("register.done", locale=locale))


@command(prefixed("unreg", "unregister"), key="unreg", nolimit=True)
async def unreg(ctx):
    locale = ctx.settings.default_language
    await ctx.store.unregister(ctx.sender)
    await ctx.reply(i18n.gettext("unregister.done", locale=locale))
