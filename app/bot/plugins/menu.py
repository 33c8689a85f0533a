"""Command list filtered by what the sender is allowed to run."""

from __future__ import annotations

from app.bot.privilege import role_allowed
from app.bot.registry import command, prefixed
from app.i18n import I18nService

i18n = I18nService()


def _flags(descriptor) -> str:
    flags = []
    if descriptor.premium:
        flags.append("premium")
    if descriptor.scope != "all":
        flags.append(descriptor.scope)
    if not descriptor.nolimit and descriptor.charge > 1:
        flags.append(f"cost {descriptor.charge}")
    return f" ({', '.join(flags)})" if flags else ""


@command(prefixed("menu", "help"), key="menu", register=False, nolimit=True)
async def menu(ctx):
    """List the commands the sender is allowed to run."""

    locale = ctx.settings.default_language
    lines = [i18n.gettext("menu.title", locale=locale)]
    for descriptor in ctx.registry:
        if not descriptor.enabled or not role_allowed(descriptor.role, ctx.role):
            continue
        lines.append(
            i18n.gettext("menu.line", locale=locale, key=descriptor.name, flags=_flags(descriptor))
        )
    await ctx.reply("\n".join(lines))
