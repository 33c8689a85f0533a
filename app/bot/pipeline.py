"""Inbound message dispatch: match one plugin, gate it, run it, account for it."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from app.bot.context import ContextBuilder, RequestContext
from app.bot.privilege import role_allowed
from app.bot.registry import PluginDescriptor, PluginRegistry
from app.bot.replies import denial_caption, failure_notice, usage_receipt
from app.config import BotSettings
from app.domain.models import DenyReason, LimitInfo, TelemetryEvent
from app.i18n import I18nService
from app.logging import logger
from app.services.ledger import AccountingStore
from app.services.telemetry import Telemetry


class DispatchPipeline:
    """Runs at most one plugin per message: the first enabled one whose matcher fires.

    Gates are evaluated in a fixed order (scope, role, registration, premium,
    quota) and the first failing gate ends processing for that message. Later
    plugins are never consulted once one has matched.
    """

    def __init__(
        self,
        *,
        registry: PluginRegistry,
        builder: ContextBuilder,
        store: AccountingStore,
        telemetry: Telemetry,
        settings: BotSettings,
        i18n: I18nService | None = None,
    ) -> None:
        self.registry = registry
        self.builder = builder
        self.store = store
        self.telemetry = telemetry
        self.settings = settings
        self.i18n = i18n or I18nService(default_locale=settings.default_language)

    @property
    def quota(self) -> int:
        return int(self.settings.default_limit_quota)

    async def handle_message(self, message: Mapping[str, Any] | None) -> bool:
        """Process one inbound event. Returns whether a plugin claimed it."""

        try:
            if not message or not message.get("message"):
                return False
            ctx = await self.builder.build(message)
            if ctx is None:
                logger.info("dispatch_sender_unresolved", chat_id=(message.get("key") or {}).get("remoteJid"))
                return False
            self._log_inbound(ctx)

            plugins = self.registry.snapshot()
            handled = await self._dispatch(ctx, plugins)
            if not handled and self._is_bare_prefix(ctx.text):
                await ctx.reply(self.i18n.gettext("prefix.bare"))
            return handled
        except Exception:
            logger.exception("dispatch_failed")
            return False

    async def _dispatch(self, ctx: RequestContext, plugins: Sequence[PluginDescriptor]) -> bool:
        for plugin in plugins:
            if not plugin.enabled:
                continue
            try:
                matched = await plugin.matches(ctx)
            except Exception as exc:
                logger.warning("plugin_matcher_failed", cmd=plugin.name, file=plugin.source_file, error=str(exc))
                continue
            if not matched:
                continue
            await self._run(ctx, plugin, plugins)
            return True
        return False

    async def _run(
        self,
        ctx: RequestContext,
        plugin: PluginDescriptor,
        plugins: Sequence[PluginDescriptor],
    ) -> None:
        key = plugin.name

        if plugin.scope == "group" and not ctx.is_group:
            await self._deny(ctx, key, "group-only")
            return
        if plugin.scope == "private" and ctx.is_group:
            await self._deny(ctx, key, "private-only")
            return

        if not role_allowed(plugin.role, ctx.role):
            await self._deny(ctx, key, "owner" if plugin.role == "owner" else "admin")
            return

        if plugin.register and not ctx.unlimited:
            try:
                registered = await self.store.is_registered(ctx.sender)
            except Exception as exc:
                await self._gate_failed(ctx, plugin, "registration", exc)
                return
            if not registered:
                await ctx.reply(
                    self.i18n.gettext("register.required", prefix=self.settings.prefixes[0])
                )
                return

        if plugin.premium and not ctx.premium:
            await self._deny(ctx, key, "premium")
            return

        quota = self.quota
        cost = plugin.charge
        charged = not (plugin.nolimit or ctx.unlimited)
        used_after, remaining_after = 0, quota
        if charged:
            try:
                after = await self.store.charge(ctx.sender, key, cost, quota)
            except Exception as exc:
                await self._gate_failed(ctx, plugin, "quota", exc)
                return
            if after is None:
                await self._deny(ctx, key, "limit")
                return
            used_after = after.used
            remaining_after = max(0, quota - used_after)

        limit = LimitInfo(key=key, quota=quota, used=used_after, remaining=remaining_after, cost=cost)
        try:
            await plugin(ctx.extend(registry=tuple(plugins), limit=limit))
        except Exception as exc:
            logger.exception("plugin_failed", cmd=key, file=plugin.source_file)
            await self._report_failure(ctx, plugin, exc)
            return

        if charged:
            await ctx.reply(usage_receipt(used_after, remaining_after, self.i18n))
        await self.telemetry.emit(
            TelemetryEvent(
                type="run",
                user=ctx.sender,
                cmd=key,
                role=ctx.role,
                total_used=used_after,
                total_remaining=remaining_after,
                unlimited=ctx.unlimited,
                scope=ctx.scope,
                group_name=ctx.group_name,
                file=plugin.source_file,
            )
        )

    async def _deny(self, ctx: RequestContext, key: str, reason: DenyReason) -> None:
        remaining = None
        used = await self._current_usage(ctx.sender)
        if used is not None:
            remaining = max(0, self.quota - used)
        await ctx.reply_image(denial_caption(reason, self.i18n))
        await self.telemetry.emit(
            TelemetryEvent(
                type="denied",
                user=ctx.sender,
                cmd=key,
                reason=reason,
                role=ctx.role,
                remaining=remaining,
                scope=ctx.scope,
                group_name=ctx.group_name,
            )
        )

    async def _gate_failed(
        self, ctx: RequestContext, plugin: PluginDescriptor, gate: str, exc: Exception
    ) -> None:
        logger.warning(
            "dispatch_gate_failed",
            cmd=plugin.name,
            gate=gate,
            sender=ctx.sender,
            error=str(exc),
        )
        await self._report_failure(ctx, plugin, exc)

    async def _report_failure(
        self, ctx: RequestContext, plugin: PluginDescriptor, exc: Exception
    ) -> None:
        used = await self._current_usage(ctx.sender)
        await ctx.reply(
            failure_notice(
                self.i18n,
                group_name=ctx.group_name,
                unlimited=ctx.unlimited,
                used=used or 0,
                quota=self.quota,
            )
        )
        await self.telemetry.emit(
            TelemetryEvent(
                type="error",
                user=ctx.sender,
                cmd=plugin.name,
                role=ctx.role,
                error=str(exc) or exc.__class__.__name__,
                unlimited=ctx.unlimited,
                scope=ctx.scope,
                group_name=ctx.group_name,
                file=plugin.source_file,
            )
        )

    async def _current_usage(self, sender: str) -> int | None:
        try:
            return (await self.store.get_total(sender)).used
        except Exception as exc:
            logger.warning("usage_lookup_failed", sender=sender, error=str(exc))
            return None

    def _is_bare_prefix(self, text: str) -> bool:
        return bool(text) and text.strip() in self.settings.prefixes

    @staticmethod
    def _log_inbound(ctx: RequestContext) -> None:
        logger.info(
            "dispatch_inbound",
            chat_id=ctx.chat_id,
            sender=ctx.sender,
            scope=(ctx.group_name or "Group") if ctx.is_group else "Private",
            role=ctx.role.upper(),
            text=ctx.text,
        )


__all__ = ["DispatchPipeline"]
