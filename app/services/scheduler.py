"""Daily usage reset at local midnight with an operator report."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from typing import Callable, Sequence

from app.bot.identity import user_jid
from app.bot.transport import Transport
from app.config import BotSettings
from app.domain.models import ResetSummary
from app.i18n import I18nService
from app.logging import logger
from app.services.ledger import AccountingStore
from app.utils.datetime import (
    format_uptime,
    local_date_parts,
    process_uptime,
    seconds_until_local_midnight,
    utc_now,
)

RESET_PERIOD_SECONDS = 24 * 60 * 60


class DailyResetJob:
    """Clears the ledger once per local day and reports the result to owners.

    The first run is aligned to the next local midnight for the configured UTC
    offset. Later runs repeat every 24 hours unless ``realign_each_cycle`` is
    set, in which case the delay to midnight is recomputed after every run.
    """

    def __init__(
        self,
        store: AccountingStore,
        transport: Transport,
        settings: BotSettings,
        *,
        owner_numbers: Sequence[str] = (),
        i18n: I18nService | None = None,
        clock: Callable[[], datetime] = utc_now,
        uptime: Callable[[], float] = process_uptime,
    ) -> None:
        self.store = store
        self.transport = transport
        self.settings = settings
        self.owner_numbers = tuple(owner_numbers)
        self.i18n = i18n or I18nService(default_locale=settings.default_language)
        self.clock = clock
        self.uptime = uptime
        self._task: asyncio.Task | None = None

    @property
    def offset_minutes(self) -> int:
        return int(self.settings.timezone_offset_minutes)

    def first_delay(self) -> float:
        return seconds_until_local_midnight(self.offset_minutes, self.clock())

    def next_delay(self) -> float:
        if self.settings.reset.realign_each_cycle:
            return self.first_delay()
        return RESET_PERIOD_SECONDS

    async def run_once(self) -> ResetSummary:
        snapshot = await self.store.reset_all()
        summary = self.store.make_summary(snapshot)
        logger.info(
            "usage_reset",
            backend=self.store.name,
            total_users=summary.total_users,
            total_hits=summary.total_hits,
        )
        await self._notify_owners(self.build_report(summary))
        return summary

    def build_report(self, summary: ResetSummary) -> str:
        date, time = local_date_parts(self.offset_minutes, self.clock())
        header = self.i18n.gettext(
            "reset.header",
            uptime=format_uptime(self.uptime()),
            date=date,
            time=time,
            prefixes=" ".join(self.settings.prefixes),
        )
        body_key = "reset.done_memory" if self.store.name == "memory" else "reset.done"
        body = self.i18n.gettext(body_key, users=summary.total_users, hits=summary.total_hits)
        return f"{header}\n\n{body}"

    async def _notify_owners(self, text: str) -> None:
        for number in self.owner_numbers:
            jid = user_jid(number)
            try:
                await self.transport.send_message(jid, {"text": text})
            except Exception as exc:
                logger.warning("reset_report_failed", recipient=jid, error=str(exc))

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        delay = self.first_delay()
        logger.info("usage_reset_scheduled", delay_seconds=round(delay, 3), offset_minutes=self.offset_minutes)
        while True:
            await asyncio.sleep(delay)
            try:
                await self.run_once()
            except Exception:
                logger.exception("usage_reset_failed")
            delay = self.next_delay()


__all__ = ["DailyResetJob", "RESET_PERIOD_SECONDS"]
