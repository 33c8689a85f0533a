"""Fire-and-forget dispatch telemetry."""

from __future__ import annotations

from app.domain.models import TelemetryEvent
from app.logging import logger
from app.services.ledger import AccountingStore


class Telemetry:
    def __init__(self, store: AccountingStore) -> None:
        self.store = store

    async def emit(self, event: TelemetryEvent) -> None:
        logger.info("dispatch_event", **event.model_dump(exclude_none=True))
        try:
            await self.store.log_event(event)
        except Exception as exc:
            logger.warning("telemetry_store_failed", event_type=event.type, error=str(exc))


__all__ = ["Telemetry"]
