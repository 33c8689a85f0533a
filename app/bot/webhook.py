"""HTTP endpoint receiving decoded message events from the transport bridge."""

from __future__ import annotations

import secrets
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request

from app.bot.pipeline import DispatchPipeline
from app.config import BotSettings
from app.logging import logger


def _extract_events(body: Any) -> list[dict[str, Any]]:
    if isinstance(body, list):
        return [event for event in body if isinstance(event, dict)]
    if isinstance(body, dict):
        messages = body.get("messages")
        if isinstance(messages, list):
            return [event for event in messages if isinstance(event, dict)]
        return [body]
    return []


def create_app(pipeline: DispatchPipeline, settings: BotSettings) -> FastAPI:
    app = FastAPI(title="dispatch-bot", docs_url=None, redoc_url=None)
    secret = settings.webhook.secret

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "plugins": len(pipeline.registry)}

    @app.post("/events")
    async def events(
        request: Request,
        x_webhook_secret: str | None = Header(default=None),
    ) -> dict[str, Any]:
        if secret is not None and not secrets.compare_digest(
            x_webhook_secret or "", secret.get_secret_value()
        ):
            raise HTTPException(status_code=401, detail="invalid webhook secret")
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="body must be JSON")

        handled = 0
        events = _extract_events(body)
        for event in events:
            if await pipeline.handle_message(event):
                handled += 1
        logger.debug("webhook_batch", received=len(events), handled=handled)
        return {"ok": True, "received": len(events), "handled": handled}

    return app


__all__ = ["create_app"]
