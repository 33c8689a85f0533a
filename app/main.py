"""Application entrypoint."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import uvicorn

from app.bot.context import ContextBuilder
from app.bot.identity import LidDirectory
from app.bot.pipeline import DispatchPipeline
from app.bot.privilege import OwnerSet, PrivilegeClassifier
from app.bot.registry import BUILTIN_PLUGINS_PATH, PluginRegistry, PluginReloader
from app.bot.transport import HttpBridgeTransport
from app.bot.webhook import create_app
from app.config import BotSettings, get_settings
from app.db.session import Database
from app.logging import configure_logging, logger
from app.services.ledger import build_accounting_store
from app.services.scheduler import DailyResetJob
from app.services.telemetry import Telemetry


def plugin_directories(settings: BotSettings) -> list[Path]:
    directories = [BUILTIN_PLUGINS_PATH]
    if settings.plugins.directory:
        directories.append(Path(settings.plugins.directory))
    return directories


async def main() -> None:
    settings = get_settings()
    configure_logging(json_logs=settings.log_format == "json")

    database = Database(settings=settings) if settings.database.dsn else None
    if database is not None:
        await database.create_schema()
    store = build_accounting_store(settings, database)
    owners = OwnerSet.from_settings(settings)

    registry = PluginRegistry()
    reloader = PluginReloader(
        registry,
        plugin_directories(settings),
        interval_seconds=settings.plugins.reload_interval_seconds,
    )
    reloader.reload()

    async with httpx.AsyncClient() as http_client:
        transport = HttpBridgeTransport(http_client, settings.bridge)
        pipeline = DispatchPipeline(
            registry=registry,
            builder=ContextBuilder(
                transport,
                store,
                PrivilegeClassifier(owners),
                settings,
                lid_directory=LidDirectory(),
            ),
            store=store,
            telemetry=Telemetry(store),
            settings=settings,
        )
        reset_job = DailyResetJob(store, transport, settings, owner_numbers=owners.phones)

        server = uvicorn.Server(
            uvicorn.Config(
                create_app(pipeline, settings),
                host=settings.webhook.host,
                port=settings.webhook.port,
                log_config=None,
            )
        )
        reloader.start()
        reset_job.start()
        logger.info(
            "bot_starting",
            environment=settings.environment,
            backend=store.name,
            plugins=len(registry),
        )
        try:
            await server.serve()
        finally:
            await reset_job.stop()
            await reloader.stop()
            await store.close()
            if database is not None:
                await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
