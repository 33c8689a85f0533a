"""Command plugin descriptors, discovery and the hot-swappable registry."""

from __future__ import annotations

import asyncio
import contextlib
import importlib.util
import inspect
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Iterator, Literal, Sequence, Union

from app.logging import logger
from app.services.exceptions import PluginLoadError

if TYPE_CHECKING:
    from app.bot.context import RequestContext

BUILTIN_PLUGINS_PATH = Path(__file__).with_name("plugins")

Matcher = Union["re.Pattern[str]", Callable[["RequestContext"], Union[bool, Awaitable[bool]]]]
Handler = Callable[["RequestContext"], Any]
ScopeRequirement = Literal["all", "group", "private"]


@dataclass
class PluginDescriptor:
    handler: Handler
    command: Matcher
    key: str | None = None
    scope: ScopeRequirement = "all"
    role: str | Sequence[str] = "all"
    register: bool = True
    premium: bool = False
    nolimit: bool = False
    cost: int = 1
    enabled: bool = True
    help: str | None = None
    source_file: str | None = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return self.key or self.source_file or "default"

    @property
    def charge(self) -> int:
        try:
            return max(1, int(self.cost or 1))
        except (TypeError, ValueError):
            return 1

    async def matches(self, ctx: "RequestContext") -> bool:
        if isinstance(self.command, re.Pattern):
            return self.command.search(ctx.text) is not None
        result = self.command(ctx)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def __call__(self, ctx: "RequestContext") -> Any:
        result = self.handler(ctx)
        if inspect.isawaitable(result):
            result = await result
        return result


def command(
    matcher: Matcher | str,
    *,
    key: str | None = None,
    scope: ScopeRequirement = "all",
    role: str | Sequence[str] = "all",
    register: bool = True,
    premium: bool = False,
    nolimit: bool = False,
    cost: int = 1,
    enabled: bool = True,
    help: str | None = None,
) -> Callable[[Handler], PluginDescriptor]:
    """Turn a handler into a :class:`PluginDescriptor`.

    ``matcher`` is a regex (searched against the message text) or a predicate
    receiving the request context.
    """

    if isinstance(matcher, str):
        matcher = re.compile(matcher)
    if not isinstance(matcher, re.Pattern) and not callable(matcher):
        raise PluginLoadError("command must be a regex or a callable(ctx)")
    if scope not in ("all", "group", "private"):
        raise PluginLoadError(f"unknown scope {scope!r}")

    def decorator(handler: Handler) -> PluginDescriptor:
        return PluginDescriptor(
            handler=handler,
            command=matcher,
            key=key or handler.__name__,
            scope=scope,
            role=role,
            register=register,
            premium=premium,
            nolimit=nolimit,
            cost=cost,
            enabled=enabled,
            help=help or inspect.getdoc(handler),
        )

    return decorator


def split_command(text: str, prefixes: Iterable[str]) -> tuple[str, str] | None:
    """Return ``(name, args)`` when ``text`` starts with one of ``prefixes``."""

    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            body = text[len(prefix):].strip()
            if not body:
                return None
            name, _, args = body.partition(" ")
            return name.lower(), args.strip()
    return None


def prefixed(*names: str) -> Callable[["RequestContext"], bool]:
    """Predicate matching ``<prefix><name>`` for any configured prefix."""

    wanted = {name.lower() for name in names}

    def predicate(ctx: "RequestContext") -> bool:
        parsed = split_command(ctx.text, ctx.settings.prefixes)
        return parsed is not None and parsed[0] in wanted

    return predicate


class PluginRegistry:
    """Ordered, immutable snapshot of descriptors swapped as a whole on reload."""

    def __init__(self, descriptors: Iterable[PluginDescriptor] = ()) -> None:
        self._snapshot: tuple[PluginDescriptor, ...] = tuple(descriptors)

    def snapshot(self) -> tuple[PluginDescriptor, ...]:
        return self._snapshot

    def replace(self, descriptors: Iterable[PluginDescriptor]) -> None:
        self._snapshot = tuple(descriptors)

    def __iter__(self) -> Iterator[PluginDescriptor]:
        return iter(self._snapshot)

    def __len__(self) -> int:
        return len(self._snapshot)


def plugin_files(directories: Iterable[Path]) -> list[Path]:
    files: list[Path] = []
    for directory in directories:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        files.extend(
            path for path in sorted(directory.glob("*.py")) if not path.name.startswith("_")
        )
    return files


def load_plugin_file(path: Path) -> list[PluginDescriptor]:
    module_name = f"bot_plugins.{path.parent.name}.{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        sys.modules.pop(module_name, None)
        raise

    descriptors: list[PluginDescriptor] = []
    for value in vars(module).values():
        if isinstance(value, PluginDescriptor) and value not in descriptors:
            value.source_file = path.name
            descriptors.append(value)
    if not descriptors:
        raise PluginLoadError(f"{path.name} defines no @command handlers")
    return descriptors


def load_plugins(directories: Iterable[Path]) -> list[PluginDescriptor]:
    loaded: list[PluginDescriptor] = []
    for path in plugin_files(directories):
        try:
            loaded.extend(load_plugin_file(path))
        except Exception as exc:
            logger.warning("plugin_skipped", file=path.name, error=str(exc))
    logger.info(
        "plugins_loaded",
        count=len(loaded),
        keys=[descriptor.name for descriptor in loaded],
    )
    return loaded


class PluginReloader:
    """Polls plugin directories and swaps the registry when files change."""

    def __init__(
        self,
        registry: PluginRegistry,
        directories: Sequence[Path],
        *,
        interval_seconds: float = 10,
    ) -> None:
        self.registry = registry
        self.directories = [Path(directory) for directory in directories]
        self.interval_seconds = interval_seconds
        self._signature: tuple[tuple[str, int], ...] | None = None
        self._task: asyncio.Task | None = None

    def signature(self) -> tuple[tuple[str, int], ...]:
        return tuple(
            (str(path), path.stat().st_mtime_ns) for path in plugin_files(self.directories)
        )

    def reload(self) -> None:
        self._signature = self.signature()
        self.registry.replace(load_plugins(self.directories))

    def reload_if_changed(self) -> bool:
        if self.signature() == self._signature:
            return False
        logger.info("plugins_changed", directories=[str(d) for d in self.directories])
        self.reload()
        return True

    def start(self) -> None:
        if self._task is None and self.interval_seconds > 0:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.reload_if_changed()
            except Exception:
                logger.exception("plugin_reload_failed")


__all__ = [
    "BUILTIN_PLUGINS_PATH",
    "PluginDescriptor",
    "PluginRegistry",
    "PluginReloader",
    "command",
    "load_plugin_file",
    "load_plugins",
    "plugin_files",
    "prefixed",
    "split_command",
]
