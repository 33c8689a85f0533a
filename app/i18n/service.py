"""File-based i18n helper with in-memory caching."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

LOCALES_PATH = Path(__file__).with_name("locales")


@lru_cache(maxsize=32)
def _load_locale(locales_path: Path, locale: str) -> dict[str, str]:
    file_path = locales_path / f"{locale}.json"
    if not file_path.exists():
        return {}
    with file_path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


class I18nService:
    def __init__(
        self,
        *,
        locales_path: str | Path | None = None,
        default_locale: str = "id",
        fallback_locale: str = "en",
    ) -> None:
        self.locales_path = Path(locales_path or LOCALES_PATH)
        self.default_locale = default_locale.lower()
        self.fallback_locale = fallback_locale.lower()

    def gettext(self, key: str, *, locale: str | None = None, **kwargs: Any) -> str:
        text = None
        for candidate in self._candidates(locale):
            text = _load_locale(self.locales_path, candidate).get(key)
            if text is not None:
                break
        if text is None:
            text = key
        return text.format(**kwargs) if kwargs else text

    def _candidates(self, locale: str | None) -> list[str]:
        requested = (locale or self.default_locale).lower()
        chain = [requested, requested.split("-")[0], self.default_locale, self.fallback_locale]
        return list(dict.fromkeys(chain))


__all__ = ["I18nService", "LOCALES_PATH"]
