"""Runtime configuration based on environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_IMAGE_URL = "https://i.imgur.com/0Z8FQhK.png"


class DatabaseSettings(BaseModel):
    dsn: str | None = Field(
        default=None,
        description="SQLAlchemy async DSN. Leave empty to keep usage in process memory.",
    )
    pool_size: int = Field(default=5, ge=1, le=50)
    max_overflow: int = Field(default=10, ge=0, le=100)
    echo: bool = False
    pool_recycle: int = Field(default=3600, ge=30)
    pool_pre_ping: bool = Field(default=True)

    @field_validator("dsn", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class BridgeSettings(BaseModel):
    base_url: AnyHttpUrl = Field(default="http://127.0.0.1:3000")
    api_token: SecretStr | None = None
    request_timeout_seconds: int = Field(default=15, ge=1, le=120)


class WebhookSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    secret: SecretStr | None = None


class ImageSettings(BaseModel):
    denied: str | None = None


class PluginSettings(BaseModel):
    directory: Path | None = Field(
        default=None,
        description="Extra plugin directory loaded after the built-in plugins.",
    )
    reload_interval_seconds: int = Field(default=10, ge=0)


class ResetSettings(BaseModel):
    realign_each_cycle: bool = Field(
        default=False,
        description="Recompute the delay to local midnight after every run instead of repeating every 24h.",
    )


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"
    log_format: Literal["json", "console"] = "json"
    default_language: str = "id"
    prefixes: list[str] = Field(default_factory=lambda: [".", "!"])

    owner_number: str | None = None
    owner_numbers: list[str] = Field(default_factory=list)
    owner_lid: str | None = None
    owner_lids: list[str] = Field(default_factory=list)

    default_limit_quota: int = Field(default=50, ge=0)
    default_reply_image: str | None = None
    images: ImageSettings = Field(default_factory=ImageSettings)
    timezone_offset_minutes: int = Field(default=420, ge=-720, le=840)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    plugins: PluginSettings = Field(default_factory=PluginSettings)
    reset: ResetSettings = Field(default_factory=ResetSettings)

    @field_validator("prefixes", mode="after")
    @classmethod
    def _default_prefixes(cls, value: list[str]) -> list[str]:
        cleaned = [str(item) for item in value if str(item)]
        return cleaned or [".", "!"]

    @property
    def denied_image_url(self) -> str:
        return self.images.denied or self.default_reply_image or DEFAULT_IMAGE_URL


@lru_cache
def get_settings() -> BotSettings:
    """Return cached settings instance."""

    return BotSettings()


__all__ = [
    "BotSettings",
    "BridgeSettings",
    "DatabaseSettings",
    "PluginSettings",
    "ResetSettings",
    "WebhookSettings",
    "DEFAULT_IMAGE_URL",
    "get_settings",
]
