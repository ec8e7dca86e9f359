"""
Central configuration for the Flag Watch service.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from dotenv import dotenv_values
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

SERVER_ID_PREFIXES = ("FW_SERVER_ID", "server_id")


class Environment(str, Enum):
    DEV = "dev"
    PRODUCTION = "production"


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or invalid at startup."""


class MonitoredServer(BaseModel):
    """A game server being watched, fixed for the process lifetime."""

    model_config = ConfigDict(frozen=True)

    slot_number: int
    external_id: str

    @property
    def label(self) -> str:
        return f"Server #{self.slot_number}"


def collect_server_ids(environ: Mapping[str, Optional[str]] | None = None) -> list[MonitoredServer]:
    """
    Read indexed server IDs (server_id1, server_id2, ...) from the environment.
    Enumeration stops at the first missing index; slot numbers are the indices.
    """
    env = os.environ if environ is None else environ
    servers: list[MonitoredServer] = []
    index = 1
    while True:
        raw = None
        for prefix in SERVER_ID_PREFIXES:
            raw = env.get(f"{prefix}{index}")
            if raw:
                break
        if not raw or not raw.strip():
            break
        servers.append(MonitoredServer(slot_number=index, external_id=raw.strip()))
        index += 1
    return servers


EnvFiles = Union[Path, str, Sequence[Union[Path, str]], None]


class IndexedServerSource(PydanticBaseSettingsSource):
    """
    Settings source for the indexed server_id1..N entries.

    The process environment wins over the dotenv file(s), matching how the
    named fields are resolved.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        env_file: EnvFiles = None,
        env_file_encoding: Optional[str] = None,
    ) -> None:
        super().__init__(settings_cls)
        self._env_file = env_file
        self._encoding = env_file_encoding

    def _env_files(self) -> list[Path]:
        if self._env_file is None:
            return []
        if isinstance(self._env_file, (str, Path)):
            return [Path(self._env_file)]
        return [Path(p) for p in self._env_file]

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        merged: dict[str, Optional[str]] = {}
        for path in self._env_files():
            if path.is_file():
                merged.update(dotenv_values(path, encoding=self._encoding))
        merged.update(os.environ)

        servers = collect_server_ids(merged)
        return {"servers": servers} if servers else {}


class Settings(BaseSettings):
    """Root settings for the service."""

    model_config = SettingsConfigDict(
        env_prefix="FW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    log_level: str = "INFO"

    # ── Credentials ──────────────────────────────────────────
    bot_token: str = Field(validation_alias=AliasChoices("FW_BOT_TOKEN", "botToken"))
    webhook_url: str = Field(validation_alias=AliasChoices("FW_WEBHOOK_URL", "webhookUrl"))
    api_key: str = Field(validation_alias=AliasChoices("FW_API_KEY", "apiKey"))

    # ── Monitored servers ────────────────────────────────────
    servers: list[MonitoredServer] = Field(default_factory=list)

    # ── Health ───────────────────────────────────────────────
    port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "FW_PORT"))

    # ── Upstream API ─────────────────────────────────────────
    api_base_url: str = "https://api.battlemetrics.com"
    request_timeout_s: float = 10.0
    page_size: int = 100
    max_players_per_server: int = 100

    # ── Rate budget ──────────────────────────────────────────
    rate_limit_calls: int = Field(default=60, description="Max upstream calls per window")
    rate_limit_window_s: float = Field(default=60.0, description="Fixed window length in seconds")

    # ── Scheduler ────────────────────────────────────────────
    poll_interval_s: float = 60.0

    # ── Notifications ────────────────────────────────────────
    footer_text: str = "Powered by A7 Servers"
    fallback_avatar_url: str = "https://cdn.discordapp.com/embed/avatars/0.png"
    notify_timeout_s: float = 10.0

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # dotenv_settings already honours a per-call _env_file override
        indexed = IndexedServerSource(
            settings_cls,
            env_file=getattr(dotenv_settings, "env_file", None),
            env_file_encoding=getattr(dotenv_settings, "env_file_encoding", None),
        )
        return init_settings, env_settings, dotenv_settings, indexed, file_secret_settings

    @model_validator(mode="after")
    def require_credentials(self) -> "Settings":
        missing = [
            name
            for name in ("bot_token", "webhook_url", "api_key")
            if not getattr(self, name).strip()
        ]
        if missing:
            raise ValueError(f"empty required settings: {', '.join(missing)}")
        if not self.servers:
            raise ValueError("no monitored servers configured (server_id1 is required)")
        return self

    @property
    def api_key_safe_log(self) -> str:
        """API key with everything but the last 4 characters redacted, for logging only."""
        if len(self.api_key) <= 4:
            return "***"
        return "***" + self.api_key[-4:]


def load_settings(**overrides: Any) -> Settings:
    """Build settings, converting validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) or err["msg"] for err in exc.errors()})
        raise ConfigurationError(f"Missing or invalid configuration: {', '.join(fields)}") from exc

