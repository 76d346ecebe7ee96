"""Environment backed runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_DB_PATH = "topic_relay.db"
DEFAULT_WEBHOOK_PATH = "/webhook"


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""


@dataclass(slots=True)
class AppConfig:
    bot_token: str
    secret_token: str | None = None
    db_path: Path = Path(DEFAULT_DB_PATH)
    log_level: str = "INFO"
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 8080
    webhook_path: str = DEFAULT_WEBHOOK_PATH

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        token = (env.get("BOT_TOKEN") or "").strip()
        if not token:
            raise ConfigError("BOT_TOKEN is not set")
        raw_port = env.get("WEBHOOK_PORT") or "8080"
        try:
            port = int(raw_port)
        except ValueError as exc:
            raise ConfigError(f"WEBHOOK_PORT must be an integer, got {raw_port!r}") from exc
        path = env.get("WEBHOOK_PATH") or DEFAULT_WEBHOOK_PATH
        if not path.startswith("/"):
            path = f"/{path}"
        return cls(
            bot_token=token,
            secret_token=(env.get("SECRET_TOKEN") or "").strip() or None,
            db_path=Path(env.get("DB_PATH") or DEFAULT_DB_PATH),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            webhook_host=env.get("WEBHOOK_HOST") or "0.0.0.0",
            webhook_port=port,
            webhook_path=path,
        )
