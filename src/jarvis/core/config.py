"""Jarvis configuration: Pydantic model and TOML + environment loading."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from jarvis.core.constants import (
    BASE_RECONNECT_DELAY_MS,
    CONFIG_FILENAME,
    CONNECT_RETRIES,
    CONNECT_RETRY_DELAY_MS,
    DEFAULT_RELAY_URL,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_SOURCE,
    HEARTBEAT_INTERVAL_SECONDS,
    JARVIS_DIR_NAME,
    MAX_RECONNECT_ATTEMPTS,
)
from jarvis.core.exceptions import ConfigError, ConfigNotFoundError


def jarvis_dir() -> Path:
    """Return the Jarvis config directory (~/.jarvis). Not created on read."""
    return Path.home() / JARVIS_DIR_NAME


def derive_ws_url(http_url: str) -> str:
    """Map an HTTP(S) relay URL to its WebSocket counterpart (http→ws, https→wss)."""
    return re.sub(r"^http", "ws", http_url)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class RelayConfig(BaseModel):
    """Agent-side view of the relay: where to push and how hard to retry."""

    url: str = DEFAULT_RELAY_URL
    ws_url: str | None = None
    source: str = DEFAULT_SOURCE
    connect_retries: int = Field(default=CONNECT_RETRIES, ge=1)
    connect_delay_ms: int = Field(default=CONNECT_RETRY_DELAY_MS, ge=0)
    max_reconnect_attempts: int = Field(default=MAX_RECONNECT_ATTEMPTS, ge=0)
    base_reconnect_delay_ms: int = Field(default=BASE_RECONNECT_DELAY_MS, ge=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not re.match(r"^https?://", v):
            raise ValueError(f"Relay URL must start with http:// or https:// (got {v!r})")
        return v.rstrip("/")

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^wss?://", v):
            raise ValueError(f"Relay WebSocket URL must start with ws:// or wss:// (got {v!r})")
        return v

    @property
    def resolved_ws_url(self) -> str:
        return self.ws_url or derive_ws_url(self.url)


class ServerConfig(BaseModel):
    host: str = DEFAULT_SERVER_HOST
    port: int = Field(default=DEFAULT_SERVER_PORT, ge=0, le=65535)
    heartbeat_seconds: float = HEARTBEAT_INTERVAL_SECONDS


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {sorted(allowed)}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v.lower()


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class JarvisConfig(BaseModel):
    """Root Jarvis configuration model."""

    relay: RelayConfig = Field(default_factory=RelayConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("JARVIS_CONFIG"):
        return Path(env_path)
    return jarvis_dir() / CONFIG_FILENAME


def load_config(path: Path | None = None) -> JarvisConfig:
    """
    Load JarvisConfig from a TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (JARVIS_*, PORT)
      2. Config file ($JARVIS_CONFIG or ~/.jarvis/config.toml)
      3. Built-in defaults

    The default config file is optional. A path passed explicitly (or via
    $JARVIS_CONFIG) must exist.
    """
    import tomllib

    explicit = path is not None or "JARVIS_CONFIG" in os.environ
    cfg_path = path or _config_file_path()

    data: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            with open(cfg_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc
    elif explicit:
        raise ConfigNotFoundError(f"Config file not found: {cfg_path}")

    _apply_env_overrides(data)

    try:
        return JarvisConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid config ({cfg_path}): {exc}") from exc


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay JARVIS_* environment variables onto the parsed TOML data."""
    if url := os.environ.get("JARVIS_RELAY_URL"):
        data.setdefault("relay", {})["url"] = url
    if ws_url := os.environ.get("JARVIS_RELAY_WS_URL"):
        data.setdefault("relay", {})["ws_url"] = ws_url
    if source := os.environ.get("JARVIS_SOURCE"):
        data.setdefault("relay", {})["source"] = source
    if host := os.environ.get("JARVIS_HOST"):
        data.setdefault("server", {})["host"] = host
    # PORT is what hosting platforms set; JARVIS_PORT wins when both exist
    if port := os.environ.get("JARVIS_PORT") or os.environ.get("PORT"):
        data.setdefault("server", {})["port"] = port
    if heartbeat := os.environ.get("JARVIS_HEARTBEAT_SECONDS"):
        data.setdefault("server", {})["heartbeat_seconds"] = heartbeat
    if level := os.environ.get("JARVIS_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = level
