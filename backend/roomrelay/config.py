"""Room Relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml  — non-secret configuration (the relay has no secrets)

The file location can be overridden with ``RELAY_SETTINGS_FILE``. A missing
file is not an error; every field has a default matching the public limits of
the relay protocol (2 participants, 100 messages of history, 32 character
names, 2000 character messages).
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "RELAY_SETTINGS_FILE"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    reload:          bool      = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class RoomSettings(BaseModel):
    max_participants: int = Field(default=2, ge=1)
    history_limit:    int = Field(default=100, ge=1)
    max_name_length:  int = Field(default=32, ge=1)
    max_text_length:  int = Field(default=2000, ge=1)
    default_room:     str = "default"
    default_name:     str = "Anonymous"


class ConnectionSettings(BaseModel):
    """Per-connection delivery settings.

    ``idle_timeout_seconds`` of 0 disables the idle policy: ping/pong is then
    only an application-level liveness signal and nobody is disconnected for
    being quiet.
    """
    outbound_queue_size:  int   = Field(default=256, ge=1)
    idle_timeout_seconds: float = Field(default=0.0, ge=0)


class LoggingSettings(BaseModel):
    level: str = "info"


class StaticSettings(BaseModel):
    """Static web client served next to the WebSocket endpoint."""
    enabled:   bool = True
    directory: str  = "public"


class AppSettings(BaseModel):
    server:     ServerSettings     = Field(default_factory=ServerSettings)
    rooms:      RoomSettings       = Field(default_factory=RoomSettings)
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    logging:    LoggingSettings    = Field(default_factory=LoggingSettings)
    static:     StaticSettings     = Field(default_factory=StaticSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_settings_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.getenv(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path)
    return SETTINGS_FILE


def load_settings(path: Optional[Union[str, Path]] = None) -> AppSettings:
    """Load settings from YAML into a single *AppSettings* object.

    The ``PORT`` environment variable, when set, wins over ``server.port``.
    """
    settings_data = _load_yaml(_resolve_settings_path(path))

    env_port = os.getenv("PORT")
    if env_port:
        server_data = dict(settings_data.get("server") or {})
        server_data["port"] = int(env_port)
        settings_data["server"] = server_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, max_participants=%d, history_limit=%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.rooms.max_participants,
        app_settings.rooms.history_limit,
    )
    return app_settings


@lru_cache
def get_config() -> AppSettings:
    """Return the process-wide settings (parsed once)."""
    return load_settings()
