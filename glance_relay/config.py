"""
Configuration

Environment-driven defaults, timing constants, provider endpoints and the
per-handler configuration schemas.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigInvalid

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in _TRUE_VALUES


# =============================================================================
# CONFIGURATION - Env overrides with sensible defaults
# =============================================================================

class Config:
    """Process-wide defaults. Everything here can be overridden from the CLI."""

    APP_DATA_DIR = Path(os.environ.get('GLANCE_RELAY_HOME', Path.home() / ".glance_relay"))
    DEFAULT_STORE_FILE = APP_DATA_DIR / "store.json"

    # Relay server
    RELAY_HOST = os.environ.get('GLANCE_RELAY_HOST', '127.0.0.1')
    RELAY_PORT = int(os.environ.get('GLANCE_RELAY_PORT', '8000'))
    RELAY_PASSWORD = os.environ.get('GLANCE_RELAY_PASSWORD') or None
    LYRICS_ENABLED = _env_flag('GLANCE_RELAY_LYRICS', '1')
    LOG_LEVEL = os.environ.get('GLANCE_RELAY_LOG_LEVEL', 'INFO').upper()
    DEFAULT_HANDLER = os.environ.get('GLANCE_RELAY_HANDLER', 'spotify')

    # Cache lifetimes (ms)
    LYRICS_CACHE_TTL_MS = 24 * 60 * 60 * 1000
    IMAGE_CACHE_TTL_MS = 7 * 24 * 60 * 60 * 1000
    CACHE_MAINTENANCE_INTERVAL = 60 * 60.0

    # Relay liveness (seconds)
    HEARTBEAT_INTERVAL = 5.0
    MAX_MISSED_PONGS = 3
    RECONNECT_DELAY = 1.0
    REFRESH_INTERVAL = 10.0

    # Local playback clock
    TICK_INTERVAL = 1.0
    TICK_MS = 1000

    # Provider push channel
    DEALER_PING_INTERVAL = 15.0
    HANDLER_RESTART_DELAY = 1.0

    HTTP_TIMEOUT = 10.0

    @classmethod
    def relay_url(cls, host: Optional[str] = None, port: Optional[int] = None) -> str:
        """Websocket URL a subscriber should dial."""
        return f"ws://{host or cls.RELAY_HOST}:{port or cls.RELAY_PORT}/"


@dataclass(frozen=True)
class Endpoints:
    """Every remote URL the handlers talk to."""
    api_base: str = "https://api.spotify.com/v1"
    token_url: str = "https://accounts.spotify.com/api/token"
    broker_token_url: str = (
        "https://discord.com/api/v9/users/@me/connections/spotify/{connection_id}/access-token"
    )
    server_time_url: str = "https://open.spotify.com/server-time"
    web_token_url: str = "https://open.spotify.com/get_access_token"
    dealer_url: str = "wss://dealer.spotify.com/"
    color_lyrics_url: str = "https://spclient.wg.spotify.com/color-lyrics/v2/track"
    lrclib_url: str = "https://lrclib.net/api/get"

    @classmethod
    def local(cls, base_url: str) -> "Endpoints":
        """Point every endpoint at one HTTP server (stubs, recordings)."""
        base = base_url.rstrip("/")
        ws_base = "ws" + base[len("http"):] if base.startswith("http") else base
        return cls(
            api_base=f"{base}/v1",
            token_url=f"{base}/api/token",
            broker_token_url=f"{base}/broker/{{connection_id}}/access-token",
            server_time_url=f"{base}/server-time",
            web_token_url=f"{base}/get_access_token",
            dealer_url=f"{ws_base}/dealer",
            color_lyrics_url=f"{base}/color-lyrics/v2/track",
            lrclib_url=f"{base}/lrclib/api/get",
        )


# =============================================================================
# HANDLER CONFIG SCHEMAS
# =============================================================================

class _HandlerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    web_session_seed: Optional[str] = Field(default=None, alias="webSessionSeed")

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RefreshTokenConfig(_HandlerConfig):
    """OAuth client credentials plus a long-lived refresh token."""
    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: str = Field(alias="clientSecret", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class DelegatedConfig(_HandlerConfig):
    """Credential for an identity broker that hands out provider tokens."""
    broker_token: str = Field(alias="brokerToken", min_length=1)
    broker_connection_id: str = Field(alias="brokerConnectionId", min_length=1)


ConfigT = TypeVar("ConfigT", bound=_HandlerConfig)


def parse_handler_config(model: Type[ConfigT], raw: Any) -> ConfigT:
    """Validate a raw config mapping, raising ConfigInvalid on schema errors."""
    if isinstance(raw, model):
        return raw
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"{model.__name__} expects an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigInvalid(f"{model.__name__} is missing or has invalid fields: {fields}") from e
