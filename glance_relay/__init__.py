"""
glance_relay - mirror a streaming account's playback onto a display client.

Pieces, leaves first:
    ExpiringCache       time-boxed cache persisted to a key-value store
    auth                token managers + AuthorizedSession (refresh once, retry once)
    lyrics              timed-text parsing, line resolution, LyricsPipeline
    providers           ProviderHandler contract, Spotify variants, registry
    PlaybackManager     owns the active handler
    relay               RelayServer (push side) and RelayClient (subscriber)
    StateReconciler     subscriber-side merge, local clock, active line
"""

from .cache import CacheEntry, ExpiringCache
from .config import Config, Endpoints
from .errors import (
    AuthFailure, CacheCorrupt, ConfigInvalid, ConnectionLost, GlanceRelayError, NotFound, ProviderUnavailable,
)
from .manager import PlaybackManager
from .models import (
    Action, Duration, LyricLine, LyricsDocument, PlaybackState, RepeatMode, SyncType, Track,
)
from .reconciler import StateReconciler
from .relay import RelayClient, RelayServer

__version__ = "0.1.0"

__all__ = [
    "Action",
    "AuthFailure",
    "CacheCorrupt",
    "CacheEntry",
    "Config",
    "ConfigInvalid",
    "ConnectionLost",
    "Duration",
    "Endpoints",
    "ExpiringCache",
    "GlanceRelayError",
    "LyricLine",
    "LyricsDocument",
    "NotFound",
    "PlaybackManager",
    "PlaybackState",
    "ProviderUnavailable",
    "RelayClient",
    "RelayServer",
    "RepeatMode",
    "StateReconciler",
    "SyncType",
    "Track",
]
