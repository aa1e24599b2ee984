"""
Provider registry.

Handlers are looked up by name; each call to create_handler() returns a new,
independent instance.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from ..config import Endpoints
from ..errors import ConfigInvalid
from .base import ProviderHandler
from .spotify import SpotifyHandler, filter_data
from .spotifyfree import SpotifyFreeHandler


@dataclass(frozen=True)
class _HandlerEntry:
    key: str
    label: str
    factory: Callable[..., ProviderHandler]


_HANDLERS: Dict[str, _HandlerEntry] = {
    "spotify": _HandlerEntry(key="spotify", label="Spotify", factory=SpotifyHandler),
    "spotifyfree": _HandlerEntry(key="spotifyfree", label="Spotify (delegated)", factory=SpotifyFreeHandler),
}


def available_handlers() -> List[str]:
    return list(_HANDLERS)


def handler_label(name: str) -> str:
    entry = _HANDLERS.get(name)
    return entry.label if entry else name


def create_handler(name: str, store: Any, endpoints: Endpoints = Endpoints()) -> ProviderHandler:
    entry = _HANDLERS.get(name)
    if entry is None:
        raise ConfigInvalid(f"Unknown playback handler '{name}' (known: {', '.join(_HANDLERS)})")
    return entry.factory(store, endpoints)


__all__ = [
    "ProviderHandler",
    "SpotifyHandler",
    "SpotifyFreeHandler",
    "available_handlers",
    "create_handler",
    "filter_data",
    "handler_label",
]
