"""
ProviderHandler - the contract every streaming-service integration fulfils.

A handler is created by the factory, brought up with setup(config) and torn
down with cleanup(). In between it answers pull requests (get_playback,
get_image, get_lyrics), executes transport commands, and emits events:

    open(name)          handler is usable
    ready(name)         real-time push subscription confirmed
    close()             push channel dropped; the owner decides to restart
    error(exc)          something failed that the owner should know about
    playback(state)     pushed state, None when nothing is active
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..events import EventEmitter
from ..models import LyricsDocument, PlaybackState, RepeatMode


class ProviderHandler(EventEmitter, ABC):

    name: str = ""

    @abstractmethod
    async def setup(self, config: Dict[str, Any]) -> None:
        """Authenticate, load caches and open the push channel if possible."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Persist caches, cancel timers, close channels, drop listeners."""

    @abstractmethod
    async def get_playback(self) -> Optional[PlaybackState]:
        ...

    @abstractmethod
    async def get_image(self) -> Optional[bytes]:
        ...

    @abstractmethod
    async def get_lyrics(self) -> Optional[LyricsDocument]:
        ...

    @abstractmethod
    async def play(self) -> bool:
        ...

    @abstractmethod
    async def pause(self) -> bool:
        ...

    @abstractmethod
    async def next(self) -> bool:
        ...

    @abstractmethod
    async def previous(self) -> bool:
        ...

    @abstractmethod
    async def set_volume(self, volume: int) -> bool:
        ...

    @abstractmethod
    async def set_shuffle(self, state: bool) -> bool:
        ...

    @abstractmethod
    async def set_repeat(self, mode: RepeatMode) -> bool:
        ...

    @abstractmethod
    async def validate_config(self, config: Dict[str, Any]) -> bool:
        """Live credential check that leaves this instance untouched."""
