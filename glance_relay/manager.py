"""
PlaybackManager - owns the active provider handler.

Hides handler lifecycle from the relay:
- creating the handler through the registry
- loading its configuration from the store
- forwarding its events
- restarting it after the push channel closes (fixed delay, until cleanup)

Simple interface:
    await manager.setup("spotify")   -> bool
    await manager.get_playback()     -> PlaybackState | None
    manager.on("playback", callback)
"""

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

from .config import Config, Endpoints
from .errors import AuthFailure, ConfigInvalid, ProviderUnavailable
from .events import EventEmitter
from .models import LyricsDocument, PlaybackState, RepeatMode
from .providers import ProviderHandler, create_handler

logger = logging.getLogger(__name__)

CONFIG_KEY_PREFIX = "playback_handler_config"
FORWARDED_EVENTS = ("open", "ready", "error", "playback")


class PlaybackManager(EventEmitter):

    def __init__(
        self,
        store: Any,
        endpoints: Endpoints = Endpoints(),
        restart_delay: float = Config.HANDLER_RESTART_DELAY,
        handler_factory: Callable[..., ProviderHandler] = create_handler,
    ):
        super().__init__()
        self._store = store
        self._endpoints = endpoints
        self._restart_delay = restart_delay
        self._factory = handler_factory
        self.handler: Optional[ProviderHandler] = None
        self.handler_name: Optional[str] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._stopping = False

    # =========================================================================
    # CONFIG
    # =========================================================================

    def get_handler_config(self, name: str) -> Optional[Dict[str, Any]]:
        return self._store.get(f"{CONFIG_KEY_PREFIX}.{name}")

    def set_handler_config(self, name: str, config: Dict[str, Any]) -> None:
        self._store.set(f"{CONFIG_KEY_PREFIX}.{name}", config)

    async def validate_config(self, name: str, config: Dict[str, Any]) -> bool:
        """Check credentials on a throwaway handler; the live one is untouched."""
        handler = self._factory(name, self._store, self._endpoints)
        try:
            return await handler.validate_config(config)
        finally:
            handler.remove_all_listeners()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def setup(self, name: str) -> bool:
        self._stopping = False
        await self._teardown_handler()

        try:
            handler = self._factory(name, self._store, self._endpoints)
        except ConfigInvalid as e:
            self.emit("error", e)
            return False
        config = self.get_handler_config(name)
        if config is None:
            self.emit("error", ConfigInvalid(f"No configuration stored for '{name}'"))
            return False

        for event in FORWARDED_EVENTS:
            handler.on(event, partial(self.emit, event))
        handler.on("close", self._on_handler_close)
        self.handler = handler
        self.handler_name = name

        try:
            await handler.setup(config)
        except (ConfigInvalid, AuthFailure) as e:
            logger.error(f"Handler '{name}' setup failed: {e}")
            self.emit("error", e)
            await self._teardown_handler()
            return False
        except ProviderUnavailable as e:
            logger.warning(f"Handler '{name}' unreachable: {e}")
            self.emit("error", e)
            self._schedule_restart()
            return False
        logger.info(f"Handler '{name}' ready")
        return True

    async def cleanup(self) -> None:
        self._stopping = True
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None
        await self._teardown_handler()
        self.handler_name = None

    async def _teardown_handler(self) -> None:
        handler, self.handler = self.handler, None
        if handler is not None:
            await handler.cleanup()

    def _on_handler_close(self) -> None:
        self.emit("close")
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        if self._stopping or self.handler_name is None:
            return
        if self._restart_task is not None and not self._restart_task.done():
            return
        self._restart_task = asyncio.get_running_loop().create_task(self._restart_later(self.handler_name))

    async def _restart_later(self, name: str) -> None:
        await asyncio.sleep(self._restart_delay)
        self._restart_task = None
        if self._stopping:
            return
        logger.info(f"Restarting handler '{name}'")
        await self.setup(name)

    # =========================================================================
    # PROXIES
    # =========================================================================

    async def get_playback(self) -> Optional[PlaybackState]:
        return await self.handler.get_playback() if self.handler else None

    async def get_image(self) -> Optional[bytes]:
        return await self.handler.get_image() if self.handler else None

    async def get_lyrics(self) -> Optional[LyricsDocument]:
        return await self.handler.get_lyrics() if self.handler else None

    async def command(self, action: str, data: Any = None) -> bool:
        """Run a transport command by name; unknown actions are rejected."""
        if self.handler is None:
            return False
        handler = self.handler
        if action == "play":
            return await handler.play()
        if action == "pause":
            return await handler.pause()
        if action == "next":
            return await handler.next()
        if action == "previous":
            return await handler.previous()
        if action == "volume":
            return await handler.set_volume(int(data["volume"]))
        if action == "shuffle":
            return await handler.set_shuffle(bool(data["state"]))
        if action == "repeat":
            return await handler.set_repeat(RepeatMode(data["state"]))
        raise ValueError(f"Unknown command '{action}'")
