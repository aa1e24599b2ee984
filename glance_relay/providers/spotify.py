"""
Spotify handlers.

SpotifyHandler authenticates with an OAuth refresh token. The delegated
variant (spotifyfree) reuses everything here and only swaps how the API token
is obtained. Both optionally use a web-session seed for provider lyrics and
the real-time push channel.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, Optional, Type

import aiohttp

from ..auth import AuthorizedSession, RefreshTokenAuth, TokenManager, WebSessionAuth
from ..cache import ExpiringCache
from ..config import Config, Endpoints, RefreshTokenConfig, parse_handler_config
from ..errors import AuthFailure, ConfigInvalid, ConnectionLost, ProviderUnavailable
from ..lyrics import NO_PODCAST_LYRICS_MESSAGE, LyricsPipeline
from ..models import (
    BASE_ACTIONS, TRACK_ACTIONS, Action, Duration, LyricsDocument, PlaybackState, RepeatMode, Track,
)
from ..timers import RecurringTimer
from .base import ProviderHandler
from .dealer import DealerChannel

logger = logging.getLogger(__name__)

REPEAT_FROM_PROVIDER = {"off": RepeatMode.OFF, "context": RepeatMode.ON, "track": RepeatMode.ONE}
REPEAT_TO_PROVIDER = {mode: name for name, mode in REPEAT_FROM_PROVIDER.items()}


# =============================================================================
# NORMALIZATION
# =============================================================================

def filter_data(raw: Optional[Dict[str, Any]]) -> Optional[PlaybackState]:
    """Map a currently-playing payload onto PlaybackState. None if nothing usable."""
    if not raw or not raw.get("item"):
        return None
    item = raw["item"]
    media = raw.get("currently_playing_type")
    device = raw.get("device") or {}

    actions = list(BASE_ACTIONS)
    if device.get("supports_volume"):
        actions.append(Action.VOLUME)

    if media == "track":
        album = (item.get("album") or {}).get("name", "")
        artists = tuple(a.get("name", "") for a in item.get("artists") or [])
        actions.extend(TRACK_ACTIONS)
    elif media == "episode":
        show = item.get("show") or {}
        album = show.get("name", "")
        artists = (show.get("publisher", ""),)
    else:
        return None

    track = Track(
        id=item.get("id"),
        name=item.get("name", ""),
        artists=artists,
        album=album,
        duration=Duration(current_ms=raw.get("progress_ms") or 0, total_ms=item.get("duration_ms") or 0),
    )
    return PlaybackState(
        is_playing=bool(raw.get("is_playing")),
        volume=min(100, max(0, int(device.get("volume_percent") or 0))),
        shuffle=bool(raw.get("shuffle_state")),
        repeat=REPEAT_FROM_PROVIDER.get(raw.get("repeat_state"), RepeatMode.OFF),
        track=track,
        supported_actions=tuple(actions),
    )


def image_url(raw: Dict[str, Any], large: bool = False) -> Optional[str]:
    """Artwork URL: medium album art for tracks, the first image for episodes."""
    item = raw.get("item") or {}
    if raw.get("currently_playing_type") == "episode":
        images = item.get("images") or []
        index = 0
    else:
        images = (item.get("album") or {}).get("images") or []
        index = 0 if large else 1
    if not images:
        return None
    return images[min(index, len(images) - 1)].get("url")


# =============================================================================
# HANDLER
# =============================================================================

class SpotifyHandler(ProviderHandler):
    """Playback handler backed by the Web API plus an optional web session."""

    name = "spotify"
    config_model: Type = RefreshTokenConfig
    # Delegated tokens pin parameterised commands to the last seen device.
    pin_device = False
    # Fail setup outright when the first token exchange fails.
    require_token_at_setup = False

    def __init__(self, store: Any, endpoints: Endpoints = Endpoints()):
        super().__init__()
        self._store = store
        self._endpoints = endpoints
        self.lyrics_cache: ExpiringCache = ExpiringCache(
            Config.LYRICS_CACHE_TTL_MS,
            f"{self.name}_lyrics_cache",
            store,
            label=f"{self.name} lyrics",
            encode=lambda doc: doc.to_wire(),
            decode=LyricsDocument.from_wire,
        )
        self.image_cache: ExpiringCache = ExpiringCache(
            Config.IMAGE_CACHE_TTL_MS,
            f"{self.name}_image_cache",
            store,
            label=f"{self.name} images",
        )
        self.config = None
        self.auth: Optional[TokenManager] = None
        self.web_auth: Optional[WebSessionAuth] = None
        self.api: Optional[AuthorizedSession] = None
        self.device_id: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._lyrics: Optional[LyricsPipeline] = None
        self._channel: Optional[DealerChannel] = None
        self._maintenance: Optional[RecurringTimer] = None
        self._caches_loaded = False
        self._timeout = aiohttp.ClientTimeout(total=Config.HTTP_TIMEOUT)

    def _create_auth(self, session: aiohttp.ClientSession, config: Any) -> TokenManager:
        return RefreshTokenAuth(
            session, config.client_id, config.client_secret, config.refresh_token, self._endpoints,
        )

    def _channel_auth(self) -> Optional[TokenManager]:
        """Token the push channel is opened with, None to skip the channel."""
        if self.web_auth is not None and self.web_auth.access_token:
            return self.web_auth
        return None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def setup(self, config: Dict[str, Any]) -> None:
        self.config = parse_handler_config(self.config_model, config)
        logger.info(f"Setting up {self.name} handler")

        self._session = aiohttp.ClientSession(timeout=self._timeout)
        self.auth = self._create_auth(self._session, self.config)
        self.api = AuthorizedSession(self._session, self.auth, on_auth_failure=self._auth_failed)

        web_api = None
        if self.config.web_session_seed:
            self.web_auth = WebSessionAuth(self._session, self.config.web_session_seed, self._endpoints)
            try:
                web_token = await self.web_auth.refresh()
            except ProviderUnavailable as e:
                logger.warning(f"Web-session host unreachable: {e}")
                web_token = None
            if not web_token:
                logger.warning("Web-session token unavailable; lyrics fall back to lrclib")
            web_api = AuthorizedSession(self._session, self.web_auth)
        self._lyrics = LyricsPipeline(self._session, self.lyrics_cache, web_api, self._endpoints)

        self.lyrics_cache.load()
        self.image_cache.load()
        self._caches_loaded = True
        self._maintenance = RecurringTimer(
            Config.CACHE_MAINTENANCE_INTERVAL, self._maintain_caches, name=f"{self.name}-cache",
        ).start()

        # ProviderUnavailable propagates so the owner can retry later.
        if not await self.auth.refresh():
            error = AuthFailure(f"{self.name}: initial token exchange failed")
            if self.require_token_at_setup:
                raise error
            self.emit("error", error)

        channel_auth = self._channel_auth()
        if channel_auth is None:
            self.emit("open", self.name)
            return
        await self._open_channel(channel_auth)

    async def cleanup(self) -> None:
        logger.info(f"Cleaning up {self.name} handler")
        if self._caches_loaded:
            self._save_caches()
            self._caches_loaded = False
        self.lyrics_cache.clear()
        self.image_cache.clear()
        if self._maintenance is not None:
            self._maintenance.cancel()
            self._maintenance = None
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self.remove_all_listeners()

    async def validate_config(self, config: Dict[str, Any]) -> bool:
        try:
            parsed = parse_handler_config(self.config_model, config)
        except ConfigInvalid as e:
            logger.warning(f"Invalid {self.name} config: {e}")
            return False
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            try:
                if not await self._create_auth(session, parsed).refresh():
                    return False
                if parsed.web_session_seed:
                    web = WebSessionAuth(session, parsed.web_session_seed, self._endpoints)
                    if not await web.refresh():
                        return False
            except ProviderUnavailable as e:
                logger.warning(f"Could not validate {self.name} config: {e}")
                return False
        return True

    def _auth_failed(self, error: AuthFailure) -> None:
        self.emit("error", error)

    def _save_caches(self) -> None:
        self.lyrics_cache.save()
        self.image_cache.save()

    def _maintain_caches(self) -> None:
        removed = self.lyrics_cache.clean() + self.image_cache.clean()
        self._save_caches()
        logger.debug(f"{self.name}: cache maintenance removed {removed} entries")

    # =========================================================================
    # PUSH CHANNEL
    # =========================================================================

    async def _open_channel(self, auth: TokenManager) -> None:
        channel = DealerChannel(self._session, AuthorizedSession(self._session, auth), self._endpoints)
        channel.on("ready", self._channel_ready)
        channel.on("player_state", self._on_player_state)
        channel.on("devices", self._on_devices)
        channel.on("error", lambda e: self.emit("error", e))
        channel.on("close", lambda: self.emit("close"))
        self._channel = channel
        try:
            await channel.connect()
        except ConnectionLost as e:
            logger.warning(f"{self.name}: {e}")
            self.emit("error", e)
            self.emit("close")

    def _channel_ready(self, connection_id: str) -> None:
        self.emit("open", self.name)
        self.emit("ready", self.name)

    async def _on_player_state(self, state: Dict[str, Any]) -> None:
        media = state.get("currently_playing_type")
        if media == "track":
            self._remember_device(state)
            self.emit("playback", filter_data(state))
        elif media == "episode":
            # Pushed episode frames lack show metadata.
            try:
                current = await self.get_current()
            except (AuthFailure, ProviderUnavailable) as e:
                self.emit("error", e)
                return
            if current:
                self.emit("playback", filter_data(current))

    def _on_devices(self, devices: Any) -> None:
        if any(d.get("is_active") for d in devices if isinstance(d, dict)):
            return
        self.emit("playback", None)

    def _remember_device(self, raw: Dict[str, Any]) -> None:
        device_id = (raw.get("device") or {}).get("id")
        if device_id:
            self.device_id = device_id

    # =========================================================================
    # PULL
    # =========================================================================

    async def get_current(self) -> Optional[Dict[str, Any]]:
        """Raw currently-playing payload, None when nothing is active."""
        resp = await self.api.get(f"{self._endpoints.api_base}/me/player", params={"additional_types": "episode"})
        if resp.status != 200 or not isinstance(resp.data, dict):
            return None
        self._remember_device(resp.data)
        return resp.data

    async def get_playback(self) -> Optional[PlaybackState]:
        return filter_data(await self.get_current())

    async def _current_or_none(self) -> Optional[Dict[str, Any]]:
        try:
            return await self.get_current()
        except (AuthFailure, ProviderUnavailable) as e:
            logger.warning(f"{self.name}: current playback unavailable: {e}")
            return None

    async def get_image(self) -> Optional[bytes]:
        current = await self._current_or_none()
        if not current:
            return None
        url = image_url(current)
        if not url:
            return None

        cached = self.image_cache.get_fresh(url)
        if cached is not None:
            return base64.b64decode(cached)
        try:
            async with self._session.get(url) as resp:
                if resp.status != 200:
                    logger.warning(f"Artwork request answered {resp.status}")
                    return None
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Artwork request failed: {e!r}")
            return None
        self.image_cache.set(url, base64.b64encode(body).decode("ascii"))
        return body

    async def get_lyrics(self) -> Optional[LyricsDocument]:
        current = await self._current_or_none()
        state = filter_data(current)
        if state is None:
            return None
        if current.get("currently_playing_type") == "episode":
            return LyricsDocument.unavailable(NO_PODCAST_LYRICS_MESSAGE)
        return await self._lyrics.get_lyrics(state.track, image_url(current, large=True))

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def play(self) -> bool:
        return await self._command("PUT", "/me/player/play")

    async def pause(self) -> bool:
        return await self._command("PUT", "/me/player/pause")

    async def next(self) -> bool:
        return await self._command("POST", "/me/player/next")

    async def previous(self) -> bool:
        return await self._command("POST", "/me/player/previous")

    async def set_volume(self, volume: int) -> bool:
        volume = min(100, max(0, int(volume)))
        return await self._command("PUT", "/me/player/volume", {"volume_percent": str(volume)})

    async def set_shuffle(self, state: bool) -> bool:
        return await self._command("PUT", "/me/player/shuffle", {"state": "true" if state else "false"})

    async def set_repeat(self, mode: RepeatMode) -> bool:
        return await self._command("PUT", "/me/player/repeat", {"state": REPEAT_TO_PROVIDER[RepeatMode(mode)]})

    async def _command(self, method: str, path: str, params: Optional[Dict[str, str]] = None) -> bool:
        if params is not None and self.pin_device and self.device_id:
            params = {**params, "device_id": self.device_id}
        resp = await self.api.request(method, f"{self._endpoints.api_base}{path}", params=params)
        if not resp.ok:
            logger.warning(f"{method} {path} answered {resp.status}")
            return False
        return True
