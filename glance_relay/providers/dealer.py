"""
Real-time push channel for player state.

Protocol:
    1. open the websocket with the bearer token as a query parameter
    2. the first frame carries a connection id header; subscribe to player
       notifications with it over REST, then emit 'ready'
    3. every later frame may carry payloads[0].events[0]:
           PLAYER_STATE_CHANGED  -> emit('player_state', state)
           DEVICE_STATE_CHANGED  -> emit('devices', devices)
    4. send {"type": "ping"} every ping_interval seconds

The channel never reconnects by itself; it emits 'close' and leaves that to
its owner.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..auth import AuthorizedSession
from ..config import Config, Endpoints
from ..errors import AuthFailure, ConnectionLost, ProviderUnavailable
from ..events import EventEmitter
from ..timers import RecurringTimer

logger = logging.getLogger(__name__)

CONNECTION_ID_HEADER = "Spotify-Connection-Id"
PING_FRAME = '{"type":"ping"}'


class DealerChannel(EventEmitter):

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api: AuthorizedSession,
        endpoints: Endpoints = Endpoints(),
        ping_interval: float = Config.DEALER_PING_INTERVAL,
    ):
        super().__init__()
        self._session = session
        self._api = api
        self._endpoints = endpoints
        self._ping_interval = ping_interval
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._pinger: Optional[RecurringTimer] = None
        self._closing = False
        self.connection_id: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        token = self._api.auth.access_token
        if not token:
            raise ConnectionLost("push channel needs a token")
        try:
            self._ws = await self._session.ws_connect(
                self._endpoints.dealer_url, params={"access_token": token},
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ConnectionLost(f"push channel connect failed: {e!r}") from e

        logger.info("Push channel connected")
        await self._ping()
        self._pinger = RecurringTimer(self._ping_interval, self._ping, name="dealer-ping").start()
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def close(self) -> None:
        """Detach listeners first so closing emits nothing."""
        self._closing = True
        self.remove_all_listeners()
        if self._pinger is not None:
            self._pinger.cancel()
            self._pinger = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None

    async def _ping(self) -> None:
        if self.connected:
            await self._ws.send_str(PING_FRAME)

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.emit("error", ConnectionLost(f"push channel error: {ws.exception()!r}"))
        finally:
            if self._pinger is not None:
                self._pinger.cancel()
            if not self._closing:
                logger.info("Push channel closed")
                self.emit("close")

    async def _handle_text(self, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring non-JSON push frame: {raw[:80]}")
            return
        if not isinstance(msg, dict):
            return

        connection_id = (msg.get("headers") or {}).get(CONNECTION_ID_HEADER)
        if connection_id:
            await self._subscribe(connection_id)
            return

        event = _first_event(msg)
        if event is None:
            return
        kind = event.get("type")
        body = event.get("event") or {}
        if kind == "PLAYER_STATE_CHANGED":
            self.emit("player_state", body.get("state") or {})
        elif kind == "DEVICE_STATE_CHANGED":
            self.emit("devices", body.get("devices") or [])

    async def _subscribe(self, connection_id: str) -> None:
        url = f"{self._endpoints.api_base}/me/notifications/player"
        try:
            resp = await self._api.put(url, params={"connection_id": connection_id})
        except (AuthFailure, ProviderUnavailable) as e:
            self.emit("error", e)
            return
        if resp.status not in (200, 204):
            self.emit("error", ProviderUnavailable(f"player subscription answered {resp.status}", resp.status))
            return
        self.connection_id = connection_id
        logger.info("Subscribed to player notifications")
        self.emit("ready", connection_id)


def _first_event(msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    payloads = msg.get("payloads") or []
    if not payloads or not isinstance(payloads[0], dict):
        return None
    events = payloads[0].get("events") or []
    if not events or not isinstance(events[0], dict):
        return None
    return events[0]
