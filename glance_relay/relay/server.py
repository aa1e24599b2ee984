"""
RelayServer - push side of the relay.

Each websocket connection keeps its own ConnectionState, including the last
PlaybackState it was sent. A state only goes out when it differs in an
observable field from that one, so repeated identical states cost nothing.
When the track changes, artwork and lyrics are scheduled before the state
itself is sent.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from aiohttp import WSMsgType, web
from pydantic import ValidationError

from ..config import Config
from ..errors import AuthFailure, ConfigInvalid, ProviderUnavailable
from ..models import PlaybackState, has_observable_change, has_track_changed
from .messages import COMMAND_ACTIONS, ConnectionState, Envelope, MessageType, PlaybackAction

logger = logging.getLogger(__name__)

UNAUTHORIZED_CLOSE_CODE = 4001


class RelayServer:

    def __init__(self, manager: Any, password: Optional[str] = None, lyrics_enabled: bool = Config.LYRICS_ENABLED):
        self._manager = manager
        self._password = password
        self.lyrics_enabled = lyrics_enabled
        self._connections: Dict[web.WebSocketResponse, ConnectionState] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._runner: Optional[web.AppRunner] = None

        self.app = web.Application()
        self.app.router.add_get("/", self._handle_socket)

        manager.on("playback", self.publish)
        manager.on("error", self._on_manager_error)

    @property
    def connection_states(self):
        return list(self._connections.values())

    def _authenticated(self):
        return [(ws, conn) for ws, conn in list(self._connections.items()) if conn.authenticated and not ws.closed]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, host: str = Config.RELAY_HOST, port: int = Config.RELAY_PORT) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        await web.TCPSite(self._runner, host, port).start()
        logger.info(f"Relay listening on ws://{host}:{port}/")

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for ws in list(self._connections):
            await ws.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    async def _handle_socket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        conn = ConnectionState(authenticated=self._password is None)
        self._connections[ws] = conn
        logger.info(f"Subscriber connected from {request.remote}")
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._on_text(ws, conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Subscriber socket error: {ws.exception()!r}")
        finally:
            self._connections.pop(ws, None)
            logger.info("Subscriber disconnected")
        return ws

    async def _on_text(self, ws: web.WebSocketResponse, conn: ConnectionState, raw: str) -> None:
        try:
            envelope = Envelope.parse(raw)
        except ValidationError:
            logger.warning(f"Dropping malformed frame: {raw[:80]}")
            if not conn.authenticated:
                await ws.close(code=UNAUTHORIZED_CLOSE_CODE, message=b"unauthorized")
            return

        if not conn.authenticated:
            if envelope.type == MessageType.AUTH and envelope.data == self._password:
                conn.authenticated = True
                logger.info("Subscriber authenticated")
                return
            logger.warning("Subscriber failed authentication")
            await ws.close(code=UNAUTHORIZED_CLOSE_CODE, message=b"unauthorized")
            return

        if envelope.type == MessageType.PING:
            conn.record_ping()
            await self._send(ws, Envelope.pong())
        elif envelope.type == MessageType.PLAYBACK:
            await self._on_playback(ws, conn, envelope)

    async def _on_playback(self, ws: web.WebSocketResponse, conn: ConnectionState, envelope: Envelope) -> None:
        action = envelope.action
        try:
            if action is None:
                await self._deliver(ws, conn, await self._manager.get_playback())
            elif action == PlaybackAction.IMAGE:
                await self._push_image(ws)
            elif action == PlaybackAction.LYRICS:
                await self._push_lyrics(ws)
            elif action in COMMAND_ACTIONS:
                await self._manager.command(action.value, envelope.data)
        except (AuthFailure, ProviderUnavailable) as e:
            logger.warning(f"playback/{action.value if action else 'state'} failed: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Bad {action.value} command payload {envelope.data!r}: {e}")

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    async def publish(self, state: Optional[PlaybackState]) -> None:
        """Fan a state out to every authenticated subscriber that needs it."""
        for ws, conn in self._authenticated():
            await self._deliver(ws, conn, state)

    async def _deliver(self, ws: web.WebSocketResponse, conn: ConnectionState, state: Optional[PlaybackState]) -> bool:
        if conn.has_sent_state and not has_observable_change(conn.last_state, state):
            return False
        track_changed = not conn.has_sent_state or has_track_changed(conn.last_state, state)
        conn.last_state = state
        if track_changed and state is not None:
            self._spawn(self._push_image(ws))
            if self.lyrics_enabled:
                self._spawn(self._push_lyrics(ws))
        await self._send(ws, Envelope.state(state))
        return True

    async def _push_image(self, ws: web.WebSocketResponse) -> None:
        try:
            image = await self._manager.get_image()
        except (AuthFailure, ProviderUnavailable) as e:
            logger.warning(f"Artwork unavailable: {e}")
            return
        if image:
            await self._send(ws, Envelope.image(image))

    async def _push_lyrics(self, ws: web.WebSocketResponse) -> None:
        try:
            document = await self._manager.get_lyrics()
        except (AuthFailure, ProviderUnavailable) as e:
            logger.warning(f"Lyrics unavailable: {e}")
            return
        if document is not None:
            await self._send(ws, Envelope.lyrics(document))

    async def _on_manager_error(self, error: Exception) -> None:
        if not isinstance(error, (AuthFailure, ConfigInvalid)):
            logger.debug(f"Not relaying {type(error).__name__}: {error}")
            return
        for ws, _ in self._authenticated():
            await self._send(ws, Envelope.error(error))

    async def _send(self, ws: web.WebSocketResponse, envelope: Envelope) -> None:
        if ws.closed:
            return
        try:
            await ws.send_str(envelope.to_json())
        except ConnectionResetError as e:
            logger.debug(f"Send to closed subscriber dropped: {e}")
