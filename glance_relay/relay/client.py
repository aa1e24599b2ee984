"""
RelayClient - subscriber side of the relay.

Connects, authenticates, asks for the current state and feeds everything it
receives into a StateReconciler.

Liveness: every heartbeat interval the client checks how many pings went
unanswered. At max_missed_pongs the socket is force-closed; otherwise it
sends another ping. Any pong resets the count. After any close the client
waits reconnect_delay and dials again, until stop() is called.
"""

import asyncio
import logging
from typing import Optional, Set

import aiohttp
from pydantic import ValidationError

from ..config import Config
from ..events import EventEmitter
from ..models import LyricsDocument, PlaybackState, RepeatMode
from ..reconciler import StateReconciler
from ..timers import RecurringTimer
from .messages import ConnectionState, Envelope, MessageType, PlaybackAction

logger = logging.getLogger(__name__)


class RelayClient(EventEmitter):

    def __init__(
        self,
        url: str,
        reconciler: Optional[StateReconciler] = None,
        password: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        heartbeat_interval: float = Config.HEARTBEAT_INTERVAL,
        max_missed_pongs: int = Config.MAX_MISSED_PONGS,
        reconnect_delay: float = Config.RECONNECT_DELAY,
        refresh_interval: float = Config.REFRESH_INTERVAL,
    ):
        super().__init__()
        self.url = url
        self.reconciler = reconciler or StateReconciler()
        self._password = password
        self._external_session = session
        self._session: Optional[aiohttp.ClientSession] = None
        self._heartbeat_interval = heartbeat_interval
        self._max_missed_pongs = max_missed_pongs
        self._reconnect_delay = reconnect_delay
        self._refresh_interval = refresh_interval
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._running = False
        self.state = ConnectionState()
        self.connect_count = 0

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def run(self) -> None:
        self._running = True
        self._session = self._external_session or aiohttp.ClientSession()
        try:
            while self._running:
                try:
                    await self._connect_once()
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.warning(f"Relay connection to {self.url} failed: {e!r}")
                if not self._running:
                    break
                self.emit("disconnected")
                await asyncio.sleep(self._reconnect_delay)
        finally:
            if self._external_session is None and self._session is not None:
                await self._session.close()
            self._session = None

    async def stop(self) -> None:
        self._running = False
        self.reconciler.stop()
        if self._ws is not None:
            await self._ws.close()
        for task in list(self._background):
            task.cancel()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _connect_once(self) -> None:
        async with self._session.ws_connect(self.url) as ws:
            self._ws = ws
            self.state = ConnectionState()
            self.connect_count += 1
            logger.info(f"Connected to relay {self.url} (attempt {self.connect_count})")

            if self._password is not None:
                await self.send(Envelope.auth(self._password))
            self.state.authenticated = True
            self.emit("connected")
            await self.request_state()

            heartbeat = RecurringTimer(self._heartbeat_interval, self._heartbeat, name="relay-heartbeat").start()
            refresh = RecurringTimer(self._refresh_interval, self.request_state, name="relay-refresh").start()
            self.reconciler.start()
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        self._on_text(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        logger.warning(f"Relay socket error: {ws.exception()!r}")
                        break
            finally:
                heartbeat.cancel()
                refresh.cancel()
                self._ws = None
        logger.info(f"Relay connection closed (code {ws.close_code})")

    async def _heartbeat(self) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            return
        if self.state.missed_pong_count >= self._max_missed_pongs:
            logger.warning(f"No pong for {self.state.missed_pong_count} pings, dropping connection")
            self.emit("timeout")
            # Closed from its own task so the heartbeat timer can be cancelled freely.
            self._spawn(ws.close())
            return
        await ws.send_str(Envelope.ping().to_json())
        self.state.record_ping()
        self.state.missed_pong_count += 1

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # INBOUND
    # =========================================================================

    def _on_text(self, raw: str) -> None:
        try:
            envelope = Envelope.parse(raw)
        except ValidationError:
            logger.warning(f"Dropping malformed relay frame: {raw[:80]}")
            return

        if envelope.type == MessageType.PONG:
            self.state.missed_pong_count = 0
        elif envelope.type == MessageType.PLAYBACK:
            self._on_playback(envelope)
        elif envelope.type == MessageType.ERROR:
            logger.error(f"Relay reported {envelope.data}")
            self.reconciler.report_error(envelope.data)
            self.emit("error", envelope.data)
        self.emit("message", envelope)

    def _on_playback(self, envelope: Envelope) -> None:
        try:
            if envelope.action is None:
                state = PlaybackState.model_validate(envelope.data) if envelope.data else None
                self.reconciler.apply(state)
            elif envelope.action == PlaybackAction.IMAGE:
                self.reconciler.set_image(envelope.data)
            elif envelope.action == PlaybackAction.LYRICS:
                self.reconciler.set_lyrics(LyricsDocument.from_wire(envelope.data) if envelope.data else None)
        except ValidationError as e:
            logger.warning(f"Dropping invalid {envelope.action or 'state'} payload: {e}")

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    async def send(self, envelope: Envelope) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            return False
        await ws.send_str(envelope.to_json())
        return True

    async def request_state(self) -> bool:
        return await self.send(Envelope.state_request())

    async def request_image(self) -> bool:
        return await self.send(Envelope.command(PlaybackAction.IMAGE))

    async def request_lyrics(self) -> bool:
        return await self.send(Envelope.command(PlaybackAction.LYRICS))

    async def play(self) -> bool:
        self.reconciler.apply_local(is_playing=True)
        return await self.send(Envelope.command(PlaybackAction.PLAY))

    async def pause(self) -> bool:
        self.reconciler.apply_local(is_playing=False)
        return await self.send(Envelope.command(PlaybackAction.PAUSE))

    async def next(self) -> bool:
        return await self.send(Envelope.command(PlaybackAction.NEXT))

    async def previous(self) -> bool:
        return await self.send(Envelope.command(PlaybackAction.PREVIOUS))

    async def set_volume(self, volume: int) -> bool:
        self.reconciler.apply_local(volume=volume)
        return await self.send(Envelope.command(PlaybackAction.VOLUME, {"volume": volume}))

    async def set_shuffle(self, state: bool) -> bool:
        self.reconciler.apply_local(shuffle=state)
        return await self.send(Envelope.command(PlaybackAction.SHUFFLE, {"state": state}))

    async def set_repeat(self, mode: RepeatMode) -> bool:
        mode = RepeatMode(mode)
        self.reconciler.apply_local(repeat=mode)
        return await self.send(Envelope.command(PlaybackAction.REPEAT, {"state": mode.value}))
