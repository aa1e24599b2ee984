"""
Relay wire envelope.

Every frame is one JSON object ``{"type", "action"?, "data"?}``:

    client -> server   auth {data: secret}, ping, playback (state request),
                       playback/image, playback/lyrics, playback/<command>
    server -> client   pong, playback {data: state | null},
                       playback/image {data: base64}, playback/lyrics {data: doc},
                       error {data: {kind, message}}
"""

import base64
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..models import LyricsDocument, PlaybackState


class MessageType(str, Enum):
    AUTH = "auth"
    PING = "ping"
    PONG = "pong"
    PLAYBACK = "playback"
    ERROR = "error"


class PlaybackAction(str, Enum):
    IMAGE = "image"
    LYRICS = "lyrics"
    PLAY = "play"
    PAUSE = "pause"
    NEXT = "next"
    PREVIOUS = "previous"
    VOLUME = "volume"
    SHUFFLE = "shuffle"
    REPEAT = "repeat"


COMMAND_ACTIONS = frozenset({
    PlaybackAction.PLAY, PlaybackAction.PAUSE, PlaybackAction.NEXT, PlaybackAction.PREVIOUS,
    PlaybackAction.VOLUME, PlaybackAction.SHUFFLE, PlaybackAction.REPEAT,
})


class Envelope(BaseModel):
    type: MessageType
    action: Optional[PlaybackAction] = None
    data: Any = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def parse(cls, raw: str) -> "Envelope":
        """Raises pydantic.ValidationError on malformed frames."""
        return cls.model_validate_json(raw)

    # Builders

    @classmethod
    def auth(cls, secret: str) -> "Envelope":
        return cls(type=MessageType.AUTH, data=secret)

    @classmethod
    def ping(cls) -> "Envelope":
        return cls(type=MessageType.PING)

    @classmethod
    def pong(cls) -> "Envelope":
        return cls(type=MessageType.PONG)

    @classmethod
    def state_request(cls) -> "Envelope":
        return cls(type=MessageType.PLAYBACK)

    @classmethod
    def state(cls, state: Optional[PlaybackState]) -> "Envelope":
        return cls(type=MessageType.PLAYBACK, data=state.to_wire() if state else None)

    @classmethod
    def image(cls, image: bytes) -> "Envelope":
        return cls(type=MessageType.PLAYBACK, action=PlaybackAction.IMAGE,
                   data=base64.b64encode(image).decode("ascii"))

    @classmethod
    def lyrics(cls, document: LyricsDocument) -> "Envelope":
        return cls(type=MessageType.PLAYBACK, action=PlaybackAction.LYRICS, data=document.to_wire())

    @classmethod
    def command(cls, action: PlaybackAction, data: Optional[Dict[str, Any]] = None) -> "Envelope":
        return cls(type=MessageType.PLAYBACK, action=action, data=data)

    @classmethod
    def error(cls, exc: Exception) -> "Envelope":
        return cls(type=MessageType.ERROR, data={"kind": type(exc).__name__, "message": str(exc)})


_UNSENT = object()


@dataclass
class ConnectionState:
    """Per-connection bookkeeping, rebuilt on every (re)connect."""
    authenticated: bool = False
    last_ping_at: Optional[float] = None
    missed_pong_count: int = 0
    last_state: Any = _UNSENT

    @property
    def has_sent_state(self) -> bool:
        return self.last_state is not _UNSENT

    def record_ping(self) -> None:
        self.last_ping_at = time.monotonic()
