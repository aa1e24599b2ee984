"""
Normalized data model.

Every model here is immutable and serializes with the camelCase field names
the relay protocol uses. A new state replaces the old one wholesale; nothing
is patched in place.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Model(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# PLAYBACK
# =============================================================================

class RepeatMode(str, Enum):
    OFF = "off"
    ON = "on"
    ONE = "one"


class Action(str, Enum):
    """Capability tags a subscriber may show controls for."""
    PLAY = "play"
    PAUSE = "pause"
    NEXT = "next"
    PREVIOUS = "previous"
    IMAGE = "image"
    VOLUME = "volume"
    REPEAT = "repeat"
    SHUFFLE = "shuffle"
    LYRICS = "lyrics"


BASE_ACTIONS: Tuple[Action, ...] = (
    Action.PLAY, Action.PAUSE, Action.NEXT, Action.PREVIOUS, Action.IMAGE,
)
TRACK_ACTIONS: Tuple[Action, ...] = (Action.REPEAT, Action.SHUFFLE, Action.LYRICS)


class Duration(_Model):
    """Position and length in milliseconds. current is clamped into [0, total]."""
    current_ms: int = Field(default=0, alias="current")
    total_ms: int = Field(default=0, alias="total")

    @model_validator(mode="before")
    @classmethod
    def _clamp(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        current_key = "current" if "current" in data else "current_ms"
        total_key = "total" if "total" in data else "total_ms"
        total = max(0, int(data.get(total_key) or 0))
        current = int(data.get(current_key) or 0)
        data[total_key] = total
        data[current_key] = min(max(0, current), total)
        return data


class Track(_Model):
    id: Optional[str] = None
    name: str
    artists: Tuple[str, ...] = ()
    album: str = ""
    duration: Duration = Field(default_factory=Duration)

    @property
    def identity(self) -> str:
        """Stable identity: provider id, or a name/artist composite."""
        if self.id:
            return self.id
        return f"{self.name}|{','.join(self.artists)}"

    @property
    def artist(self) -> str:
        return ", ".join(self.artists)


class PlaybackState(_Model):
    is_playing: bool = Field(default=False, alias="isPlaying")
    volume: int = Field(default=0, ge=0, le=100)
    shuffle: bool = False
    repeat: RepeatMode = RepeatMode.OFF
    track: Track
    supported_actions: Tuple[Action, ...] = Field(default=BASE_ACTIONS, alias="supportedActions")

    def supports(self, action: Action) -> bool:
        return action in self.supported_actions

    def with_position(self, position_ms: int) -> "PlaybackState":
        """Copy with the track position moved (and clamped)."""
        duration = Duration(current_ms=position_ms, total_ms=self.track.duration.total_ms)
        return self.model_copy(update={"track": self.track.model_copy(update={"duration": duration})})

    def with_changes(self, **changes: Any) -> "PlaybackState":
        """Copy with top-level fields replaced, re-validated."""
        data = self.model_dump()
        data.update(changes)
        return PlaybackState.model_validate(data)


def _observable(state: PlaybackState) -> Tuple:
    return (
        state.is_playing,
        state.volume,
        state.shuffle,
        state.repeat,
        state.track.identity,
        state.track.duration.current_ms,
        state.track.duration.total_ms,
    )


def has_observable_change(previous: Optional[PlaybackState], new: Optional[PlaybackState]) -> bool:
    """True when a subscriber would see a difference between the two states."""
    if previous is None or new is None:
        return previous is not new
    return _observable(previous) != _observable(new)


def has_track_changed(previous: Optional[PlaybackState], new: Optional[PlaybackState]) -> bool:
    prev_id = previous.track.identity if previous else None
    new_id = new.track.identity if new else None
    return prev_id != new_id


# =============================================================================
# LYRICS
# =============================================================================

class SyncType(str, Enum):
    LINE_SYNCED = "LINE_SYNCED"
    UNSYNCED = "UNSYNCED"
    NONE = "NONE"


class LyricsSource(str, Enum):
    SPOTIFY = "spotify"
    LRCLIB = "lrclib"
    NONE = "none"


class Rgb(_Model):
    r: int = Field(ge=0, le=255)
    g: int = Field(ge=0, le=255)
    b: int = Field(ge=0, le=255)


class LyricsColors(_Model):
    background: Rgb
    active_text: Rgb = Field(alias="activeText")
    inactive_text: Rgb = Field(alias="inactiveText")


class Syllable(_Model):
    start_ms: int = Field(alias="startTimeMs")
    end_ms: int = Field(alias="endTimeMs")
    text: str


class LyricLine(_Model):
    """One line of lyrics. end_ms None means open-ended."""
    start_ms: int = Field(alias="startTimeMs")
    end_ms: Optional[int] = Field(default=None, alias="endTimeMs")
    words: str = ""
    syllables: Optional[Tuple[Syllable, ...]] = None


class LyricsDocument(_Model):
    sync_type: SyncType = Field(default=SyncType.NONE, alias="syncType")
    lines: Tuple[LyricLine, ...] = ()
    colors: Optional[LyricsColors] = None
    message: Optional[str] = None
    source: Optional[LyricsSource] = None

    @property
    def has_lines(self) -> bool:
        return bool(self.lines)

    @property
    def is_synced(self) -> bool:
        return self.sync_type == SyncType.LINE_SYNCED and self.has_lines

    @classmethod
    def unavailable(cls, message: str) -> "LyricsDocument":
        """Sentinel document carrying only a human-readable reason."""
        return cls(sync_type=SyncType.NONE, message=message, source=LyricsSource.NONE)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "LyricsDocument":
        return cls.model_validate(data)
