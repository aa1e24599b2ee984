"""
StateReconciler - the subscriber's local view of playback.

Merges relayed states, advances the position on a local clock between
updates, and tracks the active lyric line.

Events:
    state(state | None)   a relayed or optimistic state replaced the view
    position(state)       the local clock moved the position
    line(index)           active lyric line changed (-1 = none)
    image(b64)            new artwork
    lyrics(doc)           new lyrics document
    error(data)           relayed auth or config failure
"""

import logging
from typing import Any, Optional

from .config import Config
from .events import EventEmitter
from .lyrics import LineTracker
from .models import LyricsDocument, PlaybackState, has_observable_change, has_track_changed
from .timers import RecurringTimer

logger = logging.getLogger(__name__)


class StateReconciler(EventEmitter):

    def __init__(self, tick_ms: int = Config.TICK_MS, tick_interval: float = Config.TICK_INTERVAL):
        super().__init__()
        self.state: Optional[PlaybackState] = None
        self.image: Optional[str] = None
        self.lyrics: Optional[LyricsDocument] = None
        self._tick_ms = tick_ms
        self._tick_interval = tick_interval
        self._tracker = LineTracker()
        self._timer: Optional[RecurringTimer] = None

    @property
    def line_index(self) -> int:
        return self._tracker.index

    def start(self) -> None:
        if self._timer is None:
            self._timer = RecurringTimer(self._tick_interval, self.tick, name="reconciler-tick").start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def apply(self, state: Optional[PlaybackState]) -> bool:
        """Replace the view if anything observable differs. Returns True if replaced."""
        if not has_observable_change(self.state, state):
            return False
        track_changed = has_track_changed(self.state, state)
        self.state = state
        if state is None:
            self.lyrics = None
            self.image = None
        elif track_changed and self.lyrics is not None:
            # Lyrics for the new track arrive separately.
            self.lyrics = None
            self.emit("lyrics", None)
        self.emit("state", state)
        self._update_line()
        return True

    def apply_local(self, **changes: Any) -> bool:
        """Optimistic update ahead of the provider's confirmation."""
        if self.state is None:
            return False
        self.state = self.state.with_changes(**changes)
        self.emit("state", self.state)
        self._update_line()
        return True

    def tick(self, elapsed_ms: Optional[int] = None) -> bool:
        """Advance the position while playing, never past the track length."""
        state = self.state
        if state is None or not state.is_playing:
            return False
        duration = state.track.duration
        position = min(duration.current_ms + (elapsed_ms or self._tick_ms), duration.total_ms)
        if position == duration.current_ms:
            return False
        self.state = state.with_position(position)
        self.emit("position", self.state)
        self._update_line()
        return True

    def report_error(self, error: Any) -> None:
        """Surface a relayed failure to whatever renders this view."""
        self.emit("error", error)

    def set_image(self, image: str) -> None:
        self.image = image
        self.emit("image", image)

    def set_lyrics(self, document: Optional[LyricsDocument]) -> None:
        self.lyrics = document
        self._tracker.reset()
        self.emit("lyrics", document)
        self._update_line()

    def _update_line(self) -> None:
        lines = self.lyrics.lines if self.lyrics is not None and self.lyrics.is_synced else ()
        position = self.state.track.duration.current_ms if self.state is not None else 0
        if self._tracker.update(lines, position):
            self.emit("line", self._tracker.index)
