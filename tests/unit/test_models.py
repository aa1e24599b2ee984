"""
Unit tests for the normalized model and provider normalization.
"""
import pytest
from pydantic import ValidationError

from glance_relay.models import (
    Action,
    Duration,
    PlaybackState,
    RepeatMode,
    Track,
    has_observable_change,
    has_track_changed,
)
from glance_relay.providers import filter_data


def make_state(**overrides):
    track = overrides.pop("track", None) or Track(
        id="t1", name="Song", artists=("Artist",), album="Album",
        duration=Duration(current_ms=1000, total_ms=10000),
    )
    return PlaybackState(track=track, **overrides)


class TestDuration:

    def test_current_clamped_to_total(self):
        assert Duration(current_ms=5000, total_ms=3000).current_ms == 3000

    def test_negative_current_clamped(self):
        assert Duration(current_ms=-10, total_ms=3000).current_ms == 0

    def test_wire_aliases(self):
        assert Duration.model_validate({"current": 10, "total": 20}).to_wire() == {"current": 10, "total": 20}


class TestTrackIdentity:

    def test_id(self):
        assert Track(id="x", name="n").identity == "x"

    def test_composite(self):
        assert Track(name="n", artists=("a", "b")).identity == "n|a,b"


class TestPlaybackState:
    """PlaybackState is immutable and validates its ranges."""

    def test_frozen(self):
        state = make_state()
        with pytest.raises(ValidationError):
            state.volume = 10

    def test_volume_range(self):
        with pytest.raises(ValidationError):
            make_state(volume=101)

    def test_with_position(self):
        state = make_state()
        moved = state.with_position(20000)
        assert moved.track.duration.current_ms == 10000
        assert state.track.duration.current_ms == 1000

    def test_with_changes(self):
        state = make_state(is_playing=False)
        changed = state.with_changes(is_playing=True, repeat=RepeatMode.ONE)
        assert changed.is_playing is True
        assert changed.repeat == RepeatMode.ONE
        assert changed.track == state.track

    def test_wire_round_trip(self):
        """camelCase on the wire, same model after parsing it back."""
        state = make_state(is_playing=True, volume=40)
        wire = state.to_wire()
        assert wire["isPlaying"] is True
        assert wire["track"]["duration"] == {"current": 1000, "total": 10000}
        assert "supportedActions" in wire
        assert PlaybackState.model_validate(wire) == state


class TestObservableChange:
    """has_observable_change() / has_track_changed()"""

    def test_identical(self):
        assert has_observable_change(make_state(), make_state()) is False

    @pytest.mark.parametrize("changes", [
        {"is_playing": True},
        {"volume": 80},
        {"shuffle": True},
        {"repeat": RepeatMode.ON},
    ])
    def test_top_level_fields(self, changes):
        assert has_observable_change(make_state(), make_state(**changes)) is True

    def test_position(self):
        assert has_observable_change(make_state(), make_state().with_position(2000)) is True

    def test_none(self):
        assert has_observable_change(None, None) is False
        assert has_observable_change(None, make_state()) is True
        assert has_observable_change(make_state(), None) is True

    def test_supported_actions_not_observable(self):
        assert has_observable_change(make_state(), make_state(supported_actions=(Action.PLAY,))) is False

    def test_track_changed(self):
        other = make_state(track=Track(id="t2", name="Other"))
        assert has_track_changed(make_state(), other) is True
        assert has_track_changed(make_state(), make_state(volume=3)) is False
        assert has_track_changed(None, make_state()) is True


def track_payload(**overrides):
    payload = {
        "is_playing": True,
        "progress_ms": 1500,
        "currently_playing_type": "track",
        "repeat_state": "context",
        "shuffle_state": True,
        "device": {"id": "d1", "volume_percent": 65, "supports_volume": True},
        "item": {
            "id": "t1",
            "name": "Song",
            "duration_ms": 180000,
            "artists": [{"name": "A"}, {"name": "B"}],
            "album": {"name": "Album", "images": []},
        },
    }
    payload.update(overrides)
    return payload


class TestFilterData:
    """Provider payload normalization."""

    def test_track(self):
        state = filter_data(track_payload())
        assert state.is_playing is True
        assert state.volume == 65
        assert state.shuffle is True
        assert state.repeat == RepeatMode.ON
        assert state.track.artists == ("A", "B")
        assert state.track.album == "Album"
        assert state.track.duration.current_ms == 1500
        assert state.track.duration.total_ms == 180000
        assert set(state.supported_actions) == {
            Action.PLAY, Action.PAUSE, Action.NEXT, Action.PREVIOUS, Action.IMAGE,
            Action.VOLUME, Action.REPEAT, Action.SHUFFLE, Action.LYRICS,
        }

    @pytest.mark.parametrize("provider,expected", [
        ("off", RepeatMode.OFF),
        ("context", RepeatMode.ON),
        ("track", RepeatMode.ONE),
    ])
    def test_repeat_mapping(self, provider, expected):
        assert filter_data(track_payload(repeat_state=provider)).repeat == expected

    def test_volume_action_needs_device_support(self):
        payload = track_payload(device={"volume_percent": None, "supports_volume": False})
        state = filter_data(payload)
        assert Action.VOLUME not in state.supported_actions
        assert state.volume == 0

    def test_episode(self):
        """Episodes map show name to album and publisher to artists."""
        payload = track_payload(
            currently_playing_type="episode",
            item={"id": "e1", "name": "Ep", "duration_ms": 1000,
                  "show": {"name": "Show", "publisher": "Pub"}, "images": []},
        )
        state = filter_data(payload)
        assert state.track.album == "Show"
        assert state.track.artists == ("Pub",)
        assert Action.LYRICS not in state.supported_actions
        assert Action.SHUFFLE not in state.supported_actions

    def test_nothing_playing(self):
        assert filter_data(None) is None
        assert filter_data({}) is None
        assert filter_data(track_payload(item=None)) is None

    def test_unknown_media(self):
        assert filter_data(track_payload(currently_playing_type="ad")) is None
