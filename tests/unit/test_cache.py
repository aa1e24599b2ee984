"""
Unit tests for ExpiringCache.
"""
import json

from glance_relay.cache import ExpiringCache
from glance_relay.models import LyricsDocument
from glance_relay.storage import JsonFileStore, MemoryStore

HOUR_MS = 60 * 60 * 1000


def make_cache(store, clock, ttl=HOUR_MS, namespace="test_cache", **kwargs):
    return ExpiringCache(ttl, namespace, store, clock=clock, **kwargs)


class TestGetSet:
    """Reads within and past the TTL."""

    def test_get_within_ttl(self, store, clock):
        """A value set moments ago is returned."""
        cache = make_cache(store, clock)
        cache.set("k", "v")
        clock.advance(HOUR_MS - 1)
        assert cache.get("k").data == "v"
        assert cache.get_fresh("k") == "v"

    def test_stale_entry_not_fresh_but_still_stored(self, store, clock):
        """Past the TTL get_fresh gives nothing, but only clean() removes it."""
        cache = make_cache(store, clock)
        cache.set("k", "v")
        clock.advance(HOUR_MS + 1)
        assert cache.get_fresh("k") is None
        assert cache.get("k").data == "v"
        assert "k" in cache

    def test_missing_key(self, store, clock):
        cache = make_cache(store, clock)
        assert cache.get("nope") is None
        assert cache.get_fresh("nope") is None

    def test_expiration_window(self, store, clock):
        assert make_cache(store, clock, ttl=1234).expiration_window() == 1234


class TestClean:
    """clean() removes only expired entries."""

    def test_clean_after_ttl(self, store, clock):
        """Entries older than the TTL are removed and counted."""
        cache = make_cache(store, clock)
        cache.set("old", 1)
        clock.advance(HOUR_MS // 2)
        cache.set("new", 2)
        clock.advance(HOUR_MS // 2 + 1)

        assert cache.clean() == 1
        assert cache.get("old") is None
        assert cache.get("new").data == 2

    def test_clean_nothing_expired(self, store, clock):
        cache = make_cache(store, clock)
        cache.set("a", 1)
        assert cache.clean() == 0
        assert len(cache) == 1

    def test_clear(self, store, clock):
        cache = make_cache(store, clock)
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestPersistence:
    """save()/load() through the key-value store."""

    def test_round_trip_into_fresh_instance(self, store, clock):
        """A fresh instance over the same namespace sees the saved entries."""
        cache = make_cache(store, clock)
        cache.set("a", {"x": 1})
        cache.set("b", [1, 2])
        cache.save()

        fresh = make_cache(store, clock)
        fresh.load()
        assert fresh.get("a").data == {"x": 1}
        assert fresh.get("b").data == [1, 2]
        assert fresh.get("a").timestamp == cache.get("a").timestamp

    def test_blob_layout(self, store, clock):
        """Persisted as a list of [key, {data, timestamp}] pairs."""
        cache = make_cache(store, clock)
        cache.set("a", "x")
        cache.save()
        assert store.get("test_cache") == [["a", {"data": "x", "timestamp": clock.now}]]

    def test_namespaces_are_independent(self, store, clock):
        lyrics = make_cache(store, clock, namespace="lyrics")
        images = make_cache(store, clock, namespace="images", ttl=7 * 24 * HOUR_MS)
        lyrics.set("k", "lyric")
        images.set("k", "image")
        lyrics.save()
        images.save()

        reloaded = make_cache(store, clock, namespace="lyrics")
        reloaded.load()
        assert reloaded.get("k").data == "lyric"

    def test_missing_blob_loads_empty(self, store, clock):
        cache = make_cache(store, clock)
        cache.load()
        assert len(cache) == 0

    def test_corrupt_blob_loads_empty(self, clock):
        """A malformed blob is treated as an empty cache, not an error."""
        for blob in ("garbage", {"a": 1}, [["only-key"]], [["k", {"data": 1}]]):
            cache = make_cache(MemoryStore({"test_cache": blob}), clock)
            cache.load()
            assert len(cache) == 0

    def test_load_drops_expired_entries(self, store, clock):
        cache = make_cache(store, clock)
        cache.set("a", 1)
        cache.save()
        clock.advance(HOUR_MS + 1)

        fresh = make_cache(store, clock)
        fresh.load()
        assert fresh.get("a") is None

    def test_encode_decode_models(self, store, clock):
        """Pydantic documents survive persistence through encode/decode hooks."""
        doc = LyricsDocument.unavailable("No lyrics for this track")
        cache = make_cache(store, clock, encode=lambda d: d.to_wire(), decode=LyricsDocument.from_wire)
        cache.set("t1", doc)
        cache.save()

        fresh = make_cache(store, clock, encode=lambda d: d.to_wire(), decode=LyricsDocument.from_wire)
        fresh.load()
        assert fresh.get_fresh("t1") == doc

    def test_json_file_store(self, tmp_path, clock):
        """Blobs written through JsonFileStore are readable after reopening the file."""
        path = tmp_path / "store.json"
        cache = make_cache(JsonFileStore(path), clock)
        cache.set("a", "x")
        cache.save()

        assert json.loads(path.read_text())["test_cache"][0][0] == "a"
        fresh = make_cache(JsonFileStore(path), clock)
        fresh.load()
        assert fresh.get_fresh("a") == "x"

    def test_unreadable_store_file(self, tmp_path, clock):
        path = tmp_path / "store.json"
        path.write_text("{not json")
        cache = make_cache(JsonFileStore(path), clock)
        cache.load()
        assert len(cache) == 0


class TestStats:

    def test_stats(self, store, clock):
        cache = make_cache(store, clock)
        assert cache.stats().entries == 0
        cache.set("a", 1)
        clock.advance(2000)
        cache.set("b", 2)
        stats = cache.stats()
        assert stats.entries == 2
        assert stats.average_age_sec == 1.0
