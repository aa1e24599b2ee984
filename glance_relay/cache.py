"""
ExpiringCache - time-boxed key/value cache with durable persistence.

Entries never expire on their own. Readers decide freshness through
get_fresh(), and only clean() removes entries. The whole map is written to
the store as a list of ``[key, {"data": ..., "timestamp": ...}]`` pairs under
the cache's namespace, so two caches with different namespaces never collide.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .errors import CacheCorrupt

logger = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the epoch-ms time it was stored."""
    data: T
    timestamp: int

    def age_ms(self, now: int) -> int:
        return now - self.timestamp


@dataclass(frozen=True)
class CacheStats:
    entries: int
    average_age_sec: float


class ExpiringCache(Generic[T]):
    """
    Map of key -> CacheEntry with a fixed TTL.

    encode/decode convert values to and from JSON-compatible data for
    persistence; both default to identity.
    """

    def __init__(
        self,
        ttl_ms: int,
        namespace: str,
        store: Any,
        label: str = "",
        encode: Optional[Callable[[T], Any]] = None,
        decode: Optional[Callable[[Any], T]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._ttl_ms = ttl_ms
        self.namespace = namespace
        self.label = label or namespace
        self._store = store
        self._encode = encode or (lambda value: value)
        self._decode = decode or (lambda value: value)
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def expiration_window(self) -> int:
        """TTL in milliseconds."""
        return self._ttl_ms

    def get(self, key: str) -> Optional[CacheEntry[T]]:
        """Stored entry regardless of age."""
        return self._entries.get(key)

    def get_fresh(self, key: str) -> Optional[T]:
        """Stored value if it is still inside the TTL."""
        entry = self._entries.get(key)
        if entry is None or entry.age_ms(self._clock()) >= self._ttl_ms:
            return None
        return entry.data

    def set(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(data=value, timestamp=self._clock())

    def clean(self) -> int:
        """Drop entries older than the TTL. Returns how many were removed."""
        now = self._clock()
        stale = [k for k, e in self._entries.items() if e.age_ms(now) >= self._ttl_ms]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"{self.label}: removed {len(stale)} expired entries")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        if not self._entries:
            return CacheStats(entries=0, average_age_sec=0.0)
        now = self._clock()
        total_age = sum(e.age_ms(now) for e in self._entries.values())
        return CacheStats(
            entries=len(self._entries),
            average_age_sec=round(total_age / len(self._entries) / 1000.0, 1),
        )

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def save(self) -> None:
        blob: List[list] = [
            [key, {"data": self._encode(entry.data), "timestamp": entry.timestamp}]
            for key, entry in self._entries.items()
        ]
        self._store.set(self.namespace, blob)
        logger.debug(f"{self.label}: saved {len(blob)} entries")

    def load(self) -> None:
        """Replace in-memory state with the persisted blob, then clean()."""
        raw = self._store.get(self.namespace)
        self._entries = {}
        if raw is None:
            return
        try:
            self._entries = self._decode_blob(raw)
        except CacheCorrupt as e:
            logger.warning(f"{self.label}: {e}; starting empty")
            return
        self.clean()
        logger.debug(f"{self.label}: loaded {len(self._entries)} entries")

    def _decode_blob(self, raw: Any) -> Dict[str, CacheEntry[T]]:
        if not isinstance(raw, list):
            raise CacheCorrupt(f"expected a list of pairs, got {type(raw).__name__}")
        entries: Dict[str, CacheEntry[T]] = {}
        for item in raw:
            try:
                key, payload = item
                entries[str(key)] = CacheEntry(
                    data=self._decode(payload["data"]),
                    timestamp=int(payload["timestamp"]),
                )
            except (TypeError, ValueError, KeyError) as e:
                raise CacheCorrupt(f"malformed entry {item!r}: {e}") from e
        return entries
