"""
LyricsPipeline - lyrics lookup, timed-text parsing and line resolution.

Lookup order for a track:
    1. fresh cache entry
    2. provider color-lyrics endpoint (needs a web-session token)
    3. LRCLIB timed text
    4. "No lyrics" sentinel, which is cached too so a missing track is not
       looked up again until the entry expires

Pure helpers (parse_lrc, resolve_line_index, derive_colors, int_to_rgb) have
no I/O and are what the subscriber side reuses.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import aiohttp

from .auth import AuthorizedSession
from .cache import ExpiringCache
from .config import Config, Endpoints
from .errors import AuthFailure, NotFound, ProviderUnavailable
from .models import (
    LyricLine, LyricsColors, LyricsDocument, LyricsSource, Rgb, Syllable, SyncType, Track,
)

logger = logging.getLogger(__name__)

NO_LYRICS_MESSAGE = "No lyrics for this track"
NO_PODCAST_LYRICS_MESSAGE = "No lyrics for podcast"

# Span given to the final line of timed text, which has no successor.
DEFAULT_LINE_SPAN_MS = 2000

_LRC_LINE = re.compile(r'\[(\d{2}):(\d{2})\.(\d{2,3})\](.*)')

_BLACK = Rgb(r=0, g=0, b=0)
_WHITE = Rgb(r=255, g=255, b=255)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def parse_lrc(lrc: str, last_span_ms: Optional[int] = DEFAULT_LINE_SPAN_MS,
              estimate_words: bool = True) -> Tuple[LyricLine, ...]:
    """
    Parse ``[mm:ss.xx]text`` lines into sorted LyricLines.

    Two- or three-digit fractions are right-padded to milliseconds. Each
    line ends where the next begins; the final line gets last_span_ms.
    Lines that don't match the pattern (metadata tags, blanks) are skipped.
    """
    entries: List[Tuple[int, str]] = []
    for raw in lrc.splitlines():
        match = _LRC_LINE.match(raw.strip())
        if not match:
            continue
        minutes, seconds, fraction, text = match.groups()
        start = (int(minutes) * 60 + int(seconds)) * 1000 + int(fraction.ljust(3, '0'))
        entries.append((start, text.strip()))

    entries.sort(key=lambda entry: entry[0])
    lines = [LyricLine(start_ms=start, words=words) for start, words in entries]
    lines = backfill_end_times(lines, last_span_ms)
    if estimate_words:
        lines = [line.model_copy(update={"syllables": estimate_syllables(line)}) for line in lines]
    return tuple(lines)


def backfill_end_times(lines: Sequence[LyricLine], last_span_ms: Optional[int] = None) -> List[LyricLine]:
    """Give every line without a usable end the next line's start."""
    result = []
    for i, line in enumerate(lines):
        end = line.end_ms
        if not end or end < line.start_ms:
            if i + 1 < len(lines):
                end = lines[i + 1].start_ms
            elif last_span_ms is not None:
                end = line.start_ms + last_span_ms
            else:
                end = None
        result.append(line.model_copy(update={"end_ms": end}) if end != line.end_ms else line)
    return result


def estimate_syllables(line: LyricLine) -> Optional[Tuple[Syllable, ...]]:
    """Spread the line's words evenly over its span."""
    words = line.words.split()
    if not words or line.end_ms is None or line.end_ms <= line.start_ms:
        return None
    per_word = (line.end_ms - line.start_ms) / len(words)
    return tuple(
        Syllable(
            start_ms=line.start_ms + round(i * per_word),
            end_ms=line.start_ms + round((i + 1) * per_word),
            text=word,
        )
        for i, word in enumerate(words)
    )


def resolve_line_index(lines: Sequence[LyricLine], position_ms: int) -> int:
    """
    Index of the line active at position_ms.

    -1 before the first line. Between two lines the one just passed stays
    active, and past the last line the last line stays active. An open end
    counts as unbounded.
    """
    if not lines or position_ms < lines[0].start_ms:
        return -1
    for i, line in enumerate(lines):
        if position_ms < line.start_ms:
            return i - 1
        if line.end_ms is None or position_ms <= line.end_ms:
            return i
    return len(lines) - 1


class LineTracker:
    """Remembers the active line and reports only real changes."""

    def __init__(self) -> None:
        self.index = -1

    def update(self, lines: Sequence[LyricLine], position_ms: int) -> bool:
        index = resolve_line_index(lines, position_ms)
        if index == self.index:
            return False
        self.index = index
        return True

    def reset(self) -> None:
        self.index = -1


def int_to_rgb(value: int) -> Rgb:
    """Signed 32-bit ARGB integer to Rgb (alpha dropped)."""
    if value < 0:
        value += 0xFFFFFFFF + 1
    return Rgb(r=(value >> 16) & 0xFF, g=(value >> 8) & 0xFF, b=value & 0xFF)


def derive_colors(background: Rgb) -> LyricsColors:
    """Text colors that stay readable on the given background."""
    luma = (background.r * 299 + background.g * 587 + background.b * 114) / 1000
    if luma > 128:
        return LyricsColors(background=background, active_text=_BLACK, inactive_text=_WHITE)
    inactive = Rgb(
        r=min(255, background.r + 140),
        g=min(255, background.g + 140),
        b=min(255, background.b + 140),
    )
    return LyricsColors(background=background, active_text=_WHITE, inactive_text=inactive)


def cache_key(track: Track) -> str:
    if track.id:
        return track.id
    artist = track.artists[0] if track.artists else ""
    return f"{artist}-{track.name}-{track.album}"


def provider_document(payload: Dict[str, Any]) -> Optional[LyricsDocument]:
    """Normalize a color-lyrics response. None when it carries no lines."""
    lyrics = payload.get("lyrics") or {}
    raw_lines = lyrics.get("lines") or []
    if not raw_lines:
        return None

    synced = lyrics.get("syncType") != "UNSYNCED"
    lines = []
    for raw in raw_lines:
        syllables = tuple(
            Syllable(
                start_ms=int(s.get("startTimeMs") or 0),
                end_ms=int(s.get("endTimeMs") or 0),
                text=s.get("text", ""),
            )
            for s in raw.get("syllables") or []
        )
        lines.append(LyricLine(
            start_ms=int(raw.get("startTimeMs") or 0),
            end_ms=int(raw.get("endTimeMs") or 0) or None,
            words=raw.get("words", ""),
            syllables=syllables or None,
        ))
    if synced:
        lines.sort(key=lambda line: line.start_ms)
        lines = backfill_end_times(lines)

    colors = None
    background = (payload.get("colors") or {}).get("background")
    if isinstance(background, int):
        colors = derive_colors(int_to_rgb(background))

    return LyricsDocument(
        sync_type=SyncType.LINE_SYNCED if synced else SyncType.UNSYNCED,
        lines=tuple(lines),
        colors=colors,
        source=LyricsSource.SPOTIFY,
    )


def lrclib_document(payload: Dict[str, Any]) -> Optional[LyricsDocument]:
    """Normalize an LRCLIB record, preferring synced over plain lyrics."""
    synced = payload.get("syncedLyrics")
    if synced:
        lines = parse_lrc(synced)
        if lines:
            return LyricsDocument(sync_type=SyncType.LINE_SYNCED, lines=lines, source=LyricsSource.LRCLIB)
    plain = payload.get("plainLyrics")
    if plain:
        lines = tuple(LyricLine(start_ms=0, words=text.strip()) for text in plain.splitlines() if text.strip())
        if lines:
            return LyricsDocument(sync_type=SyncType.UNSYNCED, lines=lines, source=LyricsSource.LRCLIB)
    return None


# =============================================================================
# PIPELINE
# =============================================================================

class LyricsPipeline:
    """Cached lyrics lookup for one handler."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        cache: ExpiringCache,
        web_session: Optional[AuthorizedSession] = None,
        endpoints: Endpoints = Endpoints(),
    ):
        self._session = session
        self.cache = cache
        self._web = web_session
        self._endpoints = endpoints
        self._timeout = aiohttp.ClientTimeout(total=Config.HTTP_TIMEOUT)

    async def get_lyrics(self, track: Track, image_url: Optional[str] = None) -> LyricsDocument:
        key = cache_key(track)
        cached = self.cache.get_fresh(key)
        if cached is not None:
            logger.debug(f"Using cached lyrics for {key}")
            return cached

        document = None
        if self._web is not None and track.id:
            document = await self._from_provider(track.id, image_url)
        if document is None:
            try:
                document = await self._from_lrclib(track)
            except NotFound as e:
                logger.info(str(e))
        if document is None:
            document = LyricsDocument.unavailable(NO_LYRICS_MESSAGE)

        self.cache.set(key, document)
        return document

    async def _from_provider(self, track_id: str, image_url: Optional[str]) -> Optional[LyricsDocument]:
        url = f"{self._endpoints.color_lyrics_url}/{track_id}"
        if image_url:
            url += f"/image/{quote(image_url, safe='')}"
        params = {"format": "json", "vocalRemoval": "false", "market": "from_token"}
        try:
            resp = await self._web.get(url, params=params, headers={"app-platform": "WebPlayer"})
        except (AuthFailure, ProviderUnavailable) as e:
            logger.warning(f"Provider lyrics unavailable for {track_id}: {e}")
            return None
        if resp.status != 200 or not isinstance(resp.data, dict):
            logger.debug(f"Provider lyrics for {track_id} answered {resp.status}")
            return None
        return provider_document(resp.data)

    async def _from_lrclib(self, track: Track) -> Optional[LyricsDocument]:
        params = {
            "artist_name": track.artists[0] if track.artists else "",
            "track_name": track.name,
            "album_name": track.album,
        }
        logger.info(f"Fetching lyrics from lrclib: {params['artist_name']} - {track.name}")
        try:
            async with self._session.get(self._endpoints.lrclib_url, params=params, timeout=self._timeout) as resp:
                if resp.status == 404:
                    raise NotFound(f"lrclib has no record for {params['artist_name']} - {track.name}")
                if resp.status != 200:
                    logger.debug(f"lrclib answered {resp.status}")
                    return None
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"lrclib request failed: {e}")
            return None
        if not isinstance(payload, dict):
            return None
        document = lrclib_document(payload)
        if document is None:
            raise NotFound(f"lrclib record for {track.name} has no lyrics")
        return document
