"""
Logging setup and an in-memory buffer of recent records.

The buffer backs a log viewer: it keeps the last MAX_ENTRIES records as
plain dicts and never touches the filesystem.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
MAX_ENTRIES = 1000


class LogBuffer(logging.Handler):

    def __init__(self, capacity: int = MAX_ENTRIES, level: int = logging.NOTSET):
        super().__init__(level)
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        self._entries.append({
            "timestamp": record.created,
            "level": record.levelname,
            "source": record.name,
            "message": message,
        })

    def get_logs(self, level: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = list(self._entries)
        if level is None:
            return entries
        threshold = logging.getLevelName(level.upper())
        return [e for e in entries if logging.getLevelName(e["level"]) >= threshold]

    def clear_logs(self) -> None:
        self._entries.clear()


def configure_logging(level: str = "INFO", buffer: Optional[LogBuffer] = None) -> LogBuffer:
    """Console logging for the CLI plus the in-memory buffer."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    buffer = buffer or LogBuffer()
    logging.getLogger().addHandler(buffer)
    return buffer
