"""
Durable key-value store used for cache blobs and handler configuration.

Callers only rely on get/set; the file layout is an implementation detail.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .config import Config

logger = logging.getLogger(__name__)


class MemoryStore:
    """In-memory store with the same contract as JsonFileStore."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def keys(self):
        return list(self._data)


class JsonFileStore(MemoryStore):
    """Whole-document JSON file, rewritten on every set()."""

    def __init__(self, file_path: Optional[Path] = None):
        self.file_path = Path(file_path or Config.DEFAULT_STORE_FILE)
        super().__init__(self._load())

    def _load(self) -> Dict[str, Any]:
        if self.file_path.exists():
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning(f"Ignoring store {self.file_path}: top level is not an object")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load store {self.file_path}: {e}")
        return {}

    def _save(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.file_path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, indent=2)

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        self._save()
