"""Client-side local key/value cache and the offline backup queue.

Both are small JSON files in the client's cache directory:

    <cache_dir>/
    ├── local_cache.json     # generic key/value map (settings values)
    └── backup_queue.json    # {"pending": bool, "keys": [...], "timestamp": str}

The queue only records *which* cached keys still need to reach the server;
the values themselves live in the local cache, so the queue's bookkeeping
never shares a namespace with application settings.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from marcalink.entities import now_iso

logger = logging.getLogger(__name__)

CACHE_FILE = "local_cache.json"
QUEUE_FILE = "backup_queue.json"


def _read_object(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable cache file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _write_object(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")


class LocalCache:
    """Persistent key/value map with chrome.storage.local-like semantics."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get(self, keys: list[str] | str | None = None) -> dict[str, Any]:
        data = _read_object(self.path)
        if not keys:
            return data
        if isinstance(keys, str):
            keys = [keys]
        return {k: data[k] for k in keys if k in data}

    def set(self, items: dict[str, Any]) -> None:
        data = _read_object(self.path)
        data.update(items)
        _write_object(self.path, data)

    def remove(self, keys: list[str] | str) -> None:
        if isinstance(keys, str):
            keys = [keys]
        data = _read_object(self.path)
        for k in keys:
            data.pop(k, None)
        _write_object(self.path, data)


class BackupQueue:
    """Tracks cached keys written while offline, pending resync."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        return _read_object(self.path)

    @property
    def pending(self) -> bool:
        return bool(self._load().get("pending"))

    @property
    def keys(self) -> list[str]:
        keys = self._load().get("keys")
        return list(keys) if isinstance(keys, list) else []

    @property
    def timestamp(self) -> str | None:
        return self._load().get("timestamp")

    def record(self, keys: list[str]) -> None:
        """Add key names to the pending set (union with earlier offline writes)."""
        merged = self.keys
        for k in keys:
            if k not in merged:
                merged.append(k)
        _write_object(self.path, {"pending": True, "keys": merged, "timestamp": now_iso()})
        logger.debug("Backup queue now holds %d key(s)", len(merged))

    def clear(self) -> None:
        _write_object(self.path, {"pending": False, "keys": [], "timestamp": None})
