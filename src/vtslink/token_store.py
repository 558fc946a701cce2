"""Token persistence — a small key/value store partitioned by scope.

The connection only needs ``get`` and ``set``; a value of ``None`` removes the
key. ``FileTokenStore`` keeps one JSON file per scope under
``~/.vtslink/store/`` and re-reads it on every ``get`` so a token written by
another process is picked up. File access runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from .config import APP_DIR

logger = logging.getLogger(__name__)

STORE_DIR = APP_DIR / "store"


class TokenStore(Protocol):
    async def get(self, key: str, scope: str) -> str | None: ...

    async def set(self, key: str, value: str | None, scope: str) -> None: ...


class MemoryTokenStore:
    """Process-local store. Useful for tests and one-shot commands."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}

    async def get(self, key: str, scope: str) -> str | None:
        return self._data.get(scope, {}).get(key)

    async def set(self, key: str, value: str | None, scope: str) -> None:
        bucket = self._data.setdefault(scope, {})
        if value is None:
            bucket.pop(key, None)
        else:
            bucket[key] = value


class FileTokenStore:
    def __init__(self, directory: Path | None = None) -> None:
        self._dir = Path(directory) if directory is not None else STORE_DIR
        self._lock = asyncio.Lock()

    def path_for(self, scope: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in scope)
        return self._dir / f"{safe or 'default'}.json"

    async def get(self, key: str, scope: str) -> str | None:
        data = await asyncio.to_thread(self._load, scope)
        value = data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str | None, scope: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, value, scope)

    def _update(self, key: str, value: str | None, scope: str) -> None:
        data = self._load(scope)
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._save(scope, data)

    def _load(self, scope: str) -> dict[str, object]:
        path = self.path_for(scope)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable token store %s: %s", path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, scope: str, data: dict[str, object]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(scope)
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=path.stem, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
