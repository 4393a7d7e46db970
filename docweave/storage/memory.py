from __future__ import annotations

"""In-process durable store used by tests and the ``memory`` backend."""

import threading
import time
from typing import Callable, Dict, List, Tuple

from docweave.core.errors import NotFound

from .base import DEFAULT_LOCK_TTL


class MemoryStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._data: Dict[str, bytes] = {}
        self._locks: Dict[str, Tuple[str, float]] = {}
        self._mutex = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> bytes:
        with self._mutex:
            try:
                return self._data[key]
            except KeyError:
                raise NotFound(f"key '{key}' not found", key=key) from None

    def put(self, key: str, data: bytes) -> None:
        with self._mutex:
            self._data[key] = bytes(data)

    def list(self, prefix: str = "") -> List[str]:
        with self._mutex:
            return sorted(key for key in self._data if key.startswith(prefix))

    def delete(self, key: str) -> None:
        with self._mutex:
            if self._data.pop(key, None) is None:
                raise NotFound(f"key '{key}' not found", key=key)

    # Locks --------------------------------------------------------------------
    def acquire_lock(self, lock_id: str, owner: str, ttl: float = DEFAULT_LOCK_TTL) -> bool:
        now = self._clock()
        with self._mutex:
            held = self._locks.get(lock_id)
            if held is not None:
                holder, acquired_at = held
                if holder != owner and now - acquired_at < ttl:
                    return False
            self._locks[lock_id] = (owner, now)
            return True

    def release_lock(self, lock_id: str, owner: str) -> bool:
        with self._mutex:
            held = self._locks.get(lock_id)
            if held is None or held[0] != owner:
                return False
            del self._locks[lock_id]
            return True

    def lock_holder(self, lock_id: str) -> str | None:
        with self._mutex:
            held = self._locks.get(lock_id)
            return held[0] if held else None


__all__ = ["MemoryStore"]
