"""
File-backed durable store.

Keys map to relative paths under ``root``.  Writes go through a temp file in
the target directory followed by ``os.replace`` so readers never observe a
partial record.  Advisory locks live in ``<root>/locks.json``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List

from docweave.core.errors import NotFound

from .base import DEFAULT_LOCK_TTL

LOGGER = logging.getLogger(__name__)

LOCKS_FILE = "locks.json"


class FileStore:
    def __init__(self, root: Path | str, *, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._mutex = threading.RLock()
        self._clock = clock

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in Path(key).parts:
            raise ValueError(f"invalid storage key: {key!r}")
        return self.root / key

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(tmp_fd, "wb") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"key '{key}' not found", key=key) from None

    def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        with self._mutex:
            self._write_atomic(path, bytes(data))
        LOGGER.debug("stored %s (%d bytes)", key, len(data))

    def list(self, prefix: str = "") -> List[str]:
        keys: List[str] = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self.root).as_posix()
            if key == LOCKS_FILE or not key.startswith(prefix):
                continue
            keys.append(key)
        return sorted(keys)

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        with self._mutex:
            try:
                path.unlink()
            except FileNotFoundError:
                raise NotFound(f"key '{key}' not found", key=key) from None

    # Locks --------------------------------------------------------------------
    def _read_locks(self) -> Dict[str, Dict[str, object]]:
        path = self.root / LOCKS_FILE
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("lock table unreadable, resetting: %s", exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_locks(self, locks: Dict[str, Dict[str, object]]) -> None:
        payload = json.dumps(locks, indent=2, sort_keys=True).encode("utf-8")
        self._write_atomic(self.root / LOCKS_FILE, payload)

    def acquire_lock(self, lock_id: str, owner: str, ttl: float = DEFAULT_LOCK_TTL) -> bool:
        now = self._clock()
        with self._mutex:
            locks = self._read_locks()
            held = locks.get(lock_id)
            if held is not None and held.get("owner") != owner:
                acquired_at = float(held.get("acquiredAt") or 0.0)
                if now - acquired_at < ttl:
                    return False
                LOGGER.info("stale lock %s reclaimed from %s", lock_id, held.get("owner"))
            locks[lock_id] = {"owner": owner, "acquiredAt": now}
            self._write_locks(locks)
            return True

    def release_lock(self, lock_id: str, owner: str) -> bool:
        with self._mutex:
            locks = self._read_locks()
            held = locks.get(lock_id)
            if held is None or held.get("owner") != owner:
                return False
            del locks[lock_id]
            self._write_locks(locks)
            return True

    def lock_holder(self, lock_id: str) -> str | None:
        with self._mutex:
            held = self._read_locks().get(lock_id)
            return str(held.get("owner")) if held else None


__all__ = ["FileStore", "LOCKS_FILE"]
