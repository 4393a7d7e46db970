"""
Durable Store adapter protocol.

The version graph persists each document as one record under a single key, so
an adapter only has to guarantee that ``put`` is atomic per key.  Locks are
advisory, non-blocking and expire after ``ttl`` seconds.
"""

from __future__ import annotations

import re
from typing import List, Protocol, runtime_checkable

DEFAULT_LOCK_TTL = 300.0
DOCUMENT_PREFIX = "documents/"
DOCUMENT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def document_key(document_id: str) -> str:
    if not DOCUMENT_ID_RE.match(document_id or ""):
        raise ValueError(f"invalid document id: {document_id!r}")
    return f"{DOCUMENT_PREFIX}{document_id}.json"


def document_id_from_key(key: str) -> str | None:
    if not key.startswith(DOCUMENT_PREFIX) or not key.endswith(".json"):
        return None
    return key[len(DOCUMENT_PREFIX) : -len(".json")] or None


def lock_id_for(document_id: str) -> str:
    return f"document:{document_id}"


@runtime_checkable
class DurableStore(Protocol):
    """Key/value persistence with advisory per-key locks."""

    def get(self, key: str) -> bytes:
        """Return stored bytes or raise :class:`~docweave.core.errors.NotFound`."""
        ...

    def put(self, key: str, data: bytes) -> None:
        ...

    def list(self, prefix: str = "") -> List[str]:
        ...

    def delete(self, key: str) -> None:
        ...

    def acquire_lock(self, lock_id: str, owner: str, ttl: float = DEFAULT_LOCK_TTL) -> bool:
        """Take ``lock_id`` for ``owner`` unless another owner holds it within TTL."""
        ...

    def release_lock(self, lock_id: str, owner: str) -> bool:
        ...


__all__ = [
    "DEFAULT_LOCK_TTL",
    "DOCUMENT_ID_RE",
    "DOCUMENT_PREFIX",
    "DurableStore",
    "document_id_from_key",
    "document_key",
    "lock_id_for",
]
