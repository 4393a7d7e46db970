"""Durable Store adapters."""

from __future__ import annotations

from .base import DEFAULT_LOCK_TTL, DurableStore, document_id_from_key, document_key, lock_id_for
from .filesystem import FileStore
from .memory import MemoryStore

__all__ = [
    "DEFAULT_LOCK_TTL",
    "DurableStore",
    "FileStore",
    "MemoryStore",
    "document_id_from_key",
    "document_key",
    "lock_id_for",
]
