from __future__ import annotations

"""
Per-document collaboration state and per-connection client state.

A :class:`CollabSession` is owned by the hub and only mutated while holding its
``lock``; clients own a bounded outbox the transport drains.
"""

import asyncio
import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set


def _now() -> float:
    return time.time()


class ClientState(str, enum.Enum):
    CONNECTED = "connected"
    SYNCED = "synced"
    STALE = "stale"
    LEFT = "left"


@dataclass(slots=True)
class CollabClient:
    client_id: str
    username: str
    outbox: asyncio.Queue
    loop: Optional[asyncio.AbstractEventLoop] = None
    state: ClientState = ClientState.CONNECTED
    documents: Set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=_now)
    last_seen: float = field(default_factory=_now)
    dropped: int = 0

    def send(self, message: Dict[str, Any]) -> None:
        """Enqueue ``message``; when the outbox is full the oldest entry is dropped."""
        loop = self.loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._push, message)
                return
        self._push(message)

    def _push(self, message: Dict[str, Any]) -> None:
        while self.outbox.full():
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.dropped += 1
        self.outbox.put_nowait(message)

    def drain(self) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        while True:
            try:
                messages.append(self.outbox.get_nowait())
            except asyncio.QueueEmpty:
                return messages

    def touch(self) -> None:
        self.last_seen = _now()

    def presence_payload(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "username": self.username,
            "state": self.state.value,
            "lastSeen": self.last_seen,
        }


@dataclass(slots=True)
class SectionLock:
    client_id: str
    acquired_at: float = field(default_factory=_now)

    def as_dict(self) -> Dict[str, Any]:
        return {"clientId": self.client_id, "acquiredAt": self.acquired_at}


class CollabSession:
    def __init__(self, document_id: str, content: str = "") -> None:
        self.document_id = document_id
        self.content = content
        self.version = 0
        self.committed_version = 0
        self.members: Dict[str, str] = {}
        self.comments: List[Dict[str, Any]] = []
        self.cursors: Dict[str, Any] = {}
        self.selections: Dict[str, Any] = {}
        self.locks: Dict[str, SectionLock] = {}
        self.lock = threading.RLock()
        self.created_at = _now()
        self.last_modified = self.created_at

    @property
    def dirty(self) -> bool:
        return self.version != self.committed_version

    def apply(self, content: str) -> int:
        self.content = content
        self.version += 1
        self.last_modified = _now()
        return self.version

    # Sections -----------------------------------------------------------------
    def lock_section(self, section_id: str, client_id: str) -> bool:
        if section_id in self.locks:
            return False
        self.locks[section_id] = SectionLock(client_id)
        return True

    def unlock_section(self, section_id: str, client_id: str) -> bool:
        held = self.locks.get(section_id)
        if held is None or held.client_id != client_id:
            return False
        del self.locks[section_id]
        return True

    def purge_client(self, client_id: str) -> List[str]:
        """Drop presence of ``client_id``; returns the sections it had locked."""
        self.members.pop(client_id, None)
        self.cursors.pop(client_id, None)
        self.selections.pop(client_id, None)
        released = [sid for sid, held in self.locks.items() if held.client_id == client_id]
        for section_id in released:
            del self.locks[section_id]
        return released

    # Views --------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "content": self.content,
            "version": self.version,
            "comments": [dict(comment) for comment in self.comments],
            "cursors": dict(self.cursors),
            "selections": dict(self.selections),
            "locks": {sid: held.as_dict() for sid, held in self.locks.items()},
        }

    def stats(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "activeUsers": len(self.members),
            "version": self.version,
            "committedVersion": self.committed_version,
            "dirty": self.dirty,
            "commentCount": len(self.comments),
            "lockCount": len(self.locks),
            "lastModified": self.last_modified,
        }


__all__ = ["ClientState", "CollabClient", "CollabSession", "SectionLock"]
