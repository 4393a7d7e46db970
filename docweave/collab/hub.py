from __future__ import annotations

"""
Real-time collaboration hub.

The hub linearizes patch submissions per document behind the session lock,
stamps every applied patch with the next session version, and fans messages
out to client outboxes.  A submission whose base version is behind the session
gets ``sync-required`` and causes no mutation.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from docweave.core.errors import NotFound, PatchFormatError
from docweave.patch import CODEC, PatchCodec

from .session import ClientState, CollabClient, CollabSession

LOGGER = logging.getLogger(__name__)

Loader = Callable[[str], Optional[str]]


@dataclass(slots=True)
class ChangeOutcome:
    status: str
    version: int
    applied: List[bool] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "applied"

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status,
            "version": self.version,
            "applied": list(self.applied),
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload


class CollabHub:
    """Registry of live sessions and connected clients."""

    def __init__(
        self,
        *,
        loader: Optional[Loader] = None,
        outbox_size: int = 256,
        heartbeat_timeout: float = 120.0,
        codec: Optional[PatchCodec] = None,
    ) -> None:
        self._loader = loader
        self._outbox_size = max(1, int(outbox_size))
        self.heartbeat_timeout = float(heartbeat_timeout)
        self.codec = codec or CODEC
        self._clients: Dict[str, CollabClient] = {}
        self._sessions: Dict[str, CollabSession] = {}
        self._guard = threading.RLock()

    # Lookup -------------------------------------------------------------------
    def client(self, client_id: str) -> CollabClient:
        with self._guard:
            client = self._clients.get(client_id)
        if client is None:
            raise NotFound(f"client '{client_id}' is not connected", client_id=client_id)
        return client

    def session(self, document_id: str) -> CollabSession:
        with self._guard:
            session = self._sessions.get(document_id)
        if session is None:
            raise NotFound(
                f"no live session for document '{document_id}'", document_id=document_id
            )
        return session

    def has_session(self, document_id: str) -> bool:
        with self._guard:
            return document_id in self._sessions

    def _ensure_session(self, document_id: str) -> CollabSession:
        with self._guard:
            session = self._sessions.get(document_id)
        if session is not None:
            return session
        # The loader may hit durable storage; keep it off the hub-wide guard.
        content = self._loader(document_id) if self._loader else None
        with self._guard:
            session = self._sessions.get(document_id)
            if session is not None:
                return session
            session = CollabSession(document_id, content or "")
            self._sessions[document_id] = session
        LOGGER.info("session opened", extra={"document_id": document_id})
        return session

    # Fan-out ------------------------------------------------------------------
    def broadcast(
        self,
        document_id: str,
        message: Dict[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        with self._guard:
            session = self._sessions.get(document_id)
            if session is None:
                return 0
            skip = set(exclude)
            targets = [
                self._clients[cid]
                for cid in list(session.members)
                if cid not in skip and cid in self._clients
            ]
        for client in targets:
            client.send(message)
        return len(targets)

    def _error(self, client: CollabClient, code: str, message: str, **details: Any) -> None:
        payload: Dict[str, Any] = {"type": "error", "code": code, "message": message}
        payload.update(details)
        client.send(payload)

    # Connection lifecycle -----------------------------------------------------
    def connect(
        self,
        username: str = "anon",
        client_id: Optional[str] = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> CollabClient:
        client = CollabClient(
            client_id=client_id or str(uuid.uuid4()),
            username=username or "anon",
            outbox=asyncio.Queue(maxsize=self._outbox_size),
            loop=loop,
        )
        with self._guard:
            if client.client_id in self._clients:
                raise ValueError(f"client id '{client.client_id}' already connected")
            self._clients[client.client_id] = client
        client.send({"type": "connected", "clientId": client.client_id})
        LOGGER.info("client connected", extra={"client_id": client.client_id})
        return client

    def join(
        self,
        client_id: str,
        document_id: str,
        username: Optional[str] = None,
    ) -> Dict[str, Any]:
        client = self.client(client_id)
        if username:
            client.username = username
        session = self._ensure_session(document_id)
        with session.lock:
            session.members[client_id] = client.username
            client.documents.add(document_id)
            client.state = ClientState.SYNCED
            client.touch()
            snapshot = session.snapshot()
            self.broadcast(
                document_id,
                {
                    "type": "user-joined",
                    "documentId": document_id,
                    "clientId": client_id,
                    "username": client.username,
                },
                exclude=[client_id],
            )
            client.send({"type": "document", **snapshot})
        return snapshot

    def leave(self, client_id: str, document_id: str) -> bool:
        with self._guard:
            client = self._clients.get(client_id)
            session = self._sessions.get(document_id)
        if session is None:
            return False
        with session.lock:
            if client_id not in session.members:
                return False
            released = session.purge_client(client_id)
            for section_id in released:
                self.broadcast(
                    document_id,
                    {
                        "type": "section-unlocked",
                        "documentId": document_id,
                        "sectionId": section_id,
                        "clientId": client_id,
                    },
                )
            self.broadcast(
                document_id,
                {"type": "user-left", "documentId": document_id, "clientId": client_id},
            )
        if client is not None:
            client.documents.discard(document_id)
            if not client.documents:
                client.state = ClientState.CONNECTED
        LOGGER.info(
            "client left",
            extra={"client_id": client_id, "document_id": document_id, "released": len(released)},
        )
        return True

    def disconnect(self, client_id: str) -> List[str]:
        with self._guard:
            client = self._clients.get(client_id)
        if client is None:
            return []
        documents = sorted(client.documents)
        for document_id in documents:
            self.leave(client_id, document_id)
        with self._guard:
            self._clients.pop(client_id, None)
        client.state = ClientState.LEFT
        LOGGER.info("client disconnected", extra={"client_id": client_id})
        return documents

    def touch(self, client_id: str) -> None:
        with self._guard:
            client = self._clients.get(client_id)
        if client is not None:
            client.touch()

    def reap_idle(self, *, now: Optional[float] = None) -> List[str]:
        """Disconnect clients silent for longer than ``heartbeat_timeout``."""
        if self.heartbeat_timeout <= 0:
            return []
        now = time.time() if now is None else now
        with self._guard:
            idle = [
                cid
                for cid, client in self._clients.items()
                if now - client.last_seen > self.heartbeat_timeout
            ]
        for client_id in idle:
            LOGGER.warning("reaping idle client", extra={"client_id": client_id})
            self.disconnect(client_id)
        return idle

    # Changes ------------------------------------------------------------------
    def submit_change(
        self,
        client_id: str,
        document_id: str,
        patch_text: str,
        base_version: int,
    ) -> ChangeOutcome:
        client = self.client(client_id)
        client.touch()
        with self._guard:
            session = self._sessions.get(document_id)
        if session is None or client_id not in session.members:
            self._error(
                client,
                "not_joined",
                f"join document '{document_id}' before sending changes",
                documentId=document_id,
            )
            return ChangeOutcome("rejected", session.version if session else 0, reason="not_joined")
        with session.lock:
            if base_version != session.version:
                client.state = ClientState.STALE
                client.send(
                    {
                        "type": "sync-required",
                        "documentId": document_id,
                        "currentVersion": session.version,
                    }
                )
                LOGGER.debug(
                    "stale change rejected",
                    extra={
                        "client_id": client_id,
                        "document_id": document_id,
                        "base_version": base_version,
                        "current_version": session.version,
                    },
                )
                return ChangeOutcome("sync-required", session.version)
            try:
                patches = self.codec.parse(patch_text)
            except PatchFormatError as exc:
                self._error(client, exc.code, str(exc), documentId=document_id)
                return ChangeOutcome("rejected", session.version, reason=exc.code)
            before = session.content
            content, applied = self.codec.apply(before, patches)
            if applied and not any(applied):
                self._error(
                    client,
                    "patch_rejected",
                    "no patch hunk could be applied",
                    documentId=document_id,
                    version=session.version,
                )
                return ChangeOutcome("rejected", session.version, applied, reason="patch_rejected")
            # Peers receive exactly what was applied, even on partial application.
            changes = patches.text if all(applied) else self.codec.diff(before, content).text
            version = session.apply(content)
            client.state = ClientState.SYNCED
            self.broadcast(
                document_id,
                {
                    "type": "change",
                    "documentId": document_id,
                    "changes": changes,
                    "version": version,
                    "clientId": client_id,
                },
                exclude=[client_id],
            )
            client.send(
                {
                    "type": "change-ack",
                    "documentId": document_id,
                    "version": version,
                    "applied": applied,
                }
            )
        return ChangeOutcome("applied", version, applied)

    def replace_content(
        self,
        document_id: str,
        content: str,
        origin: str = "server",
    ) -> Optional[ChangeOutcome]:
        """Route a server-side content load through the serialized change path."""
        with self._guard:
            session = self._sessions.get(document_id)
        if session is None:
            return None
        with session.lock:
            patches = self.codec.diff(session.content, content)
            if patches.empty:
                return ChangeOutcome("applied", session.version)
            result, applied = self.codec.apply(session.content, patches)
            version = session.apply(result)
            self.broadcast(
                document_id,
                {
                    "type": "change",
                    "documentId": document_id,
                    "changes": patches.text,
                    "version": version,
                    "clientId": origin,
                },
            )
        return ChangeOutcome("applied", version, applied)

    def sync(self, client_id: str, document_id: str) -> Dict[str, Any]:
        client = self.client(client_id)
        session = self.session(document_id)
        with session.lock:
            snapshot = session.snapshot()
            if client_id in session.members:
                client.state = ClientState.SYNCED
        client.touch()
        client.send({"type": "document", **snapshot})
        return snapshot

    def mark_committed(
        self,
        document_id: str,
        version_id: str,
        *,
        version: Optional[int] = None,
    ) -> None:
        session = self.session(document_id)
        with session.lock:
            session.committed_version = session.version if version is None else int(version)
            self.broadcast(
                document_id,
                {
                    "type": "version-committed",
                    "documentId": document_id,
                    "versionId": version_id,
                    "version": session.committed_version,
                },
            )

    def reload(
        self,
        document_id: str,
        content: str,
        version_id: str,
        *,
        origin: str = "server",
    ) -> Optional[ChangeOutcome]:
        """
        Load committed ``content`` into a live session and mark it committed.

        Returns ``None`` when there is no session or when the session holds
        uncommitted edits; those are never overwritten.
        """
        with self._guard:
            session = self._sessions.get(document_id)
        if session is None:
            return None
        with session.lock:
            if session.dirty:
                LOGGER.info(
                    "reload skipped, session has uncommitted edits",
                    extra={"document_id": document_id, "version_id": version_id},
                )
                return None
            outcome = self.replace_content(document_id, content, origin=origin)
            if outcome is not None:
                self.mark_committed(document_id, version_id, version=outcome.version)
        return outcome

    # Presence -----------------------------------------------------------------
    def update_cursor(self, client_id: str, document_id: str, position: Any) -> None:
        session = self._joined_session(client_id, document_id)
        with session.lock:
            session.cursors[client_id] = position
            self.broadcast(
                document_id,
                {
                    "type": "cursor",
                    "documentId": document_id,
                    "clientId": client_id,
                    "position": position,
                },
                exclude=[client_id],
            )

    def update_selection(self, client_id: str, document_id: str, selection: Any) -> None:
        session = self._joined_session(client_id, document_id)
        with session.lock:
            if selection is None:
                session.selections.pop(client_id, None)
            else:
                session.selections[client_id] = selection
            self.broadcast(
                document_id,
                {
                    "type": "selection",
                    "documentId": document_id,
                    "clientId": client_id,
                    "range": selection,
                },
                exclude=[client_id],
            )

    def _joined_session(self, client_id: str, document_id: str) -> CollabSession:
        client = self.client(client_id)
        client.touch()
        session = self.session(document_id)
        if client_id not in session.members:
            raise NotFound(
                f"client '{client_id}' has not joined '{document_id}'",
                client_id=client_id,
                document_id=document_id,
            )
        return session

    # Comments -----------------------------------------------------------------
    def add_comment(
        self,
        document_id: str,
        comment: Dict[str, Any],
        *,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        session = self.session(document_id)
        entry = dict(comment)
        entry["id"] = str(uuid.uuid4())
        entry["clientId"] = client_id
        entry["timestamp"] = time.time()
        with session.lock:
            session.comments.append(entry)
            self.broadcast(
                document_id,
                {"type": "comment", "documentId": document_id, "comment": dict(entry)},
            )
        return entry

    def remove_comment(self, document_id: str, comment_id: str) -> bool:
        session = self.session(document_id)
        with session.lock:
            for index, comment in enumerate(session.comments):
                if comment.get("id") == comment_id:
                    del session.comments[index]
                    break
            else:
                return False
            self.broadcast(
                document_id,
                {"type": "comment-removed", "documentId": document_id, "commentId": comment_id},
            )
        return True

    def comments(self, document_id: str) -> List[Dict[str, Any]]:
        with self._guard:
            session = self._sessions.get(document_id)
        if session is None:
            return []
        with session.lock:
            return [dict(comment) for comment in session.comments]

    # Section locks ------------------------------------------------------------
    def lock_section(self, document_id: str, section_id: str, client_id: str) -> bool:
        """Lock ``section_id`` for a client that has joined ``document_id``."""
        session = self._joined_session(client_id, document_id)
        with session.lock:
            if not session.lock_section(section_id, client_id):
                return False
            self.broadcast(
                document_id,
                {
                    "type": "section-locked",
                    "documentId": document_id,
                    "sectionId": section_id,
                    "clientId": client_id,
                },
            )
        return True

    def unlock_section(self, document_id: str, section_id: str, client_id: str) -> bool:
        session = self._joined_session(client_id, document_id)
        with session.lock:
            if not session.unlock_section(section_id, client_id):
                return False
            self.broadcast(
                document_id,
                {
                    "type": "section-unlocked",
                    "documentId": document_id,
                    "sectionId": section_id,
                    "clientId": client_id,
                },
            )
        return True

    # Introspection ------------------------------------------------------------
    def stats(self, document_id: str) -> Dict[str, Any]:
        session = self.session(document_id)
        with session.lock:
            return session.stats()

    def snapshot(self, document_id: str) -> Dict[str, Any]:
        session = self.session(document_id)
        with session.lock:
            return session.snapshot()

    def active_users(self, document_id: str) -> List[Dict[str, Any]]:
        with self._guard:
            session = self._sessions.get(document_id)
            if session is None:
                return []
            return [
                self._clients[cid].presence_payload()
                for cid in session.members
                if cid in self._clients
            ]

    def discard_empty(self) -> List[str]:
        """Drop sessions with no clients and nothing left to commit."""
        with self._guard:
            empty = [
                doc_id
                for doc_id, session in self._sessions.items()
                if not session.members and not session.dirty
            ]
            for doc_id in empty:
                self._sessions.pop(doc_id, None)
        return empty

    def summary(self) -> Dict[str, Any]:
        with self._guard:
            sessions = list(self._sessions.values())
            clients = len(self._clients)
        return {
            "sessions": len(sessions),
            "clients": clients,
            "dirty": sum(1 for session in sessions if session.dirty),
        }


__all__ = ["ChangeOutcome", "CollabHub", "Loader"]
