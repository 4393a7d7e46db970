from __future__ import annotations

"""
Process-level wiring of the durable store, the version store and the hub.

One :class:`Services` instance is built per application and stored on
``app.state.services``; routers reach it through :func:`get_services`.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import Request, WebSocket

from docweave.collab import ChangeOutcome, CollabHub
from docweave.config.feature_flags import load_feature_flags
from docweave.config.settings import Settings
from docweave.core.errors import StaleVersion
from docweave.storage import DurableStore, FileStore, MemoryStore
from docweave.versioning import VersionEvent, VersionNode, VersionStore

LOGGER = logging.getLogger(__name__)

# Store events that move the current branch tip of a document.
_RELOAD_EVENTS = frozenset({"version-restored", "branch-switched", "branches-merged"})


def build_durable(settings: Settings) -> DurableStore:
    if settings.store == "memory":
        return MemoryStore()
    return FileStore(settings.data_dir)


class Services:
    def __init__(
        self,
        settings: Settings,
        *,
        durable: Optional[DurableStore] = None,
        flags: Optional[Dict[str, bool]] = None,
    ) -> None:
        self.settings = settings
        self.flags = dict(flags if flags is not None else load_feature_flags())
        self.durable = durable if durable is not None else build_durable(settings)
        self.store = VersionStore(
            self.durable,
            lock_ttl=settings.lock_ttl,
            advance_on_conflict=self.flags.get("merge_advance_on_conflict", True),
        )
        self.hub = CollabHub(
            loader=self._load_session_content,
            outbox_size=settings.outbox_size,
            heartbeat_timeout=settings.heartbeat_timeout,
        )
        self.started_at = time.time()
        self._reaper: Optional[asyncio.Task] = None

    def feature_enabled(self, name: str) -> bool:
        return bool(self.flags.get(name, False))

    # Session hydration --------------------------------------------------------
    def _load_session_content(self, document_id: str) -> Optional[str]:
        if not self.store.has_document(document_id):
            return None
        return self.store.get_content(document_id)

    def load_version(
        self,
        document_id: str,
        version_id: Optional[str] = None,
        *,
        origin: str = "server",
    ) -> Optional[ChangeOutcome]:
        """Push a committed snapshot into a clean live session, if one is open."""
        if version_id is None:
            node = self.store.head(document_id)
        else:
            node = self.store.get_version(document_id, version_id)
        return self.hub.reload(document_id, node.content, node.id, origin=origin)

    # Durable commit -----------------------------------------------------------
    def commit_session(
        self,
        document_id: str,
        *,
        author: str = "system",
        message: Optional[str] = None,
        base_version: Optional[int] = None,
    ) -> VersionNode:
        snapshot = self.hub.snapshot(document_id)
        if base_version is not None and base_version != snapshot["version"]:
            raise StaleVersion(
                f"session for '{document_id}' moved past version {base_version}",
                current_version=snapshot["version"],
            )
        metadata: Dict[str, Any] = {"sessionVersion": snapshot["version"]}
        if message:
            metadata["message"] = message
        if self.store.has_document(document_id):
            node = self.store.create_version(
                document_id, snapshot["content"], metadata, author=author
            )
        else:
            node = self.store.initialize_document(
                document_id, snapshot["content"], metadata, author=author
            )
        self.hub.mark_committed(document_id, node.id, version=snapshot["version"])
        self.dispatch_events()
        LOGGER.info(
            "session committed",
            extra={
                "document_id": document_id,
                "version_id": node.id,
                "session_version": snapshot["version"],
            },
        )
        return node

    # Event fan-out ------------------------------------------------------------
    def dispatch_events(self) -> int:
        """Forward store events to live sessions; returns the number handled."""
        events = self.store.drain_events()
        for event in events:
            if not self.hub.has_session(event.document_id):
                continue
            reloaded = False
            if self._moves_current_tip(event):
                reloaded = self.load_version(event.document_id, origin="version-store") is not None
            self.hub.broadcast(
                event.document_id,
                {
                    "type": "version-event",
                    "documentId": event.document_id,
                    "event": event.as_dict(),
                    "reloaded": reloaded,
                },
            )
        return len(events)

    def _moves_current_tip(self, event: VersionEvent) -> bool:
        if event.kind not in _RELOAD_EVENTS:
            return False
        current = self.store.current_branch(event.document_id)
        if event.kind == "branches-merged":
            return bool(event.payload.get("advanced")) and event.payload.get("targetBranch") == current
        if event.kind == "version-restored":
            return event.payload.get("branch") == current
        return True

    # Housekeeping -------------------------------------------------------------
    def reap(self) -> Dict[str, List[str]]:
        reaped = self.hub.reap_idle()
        discarded = self.hub.discard_empty()
        return {"reaped": reaped, "discarded": discarded}

    async def _reap_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            result = self.reap()
            if result["reaped"] or result["discarded"]:
                LOGGER.info("housekeeping", extra=result)

    def start(self) -> None:
        timeout = self.settings.heartbeat_timeout
        if timeout > 0 and self._reaper is None:
            self._reaper = asyncio.get_running_loop().create_task(
                self._reap_forever(max(1.0, timeout / 4))
            )

    async def stop(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None

    def status(self) -> Dict[str, Any]:
        return {
            "store": self.settings.store,
            "uptime": round(time.time() - self.started_at, 3),
            "documents": len(self.store.list_documents()),
            "collab": self.hub.summary(),
            "feature_flags": dict(self.flags),
        }


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> Services:
    return websocket.app.state.services


__all__ = ["Services", "build_durable", "get_services", "get_ws_services"]
