from __future__ import annotations

"""
Version Graph Store: branches, tags, merge and restore over a durable store.

Every mutating operation runs under a per-document ``RLock``, mutates the cached
:class:`DocumentGraph`, then persists the whole record with one ``put`` while
holding the durable save lock for ``(document, author)``.  If the write fails
the cached graph is rolled back, so callers never observe half-applied state.
"""

import json
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple

from docweave.core.errors import AlreadyExists, LockHeld, NotFound
from docweave.patch import CODEC, PatchCodec, PatchSet
from docweave.storage.base import (
    DEFAULT_LOCK_TTL,
    DOCUMENT_PREFIX,
    DurableStore,
    document_id_from_key,
    document_key,
    lock_id_for,
)

from .graph import DEFAULT_BRANCH, DocumentGraph, Tag, VersionNode, content_hash

LOGGER = logging.getLogger(__name__)

RESOLUTIONS = ("auto", "source", "target")


@dataclass(slots=True)
class MergeConflict:
    """A hunk that could not be located while replaying one side of a merge."""

    index: int
    patch: str
    side: str = "target"

    def as_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "patch": self.patch, "side": self.side}


@dataclass(slots=True)
class MergeResult:
    node: VersionNode
    conflicts: List[MergeConflict] = field(default_factory=list)
    ancestor_id: Optional[str] = None
    advanced: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "version": self.node.as_dict(),
            "conflicts": [conflict.as_dict() for conflict in self.conflicts],
            "ancestorId": self.ancestor_id,
            "advanced": self.advanced,
        }


@dataclass(slots=True)
class VersionEvent:
    kind: str
    document_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "documentId": self.document_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }


class VersionStore:
    def __init__(
        self,
        durable: DurableStore,
        *,
        lock_ttl: float = DEFAULT_LOCK_TTL,
        advance_on_conflict: bool = True,
        codec: Optional[PatchCodec] = None,
        event_limit: int = 512,
    ) -> None:
        self.durable = durable
        self.lock_ttl = float(lock_ttl)
        self.advance_on_conflict = bool(advance_on_conflict)
        self.codec = codec or CODEC
        self._graphs: Dict[str, DocumentGraph] = {}
        self._doc_locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
        self._pending: Deque[VersionEvent] = deque(maxlen=event_limit)
        self._recent: Deque[VersionEvent] = deque(maxlen=event_limit)

    # Internals ----------------------------------------------------------------
    def _document_lock(self, document_id: str) -> threading.RLock:
        with self._guard:
            lock = self._doc_locks.get(document_id)
            if lock is None:
                lock = threading.RLock()
                self._doc_locks[document_id] = lock
            return lock

    def _load(self, document_id: str) -> DocumentGraph:
        graph = self._graphs.get(document_id)
        if graph is not None:
            return graph
        try:
            raw = self.durable.get(document_key(document_id))
        except NotFound:
            raise NotFound(
                f"document '{document_id}' not found", document_id=document_id
            ) from None
        graph = DocumentGraph.from_record(json.loads(raw.decode("utf-8")))
        graph.document_id = graph.document_id or document_id
        self._graphs[document_id] = graph
        return graph

    def _persist(self, graph: DocumentGraph, author: str) -> None:
        lock_id = lock_id_for(graph.document_id)
        if not self.durable.acquire_lock(lock_id, author, self.lock_ttl):
            raise LockHeld(
                f"document '{graph.document_id}' is being saved by another writer",
                document_id=graph.document_id,
                owner=author,
            )
        try:
            payload = json.dumps(graph.to_record(), ensure_ascii=False, sort_keys=True)
            self.durable.put(document_key(graph.document_id), payload.encode("utf-8"))
        finally:
            self.durable.release_lock(lock_id, author)

    @contextmanager
    def _mutation(self, document_id: str, author: str) -> Iterator[DocumentGraph]:
        with self._document_lock(document_id):
            graph = self._load(document_id)
            snapshot = graph.copy()
            try:
                yield graph
                self._persist(graph, author)
            except Exception:
                self._graphs[document_id] = snapshot
                raise

    def _emit(self, kind: str, document_id: str, **payload: Any) -> None:
        event = VersionEvent(kind=kind, document_id=document_id, payload=payload)
        self._pending.append(event)
        self._recent.append(event)
        LOGGER.info("version event %s", kind, extra={"document_id": document_id, "event": kind})

    # Events -------------------------------------------------------------------
    def drain_events(self) -> List[VersionEvent]:
        events: List[VersionEvent] = []
        while self._pending:
            events.append(self._pending.popleft())
        return events

    def recent_events(self, limit: int = 50) -> List[VersionEvent]:
        return list(self._recent)[-limit:] if limit > 0 else []

    # Documents ----------------------------------------------------------------
    def has_document(self, document_id: str) -> bool:
        try:
            self.durable.get(document_key(document_id))
        except NotFound:
            return document_id in self._graphs
        return True

    def initialize_document(
        self,
        document_id: str,
        initial_content: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        *,
        author: str = "system",
    ) -> VersionNode:
        if not document_id:
            raise ValueError("document_id must not be empty")
        with self._document_lock(document_id):
            if self.has_document(document_id):
                raise AlreadyExists(
                    f"document '{document_id}' already exists", document_id=document_id
                )
            graph = DocumentGraph(document_id)
            meta = {"author": author, "message": "Initial version"}
            meta.update(metadata or {})
            root = graph.add_node(VersionNode.create(initial_content, metadata=meta))
            graph.add_branch(DEFAULT_BRANCH, root.id)
            graph.current_branch = DEFAULT_BRANCH
            self._persist(graph, author)
            self._graphs[document_id] = graph
        self._emit("document-initialized", document_id, versionId=root.id)
        return root

    def list_documents(self) -> List[Dict[str, Any]]:
        ids = {
            doc_id
            for doc_id in (document_id_from_key(key) for key in self.durable.list(DOCUMENT_PREFIX))
            if doc_id
        }
        ids.update(self._graphs)
        summaries = []
        for doc_id in sorted(ids):
            with self._document_lock(doc_id):
                summaries.append(self._load(doc_id).summary())
        return summaries

    def search_documents(self, query: str) -> List[Dict[str, Any]]:
        """Case-insensitive search over current content, branch and tag names."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        results: List[Dict[str, Any]] = []
        for summary in self.list_documents():
            doc_id = summary["documentId"]
            with self._document_lock(doc_id):
                graph = self._load(doc_id)
                matches: List[str] = []
                if needle in doc_id.lower():
                    matches.append("id")
                if needle in graph.tip().content.lower():
                    matches.append("content")
                if any(needle in name.lower() for name in graph.branches):
                    matches.append("branch")
                if any(needle in name.lower() for name in graph.tags):
                    matches.append("tag")
            if matches:
                results.append({**summary, "matches": matches})
        return results

    # Versions -----------------------------------------------------------------
    def create_version(
        self,
        document_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        branch: Optional[str] = None,
        author: str = "system",
    ) -> VersionNode:
        digest = content_hash(content)
        with self._document_lock(document_id):
            graph = self._load(document_id)
            branch_name = branch or graph.current_branch
            parent = graph.tip(branch_name)
            if parent.content_hash == digest:
                LOGGER.debug(
                    "content unchanged; keeping tip",
                    extra={"document_id": document_id, "version_id": parent.id},
                )
                return parent
            with self._mutation(document_id, author) as graph:
                existing = graph.find_child([parent.id], digest)
                if existing is not None:
                    node = existing
                else:
                    meta = {"author": author}
                    meta.update(metadata or {})
                    node = graph.add_node(
                        VersionNode.create(content, parents=[parent.id], metadata=meta)
                    )
                graph.set_branch(branch_name, node.id)
        self._emit(
            "version-created",
            document_id,
            versionId=node.id,
            branch=branch_name,
            reused=existing is not None,
            metadata=dict(node.metadata),
        )
        return node

    def get_version(self, document_id: str, version_id: str) -> VersionNode:
        with self._document_lock(document_id):
            return self._load(document_id).node(version_id)

    def head(self, document_id: str, branch: Optional[str] = None) -> VersionNode:
        with self._document_lock(document_id):
            return self._load(document_id).tip(branch)

    def get_content(self, document_id: str, version_id: Optional[str] = None) -> str:
        with self._document_lock(document_id):
            graph = self._load(document_id)
            node = graph.node(version_id) if version_id else graph.tip()
            return node.content

    def restore(self, document_id: str, version_id: str, *, author: str = "system") -> VersionNode:
        with self._mutation(document_id, author) as graph:
            source = graph.node(version_id)
            branch_name = graph.current_branch
            tip = graph.tip(branch_name)
            node = graph.add_node(
                VersionNode.create(
                    source.content,
                    parents=[tip.id],
                    metadata={"type": "restore", "restoredFrom": source.id, "author": author},
                )
            )
            graph.set_branch(branch_name, node.id)
        self._emit(
            "version-restored",
            document_id,
            versionId=node.id,
            restoredFrom=version_id,
            branch=branch_name,
        )
        return node

    # Branches -----------------------------------------------------------------
    def current_branch(self, document_id: str) -> str:
        with self._document_lock(document_id):
            return self._load(document_id).current_branch

    def list_branches(self, document_id: str) -> List[Dict[str, Any]]:
        with self._document_lock(document_id):
            graph = self._load(document_id)
            return [
                {"name": name, "versionId": version_id, "current": name == graph.current_branch}
                for name, version_id in graph.branches.items()
            ]

    def create_branch(
        self,
        document_id: str,
        name: str,
        start_version_id: str,
        *,
        author: str = "system",
    ) -> bool:
        if not name:
            raise ValueError("branch name must not be empty")
        with self._mutation(document_id, author) as graph:
            graph.add_branch(name, start_version_id)
        self._emit("branch-created", document_id, branchName=name, startingVersionId=start_version_id)
        return True

    def switch_branch(self, document_id: str, name: str, *, author: str = "system") -> str:
        with self._mutation(document_id, author) as graph:
            version_id = graph.tip(name).id
            graph.current_branch = name
        self._emit("branch-switched", document_id, branchName=name, versionId=version_id)
        return version_id

    def merge_branches(
        self,
        document_id: str,
        source: str,
        target: str,
        resolution: str = "auto",
        *,
        author: str = "system",
    ) -> MergeResult:
        if resolution not in RESOLUTIONS:
            raise ValueError(f"unknown merge resolution '{resolution}'")
        if source == target:
            raise ValueError("cannot merge a branch into itself")
        with self._mutation(document_id, author) as graph:
            source_tip = graph.tip(source)
            target_tip = graph.tip(target)
            ancestor = graph.common_ancestor(source_tip.id, target_tip.id)
            conflicts: List[MergeConflict] = []
            if resolution == "auto":
                base = ancestor.content if ancestor else ""
                content, conflicts = self._auto_merge(base, source_tip.content, target_tip.content)
            elif resolution == "source":
                content = source_tip.content
            else:
                content = target_tip.content
            node = graph.add_node(
                VersionNode.create(
                    content,
                    parents=[target_tip.id, source_tip.id],
                    metadata={
                        "type": "merge",
                        "source": source,
                        "target": target,
                        "sourceVersion": source_tip.id,
                        "targetVersion": target_tip.id,
                        "ancestorVersion": ancestor.id if ancestor else None,
                        "resolution": resolution,
                        "conflicts": bool(conflicts),
                        "author": author,
                    },
                )
            )
            advanced = not conflicts or self.advance_on_conflict
            if advanced:
                graph.set_branch(target, node.id)
        result = MergeResult(
            node=node,
            conflicts=conflicts,
            ancestor_id=ancestor.id if ancestor else None,
            advanced=advanced,
        )
        self._emit(
            "branches-merged",
            document_id,
            sourceBranch=source,
            targetBranch=target,
            mergeVersionId=node.id,
            advanced=advanced,
            conflicts=[conflict.as_dict() for conflict in conflicts],
        )
        return result

    def _auto_merge(self, base: str, source: str, target: str) -> Tuple[str, List[MergeConflict]]:
        source_patch = self.codec.diff(base, source)
        target_patch = self.codec.diff(base, target)
        conflicts: List[MergeConflict] = []
        merged = base
        for side, patches in (("source", source_patch), ("target", target_patch)):
            merged, flags = self.codec.apply(merged, patches)
            hunks = patches.hunks
            for index, applied in enumerate(flags):
                if not applied:
                    conflicts.append(MergeConflict(index=index, patch=hunks[index], side=side))
        return merged, conflicts

    # Tags ---------------------------------------------------------------------
    def create_tag(
        self,
        document_id: str,
        name: str,
        version_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        author: str = "system",
    ) -> Tag:
        if not name:
            raise ValueError("tag name must not be empty")
        with self._mutation(document_id, author) as graph:
            tag = graph.add_tag(Tag(name=name, version_id=version_id, metadata=dict(metadata or {})))
        self._emit("tag-created", document_id, tagName=name, versionId=version_id, metadata=dict(tag.metadata))
        return tag

    def list_tags(self, document_id: str) -> List[Tag]:
        with self._document_lock(document_id):
            return list(self._load(document_id).tags.values())

    # History & diffs ----------------------------------------------------------
    def get_history(
        self,
        document_id: str,
        branch: Optional[str] = None,
        *,
        first_parent: bool = True,
    ) -> List[VersionNode]:
        with self._document_lock(document_id):
            graph = self._load(document_id)
            tip = graph.tip(branch)
            if first_parent:
                return graph.first_parent_chain(tip.id)
            return graph.full_ancestry(tip.id)

    def get_diff(self, document_id: str, from_id: str, to_id: str) -> PatchSet:
        with self._document_lock(document_id):
            graph = self._load(document_id)
            before, after = graph.node(from_id), graph.node(to_id)
        return self.codec.diff(before.content, after.content)

    def compare_versions(self, document_id: str, from_id: str, to_id: str) -> List[Tuple[str, str]]:
        with self._document_lock(document_id):
            graph = self._load(document_id)
            before, after = graph.node(from_id), graph.node(to_id)
        return self.codec.edits(before.content, after.content)


__all__ = [
    "MergeConflict",
    "MergeResult",
    "RESOLUTIONS",
    "VersionEvent",
    "VersionStore",
]
