from __future__ import annotations

"""
In-memory model of one document's version DAG.

Nodes are append-only; branch pointers and the current branch are the only
mutable parts.  ``DocumentGraph.to_record`` / ``from_record`` convert the whole
graph to the JSON record persisted under ``documents/<id>.json``.
"""

import hashlib
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Set

from docweave.core.errors import AlreadyExists, Corruption, NotFound

LOGGER = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"
RECORD_FORMAT = 1


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def new_version_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class VersionNode:
    id: str
    content_hash: str
    content: str
    created_at: float
    parents: List[str] = field(default_factory=list)
    child_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    depth: int = 0

    @classmethod
    def create(
        cls,
        content: str,
        *,
        parents: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[float] = None,
    ) -> "VersionNode":
        return cls(
            id=new_version_id(),
            content_hash=content_hash(content),
            content=content,
            created_at=time.time() if created_at is None else created_at,
            parents=list(parents),
            metadata=dict(metadata or {}),
        )

    @property
    def is_root(self) -> bool:
        return not self.parents

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    def as_dict(self, *, include_content: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "contentHash": self.content_hash,
            "createdAt": self.created_at,
            "parents": list(self.parents),
            "childIds": list(self.child_ids),
            "metadata": dict(self.metadata),
            "depth": self.depth,
        }
        if include_content:
            payload["content"] = self.content
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionNode":
        return cls(
            id=str(data["id"]),
            content_hash=str(data["contentHash"]),
            content=str(data.get("content", "")),
            created_at=float(data.get("createdAt") or 0.0),
            parents=[str(pid) for pid in data.get("parents") or []],
            child_ids=[str(cid) for cid in data.get("childIds") or []],
            metadata=dict(data.get("metadata") or {}),
            depth=int(data.get("depth") or 0),
        )


@dataclass(slots=True)
class Tag:
    name: str
    version_id: str
    created_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "versionId": self.version_id,
            "createdAt": self.created_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tag":
        return cls(
            name=str(data["name"]),
            version_id=str(data["versionId"]),
            created_at=float(data.get("createdAt") or 0.0),
            metadata=dict(data.get("metadata") or {}),
        )


class DocumentGraph:
    """Nodes, branch pointers, tags and the current branch of one document."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self.nodes: Dict[str, VersionNode] = {}
        self.branches: Dict[str, str] = {}
        self.tags: Dict[str, Tag] = {}
        self.current_branch = DEFAULT_BRANCH
        self.created_at = time.time()
        self.updated_at = self.created_at

    # Nodes --------------------------------------------------------------------
    def node(self, version_id: str) -> VersionNode:
        try:
            return self.nodes[version_id]
        except KeyError:
            raise NotFound(
                f"version '{version_id}' not found",
                document_id=self.document_id,
                version_id=version_id,
            ) from None

    def add_node(self, node: VersionNode) -> VersionNode:
        if node.id in self.nodes:
            raise AlreadyExists(f"version '{node.id}' already exists", version_id=node.id)
        parents = [self.node(pid) for pid in node.parents]
        node.depth = 1 + max((parent.depth for parent in parents), default=-1)
        self.nodes[node.id] = node
        for parent in parents:
            if node.id not in parent.child_ids:
                parent.child_ids.append(node.id)
        self.updated_at = time.time()
        return node

    def find_child(self, parent_ids: List[str], digest: str) -> Optional[VersionNode]:
        """Return an existing node with the same parents and content hash."""
        if not parent_ids:
            return None
        for child_id in self.node(parent_ids[0]).child_ids:
            child = self.nodes.get(child_id)
            if child and child.content_hash == digest and child.parents == parent_ids:
                return child
        return None

    # Branches -----------------------------------------------------------------
    def tip(self, branch: Optional[str] = None) -> VersionNode:
        name = branch or self.current_branch
        try:
            version_id = self.branches[name]
        except KeyError:
            raise NotFound(
                f"branch '{name}' not found",
                document_id=self.document_id,
                branch=name,
            ) from None
        return self.node(version_id)

    def set_branch(self, name: str, version_id: str) -> None:
        self.node(version_id)
        self.branches[name] = version_id
        self.updated_at = time.time()

    def add_branch(self, name: str, version_id: str) -> None:
        if name in self.branches:
            raise AlreadyExists(f"branch '{name}' already exists", branch=name)
        self.set_branch(name, version_id)

    def add_tag(self, tag: Tag) -> Tag:
        if tag.name in self.tags:
            raise AlreadyExists(f"tag '{tag.name}' already exists", tag=tag.name)
        self.node(tag.version_id)
        self.tags[tag.name] = tag
        self.updated_at = time.time()
        return tag

    # Traversal ----------------------------------------------------------------
    def first_parent_chain(self, version_id: str) -> List[VersionNode]:
        chain: List[VersionNode] = []
        seen: Set[str] = set()
        current: Optional[VersionNode] = self.node(version_id)
        while current is not None:
            if current.id in seen:
                raise Corruption(
                    "cycle detected in version graph",
                    document_id=self.document_id,
                    version_id=current.id,
                )
            seen.add(current.id)
            chain.append(current)
            current = self.nodes.get(current.parents[0]) if current.parents else None
        return chain

    def ancestors(self, version_id: str) -> Set[str]:
        """Return ``version_id`` and every node reachable through any parent."""
        found: Set[str] = set()
        queue: Deque[str] = deque([version_id])
        while queue:
            current = queue.popleft()
            if current in found:
                continue
            found.add(current)
            queue.extend(self.node(current).parents)
        return found

    def full_ancestry(self, version_id: str) -> List[VersionNode]:
        nodes = [self.nodes[vid] for vid in self.ancestors(version_id)]
        nodes.sort(key=lambda node: (node.depth, node.created_at), reverse=True)
        return nodes

    def common_ancestor(self, left_id: str, right_id: str) -> Optional[VersionNode]:
        common = self.ancestors(left_id) & self.ancestors(right_id)
        if not common:
            return None
        # Deepest shared node; ties resolve to the most recent one.
        return max(
            (self.nodes[vid] for vid in common),
            key=lambda node: (node.depth, node.created_at),
        )

    # Records ------------------------------------------------------------------
    def to_record(self) -> Dict[str, Any]:
        return {
            "format": RECORD_FORMAT,
            "documentId": self.document_id,
            "currentBranch": self.current_branch,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "branches": dict(self.branches),
            "tags": [tag.as_dict() for tag in self.tags.values()],
            "nodes": [node.as_dict() for node in self.nodes.values()],
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any], *, verify: bool = True) -> "DocumentGraph":
        document_id = str(record.get("documentId") or "")
        graph = cls(document_id)
        graph.created_at = float(record.get("createdAt") or graph.created_at)
        for raw in record.get("nodes") or []:
            node = VersionNode.from_dict(raw)
            if verify and content_hash(node.content) != node.content_hash:
                LOGGER.error(
                    "content hash mismatch",
                    extra={"document_id": document_id, "version_id": node.id},
                )
                raise Corruption(
                    f"content hash mismatch for version '{node.id}'",
                    document_id=document_id,
                    version_id=node.id,
                )
            graph.nodes[node.id] = node
        for name, version_id in (record.get("branches") or {}).items():
            if version_id not in graph.nodes:
                raise Corruption(
                    f"branch '{name}' points at unknown version '{version_id}'",
                    document_id=document_id,
                    branch=name,
                )
            graph.branches[str(name)] = str(version_id)
        for raw in record.get("tags") or []:
            tag = Tag.from_dict(raw)
            graph.tags[tag.name] = tag
        graph.current_branch = str(record.get("currentBranch") or DEFAULT_BRANCH)
        if graph.branches and graph.current_branch not in graph.branches:
            graph.current_branch = next(iter(graph.branches))
        graph.updated_at = float(record.get("updatedAt") or graph.created_at)
        return graph

    def copy(self) -> "DocumentGraph":
        return DocumentGraph.from_record(self.to_record(), verify=False)

    def summary(self) -> Dict[str, Any]:
        tip = self.tip() if self.branches else None
        return {
            "documentId": self.document_id,
            "currentBranch": self.current_branch,
            "headVersion": tip.id if tip else None,
            "branches": sorted(self.branches),
            "tags": sorted(self.tags),
            "versionCount": len(self.nodes),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


__all__ = [
    "DEFAULT_BRANCH",
    "DocumentGraph",
    "Tag",
    "VersionNode",
    "content_hash",
    "new_version_id",
]
