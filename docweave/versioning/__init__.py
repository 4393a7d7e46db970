"""Version Graph Store: immutable, content-addressed document history."""

from __future__ import annotations

from .graph import DEFAULT_BRANCH, DocumentGraph, Tag, VersionNode, content_hash
from .store import RESOLUTIONS, MergeConflict, MergeResult, VersionEvent, VersionStore

__all__ = [
    "DEFAULT_BRANCH",
    "DocumentGraph",
    "MergeConflict",
    "MergeResult",
    "RESOLUTIONS",
    "Tag",
    "VersionEvent",
    "VersionNode",
    "VersionStore",
    "content_hash",
]
