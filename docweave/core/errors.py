from __future__ import annotations

"""
Error taxonomy for the version graph, the collaboration hub and storage.

Structural errors abort a single operation and propagate to the caller.
Merge conflicts are never raised; see ``docweave.versioning.MergeConflict``.
"""

from typing import Any, Dict, Optional


class DocweaveError(Exception):
    """Base class carrying a stable error code and an HTTP status hint."""

    code = "docweave_error"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class NotFound(DocweaveError):
    """Document, version, branch, tag or storage key is absent."""

    code = "not_found"
    status_code = 404


class AlreadyExists(DocweaveError):
    """Duplicate branch/tag name or an already initialised document."""

    code = "already_exists"
    status_code = 409


class StaleVersion(DocweaveError):
    """Client base version does not match the live session counter."""

    code = "sync_required"
    status_code = 409

    def __init__(self, message: str, *, current_version: Optional[int]) -> None:
        super().__init__(message, current_version=current_version)
        self.current_version = current_version


class LockHeld(DocweaveError):
    """A section lock or durable save lock is held by someone else."""

    code = "lock_held"
    status_code = 423


class Corruption(DocweaveError):
    """Recorded content hash does not match the stored content."""

    code = "corruption"
    status_code = 500


class PatchFormatError(ValueError):
    """Serialized patch text could not be parsed."""

    code = "invalid_patch"
    status_code = 400


__all__ = [
    "AlreadyExists",
    "Corruption",
    "DocweaveError",
    "LockHeld",
    "NotFound",
    "PatchFormatError",
    "StaleVersion",
]
