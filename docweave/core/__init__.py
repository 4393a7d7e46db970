"""Shared primitives (error taxonomy) used across docweave subsystems."""

from __future__ import annotations

from .errors import (
    AlreadyExists,
    Corruption,
    DocweaveError,
    LockHeld,
    NotFound,
    PatchFormatError,
    StaleVersion,
)

__all__ = [
    "AlreadyExists",
    "Corruption",
    "DocweaveError",
    "LockHeld",
    "NotFound",
    "PatchFormatError",
    "StaleVersion",
]
