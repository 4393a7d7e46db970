"""Real-time collaboration hub: live sessions, presence, comments, section locks."""

from __future__ import annotations

from .hub import ChangeOutcome, CollabHub
from .session import ClientState, CollabClient, CollabSession, SectionLock

__all__ = [
    "ChangeOutcome",
    "ClientState",
    "CollabClient",
    "CollabHub",
    "CollabSession",
    "SectionLock",
]
