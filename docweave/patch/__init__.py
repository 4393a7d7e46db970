"""Patch codec: diff, fuzzy apply and text (de)serialisation of patch sets."""

from __future__ import annotations

from .codec import CODEC, PatchCodec, PatchSet, apply, diff, edits, parse, serialize

__all__ = [
    "CODEC",
    "PatchCodec",
    "PatchSet",
    "apply",
    "diff",
    "edits",
    "parse",
    "serialize",
]
