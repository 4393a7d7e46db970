from __future__ import annotations

"""
Textual patch codec shared by the version graph and the collaboration hub.

Patches use the diff-match-patch text format (``@@ -a,b +c,d @@`` headers
followed by URL-escaped ``+``/``-``/`` `` lines).  Application is fuzzy and
total: hunks whose context cannot be located are skipped and reported as
``False`` in the returned flag list instead of failing the whole call.
"""

import copy
import logging
from dataclasses import dataclass
from typing import List, Tuple

from diff_match_patch import diff_match_patch

from docweave.core.errors import PatchFormatError

LOGGER = logging.getLogger(__name__)

EDIT_OPS = {
    diff_match_patch.DIFF_DELETE: "delete",
    diff_match_patch.DIFF_EQUAL: "equal",
    diff_match_patch.DIFF_INSERT: "insert",
}


@dataclass(frozen=True, slots=True)
class PatchSet:
    """
    Immutable, serialisable set of patch hunks.

    ``text`` is always the canonical diff-match-patch serialisation, so two
    patch sets are equal exactly when their serialised forms are equal.
    """

    text: str = ""

    def __len__(self) -> int:
        return sum(1 for line in self.text.splitlines() if line.startswith("@@"))

    @property
    def empty(self) -> bool:
        return not self.text

    @property
    def hunks(self) -> List[str]:
        """Return each hunk as a standalone serialised patch."""
        hunks: List[str] = []
        current: List[str] = []
        for line in self.text.splitlines(keepends=True):
            if line.startswith("@@") and current:
                hunks.append("".join(current))
                current = []
            current.append(line)
        if current:
            hunks.append("".join(current))
        return hunks

    def as_dict(self) -> dict:
        return {"patch": self.text, "hunks": len(self)}


class PatchCodec:
    """Compute, apply and (de)serialise :class:`PatchSet` instances."""

    def __init__(
        self,
        *,
        diff_timeout: float = 1.0,
        match_threshold: float = 0.5,
        delete_threshold: float = 0.5,
    ) -> None:
        self._dmp = diff_match_patch()
        self._dmp.Diff_Timeout = float(diff_timeout)
        self._dmp.Match_Threshold = float(match_threshold)
        self._dmp.Patch_DeleteThreshold = float(delete_threshold)

    # Diffing ------------------------------------------------------------------
    def _clean_diffs(self, a: str, b: str) -> list:
        diffs = self._dmp.diff_main(a, b)
        self._dmp.diff_cleanupSemantic(diffs)
        return diffs

    def diff(self, a: str, b: str) -> PatchSet:
        """Return the semantically cleaned patch set turning ``a`` into ``b``."""
        if a == b:
            return PatchSet()
        patches = self._dmp.patch_make(a, self._clean_diffs(a, b))
        return PatchSet(self._dmp.patch_toText(patches))

    def edits(self, a: str, b: str) -> List[Tuple[str, str]]:
        """Return the cleaned edit script as ``(op, text)`` pairs."""
        return [(EDIT_OPS[op], text) for op, text in self._clean_diffs(a, b)]

    # Application --------------------------------------------------------------
    def apply(self, base: str, patches: PatchSet) -> Tuple[str, List[bool]]:
        """
        Apply ``patches`` to ``base``; returns the result and one flag per hunk.

        diff-match-patch splits hunks longer than ``Match_MaxBits`` before
        matching, so each hunk is applied on its own and reported as applied
        only when every split piece landed.
        """
        if patches.empty:
            return base, []
        result = base
        applied: List[bool] = []
        delta = 0
        for hunk in self._parse_patches(patches.text):
            shifted = copy.deepcopy(hunk)
            shifted.start1 += delta
            shifted.start2 += delta
            result, flags = self._dmp.patch_apply([shifted], result)
            ok = bool(flags) and all(flags)
            if not ok:
                # Later hunks were computed assuming this one landed.
                delta -= hunk.length2 - hunk.length1
            applied.append(ok)
        if not all(applied):
            LOGGER.debug(
                "patch hunks skipped",
                extra={"hunks": len(applied), "skipped": applied.count(False)},
            )
        return result, applied

    # Serialisation ------------------------------------------------------------
    def serialize(self, patches: PatchSet) -> str:
        return patches.text

    def parse(self, text: str) -> PatchSet:
        if not isinstance(text, str):
            raise PatchFormatError("patch text must be a string")
        if not text:
            return PatchSet()
        parsed = self._parse_patches(text)
        return PatchSet(self._dmp.patch_toText(parsed))

    def _parse_patches(self, text: str) -> list:
        try:
            return self._dmp.patch_fromText(text)
        except (ValueError, IndexError) as exc:
            raise PatchFormatError(f"invalid patch text: {exc}") from exc


CODEC = PatchCodec()


def diff(a: str, b: str) -> PatchSet:
    return CODEC.diff(a, b)


def apply(base: str, patches: PatchSet) -> Tuple[str, List[bool]]:
    return CODEC.apply(base, patches)


def edits(a: str, b: str) -> List[Tuple[str, str]]:
    return CODEC.edits(a, b)


def serialize(patches: PatchSet) -> str:
    return CODEC.serialize(patches)


def parse(text: str) -> PatchSet:
    return CODEC.parse(text)


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
