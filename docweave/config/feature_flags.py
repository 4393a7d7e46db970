from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict

LOGGER = logging.getLogger(__name__)

FEATURE_DEFAULTS: Dict[str, bool] = {
    "enable_collaboration": True,
    "enable_versioning_api": True,
    "merge_advance_on_conflict": True,  # target pointer moves even when hunks failed
}

ENV_CONFIG = "DOCWEAVE_CONFIG"

_CACHE: Dict[str, bool] | None = None
_CACHE_SIGNATURE: tuple[tuple[str, float], ...] | None = None


def _candidate_paths() -> tuple[Path, ...]:
    paths = [Path("docweave.json"), Path("config/docweave.json")]
    explicit = os.getenv(ENV_CONFIG)
    if explicit:
        paths.append(Path(explicit).expanduser())
    return tuple(paths)


def _signature() -> tuple[tuple[str, float], ...]:
    values: list[tuple[str, float]] = []
    for path in _candidate_paths():
        try:
            values.append((str(path), path.stat().st_mtime))
        except FileNotFoundError:
            values.append((str(path), 0.0))
    return tuple(values)


def _read_features(path: Path) -> Dict[str, bool]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    data = raw.get("features") if isinstance(raw, dict) else None
    if not isinstance(data, dict):
        return {}
    return {key: value for key, value in data.items() if isinstance(value, bool)}


def load_feature_flags(*, refresh: bool = False) -> Dict[str, bool]:
    global _CACHE, _CACHE_SIGNATURE
    signature = _signature()
    if not refresh and _CACHE is not None and signature == _CACHE_SIGNATURE:
        return dict(_CACHE)

    flags: Dict[str, bool] = dict(FEATURE_DEFAULTS)
    for path in _candidate_paths():
        if path.exists():
            flags.update(_read_features(path))

    _CACHE = flags
    _CACHE_SIGNATURE = signature
    return dict(flags)


def is_enabled(name: str, *, default: bool | None = None, refresh: bool = False) -> bool:
    flags = load_feature_flags(refresh=refresh)
    if name in flags:
        return bool(flags[name])
    return bool(default) if default is not None else False


def refresh_cache() -> Dict[str, bool]:
    return load_feature_flags(refresh=True)


__all__ = ["FEATURE_DEFAULTS", "is_enabled", "load_feature_flags", "refresh_cache"]
