from __future__ import annotations

"""
Server settings resolved from ``config/docweave.json`` (or ``docweave.json``)
with ``DOCWEAVE_*`` environment overrides applied last.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

LOGGER = logging.getLogger(__name__)

CONFIG_CANDIDATES: tuple[Path, ...] = (Path("config/docweave.json"), Path("docweave.json"))
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_DATA_DIR = Path("data")
STORE_BACKENDS = ("file", "memory")

ENV_DATA_DIR = "DOCWEAVE_DATA_DIR"
ENV_STORE = "DOCWEAVE_STORE"
ENV_LOCK_TTL = "DOCWEAVE_LOCK_TTL"
ENV_HEARTBEAT = "DOCWEAVE_HEARTBEAT_TIMEOUT"
ENV_HOST = "DOCWEAVE_HOST"
ENV_PORT = "DOCWEAVE_PORT"
ENV_CORS = "DOCWEAVE_CORS_ORIGINS"


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    store: str = "file"
    lock_ttl: float = 300.0
    heartbeat_timeout: float = 120.0
    outbox_size: int = 256
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    cors_origins: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["data_dir"] = str(self.data_dir)
        payload["log_dir"] = str(self.log_dir)
        payload["cors_origins"] = list(self.cors_origins)
        return payload


def _load_raw_config() -> dict:
    for path in CONFIG_CANDIDATES:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as exc:
            LOGGER.warning("Skipping malformed config %s: %s", path, exc)
            continue
        if isinstance(data, dict):
            return data
    return {}


def _section(payload: Mapping[str, object]) -> Mapping[str, object]:
    server = payload.get("server")
    return server if isinstance(server, Mapping) else {}


def _as_float(value: object, fallback: float) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return fallback


def _as_port(value: object, fallback: int) -> int:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return fallback
    return port if 0 < port <= 65535 else fallback


def _split_origins(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.replace(";", ",").split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        return ()
    return tuple(item.strip() for item in items if item.strip())


def _store_backend(value: object, fallback: str) -> str:
    backend = str(value or "").strip().lower()
    if backend in STORE_BACKENDS:
        return backend
    if backend:
        LOGGER.warning("Unknown store backend %r; using %s", backend, fallback)
    return fallback


def _from_section(section: Mapping[str, object]) -> Settings:
    base = Settings()
    return Settings(
        data_dir=Path(str(section.get("data_dir") or base.data_dir)),
        store=_store_backend(section.get("store"), base.store),
        lock_ttl=_as_float(section.get("lock_ttl", base.lock_ttl), base.lock_ttl),
        heartbeat_timeout=_as_float(
            section.get("heartbeat_timeout", base.heartbeat_timeout), base.heartbeat_timeout
        ),
        outbox_size=int(_as_float(section.get("outbox_size", base.outbox_size), base.outbox_size)),
        host=str(section.get("host") or base.host),
        port=_as_port(section.get("port", base.port), base.port),
        log_level=str(section.get("log_level") or base.log_level).upper(),
        log_dir=Path(str(section.get("log_dir") or base.log_dir)),
        cors_origins=_split_origins(section.get("cors_origins")),
    )


def _apply_env_overrides(cfg: Settings) -> Settings:
    changes: dict[str, Any] = {}
    if os.getenv(ENV_DATA_DIR):
        changes["data_dir"] = Path(os.environ[ENV_DATA_DIR]).expanduser()
    if os.getenv(ENV_STORE):
        changes["store"] = _store_backend(os.environ[ENV_STORE], cfg.store)
    if os.getenv(ENV_LOCK_TTL):
        changes["lock_ttl"] = _as_float(os.environ[ENV_LOCK_TTL], cfg.lock_ttl)
    if os.getenv(ENV_HEARTBEAT):
        changes["heartbeat_timeout"] = _as_float(os.environ[ENV_HEARTBEAT], cfg.heartbeat_timeout)
    if os.getenv(ENV_HOST):
        changes["host"] = os.environ[ENV_HOST].strip() or cfg.host
    if os.getenv(ENV_PORT):
        changes["port"] = _as_port(os.environ[ENV_PORT], cfg.port)
    level = os.getenv("DOCWEAVE_LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level:
        changes["log_level"] = level.strip().upper()
    if os.getenv("LOG_DIR"):
        changes["log_dir"] = Path(os.environ["LOG_DIR"]).expanduser()
    if os.getenv(ENV_CORS):
        changes["cors_origins"] = _split_origins(os.environ[ENV_CORS])
    return replace(cfg, **changes) if changes else cfg


def load_settings(overrides: Optional[Mapping[str, Any]] = None) -> Settings:
    """Resolve settings: defaults, then config file, then env, then ``overrides``."""
    cfg = _apply_env_overrides(_from_section(_section(_load_raw_config())))
    if overrides:
        cfg = replace(cfg, **dict(overrides))
    return cfg


__all__ = ["CONFIG_CANDIDATES", "STORE_BACKENDS", "Settings", "load_settings"]
