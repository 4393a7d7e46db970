from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from docweave.config.feature_flags import FEATURE_DEFAULTS
from docweave.config.settings import Settings
from docweave.server.app import create_app
from docweave.storage import MemoryStore
from docweave.versioning import VersionStore


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def store(memory_store: MemoryStore) -> VersionStore:
    return VersionStore(memory_store)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        store="memory",
        heartbeat_timeout=0,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def make_client(settings: Settings):
    clients = []

    def _make(**flags: bool) -> TestClient:
        app = create_app(settings, flags={**FEATURE_DEFAULTS, **flags})
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def api_client(make_client) -> Iterator[TestClient]:
    yield make_client()
