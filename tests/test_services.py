from __future__ import annotations

import pytest

from docweave.config.feature_flags import FEATURE_DEFAULTS
from docweave.config.settings import Settings
from docweave.core.errors import StaleVersion
from docweave.patch import diff
from docweave.server.core.services import Services


def _types(messages) -> list:
    return [message["type"] for message in messages]


@pytest.fixture
def services(settings: Settings) -> Services:
    return Services(settings, flags=dict(FEATURE_DEFAULTS))


def _open_session(services: Services, document_id: str, name: str = "alice"):
    services.dispatch_events()
    client = services.hub.connect(name)
    services.hub.join(client.client_id, document_id)
    client.drain()
    return client


def _edit(services: Services, client, document_id: str, new_text: str) -> None:
    snapshot = services.hub.snapshot(document_id)
    patch = diff(snapshot["content"], new_text).text
    assert services.hub.submit_change(client.client_id, document_id, patch, snapshot["version"]).ok
    client.drain()


def test_merge_between_other_branches_leaves_session_alone(services: Services) -> None:
    store = services.store
    root = store.initialize_document("D", "Hello World")
    store.create_branch("D", "a", root.id)
    store.create_branch("D", "b", root.id)
    store.create_version("D", "Hello World from a", branch="a")
    alice = _open_session(services, "D")
    _edit(services, alice, "D", "Hello World, unsaved")

    store.merge_branches("D", "a", "b")
    services.dispatch_events()

    assert services.hub.snapshot("D")["content"] == "Hello World, unsaved"
    assert services.hub.stats("D")["dirty"] is True
    (event,) = alice.drain()
    assert event["type"] == "version-event"
    assert event["event"]["type"] == "branches-merged"
    assert event["reloaded"] is False


def test_restore_does_not_overwrite_uncommitted_edits(services: Services) -> None:
    store = services.store
    root = store.initialize_document("D", "one")
    store.create_version("D", "two")
    alice = _open_session(services, "D")
    _edit(services, alice, "D", "two and a half")

    store.restore("D", root.id)
    services.dispatch_events()

    assert services.hub.snapshot("D")["content"] == "two and a half"
    assert services.hub.stats("D")["dirty"] is True
    (event,) = alice.drain()
    assert event["event"]["type"] == "version-restored"
    assert event["reloaded"] is False


def test_merge_into_current_branch_reloads_clean_session(services: Services) -> None:
    store = services.store
    root = store.initialize_document("D", "Hello World")
    store.create_branch("D", "feature", root.id)
    store.create_version("D", "Hello World!", branch="feature")
    alice = _open_session(services, "D")

    result = store.merge_branches("D", "feature", "main")
    services.dispatch_events()

    assert result.advanced is True
    assert services.hub.snapshot("D")["content"] == "Hello World!"
    assert services.hub.stats("D")["dirty"] is False
    messages = alice.drain()
    assert _types(messages) == ["change", "version-committed", "version-event"]
    assert messages[0]["clientId"] == "version-store"
    assert messages[1]["versionId"] == result.node.id
    assert messages[2]["reloaded"] is True


def test_held_merge_does_not_reload(settings: Settings) -> None:
    services = Services(settings, flags={**FEATURE_DEFAULTS, "merge_advance_on_conflict": False})
    store = services.store
    root = store.initialize_document("D", "The cat sat on the mat.")
    store.create_branch("D", "feature", root.id)
    store.create_version("D", "0000 1111 2222 3333", branch="feature")
    store.create_version("D", "The cat sat on the hat.")
    alice = _open_session(services, "D")

    result = store.merge_branches("D", "feature", "main")
    services.dispatch_events()

    assert result.conflicts
    assert result.advanced is False
    assert services.hub.snapshot("D")["content"] == "The cat sat on the hat."
    (event,) = alice.drain()
    assert event["reloaded"] is False


def test_commit_session_checks_base_version(services: Services) -> None:
    alice = _open_session(services, "fresh")
    _edit(services, alice, "fresh", "Draft")

    with pytest.raises(StaleVersion) as excinfo:
        services.commit_session("fresh", base_version=0)
    assert excinfo.value.current_version == 1

    node = services.commit_session("fresh", author="alice", base_version=1)
    assert node.content == "Draft"
    assert services.hub.stats("fresh")["dirty"] is False
