from __future__ import annotations

import json

import pytest

from docweave.core.errors import AlreadyExists, Corruption, LockHeld, NotFound
from docweave.storage import MemoryStore, document_key, lock_id_for
from docweave.versioning import VersionStore, content_hash


def _feature_and_main(store: VersionStore):
    root = store.initialize_document("D", "Hello")
    v1 = store.create_version("D", "Hello World")
    store.create_branch("D", "feature", v1.id)
    v2 = store.create_version("D", "Hello World!", branch="feature")
    v3 = store.create_version("D", "Hello there World")
    return root, v1, v2, v3


def test_initialize_creates_root_on_main(store: VersionStore) -> None:
    root = store.initialize_document("D", "Hello")
    assert root.parents == []
    assert root.content_hash == content_hash("Hello")
    assert root.metadata["message"] == "Initial version"
    assert store.current_branch("D") == "main"
    assert store.list_branches("D") == [{"name": "main", "versionId": root.id, "current": True}]
    with pytest.raises(AlreadyExists):
        store.initialize_document("D", "again")


def test_create_version_extends_current_branch(store: VersionStore) -> None:
    root = store.initialize_document("D", "Hello")
    v1 = store.create_version("D", "Hello World", {"message": "greet"}, author="alice")

    assert v1.parents == [root.id]
    assert v1.id in store.get_version("D", root.id).child_ids
    assert v1.metadata == {"author": "alice", "message": "greet"}
    assert store.get_content("D") == "Hello World"
    assert [node.id for node in store.get_history("D")] == [v1.id, root.id]


def test_create_version_unknown_document(store: VersionStore) -> None:
    with pytest.raises(NotFound):
        store.create_version("missing", "text")


def test_identical_content_is_idempotent(store: VersionStore) -> None:
    store.initialize_document("D", "Hello")
    first = store.create_version("D", "Hello World")
    second = store.create_version("D", "Hello World")
    assert second.id == first.id
    assert len(store.get_history("D")) == 2


def test_reuses_existing_child_with_same_content(store: VersionStore) -> None:
    root = store.initialize_document("D", "base")
    store.create_branch("D", "other", root.id)
    on_main = store.create_version("D", "shared edit")
    on_other = store.create_version("D", "shared edit", branch="other")
    assert on_other.id == on_main.id
    assert store.head("D", "other").id == on_main.id
    assert len(store.get_version("D", root.id).child_ids) == 1


def test_branch_errors(store: VersionStore) -> None:
    root = store.initialize_document("D", "x")
    store.create_branch("D", "feature", root.id)
    with pytest.raises(AlreadyExists):
        store.create_branch("D", "feature", root.id)
    with pytest.raises(NotFound):
        store.create_branch("D", "ghost", "no-such-version")
    with pytest.raises(NotFound):
        store.switch_branch("D", "nope")


def test_switch_branch_changes_commit_target(store: VersionStore) -> None:
    root = store.initialize_document("D", "x")
    store.create_branch("D", "feature", root.id)
    assert store.switch_branch("D", "feature") == root.id
    assert store.current_branch("D") == "feature"
    node = store.create_version("D", "x on feature")
    assert store.head("D", "feature").id == node.id
    assert store.head("D", "main").id == root.id


def test_merge_scenario_combines_both_branches(store: VersionStore) -> None:
    _, v1, v2, v3 = _feature_and_main(store)

    result = store.merge_branches("D", "feature", "main", "auto")

    assert set(result.node.parents) == {v2.id, v3.id}
    assert result.node.parents[0] == v3.id
    assert result.ancestor_id == v1.id
    assert result.conflicts == []
    assert result.advanced is True
    assert result.node.content == "Hello there World!"
    assert result.node.metadata["type"] == "merge"
    assert result.node.metadata["source"] == "feature"
    assert result.node.metadata["target"] == "main"
    assert result.node.metadata["conflicts"] is False
    assert store.head("D", "main").id == result.node.id
    assert store.head("D", "feature").id == v2.id
    assert result.node.id in store.get_version("D", v2.id).child_ids
    assert result.node.id in store.get_version("D", v3.id).child_ids


def test_merge_verbatim_resolutions(store: VersionStore) -> None:
    _feature_and_main(store)
    source = store.merge_branches("D", "feature", "main", "source")
    assert source.node.content == "Hello World!"
    assert source.conflicts == []


def test_merge_rejects_unknown_resolution_and_branches(store: VersionStore) -> None:
    _feature_and_main(store)
    with pytest.raises(ValueError):
        store.merge_branches("D", "feature", "main", "theirs")
    with pytest.raises(NotFound):
        store.merge_branches("D", "ghost", "main")


def test_conflicting_merge_reports_conflicts(store: VersionStore) -> None:
    root = store.initialize_document("D", "The cat sat on the mat.")
    store.create_branch("D", "feature", root.id)
    store.create_version("D", "0000 1111 2222 3333", branch="feature")
    store.create_version("D", "The cat sat on the hat.")

    result = store.merge_branches("D", "feature", "main")

    assert result.conflicts
    assert all(conflict.side == "target" for conflict in result.conflicts)
    assert result.conflicts[0].patch.startswith("@@")
    assert result.node.metadata["conflicts"] is True
    assert store.head("D", "main").id == result.node.id


def test_conflicting_merge_can_hold_target_pointer(memory_store: MemoryStore) -> None:
    store = VersionStore(memory_store, advance_on_conflict=False)
    root = store.initialize_document("D", "The cat sat on the mat.")
    store.create_branch("D", "feature", root.id)
    store.create_version("D", "0000 1111 2222 3333", branch="feature")
    tip = store.create_version("D", "The cat sat on the hat.")

    result = store.merge_branches("D", "feature", "main")

    assert result.conflicts
    assert result.advanced is False
    assert store.head("D", "main").id == tip.id
    assert store.get_version("D", result.node.id).parents == [tip.id, result.node.parents[1]]


def test_ancestor_search_after_criss_cross_merges(store: VersionStore) -> None:
    root = store.initialize_document("D", "line one\nline two\nline three\n")
    store.create_branch("D", "feature", root.id)
    store.create_version("D", "line one\nline two\nline three\nfeature tail\n", branch="feature")
    store.create_version("D", "main head\nline one\nline two\nline three\n")
    first = store.merge_branches("D", "feature", "main")
    # Bring feature up to date, then diverge again.
    store.merge_branches("D", "main", "feature")
    store.create_version("D", first.node.content.replace("line two", "line 2"), branch="feature")

    second = store.merge_branches("D", "feature", "main")

    assert second.ancestor_id == first.node.id
    assert second.conflicts == []
    assert "line 2" in second.node.content
    assert second.node.content.startswith("main head\n")


def test_history_terminates_at_root(store: VersionStore) -> None:
    root, *_ = _feature_and_main(store)
    store.merge_branches("D", "feature", "main")

    history = store.get_history("D", "main")
    assert history[-1].id == root.id
    assert history[-1].parents == []
    assert len(history) == len({node.id for node in history})

    full = store.get_history("D", "main", first_parent=False)
    assert len(full) == 5
    assert full[-1].id == root.id


def test_tags_are_unique(store: VersionStore) -> None:
    root = store.initialize_document("D", "x")
    tag = store.create_tag("D", "v1.0", root.id, {"note": "first"})
    assert tag.as_dict()["versionId"] == root.id
    with pytest.raises(AlreadyExists):
        store.create_tag("D", "v1.0", root.id)
    with pytest.raises(NotFound):
        store.create_tag("D", "v2.0", "missing")
    assert [t.name for t in store.list_tags("D")] == ["v1.0"]


def test_restore_appends_new_version(store: VersionStore) -> None:
    root = store.initialize_document("D", "first")
    v1 = store.create_version("D", "second")

    restored = store.restore("D", root.id, author="carol")

    assert restored.id not in {root.id, v1.id}
    assert restored.parents == [v1.id]
    assert restored.content == "first"
    assert restored.content_hash == root.content_hash
    assert restored.metadata["type"] == "restore"
    assert restored.metadata["restoredFrom"] == root.id
    assert store.get_content("D") == "first"


def test_diff_and_compare(store: VersionStore) -> None:
    root = store.initialize_document("D", "Hello")
    v1 = store.create_version("D", "Hello World")
    patches = store.get_diff("D", root.id, v1.id)
    assert len(patches) == 1
    assert store.compare_versions("D", root.id, v1.id) == [("equal", "Hello"), ("insert", " World")]
    with pytest.raises(NotFound):
        store.get_diff("D", root.id, "missing")


def test_state_survives_reload(memory_store: MemoryStore) -> None:
    store = VersionStore(memory_store)
    root = store.initialize_document("D", "Hello")
    store.create_branch("D", "feature", root.id)
    store.switch_branch("D", "feature")
    v1 = store.create_version("D", "Hello feature")

    reloaded = VersionStore(memory_store)
    assert reloaded.current_branch("D") == "feature"
    assert reloaded.head("D").id == v1.id
    assert reloaded.get_version("D", root.id).child_ids == [v1.id]


def test_corrupted_record_is_rejected(memory_store: MemoryStore) -> None:
    VersionStore(memory_store).initialize_document("D", "trusted")
    record = json.loads(memory_store.get(document_key("D")))
    record["nodes"][0]["content"] = "tampered"
    memory_store.put(document_key("D"), json.dumps(record).encode("utf-8"))

    with pytest.raises(Corruption):
        VersionStore(memory_store).get_content("D")


def test_lock_held_by_other_writer_rolls_back(memory_store: MemoryStore) -> None:
    store = VersionStore(memory_store)
    root = store.initialize_document("D", "base")
    assert memory_store.acquire_lock(lock_id_for("D"), "mallory", ttl=300)

    with pytest.raises(LockHeld):
        store.create_version("D", "blocked", author="alice")

    assert store.head("D").id == root.id
    assert store.get_version("D", root.id).child_ids == []
    memory_store.release_lock(lock_id_for("D"), "mallory")
    assert store.create_version("D", "unblocked", author="alice").parents == [root.id]


def test_list_and_search_documents(store: VersionStore) -> None:
    root = store.initialize_document("notes", "Meeting about the roadmap")
    store.initialize_document("draft", "Chapter one")
    store.create_tag("notes", "release-candidate", root.id)

    assert [doc["documentId"] for doc in store.list_documents()] == ["draft", "notes"]
    assert [hit["documentId"] for hit in store.search_documents("ROADMAP")] == ["notes"]
    assert store.search_documents("release")[0]["matches"] == ["tag"]
    assert store.search_documents("   ") == []


def test_events_are_emitted_in_order(store: VersionStore) -> None:
    _feature_and_main(store)
    store.merge_branches("D", "feature", "main")
    kinds = [event.kind for event in store.drain_events()]
    assert kinds == [
        "document-initialized",
        "version-created",
        "branch-created",
        "version-created",
        "version-created",
        "branches-merged",
    ]
    assert store.drain_events() == []
    assert store.recent_events(limit=1)[0].kind == "branches-merged"


def test_merge_with_long_unlocatable_hunk_reports_conflict(store: VersionStore) -> None:
    base = "alpha beta gamma delta epsilon zeta eta theta iota kappa lambda mu"
    edit = " ".join(w.upper() if i % 2 else w for i, w in enumerate(base.split()))
    root = store.initialize_document("D", base)
    store.create_branch("D", "feature", root.id)
    store.create_version("D", "nothing in common at all here!", branch="feature")
    store.create_version("D", edit)

    result = store.merge_branches("D", "feature", "main")

    target_hunks = store.get_diff("D", root.id, result.node.parents[0]).hunks
    assert result.conflicts
    for conflict in result.conflicts:
        assert conflict.side == "target"
        assert conflict.patch == target_hunks[conflict.index]
    assert result.node.metadata["conflicts"] is True
