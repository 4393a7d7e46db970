from __future__ import annotations

from fastapi.testclient import TestClient


def _init(client: TestClient, doc: str = "report", content: str = "Hello") -> dict:
    response = client.post("/api/documents", json={"document_id": doc, "content": content})
    assert response.status_code == 201, response.text
    return response.json()["version"]


def _commit(client: TestClient, doc: str, content: str, **extra) -> dict:
    response = client.post(f"/api/documents/{doc}/versions", json={"content": content, **extra})
    assert response.status_code == 201, response.text
    return response.json()["version"]


def test_initialize_and_read_document(api_client: TestClient) -> None:
    root = _init(api_client)
    assert root["parents"] == []
    assert root["metadata"]["message"] == "Initial version"

    payload = api_client.get("/api/documents/report").json()
    assert payload["content"] == "Hello"
    assert payload["branch"] == "main"
    assert payload["version"]["id"] == root["id"]
    assert "content" not in payload["version"]

    listed = api_client.get("/api/documents").json()["documents"]
    assert [doc["documentId"] for doc in listed] == ["report"]
    assert listed[0]["versionCount"] == 1


def test_duplicate_and_missing_documents(api_client: TestClient) -> None:
    _init(api_client)
    duplicate = api_client.post("/api/documents", json={"document_id": "report"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "already_exists"

    missing = api_client.get("/api/documents/nothing-here")
    assert missing.status_code == 404
    body = missing.json()
    assert body["ok"] is False
    assert body["code"] == "not_found"


def test_invalid_document_id_is_rejected(api_client: TestClient) -> None:
    response = api_client.post("/api/documents", json={"document_id": "no spaces please"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_request_validation_errors(api_client: TestClient) -> None:
    _init(api_client)
    response = api_client.post("/api/documents/report/versions", json={"text": "wrong field"})
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_versions_history_and_diff(api_client: TestClient) -> None:
    root = _init(api_client)
    v1 = _commit(api_client, "report", "Hello World", author="alice", metadata={"message": "greet"})
    assert v1["parents"] == [root["id"]]
    assert v1["metadata"] == {"author": "alice", "message": "greet"}

    fetched = api_client.get(f"/api/documents/report/versions/{v1['id']}").json()["version"]
    assert fetched["content"] == "Hello World"

    history = api_client.get("/api/documents/report/history").json()["history"]
    assert [node["id"] for node in history] == [v1["id"], root["id"]]

    diff = api_client.get(
        "/api/documents/report/diff", params={"from": root["id"], "to": v1["id"]}
    ).json()
    assert diff["hunks"] == 1
    assert diff["patch"].startswith("@@")

    compare = api_client.get(
        "/api/documents/report/compare", params={"from": root["id"], "to": v1["id"]}
    ).json()
    assert compare["edits"] == [
        {"op": "equal", "text": "Hello"},
        {"op": "insert", "text": " World"},
    ]


def test_branch_switch_and_merge(api_client: TestClient) -> None:
    _init(api_client, "D", "Hello")
    v1 = _commit(api_client, "D", "Hello World")

    created = api_client.post("/api/documents/D/branches", json={"name": "feature"})
    assert created.status_code == 201
    assert created.json()["versionId"] == v1["id"]
    assert api_client.post("/api/documents/D/branches", json={"name": "feature"}).status_code == 409

    v2 = _commit(api_client, "D", "Hello World!", branch="feature")
    v3 = _commit(api_client, "D", "Hello there World")

    merged = api_client.post(
        "/api/documents/D/merge", json={"source": "feature", "target": "main"}
    ).json()
    assert merged["conflicts"] == []
    assert merged["ancestorId"] == v1["id"]
    assert merged["advanced"] is True
    assert set(merged["version"]["parents"]) == {v2["id"], v3["id"]}
    assert merged["version"]["content"] == "Hello there World!"

    switched = api_client.post("/api/documents/D/branches/feature/switch").json()
    assert switched == {"ok": True, "current": "feature", "versionId": v2["id"]}
    branches = api_client.get("/api/documents/D/branches").json()
    assert branches["current"] == "feature"
    assert {b["name"]: b["current"] for b in branches["branches"]} == {"main": False, "feature": True}
    assert api_client.get("/api/documents/D").json()["content"] == "Hello World!"


def test_merge_rejects_unknown_resolution(api_client: TestClient) -> None:
    _init(api_client, "D")
    response = api_client.post(
        "/api/documents/D/merge", json={"source": "main", "target": "main", "resolution": "mine"}
    )
    assert response.status_code == 422
    same = api_client.post("/api/documents/D/merge", json={"source": "main", "target": "main"})
    assert same.status_code == 400


def test_tags_and_restore(api_client: TestClient) -> None:
    root = _init(api_client, "D", "first")
    _commit(api_client, "D", "second")

    tag = api_client.post("/api/documents/D/tags", json={"name": "v1", "version_id": root["id"]})
    assert tag.status_code == 201
    assert tag.json()["tag"]["versionId"] == root["id"]
    assert api_client.post("/api/documents/D/tags", json={"name": "v1"}).status_code == 409
    assert [t["name"] for t in api_client.get("/api/documents/D/tags").json()["tags"]] == ["v1"]

    restored = api_client.post(
        "/api/documents/D/restore", json={"version_id": root["id"], "author": "carol"}
    )
    assert restored.status_code == 201
    version = restored.json()["version"]
    assert version["content"] == "first"
    assert version["metadata"]["restoredFrom"] == root["id"]
    assert api_client.get("/api/documents/D/history").json()["history"][0]["id"] == version["id"]


def test_search_documents(api_client: TestClient) -> None:
    _init(api_client, "notes", "Meeting about the roadmap")
    _init(api_client, "draft", "Chapter one")
    results = api_client.get("/api/documents/search", params={"q": "roadmap"}).json()["results"]
    assert [hit["documentId"] for hit in results] == ["notes"]
    assert results[0]["matches"] == ["content"]


def test_versioning_can_be_disabled(make_client) -> None:
    client = make_client(enable_versioning_api=False)
    response = client.get("/api/documents")
    assert response.status_code == 403
    assert response.json()["message"] == "versioning_api_disabled"


def test_request_id_is_echoed(api_client: TestClient) -> None:
    response = api_client.get("/health", headers={"X-Request-ID": "abc123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "abc123"
    assert "X-Process-Time" in response.headers

    missing = api_client.get("/api/documents/ghost", headers={"X-Request-ID": "req-9"})
    assert missing.json()["request_id"] == "req-9"


def test_status_lists_routes(api_client: TestClient) -> None:
    payload = api_client.get("/status").json()
    assert payload["ok"] is True
    assert "/api/documents" in payload["routes"]
    assert payload["services"]["store"] == "memory"
