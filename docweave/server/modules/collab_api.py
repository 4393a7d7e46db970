from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field

from docweave.collab import CollabClient
from docweave.core.errors import DocweaveError
from docweave.server.core.services import Services, get_services, get_ws_services

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api/collab", tags=["Collaboration"])


class CommentRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str = Field(..., min_length=1)
    author: Optional[str] = None
    section_id: Optional[str] = None


class CommitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    author: str = "system"
    message: Optional[str] = None
    base_version: Optional[int] = None


def _dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _collab(services: Services = Depends(get_services)) -> Services:
    if not services.feature_enabled("enable_collaboration"):
        raise HTTPException(403, "collaboration_disabled")
    return services


async def _pump(websocket: WebSocket, client: CollabClient) -> None:
    while True:
        message = await client.outbox.get()
        await websocket.send_text(_dumps(message))


def _error(client: CollabClient, code: str, message: str, **extra: Any) -> None:
    client.send({"type": "error", "code": code, "message": message, **extra})


def _dispatch(
    services: Services,
    client: CollabClient,
    body: Dict[str, Any],
    default_document: Optional[str],
) -> None:
    hub = services.hub
    client_id = client.client_id
    msg_type = str(body.get("type") or "").strip().lower()
    document_id = str(body.get("documentId") or default_document or "").strip()

    if msg_type == "ping":
        hub.touch(client_id)
        client.send({"type": "pong", "ts": time.time()})
        return

    if not document_id:
        _error(client, "missing_document", "documentId is required", received=msg_type)
        return

    if msg_type == "join":
        hub.join(client_id, document_id, body.get("username"))
    elif msg_type == "change":
        patch_text = body.get("changes", body.get("patch", ""))
        try:
            base_version = int(body.get("version"))
        except (TypeError, ValueError):
            _error(client, "invalid_request", "version must be an integer", documentId=document_id)
            return
        hub.submit_change(client_id, document_id, patch_text, base_version)
    elif msg_type == "cursor":
        hub.update_cursor(client_id, document_id, body.get("position"))
    elif msg_type == "selection":
        hub.update_selection(client_id, document_id, body.get("range"))
    elif msg_type == "comment":
        comment = body.get("comment")
        if not isinstance(comment, dict):
            _error(client, "invalid_request", "comment must be an object", documentId=document_id)
            return
        hub.add_comment(document_id, comment, client_id=client_id)
    elif msg_type in {"comment-removed", "remove-comment"}:
        if not hub.remove_comment(document_id, str(body.get("commentId") or "")):
            _error(client, "not_found", "comment not found", documentId=document_id)
    elif msg_type == "lock":
        section_id = str(body.get("sectionId") or "")
        if not hub.lock_section(document_id, section_id, client_id):
            _error(client, "lock_held", "section is locked", documentId=document_id, sectionId=section_id)
    elif msg_type == "unlock":
        section_id = str(body.get("sectionId") or "")
        if not hub.unlock_section(document_id, section_id, client_id):
            _error(
                client,
                "not_lock_holder",
                "section is not locked by this client",
                documentId=document_id,
                sectionId=section_id,
            )
    elif msg_type == "sync":
        hub.sync(client_id, document_id)
    elif msg_type == "commit":
        base = body.get("version")
        node = services.commit_session(
            document_id,
            author=client.username,
            message=body.get("message"),
            base_version=None if base is None else int(base),
        )
        client.send({"type": "commit-ack", "documentId": document_id, "versionId": node.id})
    elif msg_type == "leave":
        hub.leave(client_id, document_id)
    else:
        _error(client, "unknown_message_type", f"unsupported message '{msg_type}'", received=msg_type)


def _guarded(
    services: Services,
    client: CollabClient,
    body: Dict[str, Any],
    default_document: Optional[str],
) -> None:
    """Run one client message; domain errors go back to the sender only."""
    try:
        _dispatch(services, client, body, default_document)
    except DocweaveError as exc:
        extra = {"details": exc.details} if exc.details else {}
        _error(client, exc.code, exc.message, **extra)
    except ValueError as exc:
        _error(client, "invalid_request", str(exc))


@router.websocket("/ws")
async def collab_ws(websocket: WebSocket) -> None:
    services = get_ws_services(websocket)
    await websocket.accept()
    if not services.feature_enabled("enable_collaboration"):
        await websocket.send_text(
            _dumps({"type": "error", "code": "collaboration_disabled", "message": "collaboration is disabled"})
        )
        await websocket.close(code=4403)
        return

    document_id = (websocket.query_params.get("document_id") or "").strip() or None
    username = (
        websocket.query_params.get("username")
        or websocket.headers.get("x-docweave-user")
        or "anon"
    )
    hub = services.hub
    client = hub.connect(username, loop=asyncio.get_running_loop())
    sender = asyncio.create_task(_pump(websocket, client))
    try:
        if document_id:
            _guarded(services, client, {"type": "join", "username": username}, document_id)
        while True:
            raw = await websocket.receive_text()
            try:
                body = json.loads(raw)
            except json.JSONDecodeError:
                _error(client, "invalid_json", "message is not valid JSON")
                continue
            if not isinstance(body, dict):
                _error(client, "invalid_json", "message must be a JSON object")
                continue
            _guarded(services, client, body, document_id)
    except WebSocketDisconnect:
        LOGGER.info("Collab websocket disconnected (%s)", client.client_id)
    finally:
        hub.disconnect(client.client_id)
        hub.discard_empty()
        sender.cancel()
        # The pump may also have failed on a closed socket; either way it is done.
        await asyncio.gather(sender, return_exceptions=True)


@router.get("/health")
async def collab_health(services: Services = Depends(_collab)) -> Dict[str, Any]:
    return {"ok": True, "stats": services.hub.summary(), "feature_flags": dict(services.flags)}


@router.get("/sessions/{document_id}")
async def session_stats(document_id: str, services: Services = Depends(_collab)) -> Dict[str, Any]:
    return {
        "ok": True,
        "stats": services.hub.stats(document_id),
        "users": services.hub.active_users(document_id),
    }


@router.get("/sessions/{document_id}/snapshot")
async def session_snapshot(document_id: str, services: Services = Depends(_collab)) -> Dict[str, Any]:
    return {"ok": True, "snapshot": services.hub.snapshot(document_id)}


@router.get("/sessions/{document_id}/comments")
async def list_comments(document_id: str, services: Services = Depends(_collab)) -> Dict[str, Any]:
    return {"ok": True, "comments": services.hub.comments(document_id)}


@router.post("/sessions/{document_id}/comments", status_code=201)
async def add_comment(
    document_id: str,
    body: CommentRequest,
    services: Services = Depends(_collab),
) -> Dict[str, Any]:
    comment = services.hub.add_comment(document_id, body.model_dump(exclude_none=True))
    return {"ok": True, "comment": comment}


@router.delete("/sessions/{document_id}/comments/{comment_id}")
async def remove_comment(
    document_id: str,
    comment_id: str,
    services: Services = Depends(_collab),
) -> Dict[str, Any]:
    if not services.hub.remove_comment(document_id, comment_id):
        raise HTTPException(404, "comment_not_found")
    return {"ok": True, "commentId": comment_id}


@router.post("/sessions/{document_id}/commit")
async def commit_session(
    document_id: str,
    body: CommitRequest,
    services: Services = Depends(_collab),
) -> Dict[str, Any]:
    node = services.commit_session(
        document_id, author=body.author, message=body.message, base_version=body.base_version
    )
    return {
        "ok": True,
        "version": node.as_dict(include_content=False),
        "stats": services.hub.stats(document_id),
    }
