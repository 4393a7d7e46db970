from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from docweave.server.core.services import Services, get_services

router = APIRouter(prefix="/api/documents", tags=["Documents"])

LOGGER = logging.getLogger(__name__)


class InitDocumentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_id: str = Field(..., min_length=1, max_length=128)
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    author: str = "system"


class CreateVersionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    branch: Optional[str] = None
    author: str = "system"


class CreateBranchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    start_version_id: Optional[str] = None
    author: str = "system"


class MergeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str
    target: str
    resolution: Literal["auto", "source", "target"] = "auto"
    author: str = "system"


class CreateTagRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    version_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    author: str = "system"


class RestoreRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version_id: str
    author: str = "system"


def _versioning(services: Services = Depends(get_services)) -> Services:
    if not services.feature_enabled("enable_versioning_api"):
        raise HTTPException(403, "versioning_api_disabled")
    return services


@router.post("", status_code=201)
async def initialize_document(
    body: InitDocumentRequest, services: Services = Depends(_versioning)
) -> Dict[str, Any]:
    node = services.store.initialize_document(
        body.document_id, body.content, body.metadata, author=body.author
    )
    services.dispatch_events()
    return {"ok": True, "documentId": body.document_id, "version": node.as_dict()}


@router.get("")
async def list_documents(services: Services = Depends(_versioning)) -> Dict[str, Any]:
    return {"ok": True, "documents": services.store.list_documents()}


@router.get("/search")
async def search_documents(
    q: str = Query(..., min_length=1), services: Services = Depends(_versioning)
) -> Dict[str, Any]:
    return {"ok": True, "query": q, "results": services.store.search_documents(q)}


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    branch: Optional[str] = None,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    store = services.store
    head = store.head(document_id, branch)
    return {
        "ok": True,
        "documentId": document_id,
        "branch": branch or store.current_branch(document_id),
        "content": head.content,
        "version": head.as_dict(include_content=False),
    }


@router.post("/{document_id}/versions", status_code=201)
async def create_version(
    document_id: str,
    body: CreateVersionRequest,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    node = services.store.create_version(
        document_id, body.content, body.metadata, branch=body.branch, author=body.author
    )
    services.dispatch_events()
    return {"ok": True, "version": node.as_dict()}


@router.get("/{document_id}/versions/{version_id}")
async def get_version(
    document_id: str, version_id: str, services: Services = Depends(_versioning)
) -> Dict[str, Any]:
    return {"ok": True, "version": services.store.get_version(document_id, version_id).as_dict()}


@router.get("/{document_id}/history")
async def get_history(
    document_id: str,
    branch: Optional[str] = None,
    full: bool = False,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    nodes = services.store.get_history(document_id, branch, first_parent=not full)
    return {
        "ok": True,
        "documentId": document_id,
        "branch": branch or services.store.current_branch(document_id),
        "history": [node.as_dict(include_content=False) for node in nodes],
    }


@router.get("/{document_id}/diff")
async def get_diff(
    document_id: str,
    from_id: str = Query(..., alias="from"),
    to_id: str = Query(..., alias="to"),
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    patches = services.store.get_diff(document_id, from_id, to_id)
    return {"ok": True, "from": from_id, "to": to_id, **patches.as_dict()}


@router.get("/{document_id}/compare")
async def compare_versions(
    document_id: str,
    from_id: str = Query(..., alias="from"),
    to_id: str = Query(..., alias="to"),
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    edits = services.store.compare_versions(document_id, from_id, to_id)
    return {
        "ok": True,
        "from": from_id,
        "to": to_id,
        "edits": [{"op": op, "text": text} for op, text in edits],
    }


# Branches ---------------------------------------------------------------------
@router.get("/{document_id}/branches")
async def list_branches(document_id: str, services: Services = Depends(_versioning)) -> Dict[str, Any]:
    return {
        "ok": True,
        "current": services.store.current_branch(document_id),
        "branches": services.store.list_branches(document_id),
    }


@router.post("/{document_id}/branches", status_code=201)
async def create_branch(
    document_id: str,
    body: CreateBranchRequest,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    start = body.start_version_id or services.store.head(document_id).id
    services.store.create_branch(document_id, body.name, start, author=body.author)
    services.dispatch_events()
    return {"ok": True, "name": body.name, "versionId": start}


@router.post("/{document_id}/branches/{name}/switch")
async def switch_branch(
    document_id: str,
    name: str,
    author: str = "system",
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    version_id = services.store.switch_branch(document_id, name, author=author)
    services.dispatch_events()
    return {"ok": True, "current": name, "versionId": version_id}


@router.post("/{document_id}/merge")
async def merge_branches(
    document_id: str,
    body: MergeRequest,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    result = services.store.merge_branches(
        document_id, body.source, body.target, body.resolution, author=body.author
    )
    services.dispatch_events()
    if result.conflicts:
        LOGGER.info(
            "merge produced conflicts",
            extra={"document_id": document_id, "conflicts": len(result.conflicts)},
        )
    return {"ok": True, **result.as_dict()}


# Tags -------------------------------------------------------------------------
@router.get("/{document_id}/tags")
async def list_tags(document_id: str, services: Services = Depends(_versioning)) -> Dict[str, Any]:
    return {"ok": True, "tags": [tag.as_dict() for tag in services.store.list_tags(document_id)]}


@router.post("/{document_id}/tags", status_code=201)
async def create_tag(
    document_id: str,
    body: CreateTagRequest,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    version_id = body.version_id or services.store.head(document_id).id
    tag = services.store.create_tag(
        document_id, body.name, version_id, body.metadata, author=body.author
    )
    services.dispatch_events()
    return {"ok": True, "tag": tag.as_dict()}


@router.post("/{document_id}/restore", status_code=201)
async def restore_version(
    document_id: str,
    body: RestoreRequest,
    services: Services = Depends(_versioning),
) -> Dict[str, Any]:
    node = services.store.restore(document_id, body.version_id, author=body.author)
    services.dispatch_events()
    return {"ok": True, "version": node.as_dict()}
