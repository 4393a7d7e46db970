from __future__ import annotations

import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docweave.core.errors import DocweaveError, PatchFormatError
from docweave.logging_config import reset_request_id, set_request_id

_log = logging.getLogger("docweave.errors")


def _request_id(request: Request) -> Optional[str]:
    state_rid = getattr(request.state, "request_id", None)
    return state_rid or request.headers.get("X-Request-ID") or None


def _error_response(
    request: Request,
    *,
    status: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    rid = _request_id(request)
    body = {"ok": False, "code": code, "message": message}
    if details is not None:
        body["details"] = details
    if rid:
        body["request_id"] = rid

    response = JSONResponse(body, status_code=status)
    if rid:
        response.headers["X-Request-ID"] = rid
    return response


def register_exception_handlers(app) -> None:
    @app.exception_handler(DocweaveError)
    async def _domain_exc(request: Request, exc: DocweaveError):
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        _log.log(level, "%s: %s", exc.code, exc.message, extra={"details": exc.details})
        return _error_response(
            request,
            status=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details or None,
        )

    @app.exception_handler(PatchFormatError)
    async def _patch_exc(request: Request, exc: PatchFormatError):
        return _error_response(
            request,
            status=PatchFormatError.status_code,
            code=PatchFormatError.code,
            message=str(exc),
        )

    @app.exception_handler(ValueError)
    async def _value_exc(request: Request, exc: ValueError):
        return _error_response(request, status=400, code="invalid_request", message=str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc(request: Request, exc: StarletteHTTPException):
        detail = exc.detail
        return _error_response(
            request,
            status=exc.status_code,
            code=f"http_{exc.status_code}",
            message=str(detail) if detail else "Request failed",
            details=detail if isinstance(detail, (dict, list)) else None,
        )

    @app.exception_handler(RequestValidationError)
    async def _val_exc(request: Request, exc: RequestValidationError):
        _log.debug("validation error: %s", exc)
        return _error_response(
            request,
            status=422,
            code="validation_error",
            message="Request validation failed",
            details=jsonable_errors(exc),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        token = set_request_id(_request_id(request))
        err_id = uuid.uuid4().hex
        try:
            _log.error(
                "Unhandled exception [%s]: %s",
                err_id,
                "".join(traceback.format_exception(exc)),
            )
            return _error_response(
                request,
                status=500,
                code="internal_error",
                message="Internal server error",
                details={"error_id": err_id},
            )
        finally:
            reset_request_id(token)


def jsonable_errors(exc: RequestValidationError) -> list:
    errors = []
    for item in exc.errors():
        entry = {key: value for key, value in item.items() if key != "ctx"}
        if "ctx" in item:
            entry["ctx"] = {key: str(value) for key, value in item["ctx"].items()}
        errors.append(entry)
    return errors


__all__ = ["register_exception_handlers"]
