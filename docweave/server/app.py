from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from docweave import __version__
from docweave.config.settings import Settings, load_settings
from docweave.logging_config import init_logging
from docweave.server.core.errors import register_exception_handlers
from docweave.server.core.middleware_ex import RequestIDMiddleware, TimingMiddleware
from docweave.server.core.services import Services
from docweave.server.modules import collab_api, documents_api
from docweave.storage import DurableStore

LOGGER = logging.getLogger(__name__)

ROUTER_MODULES = (documents_api, collab_api)


def create_app(
    settings: Optional[Settings] = None,
    *,
    durable: Optional[DurableStore] = None,
    flags: Optional[Dict[str, bool]] = None,
    configure_logging: bool = False,
) -> FastAPI:
    """Application factory used by the CLI and by ASGI servers."""
    settings = settings or load_settings()
    if configure_logging:
        log_path = init_logging(settings.log_dir, level=settings.log_level)
        LOGGER.info(
            "Server logging configured",
            extra={"log_path": str(log_path), "log_level": settings.log_level},
        )

    services = Services(settings, durable=durable, flags=flags)
    app = FastAPI(title="docweave", version=__version__)
    app.state.version = __version__
    app.state.settings = settings
    app.state.services = services

    if settings.cors_origins:
        origins = list(dict.fromkeys(settings.cors_origins))
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        LOGGER.info("CORS enabled", extra={"origins": origins})

    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)

    @app.on_event("startup")
    async def _on_startup() -> None:
        services.start()

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        await services.stop()

    for module in ROUTER_MODULES:
        app.include_router(module.router)

    @app.get("/health", tags=["System"], summary="Simple health check")
    async def core_health():
        return {"status": "ok"}

    @app.get("/status", tags=["System"], summary="Service status overview")
    async def core_status():
        routes = sorted({route.path for route in app.routes if isinstance(route, APIRoute)})
        return {
            "ok": True,
            "version": __version__,
            "routes": routes,
            "services": services.status(),
        }

    LOGGER.info(
        "FastAPI application ready",
        extra={"routes": len(app.routes), "store": settings.store, "version": __version__},
    )
    return app


__all__ = ["create_app"]
