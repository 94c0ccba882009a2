"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..services.config import get_config
from ..services.site import SiteService, get_site_service
from .middleware import register_error_handlers
from .routes import health, pages, sync, tree

logger = logging.getLogger(__name__)


def create_app(service: Optional[SiteService] = None) -> FastAPI:
    """Build the app; the lifespan starts and stops ``service``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        site_service = service or get_site_service()
        app.state.site_service = site_service
        logger.info("Starting site service...")
        await site_service.start()
        try:
            yield
        finally:
            logger.info("Stopping site service...")
            await site_service.stop()

    app = FastAPI(
        title="sitesync API",
        description="Live, persisted site pages and trees",
        version="0.1.0",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.site_service = service

    config = service.config if service is not None else get_config()
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    register_error_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(pages.router, tags=["pages"])
    app.include_router(sync.router, tags=["sync"])
    app.include_router(tree.router, tags=["tree"])
    return app


__all__ = ["create_app"]
