"""Request dependencies."""

from __future__ import annotations

from fastapi import Request

from ..services.site import SiteService, get_site_service


def get_service(request: Request) -> SiteService:
    """The SiteService owned by the running app."""
    service = getattr(request.app.state, "site_service", None)
    return service or get_site_service()
