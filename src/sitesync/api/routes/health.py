"""Liveness route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...models.api import HealthResponse
from ...services.site import SiteService
from ..deps import get_service

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(service: SiteService = Depends(get_service)) -> HealthResponse:
    site_name = service.site.get("name") if service.site is not None else None
    return HealthResponse(started=service.started, site=site_name)
