"""Sync routes: the server side of ``HttpSyncAdapter``."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Path, Response, status

from ...models.api import WriteResponse
from ...services.http_sync import ORIGIN_HEADER
from ...services.site import SiteService
from ..deps import get_service

logger = logging.getLogger(__name__)

router = APIRouter()

EntityType = Annotated[str, Path(pattern=r"^[A-Za-z][A-Za-z0-9_-]*$", description="Entity type name")]


@router.post("/api/sync/{entity_type}", response_model=WriteResponse, status_code=201)
async def create_entity(
    entity_type: EntityType,
    attrs: Dict[str, Any] = Body(...),
    origin: Optional[str] = Header(None, alias=ORIGIN_HEADER),
    service: SiteService = Depends(get_service),
) -> WriteResponse:
    """Create an entity; an id is generated when the body has none."""
    result = await service.sync.route(entity_type).create(attrs, origin=origin)
    logger.info(f"Created {entity_type} '{result.id}' over HTTP")
    return WriteResponse(id=str(result.id), revision=result.revision)


@router.get("/api/sync/{entity_type}/{id:path}")
async def read_entity(
    entity_type: EntityType,
    id: str,
    service: SiteService = Depends(get_service),
) -> Dict[str, Any]:
    return await service.sync.route(entity_type).read(id)


@router.put("/api/sync/{entity_type}/{id:path}", response_model=WriteResponse)
async def update_entity(
    entity_type: EntityType,
    id: str,
    attrs: Dict[str, Any] = Body(...),
    origin: Optional[str] = Header(None, alias=ORIGIN_HEADER),
    service: SiteService = Depends(get_service),
) -> WriteResponse:
    result = await service.sync.route(entity_type).update(id, attrs, origin=origin)
    return WriteResponse(id=str(result.id), revision=result.revision)


@router.delete("/api/sync/{entity_type}/{id:path}", status_code=204)
async def delete_entity(
    entity_type: EntityType,
    id: str,
    origin: Optional[str] = Header(None, alias=ORIGIN_HEADER),
    service: SiteService = Depends(get_service),
) -> Response:
    await service.sync.route(entity_type).delete(id, origin=origin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
