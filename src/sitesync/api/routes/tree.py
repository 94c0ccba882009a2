"""Tree probe routes."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from ...models.api import ProbeList
from ...services.site import SiteService
from ...services.tree_probe import MAX_DEPTH
from ..deps import get_service

router = APIRouter()


@router.get("/api/tree", response_model=ProbeList)
async def list_probes(service: SiteService = Depends(get_service)) -> ProbeList:
    return ProbeList(probes=service.probes.names())


@router.get("/api/tree/{probe}")
async def ls(
    probe: str,
    path: str = Query("", description="Path below the probe root"),
    depth: int = Query(0, ge=0, le=MAX_DEPTH, description="Levels to load below the path"),
    service: SiteService = Depends(get_service),
) -> Dict[str, Any]:
    """List a probe's tree at ``path``; unloaded sub-trees come back as placeholders."""
    tree = await service.probes.ls(probe, path=path, depth=depth)
    return tree.to_json()
