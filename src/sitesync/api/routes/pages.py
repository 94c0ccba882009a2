"""Page routes: url to page resolution through the PageStore."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from ...services.site import SiteService
from ..deps import get_service

router = APIRouter()

PAGES_PREFIX = "/api/pages"
INDEX_PATH = "index"


def _redirect(request: Request, path: str) -> RedirectResponse:
    target = f"{PAGES_PREFIX}/{path}"
    if request.url.query:
        target += f"?{request.url.query}"
    return RedirectResponse(target, status_code=302)


@router.get(PAGES_PREFIX, include_in_schema=False)
async def site_root(request: Request) -> RedirectResponse:
    return _redirect(request, INDEX_PATH)


@router.get(PAGES_PREFIX + "/{path:path}")
async def get_page(
    path: str,
    request: Request,
    service: SiteService = Depends(get_service),
) -> Any:
    """Return the page at ``path`` merged over the site attributes.

    ``/`` is served as ``/index``; a trailing slash redirects to the same
    url without it.
    """
    if not path:
        return _redirect(request, INDEX_PATH)
    if path.endswith("/"):
        return _redirect(request, path[:-1])
    page: Dict[str, Any] = await service.render_page(f"/{path}")
    return page
