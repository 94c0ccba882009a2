"""Initial site content written when a store has no Site yet."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..errors import SyncError
from ..models.site import Page, Site
from .sync import SyncRegistry

logger = logging.getLogger(__name__)

INDEX_PAGE: Dict[str, Any] = {
    "id": "/index",
    "title": "Home",
    "description": "Site home page",
    "notes": "This page was created when the site was initialized. Edit it or add components to it.",
    "components": [
        {
            "id": "c1",
            "view_class": "core.Html",
            "view_options": {
                "title": "Welcome",
                "html": "<h2>Welcome</h2><p>Pages live in the site database; edit one and every open copy updates.</p>",
            },
            "css": {".nm-cv": "top:10px;"},
        }
    ],
}

NOT_FOUND_PAGE: Dict[str, Any] = {
    "id": "404",
    "title": "Page Not Found",
    "description": "Template for pages that don't exist yet",
    "components": [
        {
            "id": "c1",
            "view_class": "core.Html",
            "view_options": {
                "title": "Page not found",
                "html": "<p>This page doesn't exist yet. Add a component to create it.</p>",
            },
            "css": {".nm-cv": "top:10px;"},
        }
    ],
}

PAGE_TEMPLATES: List[Dict[str, Any]] = [INDEX_PAGE, NOT_FOUND_PAGE]


async def initialize_site(sync: SyncRegistry) -> Site:
    """Persist a default ``Site`` and the baseline pages.

    Returns the new site in live mode. Pages that fail to save are logged;
    the first failure is raised once every template has been tried.
    """
    logger.info("No site found; initializing a new one")
    site = Site(sync=sync)
    await site.save(live_sync=True)

    errors: List[SyncError] = []
    for template in PAGE_TEMPLATES:
        page = Page(template, sync=sync)
        try:
            await page.save()
            logger.info(f"Created page: {page.id}")
        except SyncError as exc:
            logger.error(f"Failed to create page {template['id']}: {exc}")
            errors.append(exc)
    if errors:
        raise errors[0]
    return site


__all__ = ["INDEX_PAGE", "NOT_FOUND_PAGE", "PAGE_TEMPLATES", "initialize_site"]
