"""FastMCP server exposing the site store to agents."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

from ..services.site import SiteService, get_site_service
from ..services.tree_probe import MAX_DEPTH

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "sitesync",
    instructions=(
        "Read access to a live site store. Pages are addressed by url ('/index', '/docs/intro'); "
        "unknown urls resolve to a copy of the 404 page with is_404_page=true. Entities are read by "
        "entity type (Page, Site, Tour, ...) and id. Tree probes ('pages', 'tours', 'files') list "
        "hierarchies; depth 0 returns children as placeholders, each extra level loads one more."
    ),
)


async def _service() -> SiteService:
    service = get_site_service()
    if not service.started:
        await service.start()
    return service


def _log_call(tool_name: str, start_time: float, **extra: Any) -> None:
    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "MCP tool called",
        extra={"tool_name": tool_name, "duration_ms": f"{duration_ms:.2f}", **extra},
    )


@mcp.tool(name="ls", description="List a tree probe at a path, loading `depth` extra levels.")
async def ls(
    probe: str = Field(..., description="Probe name, e.g. 'pages', 'tours' or 'files'."),
    path: str = Field(default="", description="Slash separated path below the probe root."),
    depth: int = Field(default=0, ge=0, le=MAX_DEPTH, description="Levels to load below the path."),
) -> Dict[str, Any]:
    start_time = time.time()
    service = await _service()
    tree = await service.probes.ls(probe, path=path, depth=depth)
    _log_call("ls", start_time, probe=probe, path=path or "(root)", depth=depth)
    return tree.to_json()


@mcp.tool(name="read_entity", description="Read a persisted entity by type and id.")
async def read_entity(
    entity_type: str = Field(..., description="Entity type name, e.g. 'Page' or 'Tour'."),
    id: str = Field(..., description="Entity id, e.g. '/index' for a page."),
) -> Dict[str, Any]:
    start_time = time.time()
    service = await _service()
    attrs = await service.read_entity(entity_type, id)
    _log_call("read_entity", start_time, entity_type=entity_type, entity_id=id)
    return attrs


@mcp.tool(
    name="resolve_page",
    description="Resolve a url the way the site serves it, including the 404 fallback.",
)
async def resolve_page(
    url: str = Field(..., description="Page url, e.g. '/index'. Query strings are ignored."),
) -> Dict[str, Any]:
    start_time = time.time()
    service = await _service()
    page = await service.pages.resolve(url)
    _log_call("resolve_page", start_time, url=url, is_404_page=bool(page.get("is_404_page")))
    return page.to_json(deep=True, trim=True)


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    transport = os.getenv("MCP_TRANSPORT", "stdio").strip().lower() or "stdio"

    if transport == "http":
        port = int(os.getenv("MCP_PORT", "8001"))
        host = os.getenv("MCP_HOST", "127.0.0.1")
        logger.info(
            "Starting MCP server",
            extra={"transport": transport, "host": host, "port": port},
        )
        mcp.run(transport=transport, host=host, port=port)
    else:
        logger.info("Starting MCP server", extra={"transport": transport})
        mcp.run(transport=transport)


if __name__ == "__main__":
    main()
