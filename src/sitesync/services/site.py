"""The per-process site store: sync routes, page cache, probes and the Site."""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, Optional

from ..errors import NotFoundError
from ..models.site import Site
from .config import AppConfig, get_config
from .file_sync import FileSyncAdapter
from .file_watch import mkdir_r
from .page_store import PageStore
from .seed import initialize_site
from .sync import SyncRegistry
from .tree_probe import DirectoryTreeProbe, PagesProbe, ProbeRegistry, ToursProbe

logger = logging.getLogger(__name__)


class SiteService:
    """Owns all mutable site state for one process.

    Tests build their own instances; the HTTP and MCP boundaries share one
    through ``get_site_service``.
    """

    def __init__(self, config: Optional[AppConfig] = None, sync: Optional[SyncRegistry] = None):
        self.config = config or get_config()
        self.sync = sync or SyncRegistry.from_config(self.config)
        self.pages = PageStore(self.sync)
        self.probes = ProbeRegistry()
        self.site: Optional[Site] = None
        self.started = False
        self._register_probes()

    def _register_probes(self) -> None:
        for probe_cls in (PagesProbe, ToursProbe):
            adapter = self.sync.adapter_for(probe_cls.entity_type)
            if isinstance(adapter, FileSyncAdapter):
                self.probes.register(probe_cls.name, functools.partial(probe_cls.create, adapter))
        self.probes.register(
            "files",
            functools.partial(DirectoryTreeProbe.create, self.config.site_db_path),
        )

    async def start(self) -> Site:
        """Load the Site in live mode, initializing the store when it has none."""
        if self.started and self.site is not None:
            return self.site
        for adapter in self.sync.adapters():
            if isinstance(adapter, FileSyncAdapter) and adapter.root_path is not None:
                await mkdir_r(adapter.root_path)

        site = Site(sync=self.sync)
        try:
            await site.fetch(live_sync=True)
        except NotFoundError:
            site = await initialize_site(self.sync)
        self.site = site
        self.started = True
        logger.info(f"Site '{site.get('name')}' started")
        return site

    async def stop(self) -> None:
        self.pages.clear()
        if self.site is not None:
            self.site.stop_live_sync()
        await self.sync.close()
        self.started = False
        logger.info("Site stopped")

    async def render_page(self, url: str) -> Dict[str, Any]:
        """Page content merged over the site attributes, as served to clients."""
        page = await self.pages.resolve(url)
        data = self.site.to_json() if self.site is not None else {}
        data.update(page.to_json(deep=True, trim=True))
        return data

    async def read_entity(self, entity_type: str, id: str) -> Dict[str, Any]:
        return await self.sync.route(entity_type).read(id)


_site_service: SiteService | None = None


def get_site_service() -> SiteService:
    """Lazily build the process-wide service used by the HTTP and MCP boundaries."""
    global _site_service
    if _site_service is None:
        _site_service = SiteService()
    return _site_service


def reset_site_service(service: Optional[SiteService] = None) -> None:
    """Replace (or drop) the process-wide service; used by tests."""
    global _site_service
    _site_service = service


__all__ = ["SiteService", "get_site_service", "reset_site_service"]
