from pathlib import Path
from typing import Any, Mapping, Optional

import pytest

from sitesync.errors import TransportError
from sitesync.services.config import AppConfig
from sitesync.services.memory_sync import MemorySyncAdapter
from sitesync.services.seed import PAGE_TEMPLATES, initialize_site
from sitesync.services.site import SiteService
from sitesync.services.sync import SyncRegistry, WriteResult


class RejectsPages(MemorySyncAdapter):
    async def update(
        self, entity_type: str, id: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        if entity_type == "Page":
            raise TransportError(f"cannot write {id}")
        return await super().update(entity_type, id, attrs, origin=origin)


@pytest.mark.asyncio
async def test_start_initializes_an_empty_store(tmp_path: Path) -> None:
    adapter = MemorySyncAdapter()
    service = SiteService(config=AppConfig(site_db_path=tmp_path), sync=SyncRegistry(adapter))

    site = await service.start()

    assert site.is_live
    assert await service.start() is site
    assert set(adapter.entities("Page")) == {template["id"] for template in PAGE_TEMPLATES}
    assert adapter.entities("Site")["default"]["id"] == "default"
    await service.stop()
    assert not site.is_live


@pytest.mark.asyncio
async def test_start_loads_an_existing_site(tmp_path: Path) -> None:
    adapter = MemorySyncAdapter({"Site": {"default": {"id": "default", "name": "Existing"}}})
    service = SiteService(config=AppConfig(site_db_path=tmp_path), sync=SyncRegistry(adapter))

    site = await service.start()

    assert site.get("name") == "Existing"
    assert adapter.entities("Page") == {}
    await service.stop()


@pytest.mark.asyncio
async def test_render_page_merges_site_and_page(tmp_path: Path) -> None:
    adapter = MemorySyncAdapter()
    service = SiteService(config=AppConfig(site_db_path=tmp_path), sync=SyncRegistry(adapter))
    await service.start()

    rendered = await service.render_page("/index/")

    assert rendered["id"] == "/index"
    assert rendered["name"] == "Site Sync"
    assert "is_404_page" not in rendered
    await service.stop()


@pytest.mark.asyncio
async def test_initialize_site_tries_every_page_then_raises() -> None:
    adapter = RejectsPages()

    with pytest.raises(TransportError):
        await initialize_site(SyncRegistry(adapter))

    assert "default" in adapter.entities("Site")
    assert adapter.entities("Page") == {}
