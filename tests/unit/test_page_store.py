import asyncio
from typing import Any, Dict, Optional

import pytest

from sitesync.errors import NotFoundError, TransportError
from sitesync.models.site import title_case
from sitesync.services.memory_sync import MemorySyncAdapter
from sitesync.services.page_store import PageStore, normalize_url, strip_query
from sitesync.services.sync import SyncRegistry

NOT_FOUND = {"id": "404", "title": "Page Not Found", "notes": "template", "components": [{"id": "c1"}]}


class FailingReads(MemorySyncAdapter):
    async def read(self, entity_type: str, id: str) -> Dict[str, Any]:
        raise TransportError("store offline")


def make_store(pages: Optional[Dict[str, Dict[str, Any]]] = None) -> PageStore:
    data = {"404": dict(NOT_FOUND)}
    data.update(pages or {})
    return PageStore(SyncRegistry(MemorySyncAdapter({"Page": data})))


@pytest.mark.parametrize(
    "url, expected",
    [
        ("/Docs/Intro", "/docs/intro"),
        ("/docs/", "/docs"),
        ("/docs//", "/docs/"),
        ("/", "/"),
        ("/docs?tab=2", "/docs"),
        ("/Docs/?x=1", "/docs"),
    ],
)
def test_normalize_url(url: str, expected: str) -> None:
    assert normalize_url(url) == expected


def test_strip_query() -> None:
    assert strip_query("/a/B?c=d?e") == "/a/B"


def test_title_case() -> None:
    assert title_case("hello big world") == "Hello Big World"
    assert title_case("mIxEd case", preserve_case=True) == "MIxEd Case"


@pytest.mark.asyncio
async def test_resolve_returns_the_same_live_page() -> None:
    store = make_store({"/docs": {"id": "/docs", "title": "Docs"}})

    first = await store.resolve("/Docs/")
    second = await store.resolve("/docs?tab=1")

    assert first is second
    assert first.get("title") == "Docs"
    assert first.is_live
    assert store.cached_urls() == ["/docs"]
    assert store.get_cached("/DOCS") is first


@pytest.mark.asyncio
async def test_unknown_url_serves_transient_404_copy() -> None:
    store = make_store()
    adapter = store.sync.default

    page = await store.resolve("/App1")

    assert page.id == "/app1"
    assert page.get("title") == "App1"
    assert page.get("is_404_page") is True
    assert page.get("notes") == "template"
    assert page.components.ids() == ["c1"]
    assert not page.is_live
    assert "/app1" not in store.cached_urls()
    assert "404" in store.cached_urls()
    assert set(adapter.entities("Page")) == {"404"}
    assert "is_404_page" not in page.to_persisted()


@pytest.mark.asyncio
async def test_404_copies_are_independent() -> None:
    store = make_store()

    first = await store.resolve("/one")
    second = await store.resolve("/one")

    assert first is not second
    template = store.get_cached("404")
    first.set("title", "Changed")
    assert template.get("title") == "Page Not Found"


@pytest.mark.asyncio
async def test_page_created_later_replaces_the_404() -> None:
    store = make_store()
    adapter = store.sync.default
    missing = await store.resolve("/new")
    assert missing.get("is_404_page")

    adapter.write_external("Page", "/new", {"id": "/new", "title": "Fresh"})
    page = await store.resolve("/new")

    assert page.get("title") == "Fresh"
    assert not page.get("is_404_page")
    assert store.get_cached("/new") is page


@pytest.mark.asyncio
async def test_missing_404_page_propagates() -> None:
    store = PageStore(SyncRegistry(MemorySyncAdapter()))

    with pytest.raises(NotFoundError):
        await store.resolve("/anything")

    assert store.cached_urls() == []


@pytest.mark.asyncio
async def test_other_errors_propagate_and_are_not_cached() -> None:
    store = PageStore(SyncRegistry(FailingReads({"Page": {"/x": {"id": "/x"}}})))

    with pytest.raises(TransportError):
        await store.resolve("/x")

    assert store.cached_urls() == []


@pytest.mark.asyncio
async def test_mismatched_stored_id_is_corrected_in_memory() -> None:
    store = make_store({"/docs": {"id": "legacy", "title": "Docs"}})
    adapter = store.sync.default

    page = await store.resolve("/docs")
    page.set("title", "Edited")
    await page.wait_persisted()

    assert page.id == "/docs"
    assert page.is_live
    stored = adapter.entities("Page")["/docs"]
    assert stored["title"] == "Edited"


@pytest.mark.asyncio
async def test_stored_id_with_other_case_is_kept() -> None:
    store = make_store({"/docs": {"id": "/Docs", "title": "Docs"}})

    page = await store.resolve("/docs")

    assert page.id == "/Docs"


@pytest.mark.asyncio
async def test_destroy_evicts_page() -> None:
    store = make_store({"/docs": {"id": "/docs"}})
    page = await store.resolve("/docs")

    await page.destroy()

    assert store.get_cached("/docs") is None
    with pytest.raises(NotFoundError):
        await store.sync.default.read("Page", "/docs")


@pytest.mark.asyncio
async def test_remote_removal_evicts_page() -> None:
    store = make_store({"/docs": {"id": "/docs"}})
    adapter = store.sync.default
    page = await store.resolve("/docs")

    adapter.remove_external("Page", "/docs")
    await asyncio.sleep(0)

    assert store.get_cached("/docs") is None
    assert not page.is_live
    missing = await store.resolve("/docs")
    assert missing.get("is_404_page")


@pytest.mark.asyncio
async def test_invalidate_stops_live_sync() -> None:
    store = make_store({"/docs": {"id": "/docs"}})
    page = await store.resolve("/docs")

    assert store.invalidate("/Docs/") is page

    assert not page.is_live
    assert store.cached_urls() == []
    assert await store.resolve("/docs") is not page


@pytest.mark.asyncio
async def test_clear_releases_everything() -> None:
    store = make_store({"/a": {"id": "/a"}, "/b": {"id": "/b"}})
    pages = [await store.resolve("/a"), await store.resolve("/b")]

    store.clear()

    assert store.cached_urls() == []
    assert not any(page.is_live for page in pages)
