import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest

from sitesync.api.main import create_app
from sitesync.errors import ConflictOnCreateError, NotFoundError, ParseError, TransportError
from sitesync.models.site import Page
from sitesync.services.config import AppConfig
from sitesync.services.http_sync import ORIGIN_HEADER, HttpSyncAdapter
from sitesync.services.memory_sync import MemorySyncAdapter
from sitesync.services.site import SiteService
from sitesync.services.sync import SyncRegistry, WatchEvent


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def served_by(backend: MemorySyncAdapter, tmp_path: Path) -> httpx.AsyncClient:
    """A client talking to a sitesync app whose store is ``backend``."""
    service = SiteService(config=AppConfig(site_db_path=tmp_path), sync=SyncRegistry(backend))
    app = create_app(service)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def mocked(handler: Callable[[httpx.Request], httpx.Response]) -> HttpSyncAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://remote")
    return HttpSyncAdapter("http://remote", client=client, poll_interval=0.01)


@pytest.mark.asyncio
async def test_crud_against_a_served_store(tmp_path: Path) -> None:
    backend = MemorySyncAdapter()
    async with served_by(backend, tmp_path) as client:
        adapter = HttpSyncAdapter("http://test", client=client)

        created = await adapter.create("Page", {"id": "/docs/intro", "title": "Intro"})
        assert created.id == "/docs/intro"
        assert backend.entities("Page")["/docs/intro"]["title"] == "Intro"
        assert await adapter.read("Page", "/docs/intro") == {"id": "/docs/intro", "title": "Intro"}

        await adapter.update("Page", "/docs/intro", {"id": "/docs/intro", "title": "Updated"})
        assert (await adapter.read("Page", "/docs/intro"))["title"] == "Updated"

        await adapter.delete("Page", "/docs/intro")
        with pytest.raises(NotFoundError):
            await adapter.read("Page", "/docs/intro")


@pytest.mark.asyncio
async def test_create_without_id_returns_generated_id(tmp_path: Path) -> None:
    backend = MemorySyncAdapter()
    async with served_by(backend, tmp_path) as client:
        adapter = HttpSyncAdapter("http://test", client=client)

        result = await adapter.create("Tour", {"title": "Walkthrough"})

        assert result.id in backend.entities("Tour")


@pytest.mark.asyncio
async def test_served_errors_map_to_sync_errors(tmp_path: Path) -> None:
    backend = MemorySyncAdapter({"Tour": {"t1": {"id": "t1"}}})
    async with served_by(backend, tmp_path) as client:
        adapter = HttpSyncAdapter("http://test", client=client)

        with pytest.raises(ConflictOnCreateError):
            await adapter.create("Tour", {"id": "t1"})
        with pytest.raises(NotFoundError):
            await adapter.delete("Tour", "missing")


@pytest.mark.asyncio
async def test_origin_is_sent_as_header() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "x", "revision": 1})

    adapter = mocked(handler)
    await adapter.update("Page", "/x", {"id": "/x"}, origin="abc123")

    assert seen[0].method == "PUT"
    assert seen[0].headers[ORIGIN_HEADER] == "abc123"
    assert seen[0].url.raw_path == b"/api/sync/Page/%2Fx"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, error",
    [
        (httpx.Response(500, text="boom"), TransportError),
        (httpx.Response(503), TransportError),
        (httpx.Response(200, text="not json"), ParseError),
        (httpx.Response(200, json=[1, 2]), ParseError),
    ],
)
async def test_bad_responses_raise(response: httpx.Response, error: type) -> None:
    adapter = mocked(lambda request: response)

    with pytest.raises(error):
        await adapter.read("Page", "x")


@pytest.mark.asyncio
async def test_connection_failure_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = mocked(handler)

    with pytest.raises(TransportError):
        await adapter.read("Page", "x")


@pytest.mark.asyncio
async def test_watch_reports_changes_and_removal(tmp_path: Path) -> None:
    backend = MemorySyncAdapter({"Page": {"/x": {"id": "/x", "title": "X"}}})
    async with served_by(backend, tmp_path) as client:
        adapter = HttpSyncAdapter("http://test", client=client, poll_interval=0.01)
        events: List[WatchEvent] = []
        handle = adapter.watch("Page", "/x", events.append)
        await asyncio.sleep(0.05)

        backend.write_external("Page", "/x", {"id": "/x", "title": "Y"})
        await wait_for(lambda: len(events) >= 1)
        backend.remove_external("Page", "/x")
        await wait_for(lambda: len(events) >= 2)
        handle.close()

    assert [event.kind for event in events] == ["changed", "removed"]
    assert events[0].attrs == {"id": "/x", "title": "Y"}
    assert events[0].origin is None


@pytest.mark.asyncio
async def test_watch_reports_failures_once() -> None:
    adapter = mocked(lambda request: httpx.Response(500))
    events: List[WatchEvent] = []

    handle = adapter.watch("Page", "x", events.append)
    await asyncio.sleep(0.1)
    handle.close()

    assert [event.kind for event in events] == ["error"]
    assert isinstance(events[0].error, TransportError)


@pytest.mark.asyncio
async def test_polling_survives_a_failing_callback() -> None:
    current = {"id": "x", "title": "A"}
    adapter = mocked(lambda request: httpx.Response(200, json=current))
    seen: List[str] = []

    def callback(event: WatchEvent) -> None:
        seen.append(event.attrs["title"])
        if len(seen) == 1:
            raise RuntimeError("listener failed")

    handle = adapter.watch("Page", "x", callback)
    await asyncio.sleep(0.05)
    current["title"] = "B"
    await wait_for(lambda: len(seen) >= 1)
    current["title"] = "C"
    await wait_for(lambda: "C" in seen)
    handle.close()

    assert seen == ["B", "C"]


@pytest.mark.asyncio
async def test_live_page_over_http(tmp_path: Path) -> None:
    backend = MemorySyncAdapter({"Page": {"/x": {"id": "/x", "title": "X"}}})
    async with served_by(backend, tmp_path) as client:
        adapter = HttpSyncAdapter("http://test", client=client, poll_interval=0.01)
        page = await Page({"id": "/x"}, sync=SyncRegistry(adapter)).fetch(live_sync=True)
        changes: List[Dict[str, Any]] = []
        page.on("change", lambda entity, options: changes.append(options))
        await asyncio.sleep(0.05)

        page.set("title", "Local")
        await page.wait_persisted()
        await asyncio.sleep(0.05)
        assert backend.entities("Page")["/x"]["title"] == "Local"
        assert len(changes) == 1

        backend.write_external("Page", "/x", {"id": "/x", "title": "Remote"})
        await wait_for(lambda: page.get("title") == "Remote")
        page.stop_live_sync()

    assert [bool(options.get("is_sync_changing")) for options in changes] == [False, True]
