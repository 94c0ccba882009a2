import asyncio
import functools
from pathlib import Path
from typing import Callable

import pytest

from sitesync.errors import NotFoundError, ProbeNotImplementedError
from sitesync.services.file_sync import FileSyncAdapter
from sitesync.services.tree_probe import (
    DirectoryTreeProbe,
    LsRequest,
    PagesProbe,
    ProbeRegistry,
    ToursProbe,
    TreeProbe,
)


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def files(tmp_path: Path) -> Path:
    root = tmp_path / "files"
    (root / "a" / "b").mkdir(parents=True)
    (root / "a" / "f.txt").write_text("f", encoding="utf-8")
    (root / "a" / "b" / "deep.txt").write_text("d", encoding="utf-8")
    (root / "top.txt").write_text("t", encoding="utf-8")
    (root / ".hidden").write_text("h", encoding="utf-8")
    return root


@pytest.mark.asyncio
async def test_depth_zero_lists_one_level_with_placeholders(files: Path) -> None:
    probe = await DirectoryTreeProbe.create(files)
    tree = probe.tree

    assert tree.branches.ids() == ["a"]
    assert tree.leaves.ids() == ["top.txt"]
    a = tree.branches.get("a")
    assert a.is_placeholder
    assert not a.has("branches")


@pytest.mark.asyncio
async def test_depth_one_loads_the_next_level(files: Path) -> None:
    probe = await DirectoryTreeProbe.create(files, depth=1)
    a = probe.tree.branches.get("a")

    assert not a.is_placeholder
    assert a.branches.ids() == ["b"]
    assert a.leaves.ids() == ["f.txt"]
    assert a.branches.get("b").is_placeholder


@pytest.mark.asyncio
async def test_listing_a_sub_path(files: Path) -> None:
    probe = await DirectoryTreeProbe.create(files, path="/a/")

    assert probe.path == "a"
    assert probe.tree.get("label") == "a"
    assert probe.tree.leaves.ids() == ["f.txt"]


@pytest.mark.asyncio
async def test_expanding_a_placeholder_uses_the_probe(files: Path) -> None:
    probe = await DirectoryTreeProbe.create(files)
    a = probe.tree.branches.get("a")

    await a.expand()

    assert a.id == "a"
    assert a.branches.ids() == ["b"]
    b = a.branches.get("b")
    await b.expand()
    assert b.leaves.ids() == ["deep.txt"]
    assert probe.tree.get_by_path("a/b/deep.txt") is not None


@pytest.mark.asyncio
async def test_missing_path_fails_create(files: Path) -> None:
    with pytest.raises(NotFoundError):
        await DirectoryTreeProbe.create(files, path="nope")

    with pytest.raises(NotFoundError):
        await DirectoryTreeProbe.create(files, path="top.txt")


@pytest.mark.asyncio
async def test_base_probe_requires_list() -> None:
    with pytest.raises(ProbeNotImplementedError):
        await TreeProbe.create()


@pytest.mark.parametrize("path", ["..", "a/../..", "a\\b"])
def test_ls_request_rejects_unsafe_paths(path: str) -> None:
    with pytest.raises(ValueError):
        LsRequest(path=path)


def test_ls_request_bounds_depth() -> None:
    with pytest.raises(ValueError):
        LsRequest(depth=-1)
    with pytest.raises(ValueError):
        LsRequest(depth=11)
    assert LsRequest(path="/docs/", depth=2).path == "docs"


@pytest.mark.asyncio
async def test_live_probe_refreshes_on_directory_change(files: Path) -> None:
    probe = await DirectoryTreeProbe.create(files, live=True, interval=0.01)
    try:
        (files / "later.txt").write_text("l", encoding="utf-8")
        await wait_for(lambda: "later.txt" in probe.tree.leaves.ids())
    finally:
        probe.release()

    assert probe.released


async def make_pages(tmp_path: Path) -> FileSyncAdapter:
    adapter = FileSyncAdapter(tmp_path / "db")
    await adapter.create("Page", {"id": "/index", "title": "Home"})
    await adapter.create("Page", {"id": "404", "title": "Page Not Found"})
    await adapter.create("Page", {"id": "/docs/intro", "title": "Intro", "description": "Start here"})
    return adapter


@pytest.mark.asyncio
async def test_pages_probe_labels_leaves_and_hides_404(tmp_path: Path) -> None:
    adapter = await make_pages(tmp_path)

    probe = await PagesProbe.create(adapter, depth=1)
    tree = probe.tree

    assert tree.get("label") == "Page"
    assert tree.leaves.ids() == ["index"]
    assert tree.leaves.get("index").get("label") == "Home"
    intro = tree.get_by_path("docs/intro")
    assert intro.get("label") == "Intro"
    assert intro.get("description") == "Start here"


@pytest.mark.asyncio
async def test_unreadable_entity_file_falls_back_to_its_name(tmp_path: Path) -> None:
    adapter = await make_pages(tmp_path)
    (adapter.root_path / "Page" / "broken.json").write_text("{", encoding="utf-8")

    probe = await PagesProbe.create(adapter)

    assert probe.tree.leaves.get("broken").get("label") == "broken"


@pytest.mark.asyncio
async def test_probe_of_an_unused_type_is_empty(tmp_path: Path) -> None:
    adapter = FileSyncAdapter(tmp_path / "db")

    probe = await ToursProbe.create(adapter)

    assert probe.tree.branches.ids() == []
    assert probe.tree.leaves.ids() == []


@pytest.mark.asyncio
async def test_registry_ls(tmp_path: Path, files: Path) -> None:
    adapter = await make_pages(tmp_path)
    registry = ProbeRegistry()
    registry.register("pages", functools.partial(PagesProbe.create, adapter))
    registry.register("files", functools.partial(DirectoryTreeProbe.create, files))

    assert registry.names() == ["files", "pages"]
    tree = await registry.ls("pages", path="docs")
    assert tree.leaves.ids() == ["intro"]
    tree = await registry.ls("files", depth=2)
    assert tree.get_by_path("a/b/deep.txt") is not None

    with pytest.raises(NotFoundError):
        await registry.ls("nope")
    with pytest.raises(ValueError):
        await registry.ls("files", path="../outside")
