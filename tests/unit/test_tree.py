import asyncio
from typing import Any, Dict, List

import pytest

from sitesync.models.tree import TreeNode


def listing(path: str) -> Dict[str, Any]:
    return {
        "id": path,
        "label": path.split("/")[-1],
        "branches": [{"id": "child", "label": "child", "is_placeholder": True}],
        "leaves": [{"id": "readme.md", "label": "readme.md"}],
    }


def make_tree(loader=None) -> TreeNode:
    return TreeNode(
        {
            "id": "",
            "label": "root",
            "branches": [
                {"id": "docs", "label": "docs", "is_placeholder": True},
                {
                    "id": "src",
                    "label": "src",
                    "branches": [],
                    "leaves": [{"id": "main.py", "label": "main.py"}],
                },
            ],
            "leaves": [{"id": "notes.txt", "label": "notes.txt"}],
        },
        loader=loader,
    )


def test_placeholder_has_no_children() -> None:
    node = TreeNode.placeholder("docs")

    assert node.is_placeholder
    assert node.get("label") == "docs"
    assert not node.has("branches")
    assert not node.has("leaves")


def test_children_are_tree_nodes_with_paths() -> None:
    tree = make_tree()
    src = tree.branches.get("src")

    assert isinstance(src, TreeNode)
    assert src.path == "src"
    assert src.has("branches")
    assert len(src.branches) == 0
    assert tree.get_by_path("src/main.py").get("label") == "main.py"
    assert tree.get_by_path("notes.txt") is tree.leaves.get("notes.txt")
    assert tree.get_by_path("missing/x") is None


def test_leaf_changes_bubble_to_the_root() -> None:
    tree = make_tree()
    changes: List[Any] = []
    tree.on("change", lambda *args: changes.append(args))

    tree.get_by_path("src/main.py").set("label", "entry point")

    assert len(changes) == 1


@pytest.mark.asyncio
async def test_opening_a_placeholder_loads_it() -> None:
    calls: List[str] = []

    async def loader(node: TreeNode, depth: int) -> Dict[str, Any]:
        calls.append(node.path)
        return listing(node.path)

    tree = make_tree(loader)
    docs = tree.branches.get("docs")

    docs.set("is_open", True)
    await docs.wait_loaded()

    assert calls == ["docs"]
    assert docs.id == "docs"
    assert not docs.is_placeholder
    assert not docs.get("is_loading")
    assert docs.get("is_open")
    assert docs.branches.ids() == ["child"]
    assert docs.branches.get("child").is_placeholder
    assert docs.get_by_path("child").path == "docs/child"


@pytest.mark.asyncio
async def test_opening_a_loaded_node_does_not_reload() -> None:
    loader_calls: List[str] = []

    async def loader(node: TreeNode, depth: int) -> Dict[str, Any]:
        loader_calls.append(node.path)
        return listing(node.path)

    tree = make_tree(loader)
    src = tree.branches.get("src")

    src.set("is_open", True)
    await asyncio.sleep(0)

    assert loader_calls == []


@pytest.mark.asyncio
async def test_expand_loads_and_opens() -> None:
    async def loader(node: TreeNode, depth: int) -> TreeNode:
        return TreeNode(listing(node.path))

    tree = make_tree(loader)
    docs = tree.branches.get("docs")

    await docs.expand()

    assert docs.get("is_open")
    assert docs.leaves.ids() == ["readme.md"]


@pytest.mark.asyncio
async def test_expand_without_loader_raises() -> None:
    tree = make_tree()

    with pytest.raises(LookupError):
        await tree.branches.get("docs").expand()


@pytest.mark.asyncio
async def test_failed_load_fires_load_error_and_stays_placeholder() -> None:
    async def loader(node: TreeNode, depth: int) -> Dict[str, Any]:
        raise RuntimeError("listing failed")

    tree = make_tree(loader)
    docs = tree.branches.get("docs")
    errors: List[Exception] = []
    docs.on("load_error", lambda node, exc: errors.append(exc))

    docs.set("is_open", True)
    await docs.wait_loaded()

    assert len(errors) == 1
    assert docs.is_placeholder
    assert not docs.get("is_loading")

    with pytest.raises(RuntimeError):
        await docs.expand()


@pytest.mark.asyncio
async def test_collapsing_keeps_loaded_content() -> None:
    async def loader(node: TreeNode, depth: int) -> Dict[str, Any]:
        return listing(node.path)

    tree = make_tree(loader)
    docs = tree.branches.get("docs")
    await docs.expand()

    docs.set("is_open", False)

    assert docs.branches.ids() == ["child"]


def test_merge_keeps_view_state_and_loaded_subtrees() -> None:
    tree = make_tree()
    src = tree.branches.get("src")
    src.set("is_open", True)

    tree.merge({
        "id": "",
        "label": "root",
        "branches": [
            {"id": "src", "label": "src", "is_placeholder": True},
            {"id": "tests", "label": "tests", "is_placeholder": True},
        ],
        "leaves": [],
    })

    assert tree.branches.ids() == ["src", "tests"]
    assert tree.branches.get("src") is src
    assert src.get("is_open")
    assert not src.is_placeholder
    assert src.leaves.ids() == ["main.py"]
    assert tree.leaves.ids() == []
