"""Lazily loadable hierarchies (site maps, file trees)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from .containment import OrderedCollection
from .node import Node

logger = logging.getLogger(__name__)

TreeLoader = Callable[["TreeNode", int], Awaitable[Union["TreeNode", Mapping[str, Any]]]]

_VIEW_STATE = ("is_open", "is_loading")


class TreeNode(Node):
    """A node with ``branches`` (sub-trees) and ``leaves``.

    ``branches`` and ``leaves`` are containment edges but are deliberately
    left out of ``defaults``: a placeholder has neither until it is loaded,
    so ``has("branches")`` distinguishes "unloaded" from "empty".
    """

    defaults = {
        "id": "",
        "label": "",
        "description": "",
        "is_open": False,
        "is_loading": False,
        "is_placeholder": False,
    }

    def __init__(
        self,
        attributes: Optional[Mapping[str, Any]] = None,
        loader: Optional[TreeLoader] = None,
        **options: Any,
    ) -> None:
        super().__init__(attributes, **options)
        self.loader = loader
        self._load_task: Optional[asyncio.Task] = None
        self.on("change:is_open", self._on_open_changed)

    @classmethod
    def placeholder(cls, id: str, label: Optional[str] = None, **attributes: Any) -> "TreeNode":
        return cls({"id": id, "label": label if label is not None else id, "is_placeholder": True, **attributes})

    @property
    def branches(self):
        return self.attributes.get("branches")

    @property
    def leaves(self):
        return self.attributes.get("leaves")

    @property
    def is_placeholder(self) -> bool:
        return bool(self.attributes.get("is_placeholder"))

    @property
    def path(self) -> str:
        """Slash-joined ids from the root tree node down to this one."""
        segments = []
        node: Optional[Node] = self
        while isinstance(node, TreeNode):
            segments.append(node.id or "")
            node = node.parent
        return "/".join(segment for segment in reversed(segments) if segment)

    def get_by_path(self, path: str) -> Optional[Node]:
        """Walk ``branches`` by id; the last segment may name a leaf."""
        segments = [segment for segment in path.split("/") if segment]
        node: Node = self
        for index, segment in enumerate(segments):
            if not isinstance(node, TreeNode):
                return None
            branches = node.branches
            found = branches.get(segment) if branches is not None else None
            if found is None and index == len(segments) - 1 and node.leaves is not None:
                found = node.leaves.get(segment)
            if found is None:
                return None
            node = found
        return node

    def find_loader(self) -> Optional[TreeLoader]:
        node: Optional[Node] = self
        while node is not None:
            loader = getattr(node, "loader", None)
            if loader is not None:
                return loader
            node = node.parent
        return None

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    async def expand(self, depth: int = 0) -> "TreeNode":
        """Open this node, loading it first when it is a placeholder."""
        if self.is_placeholder:
            loader = self.find_loader()
            if loader is None:
                raise LookupError(f"No loader available for tree node '{self.path}'")
            await self._load(loader, depth, propagate=True)
        if not self.get("is_open"):
            self.set("is_open", True)
        return self

    def _on_open_changed(self, node: "TreeNode", is_open: Any, options: Mapping[str, Any]) -> None:
        if not is_open or not self.is_placeholder or self.get("is_loading"):
            return
        loader = self.find_loader()
        if loader is None:
            logger.debug(f"Tree node '{self.path}' opened without a loader")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"Tree node '{self.path}' opened outside an event loop; not loading")
            return
        self._load_task = loop.create_task(self._load(loader, 0, propagate=False))

    async def _load(self, loader: TreeLoader, depth: int, propagate: bool) -> "TreeNode":
        self.set("is_loading", True)
        try:
            loaded = await loader(self, depth)
        except Exception as exc:
            logger.error(f"Failed to load tree node '{self.path}': {exc}")
            self.set("is_loading", False)
            self.trigger("load_error", self, exc)
            if propagate:
                raise
            return self
        self.merge(loaded)
        self.set({"is_loading": False, "is_placeholder": False})
        return self

    async def wait_loaded(self) -> "TreeNode":
        if self._load_task is not None:
            await self._load_task
        return self

    def merge(self, other: Union["TreeNode", Mapping[str, Any]], **options: Any) -> "TreeNode":
        """Merge a freshly listed tree into this one, keeping local view state."""
        data = other.to_json() if isinstance(other, Node) else dict(other)
        if self.id:
            # Listings are keyed by full path; this node keeps its own id
            data.pop("id", None)
        self.set(_keep_view_state(data, self), **options)
        return self


def _keep_view_state(data: Dict[str, Any], local: Optional[Node]) -> Dict[str, Any]:
    data = {key: value for key, value in data.items() if key not in _VIEW_STATE}
    if isinstance(local, TreeNode) and local.has("branches") and data.get("is_placeholder"):
        # Already loaded here; a shallower listing must not unload it
        data.pop("is_placeholder")
    branches = data.get("branches")
    if isinstance(local, TreeNode) and isinstance(branches, list) and local.branches is not None:
        data["branches"] = [
            _keep_view_state(dict(item), local.branches.get(item.get("id")))
            if isinstance(item, Mapping)
            else item
            for item in branches
        ]
    return data


TreeNode.contains = {
    "branches": OrderedCollection(TreeNode),
    "leaves": OrderedCollection(Node),
}


__all__ = ["TreeLoader", "TreeNode"]
