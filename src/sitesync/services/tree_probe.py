"""Tree probes: live data sources exposed as ``TreeNode`` hierarchies.

A probe is created asynchronously and is ready once its first listing has
completed; a failing first listing fails ``create``. ``ls`` is the uniform
remote operation shared by every probe.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..errors import NotFoundError, ProbeNotImplementedError, SyncError, TransportError
from ..models.tree import TreeNode
from .file_sync import FileSyncAdapter
from .file_watch import DEFAULT_INTERVAL, FileWatcher, watch

logger = logging.getLogger(__name__)

MAX_DEPTH = 10


class LsRequest(BaseModel):
    """Arguments of a probe ``ls`` call."""

    path: str = Field(default="", description="Slash separated path below the probe root")
    depth: int = Field(default=0, ge=0, le=MAX_DEPTH, description="Levels to load below the path")

    @field_validator("path", mode="before")
    @classmethod
    def _clean_path(cls, value: Optional[str]) -> str:
        cleaned = (value or "").strip().strip("/")
        if "\\" in cleaned:
            raise ValueError("Path must use Unix separators (/)")
        if any(part == ".." for part in cleaned.split("/")):
            raise ValueError("Path must not contain '..'")
        return cleaned


class TreeProbe:
    """Base class; subclasses implement ``list``."""

    name = "tree"

    def __init__(self, path: str = "", depth: int = 0, **params: Any):
        request = LsRequest(path=path, depth=depth)
        self.path = request.path
        self.depth = request.depth
        self.params = params
        self.tree: Optional[TreeNode] = None
        self.released = False

    @classmethod
    async def create(cls, *args: Any, path: str = "", depth: int = 0, **params: Any) -> "TreeProbe":
        probe = cls(*args, path=path, depth=depth, **params)
        tree = await probe.list(probe.path, probe.depth)
        tree.loader = probe._load_node
        probe.tree = tree
        probe.on_ready()
        return probe

    async def list(self, path: str, depth: int) -> TreeNode:
        raise ProbeNotImplementedError(
            f"{type(self).__name__} does not implement list()",
            {"probe": self.name},
        )

    async def ls(self, path: str = "", depth: int = 0) -> TreeNode:
        request = LsRequest(path=path, depth=depth)
        return await self.list(request.path, request.depth)

    async def _load_node(self, node: TreeNode, depth: int) -> TreeNode:
        return await self.list(node.path, depth)

    def on_ready(self) -> None:
        """Called once the first listing is in place."""

    def release(self) -> None:
        self.released = True


class DirectoryTreeProbe(TreeProbe):
    """A directory as a tree: sub-directories are branches, files are leaves."""

    name = "directory"

    def __init__(
        self,
        root: Union[str, Path],
        path: str = "",
        depth: int = 0,
        live: bool = False,
        interval: float = DEFAULT_INTERVAL,
        **params: Any,
    ):
        super().__init__(path=path, depth=depth, **params)
        self.root = Path(root).resolve()
        self.live = live
        self.interval = interval
        self._watcher: Optional[FileWatcher] = None
        self._refresh: Optional[asyncio.Task] = None
        self._stale = False

    def resolve_directory(self, path: str) -> Path:
        directory = (self.root / path).resolve() if path else self.root
        if directory != self.root and not str(directory).startswith(str(self.root) + os.sep):
            raise ValueError(f"Path escapes probe root: {path}")
        return directory

    def include(self, name: str, is_dir: bool) -> bool:
        return not name.startswith(".")

    def leaf(self, path: Path, name: str) -> Dict[str, Any]:
        return {"id": name, "label": name}

    def root_label(self, path: str) -> str:
        return path.split("/")[-1] if path else self.root.name

    async def list(self, path: str, depth: int) -> TreeNode:
        directory = self.resolve_directory(path)
        data = await asyncio.to_thread(self._scan_root, directory, path, depth)
        return TreeNode(data)

    def _scan_root(self, directory: Path, path: str, depth: int) -> Dict[str, Any]:
        if not directory.exists():
            raise NotFoundError(f"Path not found: {path or '/'}", {"path": path})
        if not directory.is_dir():
            raise NotFoundError(f"Not a directory: {path}", {"path": path})
        try:
            data = self._scan(directory, path, depth)
        except OSError as exc:
            raise TransportError(f"Failed to list {directory}: {exc}", {"path": path}) from exc
        data["label"] = self.root_label(path)
        return data

    def _scan(self, directory: Path, node_id: str, depth: int) -> Dict[str, Any]:
        branches: List[Dict[str, Any]] = []
        leaves: List[Dict[str, Any]] = []
        with os.scandir(directory) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
        for entry in entries:
            is_dir = entry.is_dir()
            if not self.include(entry.name, is_dir):
                continue
            if is_dir:
                if depth > 0:
                    branches.append(self._scan(Path(entry.path), entry.name, depth - 1))
                else:
                    branches.append({"id": entry.name, "label": entry.name, "is_placeholder": True})
            elif entry.is_file():
                leaves.append(self.leaf(Path(entry.path), entry.name))
        return {"id": node_id, "label": node_id, "branches": branches, "leaves": leaves}

    # ------------------------------------------------------------------
    # Live refresh
    # ------------------------------------------------------------------

    def on_ready(self) -> None:
        if self.live:
            self._watcher = watch(self.resolve_directory(self.path), self._on_directory_change, self.interval)

    def _on_directory_change(self, event: str) -> None:
        if self._refresh is not None and not self._refresh.done():
            self._stale = True
            return
        self._refresh = asyncio.get_running_loop().create_task(self.refresh())

    async def refresh(self) -> TreeNode:
        """Re-list the probed path and merge the result into ``tree``."""
        while True:
            self._stale = False
            try:
                listing = await self.list(self.path, self.depth)
            except SyncError as exc:
                logger.warning(f"Refreshing {self.name} probe at '{self.path}' failed: {exc}")
                self.tree.trigger("load_error", self.tree, exc)
                return self.tree
            self.tree.merge(listing)
            if not self._stale:
                return self.tree

    def release(self) -> None:
        if self._watcher is not None:
            self._watcher.close()
            self._watcher = None
        if self._refresh is not None and not self._refresh.done():
            self._refresh.cancel()
        super().release()


class EntityTreeProbe(DirectoryTreeProbe):
    """Site map of persisted entities of one type.

    Leaves are the ``*.json`` entity files, labelled with their ``title``.
    """

    name = "entities"
    entity_type = ""
    hidden: frozenset = frozenset()

    def __init__(self, adapter: FileSyncAdapter, entity_type: Optional[str] = None, **params: Any):
        self.entity_type = entity_type or self.entity_type
        super().__init__(adapter.type_directory(self.entity_type), **params)

    def include(self, name: str, is_dir: bool) -> bool:
        if name.startswith(".") or name in self.hidden:
            return False
        return is_dir or name.lower().endswith(".json")

    def leaf(self, path: Path, name: str) -> Dict[str, Any]:
        leaf = {"id": name[: -len(".json")], "label": name[: -len(".json")]}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Unreadable {self.entity_type} file {path}: {exc}")
            return leaf
        if isinstance(data, dict):
            if data.get("title"):
                leaf["label"] = data["title"]
            if data.get("description"):
                leaf["description"] = data["description"]
        return leaf

    def root_label(self, path: str) -> str:
        return path.split("/")[-1] if path else self.entity_type

    def _scan_root(self, directory: Path, path: str, depth: int) -> Dict[str, Any]:
        if not path and not directory.exists():
            # Nothing of this type has been saved yet
            return {"id": "", "label": self.root_label(path), "branches": [], "leaves": []}
        return super()._scan_root(directory, path, depth)


class PagesProbe(EntityTreeProbe):
    name = "pages"
    entity_type = "Page"
    # The 404 page is a template, not a page of the site map
    hidden = frozenset({"404.json"})


class ToursProbe(EntityTreeProbe):
    name = "tours"
    entity_type = "Tour"


ProbeFactory = Callable[..., Awaitable[TreeProbe]]


class ProbeRegistry:
    """Named probe factories behind one ``ls`` entry point."""

    def __init__(self) -> None:
        self._factories: Dict[str, ProbeFactory] = {}

    def register(self, name: str, factory: ProbeFactory) -> None:
        self._factories[name] = factory

    def names(self) -> List[str]:
        return sorted(self._factories)

    async def ls(self, name: str, path: str = "", depth: int = 0) -> TreeNode:
        """Create the named probe at ``path``, take its tree and release it."""
        factory = self._factories.get(name)
        if factory is None:
            raise NotFoundError(f"Unknown probe '{name}'", {"probe": name, "available": self.names()})
        request = LsRequest(path=path, depth=depth)
        probe = await factory(path=request.path, depth=request.depth)
        try:
            return probe.tree
        finally:
            probe.release()


__all__ = [
    "DirectoryTreeProbe",
    "EntityTreeProbe",
    "LsRequest",
    "PagesProbe",
    "ProbeRegistry",
    "ToursProbe",
    "TreeProbe",
]
