"""Sync adapter contract and per-entity-type routing.

Every persisted entity reaches its backing store through a ``SyncRoute``:
an adapter bound to one entity type name. Adapters are async and share the
same error kinds (``sitesync.errors``).

Live mode uses ``watch``: the adapter reports ``changed``/``removed`` states
of an entity however they came about. To let a watching entity recognise its
own writes, every adapter records a digest of each state it writes in a
``WriteLedger`` *before* issuing the write; when the watcher later observes
that state, the event carries the revision and origin of the write that
produced it. States nobody in this process wrote get a fresh revision and no
origin.
"""

from __future__ import annotations

import hashlib
import itertools
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..errors import ConfigurationError
from .config import AppConfig

logger = logging.getLogger(__name__)

DELETED = "<deleted>"
# Recorded writes kept per entity; older ones are dropped first
LEDGER_SIZE = 64


@dataclass(frozen=True)
class WriteResult:
    id: str
    revision: int


@dataclass(frozen=True)
class WatchEvent:
    """A state change observed on a watched entity."""

    kind: str  # "changed" | "removed" | "error"
    entity_type: str
    id: str
    attrs: Optional[Dict[str, Any]] = None
    revision: int = 0
    origin: Optional[str] = None
    error: Optional[Exception] = None


WatchCallback = Callable[[WatchEvent], None]


class WatchHandle:
    """Closable subscription returned by ``SyncAdapter.watch``."""

    def __init__(self, on_close: Optional[Callable[[], None]] = None):
        self._on_close = on_close
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()


def state_digest(attrs: Optional[Mapping[str, Any]]) -> str:
    """Digest of an entity state in canonical JSON form."""
    if attrs is None:
        return DELETED
    canonical = json.dumps(attrs, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class WriteLedger:
    """Digests of states written by this process, per entity."""

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], Dict[str, Tuple[int, Optional[str]]]] = {}

    def record(self, entity_type: str, id: str, digest: str, revision: int, origin: Optional[str]) -> None:
        entries = self._entries.setdefault((entity_type, id), {})
        entries.pop(digest, None)
        entries[digest] = (revision, origin)
        while len(entries) > LEDGER_SIZE:
            del entries[next(iter(entries))]

    def forget(self, entity_type: str, id: str, revision: int) -> None:
        entries = self._entries.get((entity_type, id), {})
        for digest, (entry_revision, _) in list(entries.items()):
            if entry_revision == revision:
                del entries[digest]

    def claim(self, entity_type: str, id: str, digest: str) -> Optional[Tuple[int, Optional[str]]]:
        """Match an observed state against recorded writes.

        A match retires that entry and every older one for the entity.
        """
        entries = self._entries.get((entity_type, id))
        if not entries or digest not in entries:
            return None
        revision, origin = entries[digest]
        for key, (entry_revision, _) in list(entries.items()):
            if entry_revision <= revision:
                del entries[key]
        return revision, origin


class SyncAdapter(ABC):
    """Abstract persistence contract keyed by entity type name."""

    name = "abstract"

    def __init__(self) -> None:
        self._revisions = itertools.count(1)
        self.ledger = WriteLedger()

    def next_revision(self) -> int:
        return next(self._revisions)

    def _record_write(
        self,
        entity_type: str,
        id: str,
        attrs: Optional[Mapping[str, Any]],
        origin: Optional[str],
    ) -> int:
        revision = self.next_revision()
        # Writes without an origin are external to every entity
        if origin is not None:
            self.ledger.record(entity_type, id, state_digest(attrs), revision, origin)
        return revision

    def _observe(
        self,
        entity_type: str,
        id: str,
        attrs: Optional[Mapping[str, Any]],
    ) -> Tuple[int, Optional[str]]:
        """Revision and origin for a state seen by a watcher."""
        claimed = self.ledger.claim(entity_type, id, state_digest(attrs))
        if claimed is not None:
            return claimed
        return self.next_revision(), None

    @abstractmethod
    async def create(
        self, entity_type: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        """Persist a new entity; generates an id when ``attrs`` has none."""

    @abstractmethod
    async def read(self, entity_type: str, id: str) -> Dict[str, Any]:
        """Return the stored attributes; raises ``NotFoundError`` on a miss."""

    @abstractmethod
    async def update(
        self, entity_type: str, id: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        """Replace the stored attributes of ``id``."""

    @abstractmethod
    async def delete(self, entity_type: str, id: str, *, origin: Optional[str] = None) -> None:
        """Remove ``id`` from the store."""

    @abstractmethod
    def watch(self, entity_type: str, id: str, callback: WatchCallback) -> WatchHandle:
        """Report changes of ``id`` to ``callback`` until the handle is closed."""

    async def close(self) -> None:
        """Release adapter resources."""


class SyncRoute:
    """An adapter bound to one entity type."""

    def __init__(self, adapter: SyncAdapter, entity_type: str):
        self.adapter = adapter
        self.entity_type = entity_type

    async def create(self, attrs: Mapping[str, Any], *, origin: Optional[str] = None) -> WriteResult:
        return await self.adapter.create(self.entity_type, attrs, origin=origin)

    async def read(self, id: str) -> Dict[str, Any]:
        return await self.adapter.read(self.entity_type, id)

    async def update(self, id: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None) -> WriteResult:
        return await self.adapter.update(self.entity_type, id, attrs, origin=origin)

    async def delete(self, id: str, *, origin: Optional[str] = None) -> None:
        await self.adapter.delete(self.entity_type, id, origin=origin)

    def watch(self, id: str, callback: WatchCallback) -> WatchHandle:
        return self.adapter.watch(self.entity_type, id, callback)

    def __repr__(self) -> str:
        return f"SyncRoute({self.entity_type!r} -> {self.adapter.name})"


def create_adapter(name: str, config: AppConfig) -> SyncAdapter:
    """Build the adapter implementation called ``name``."""
    if name == "file":
        from .file_sync import FileSyncAdapter

        return FileSyncAdapter(config.site_db_path, watch_interval=config.watch_interval)
    if name == "memory":
        from .memory_sync import MemorySyncAdapter

        return MemorySyncAdapter()
    if name == "http":
        from .http_sync import HttpSyncAdapter

        if not config.sync_url:
            raise ConfigurationError("SITESYNC_SYNC_URL is required for the http sync adapter")
        return HttpSyncAdapter(config.sync_url, poll_interval=config.watch_interval)
    raise ConfigurationError(f"Unknown sync adapter '{name}'", {"adapter": name})


class SyncRegistry:
    """Maps entity type names to adapters, with a default adapter."""

    def __init__(self, default: SyncAdapter, routes: Optional[Mapping[str, SyncAdapter]] = None):
        self.default = default
        self._routes: Dict[str, SyncAdapter] = dict(routes or {})

    @classmethod
    def from_config(cls, config: AppConfig) -> "SyncRegistry":
        built: Dict[str, SyncAdapter] = {}

        def adapter(name: str) -> SyncAdapter:
            if name not in built:
                built[name] = create_adapter(name, config)
            return built[name]

        registry = cls(adapter(config.sync_adapter))
        for entity_type, name in config.sync_class_map.items():
            registry.register(entity_type, adapter(name))
        logger.info(
            f"Sync registry: default={config.sync_adapter}, routes={config.sync_class_map or '{}'}"
        )
        return registry

    def register(self, entity_type: str, adapter: SyncAdapter) -> None:
        self._routes[entity_type] = adapter

    def adapter_for(self, entity_type: str) -> SyncAdapter:
        return self._routes.get(entity_type, self.default)

    def route(self, entity_type: str) -> SyncRoute:
        return SyncRoute(self.adapter_for(entity_type), entity_type)

    def adapters(self) -> List[SyncAdapter]:
        unique: List[SyncAdapter] = []
        for adapter in [self.default, *self._routes.values()]:
            if not any(adapter is seen for seen in unique):
                unique.append(adapter)
        return unique

    async def close(self) -> None:
        for adapter in self.adapters():
            await adapter.close()


__all__ = [
    "SyncAdapter",
    "SyncRegistry",
    "SyncRoute",
    "WatchCallback",
    "WatchEvent",
    "WatchHandle",
    "WriteLedger",
    "WriteResult",
    "create_adapter",
    "state_digest",
]
