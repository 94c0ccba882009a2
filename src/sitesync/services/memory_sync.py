"""In-process sync adapter backed by a dict."""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import ConflictOnCreateError, NotFoundError
from .sync import SyncAdapter, WatchCallback, WatchEvent, WatchHandle, WriteResult, state_digest

logger = logging.getLogger(__name__)


class MemorySyncAdapter(SyncAdapter):
    """Keeps entities in memory; handy for tests and throwaway processes.

    Watch callbacks are delivered on the next loop iteration, after the
    write that caused them has returned.
    """

    name = "memory"

    def __init__(self, data: Optional[Mapping[str, Mapping[str, Mapping[str, Any]]]] = None):
        super().__init__()
        self._store: Dict[str, Dict[str, Dict[str, Any]]] = {
            entity_type: {str(id): copy.deepcopy(dict(attrs)) for id, attrs in entities.items()}
            for entity_type, entities in (data or {}).items()
        }
        self._watchers: Dict[Tuple[str, str], List[Tuple[WatchHandle, WatchCallback]]] = {}

    def entities(self, entity_type: str) -> Dict[str, Dict[str, Any]]:
        """Snapshot of stored entities of one type."""
        return copy.deepcopy(self._store.get(entity_type, {}))

    async def create(
        self, entity_type: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        data = copy.deepcopy(dict(attrs))
        id = str(data.get("id") or uuid.uuid4().hex)
        data["id"] = id
        if id in self._store.get(entity_type, {}):
            raise ConflictOnCreateError(f"{entity_type} '{id}' already exists", {"entity_type": entity_type, "id": id})
        revision = self._record_write(entity_type, id, data, origin)
        self._store.setdefault(entity_type, {})[id] = data
        self._notify(entity_type, id, data)
        return WriteResult(id=id, revision=revision)

    async def read(self, entity_type: str, id: str) -> Dict[str, Any]:
        try:
            return copy.deepcopy(self._store[entity_type][str(id)])
        except KeyError as exc:
            raise NotFoundError(f"{entity_type} not found: {id}", {"entity_type": entity_type, "id": id}) from exc

    async def update(
        self, entity_type: str, id: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        data = copy.deepcopy(dict(attrs))
        revision = self._record_write(entity_type, str(id), data, origin)
        self._store.setdefault(entity_type, {})[str(id)] = data
        self._notify(entity_type, str(id), data)
        return WriteResult(id=id, revision=revision)

    async def delete(self, entity_type: str, id: str, *, origin: Optional[str] = None) -> None:
        entities = self._store.get(entity_type, {})
        if str(id) not in entities:
            raise NotFoundError(f"{entity_type} not found: {id}", {"entity_type": entity_type, "id": id})
        self._record_write(entity_type, str(id), None, origin)
        del entities[str(id)]
        self._notify(entity_type, str(id), None)

    def write_external(self, entity_type: str, id: str, attrs: Mapping[str, Any]) -> None:
        """Simulate an out-of-band writer changing ``id``."""
        data = copy.deepcopy(dict(attrs))
        self._store.setdefault(entity_type, {})[str(id)] = data
        self._notify(entity_type, str(id), data)

    def remove_external(self, entity_type: str, id: str) -> None:
        """Simulate an out-of-band writer deleting ``id``."""
        self._store.get(entity_type, {}).pop(str(id), None)
        self._notify(entity_type, str(id), None)

    def watch(self, entity_type: str, id: str, callback: WatchCallback) -> WatchHandle:
        key = (entity_type, str(id))
        handle = WatchHandle()
        entry = (handle, callback)

        def unsubscribe() -> None:
            watchers = self._watchers.get(key, [])
            if entry in watchers:
                watchers.remove(entry)

        handle._on_close = unsubscribe
        self._watchers.setdefault(key, []).append(entry)
        return handle

    def _notify(self, entity_type: str, id: str, attrs: Optional[Dict[str, Any]]) -> None:
        watchers = self._watchers.get((entity_type, id))
        if not watchers:
            # No watcher will observe this state; drop the ledger entry
            self.ledger.claim(entity_type, id, state_digest(attrs))
            return
        revision, origin = self._observe(entity_type, id, attrs)
        kind = "removed" if attrs is None else "changed"
        logger.debug(f"Notifying {len(watchers)} watcher(s): {kind} {entity_type} '{id}' (rev {revision})")
        loop = asyncio.get_running_loop()
        for handle, callback in list(watchers):
            event = WatchEvent(
                kind,
                entity_type,
                id,
                attrs=copy.deepcopy(attrs),
                revision=revision,
                origin=origin,
            )
            loop.call_soon(_deliver, handle, callback, event)


def _deliver(handle: WatchHandle, callback: WatchCallback, event: WatchEvent) -> None:
    if handle.closed:
        return
    try:
        callback(event)
    except Exception:
        logger.exception(f"Watch callback for {event.entity_type} '{event.id}' failed")


__all__ = ["MemorySyncAdapter"]
