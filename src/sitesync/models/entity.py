"""Persisted nodes.

An ``Entity`` is a node with an ``id`` and an ``entity_type`` naming its
sync route. It persists through the ``SyncRegistry`` it was given and can
enter live mode, where local changes are written back to the store and
out-of-band store changes are applied to the entity in place.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Mapping, Optional, Set

from ..errors import ConfigurationError, SyncError
from .node import Node

if TYPE_CHECKING:
    from ..services.sync import SyncRegistry, SyncRoute, WatchEvent, WatchHandle, WriteResult

logger = logging.getLogger(__name__)


class Entity(Node):
    """A named, identified, persisted node."""

    entity_type: ClassVar[str] = ""
    serialize_as_reference = True

    def __init__(
        self,
        attributes: Optional[Mapping[str, Any]] = None,
        sync: Optional["SyncRegistry"] = None,
        **options: Any,
    ) -> None:
        super().__init__(attributes, **options)
        self.sync = sync
        # Tags this instance's writes so its own watch events can be told apart
        self.origin = uuid.uuid4().hex
        self._sync_id: Optional[str] = None
        self._watch: Optional["WatchHandle"] = None
        self._last_revision = 0
        self._writes: Set[asyncio.Task] = set()

    @property
    def is_new(self) -> bool:
        return not self.id

    @property
    def is_live(self) -> bool:
        return self._watch is not None

    def _route(self) -> "SyncRoute":
        if self.sync is None:
            raise ConfigurationError(
                f"{type(self).__name__} '{self.id}' has no sync registry",
                {"entity_type": self.entity_type},
            )
        return self.sync.route(self.entity_type)

    def to_persisted(self) -> Dict[str, Any]:
        """Serialize for the backing store: defaults trimmed, transient keys dropped."""
        data = self.to_json(trim=True, deep=False)
        for key in self.transient:
            data.pop(key, None)
        if self.id:
            data["id"] = self.id
        return data

    def clone(self) -> "Entity":
        clone = type(self)(copy.deepcopy(self.to_json()), sync=self.sync)
        clone.entity_type = self.entity_type
        return clone

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self, live_sync: bool = False) -> "Entity":
        """Create the entity when it has no id yet, otherwise update it."""
        route = self._route()
        attrs = self.to_persisted()
        if self.is_new:
            attrs.pop("id", None)
            result = await route.create(attrs, origin=self.origin)
            self.set("id", result.id, is_sync_changing=True)
            logger.info(f"Created {self.entity_type} '{result.id}'")
        else:
            result = await route.update(self._sync_id or self.id, attrs, origin=self.origin)
            logger.debug(f"Saved {self.entity_type} '{result.id}'")
        self._sync_id = result.id
        self._note_revision(result)
        if live_sync:
            self.start_live_sync()
        return self

    async def fetch(self, live_sync: bool = False) -> "Entity":
        """Load attributes from the store by id."""
        if self.is_new:
            raise ValueError(f"Cannot fetch a {type(self).__name__} without an id")
        sync_id = self.id
        attrs = await self._route().read(sync_id)
        self._sync_id = sync_id
        self._apply_remote(attrs)
        if live_sync:
            self.start_live_sync()
        return self

    async def destroy(self) -> None:
        self.stop_live_sync()
        if not self.is_new:
            await self._route().delete(self._sync_id or self.id, origin=self.origin)
            logger.info(f"Deleted {self.entity_type} '{self._sync_id or self.id}'")
        self.trigger("destroy", self)

    # ------------------------------------------------------------------
    # Live sync
    # ------------------------------------------------------------------

    def start_live_sync(self) -> None:
        if self._watch is not None:
            return
        sync_id = self._sync_id or self.id
        self._watch = self._route().watch(sync_id, self._on_watch_event)
        self.on("change", self._on_local_change)
        logger.info(f"Live sync started for {self.entity_type} '{sync_id}'")

    def stop_live_sync(self) -> None:
        if self._watch is None:
            return
        self._watch.close()
        self._watch = None
        self.off("change", self._on_local_change)
        logger.info(f"Live sync stopped for {self.entity_type} '{self._sync_id or self.id}'")

    async def wait_persisted(self) -> None:
        """Wait for every write queued by live mode so far."""
        while self._writes:
            await asyncio.gather(*list(self._writes))

    def _on_local_change(self, entity: "Entity", options: Mapping[str, Any]) -> None:
        if options.get("is_sync_changing"):
            return
        if "id" in self.changed_attributes():
            logger.info(f"{self.entity_type} id changed to '{self.id}'; leaving live sync")
            self.stop_live_sync()
            return
        attrs = self.to_persisted()
        task = asyncio.get_running_loop().create_task(self._persist(self._sync_id or self.id, attrs))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _persist(self, sync_id: str, attrs: Dict[str, Any]) -> None:
        try:
            result = await self._route().update(sync_id, attrs, origin=self.origin)
        except SyncError as exc:
            logger.error(f"Failed to persist {self.entity_type} '{sync_id}': {exc}")
            self.trigger("sync_error", self, exc)
            return
        self._note_revision(result)

    def _note_revision(self, result: "WriteResult") -> None:
        self._last_revision = max(self._last_revision, result.revision)

    def _on_watch_event(self, event: "WatchEvent") -> None:
        if event.kind == "error":
            logger.warning(f"Watch error on {self.entity_type} '{event.id}': {event.error}")
            self.trigger("sync_error", self, event.error)
            return
        if event.origin == self.origin:
            logger.debug(f"Ignoring own write of {self.entity_type} '{event.id}' (rev {event.revision})")
            return
        if event.revision <= self._last_revision:
            logger.debug(f"Ignoring stale {event.kind} of {self.entity_type} '{event.id}'")
            return
        self._last_revision = event.revision

        if event.kind == "removed":
            logger.info(f"{self.entity_type} '{event.id}' removed from the store")
            self.stop_live_sync()
            self.clear(is_sync_changing=True)
            self.trigger("removed", self)
            return

        logger.debug(f"Applying remote change to {self.entity_type} '{event.id}' (rev {event.revision})")
        try:
            self._apply_remote(event.attrs or {})
        except SyncError as exc:
            logger.error(f"Rejected remote state of {self.entity_type} '{event.id}': {exc}")
            self.trigger("sync_error", self, exc)

    def _apply_remote(self, attrs: Mapping[str, Any]) -> None:
        """Replace the attribute set with ``attrs`` as a sync-originated change."""
        incoming = copy.deepcopy(self.defaults)
        incoming.update(attrs)
        self.replace(incoming, keep=self.transient, is_sync_changing=True)


__all__ = ["Entity"]
