"""Capability protocols implemented by entities."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class Identifiable(Protocol):
    entity_type: str

    @property
    def id(self) -> Any: ...


@runtime_checkable
class Persistable(Protocol):
    async def save(self, live_sync: bool = False) -> Any: ...

    async def fetch(self, live_sync: bool = False) -> Any: ...

    async def destroy(self) -> None: ...

    def to_persisted(self) -> Dict[str, Any]: ...


@runtime_checkable
class Containing(Protocol):
    contains: Dict[str, Any]

    def to_json(self, trim: bool = False, deep: bool = True) -> Dict[str, Any]: ...

    @property
    def parent(self) -> Optional[Any]: ...


__all__ = ["Containing", "Identifiable", "Persistable"]
