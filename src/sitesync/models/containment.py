"""Typed containment edges between nodes.

A node declares its containment edges in its ``contains`` schema::

    class Page(Entity):
        contains = {"components": OrderedCollection(Component)}

``bind`` installs the edge: raw JSON at the key is promoted into a live
child, the host listens to the child's change stream, and every in-place
change of the child is reported on the host as one ``change:<key>`` plus one
``change``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Type, Union

from ..errors import TypeMismatchError
from .node import Node, OwnedCollection, to_plain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleNode:
    """The attribute holds one live node of ``cls``."""

    cls: Type[Node] = Node

    def satisfied_by(self, value: Any) -> bool:
        return isinstance(value, self.cls)


@dataclass(frozen=True)
class OrderedCollection:
    """The attribute holds an ``OwnedCollection`` of ``cls`` members."""

    cls: Type[Node] = Node
    collection_cls: Type[OwnedCollection] = OwnedCollection

    def satisfied_by(self, value: Any) -> bool:
        return isinstance(value, OwnedCollection) and issubclass(value.model, self.cls)


ContainmentKind = Union[SingleNode, OrderedCollection]


def _object_expected(owner: str, key: str, cls: Type[Node], value: Any) -> TypeMismatchError:
    return TypeMismatchError(
        f"'{key}' on {owner} requires an object, got {type(value).__name__}",
        {"key": key, "expected": cls.__name__},
    )


def _list_expected(owner: str, key: str, cls: Type[Node], value: Any) -> TypeMismatchError:
    return TypeMismatchError(
        f"'{key}' on {owner} requires a list, got {type(value).__name__}",
        {"key": key, "expected": f"list of {cls.__name__}"},
    )


def check_value(kind: ContainmentKind, value: Any, key: str, owner: str) -> None:
    """Raise ``TypeMismatchError`` if ``value`` cannot be promoted into ``kind``.

    Nested containment edges are checked too. Nothing is modified, so a whole
    mutation can be validated before any of it is applied.
    """
    if value is None or kind.satisfied_by(value):
        return
    if isinstance(value, (Node, OwnedCollection)):
        value = value.to_json()
    if isinstance(kind, SingleNode):
        if not isinstance(value, Mapping):
            raise _object_expected(owner, key, kind.cls, value)
        check_attributes(kind.cls, value)
        return
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise _list_expected(owner, key, kind.cls, value)
    for item in value:
        if isinstance(item, kind.cls):
            continue
        if isinstance(item, Node):
            item = item.to_json()
        if not isinstance(item, Mapping):
            raise TypeMismatchError(
                f"'{key}' on {owner} holds objects, got {type(item).__name__}",
                {"key": key, "expected": kind.cls.__name__},
            )
        check_attributes(kind.cls, item)


def check_attributes(cls: Type[Node], attrs: Mapping[str, Any]) -> None:
    """Check raw ``attrs`` against the containment schema of ``cls``."""
    for key, kind in cls.contains.items():
        check_value(kind, attrs.get(key), key, cls.__name__)


class ContainmentBinding:
    """Event plumbing for one (host, key, child) edge."""

    def __init__(self, host: Node, key: str, kind: ContainmentKind):
        self.host = host
        self.key = key
        self.kind = kind
        self.child: Optional[Union[Node, OwnedCollection]] = None

    @property
    def event(self) -> str:
        return "change" if isinstance(self.kind, SingleNode) else "update"

    def attach(self, child: Union[Node, OwnedCollection]) -> None:
        if self.child is child:
            return
        self.detach()
        self.child = child
        child.container = self.host
        child.on(self.event, self._on_child_change)

    def detach(self) -> None:
        child = self.child
        if child is None:
            return
        child.off(self.event, self._on_child_change)
        if child.container is self.host:
            child.container = None
        self.child = None

    def _on_child_change(self, child: Any, options: Mapping[str, Any]) -> None:
        self.host._on_child_change(self.key, options)

    def coerce(self, value: Any, options: Mapping[str, Any]) -> Any:
        """Turn ``value`` into the live child for this edge, attaching it."""
        if value is None:
            self.detach()
            return None
        if isinstance(self.kind, SingleNode):
            return self._coerce_node(value)
        return self._coerce_collection(value, options)

    def _coerce_node(self, value: Any) -> Node:
        cls = self.kind.cls
        if isinstance(value, cls):
            self.attach(value)
            return value
        if isinstance(value, Node):
            value = value.to_json()
        if not isinstance(value, Mapping):
            raise _object_expected(type(self.host).__name__, self.key, cls, value)
        current = self.child
        if isinstance(current, Node) and current.to_json() == to_plain(value):
            return current
        node = cls(value)
        self.attach(node)
        return node

    def _coerce_collection(self, value: Any, options: Mapping[str, Any]) -> OwnedCollection:
        if isinstance(value, OwnedCollection):
            if value is self.child or self.kind.satisfied_by(value):
                self.attach(value)
                return value
            value = value.to_json()
        if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
            raise _list_expected(type(self.host).__name__, self.key, self.kind.cls, value)
        items = list(value)
        current = self.child
        if isinstance(current, OwnedCollection):
            current.set(items, **options)
            return current
        collection = self.kind.collection_cls(items, model=self.kind.cls)
        self.attach(collection)
        return collection


def bind(host: Node, key: str, kind: ContainmentKind, silent: bool = False) -> Any:
    """Install a containment edge on ``host`` at ``key``.

    Returns the live child (or ``None`` when the key is unset). Binding again
    with a value that already satisfies ``kind`` keeps the same instance.
    """
    binding = host._bindings.get(key)
    value = host.attributes.get(key)

    if binding is not None and binding.kind == kind:
        if value is None or (binding.child is value and kind.satisfied_by(value)):
            return value

    if binding is not None:
        binding.detach()
    binding = ContainmentBinding(host, key, kind)
    host._bindings[key] = binding

    if value is None:
        return None
    if kind.satisfied_by(value):
        binding.attach(value)
        return value

    logger.debug(f"Promoting '{key}' on {type(host).__name__} to {kind}")
    host.set(key, value, silent=silent)
    return host.attributes.get(key)


__all__ = [
    "ContainmentBinding",
    "ContainmentKind",
    "OrderedCollection",
    "SingleNode",
    "bind",
    "check_attributes",
    "check_value",
]
