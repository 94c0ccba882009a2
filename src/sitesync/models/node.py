"""Observable attribute nodes and owned collections.

A ``Node`` is a bag of named attributes that fires ``change:<key>`` and
``change`` events when it is mutated. An ``OwnedCollection`` is an ordered,
id-unique list of nodes that fires ``add``/``remove``/``reset``/``change``
events plus one aggregate ``update`` event per mutation.

Attributes declared in a node's ``contains`` schema are containment edges:
raw JSON set on them is promoted into live sub-nodes or collections (see
``sitesync.models.containment``) and changes inside the child bubble up to
the host as a single notification.
"""

from __future__ import annotations

import copy
import itertools
from contextlib import contextmanager
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Type,
    Union,
)

from ..errors import TypeMismatchError

if TYPE_CHECKING:
    from .containment import ContainmentBinding, ContainmentKind

Listener = Callable[..., Any]

_MISSING = object()
_cid_counter = itertools.count(1)


class Events:
    """Synchronous listener registry."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, callback: Listener) -> "Events":
        self._listeners.setdefault(event, []).append(callback)
        return self

    def off(self, event: Optional[str] = None, callback: Optional[Listener] = None) -> "Events":
        names = [event] if event is not None else list(self._listeners)
        for name in names:
            listeners = self._listeners.get(name)
            if not listeners:
                continue
            if callback is None:
                del self._listeners[name]
                continue
            remaining = [listener for listener in listeners if listener != callback]
            if remaining:
                self._listeners[name] = remaining
            else:
                del self._listeners[name]
        return self

    def trigger(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            # Skip listeners removed by an earlier listener in this dispatch
            if listener in self._listeners.get(event, ()):
                listener(*args)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))


def copy_raw(value: Any) -> Any:
    """Deep-copy plain JSON values, leaving live nodes and collections shared."""
    if isinstance(value, (Node, OwnedCollection)):
        return value
    if isinstance(value, Mapping):
        return {key: copy_raw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [copy_raw(item) for item in value]
    return copy.deepcopy(value)


def to_plain(value: Any, trim: bool = False, deep: bool = True) -> Any:
    """Collapse live nodes and collections into plain JSON values."""
    if isinstance(value, Node):
        if not deep and value.serialize_as_reference:
            return value.id
        return value.to_json(trim=trim, deep=deep)
    if isinstance(value, OwnedCollection):
        return value.to_json(trim=trim, deep=deep)
    if isinstance(value, Mapping):
        return {key: to_plain(item, trim=trim, deep=deep) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item, trim=trim, deep=deep) for item in value]
    return value


def _same(current: Any, new: Any) -> bool:
    if current is new:
        return True
    if isinstance(current, (Node, OwnedCollection)) or isinstance(new, (Node, OwnedCollection)):
        return False
    return type(current) is type(new) and current == new


class Node(Events):
    """A mutable bag of named attributes with change notification."""

    defaults: ClassVar[Dict[str, Any]] = {}
    contains: ClassVar[Dict[str, "ContainmentKind"]] = {}
    transient: ClassVar[FrozenSet[str]] = frozenset()
    # Entities serialize as their id when a shallow (deep=False) dump is asked for
    serialize_as_reference: ClassVar[bool] = False

    def __init__(self, attributes: Optional[Mapping[str, Any]] = None, **options: Any) -> None:
        super().__init__()
        self.cid = f"n{next(_cid_counter)}"
        self.attributes: Dict[str, Any] = {}
        self.container: Optional[Union["Node", "OwnedCollection"]] = None
        self._bindings: Dict[str, "ContainmentBinding"] = {}
        self._changing = False
        self._pending: Optional[Dict[str, Any]] = None
        self._coercing: Optional[str] = None
        self._merged: Set[str] = set()
        self._previous: Dict[str, Any] = {}
        self._changed: Dict[str, Any] = {}

        if isinstance(attributes, Node):
            attributes = attributes.to_json()
        attrs = copy.deepcopy(self.defaults)
        attrs.update(copy_raw(dict(attributes or {})))
        self.set(attrs, silent=True)

        from .containment import bind

        for key, kind in self.contains.items():
            bind(self, key, kind, silent=True)

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    @property
    def id(self) -> Any:
        return self.attributes.get("id")

    @property
    def parent(self) -> Optional["Node"]:
        """The node holding this one through a containment edge."""
        container = self.container
        if isinstance(container, OwnedCollection):
            return container.container
        return container

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def has(self, key: str) -> bool:
        return self.attributes.get(key) is not None

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    def changed_attributes(self) -> Dict[str, Any]:
        """Attributes changed by the most recent mutation."""
        return dict(self._changed)

    def previous(self, key: str) -> Any:
        return self._previous.get(key)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set(self, key: Union[str, Mapping[str, Any], "Node", None], value: Any = _MISSING, **options: Any) -> "Node":
        """Set one attribute (``set("k", v)``) or several (``set({...})``).

        Fires ``change:<key>`` for each changed attribute and a single
        ``change`` event, unless ``silent=True``. Extra options are passed
        through to listeners. Containment values are checked before anything
        is written, so a ``TypeMismatchError`` leaves the node untouched.
        """
        if isinstance(key, str):
            attrs: Dict[str, Any] = {key: value}
        else:
            if value is not _MISSING:
                raise TypeError("set() takes a key and value, or a mapping")
            if isinstance(key, Node):
                key = key.to_json()
            attrs = dict(key or {})

        unset = options.get("unset", False)
        silent = options.get("silent", False)
        if not unset:
            self._check(attrs)

        with self._mutation(silent):
            changes: List[str] = []
            for attr, val in attrs.items():
                binding = self._bindings.get(attr)
                current = self.attributes.get(attr, _MISSING)

                if unset:
                    if current is _MISSING:
                        continue
                    if binding is not None:
                        binding.coerce(None, options)
                    del self.attributes[attr]
                    changes.append(attr)
                    self._changed[attr] = None
                    continue

                if binding is not None:
                    self._coercing = attr
                    try:
                        val = binding.coerce(val, options)
                    finally:
                        self._coercing = None
                    merged = attr in self._merged
                    self._merged.discard(attr)
                    if val is current:
                        if merged:
                            changes.append(attr)
                            self._changed[attr] = val
                        continue
                else:
                    val = copy_raw(val)

                if current is not _MISSING and _same(current, val):
                    continue
                self.attributes[attr] = val
                changes.append(attr)
                self._changed[attr] = val

            if not silent:
                if changes:
                    self._pending = options
                for attr in changes:
                    self.trigger(f"change:{attr}", self, self.attributes.get(attr), options)
        return self

    def replace(self, attrs: Mapping[str, Any], keep: Iterable[str] = (), **options: Any) -> "Node":
        """Make ``attrs`` the whole attribute set as one mutation.

        Attributes missing from ``attrs`` are unset unless named in ``keep``.
        Listeners see a single ``change`` event.
        """
        attrs = dict(attrs)
        self._check(attrs)
        keep = set(keep)
        stale = [key for key in self.attributes if key not in attrs and key not in keep]
        with self._mutation(options.get("silent", False)):
            self.set(attrs, **options)
            if stale:
                self.set({key: None for key in stale}, unset=True, **options)
        return self

    def unset(self, key: str, **options: Any) -> "Node":
        return self.set({key: None}, unset=True, **options)

    def clear(self, **options: Any) -> "Node":
        return self.set({key: None for key in self.attributes}, unset=True, **options)

    def _check(self, attrs: Dict[str, Any]) -> None:
        """Validate every containment value in ``attrs`` before any is applied."""
        if not self._bindings:
            return
        from .containment import check_value

        for attr, val in list(attrs.items()):
            binding = self._bindings.get(attr)
            if binding is None:
                continue
            if isinstance(val, Iterator):
                # One-shot iterables are read once here and once on coercion
                val = attrs[attr] = list(val)
            check_value(binding.kind, val, attr, type(self).__name__)

    @contextmanager
    def _mutation(self, silent: bool = False) -> Iterator[None]:
        """Frame one logical mutation; nested frames share its ``change`` event."""
        outer = not self._changing
        if outer:
            self._changing = True
            self._previous = dict(self.attributes)
            self._changed = {}
        try:
            yield
            if outer and not silent:
                while self._pending is not None:
                    pending, self._pending = self._pending, None
                    self.trigger("change", self, pending)
        finally:
            if outer:
                self._pending = None
                self._changing = False

    def _on_child_change(self, attr: str, options: Mapping[str, Any]) -> None:
        """Called by a containment binding when the child at ``attr`` changed in place."""
        if options.get("silent"):
            return
        value = self.attributes.get(attr)
        if self._changing:
            if self._coercing == attr:
                # Merging raw data into the child as part of our own set()
                self._merged.add(attr)
                return
            self._changed[attr] = value
            self.trigger(f"change:{attr}", self, value, options)
            self._pending = dict(options)
            return

        self._changing = True
        self._previous = dict(self.attributes)
        self._changed = {attr: value}
        try:
            self.trigger(f"change:{attr}", self, value, options)
            self._pending = dict(options)
            while self._pending is not None:
                pending, self._pending = self._pending, None
                self.trigger("change", self, pending)
        finally:
            self._pending = None
            self._changing = False

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self, trim: bool = False, deep: bool = True) -> Dict[str, Any]:
        """Return the attributes as plain JSON.

        ``trim`` omits attributes equal to their declared default (applied
        recursively); ``deep=False`` renders nested entities as their ids.
        """
        result: Dict[str, Any] = {}
        defaults = self.defaults
        for attr, value in self.attributes.items():
            plain = to_plain(value, trim=trim, deep=deep)
            if trim and attr in defaults and plain == defaults[attr]:
                continue
            result[attr] = plain
        return result

    @classmethod
    def from_json(cls, data: Mapping[str, Any], **options: Any) -> "Node":
        return cls(data, **options)


class OwnedCollection(Events):
    """Ordered list of nodes, unique by id."""

    model: Type[Node] = Node

    def __init__(
        self,
        items: Optional[Iterable[Any]] = None,
        *,
        model: Optional[Type[Node]] = None,
        **options: Any,
    ) -> None:
        super().__init__()
        if model is not None:
            self.model = model
        self.models: List[Node] = []
        self._by_id: Dict[Any, Node] = {}
        self.container: Optional[Node] = None
        self._batch_depth = 0
        self._dirty: Optional[Mapping[str, Any]] = None
        if items is not None:
            self.set(items, silent=True, **options)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.models)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self.models))

    def __getitem__(self, index: int) -> Node:
        return self.models[index]

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Node):
            return any(member is item for member in self.models)
        return item in self._by_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ids()!r})"

    def get(self, ident: Any) -> Optional[Node]:
        """Return the member with the given id (or cid)."""
        if isinstance(ident, Node):
            ident = ident.id if ident.id is not None else ident.cid
        member = self._by_id.get(ident)
        if member is not None:
            return member
        for member in self.models:
            if member.cid == ident:
                return member
        return None

    def ids(self) -> List[Any]:
        return [member.id for member in self.models]

    def index_of(self, member: Node) -> int:
        for index, candidate in enumerate(self.models):
            if candidate is member:
                return index
        return -1

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, items: Any, at: Optional[int] = None, **options: Any) -> List[Node]:
        """Add one item or a list of items; duplicates (by id) are ignored."""
        batch = items if isinstance(items, (list, tuple)) else [items]
        prepared = [self._prepare(item) for item in batch]
        added: List[Node] = []
        with self._batch():
            for member in prepared:
                if member.id is not None and member.id in self._by_id:
                    continue
                position = None if at is None else at + len(added)
                self._add_one(member, position, options)
                added.append(member)
        return added

    def remove(self, items: Any, **options: Any) -> List[Node]:
        """Remove members given as nodes or ids."""
        batch = items if isinstance(items, (list, tuple)) else [items]
        removed: List[Node] = []
        with self._batch():
            for item in batch:
                member = self.get(item)
                if member is None:
                    continue
                self._remove_one(member, options)
                removed.append(member)
        return removed

    def set(self, items: Any, **options: Any) -> "OwnedCollection":
        """Merge ``items`` into the collection by id.

        Members whose id appears in ``items`` keep their live instance and
        receive the new attributes; new items are added; members not listed
        are removed. Membership ends up in the order of ``items``.
        """
        incoming = self._as_items(items)
        with self._batch():
            keep: List[Node] = []
            fresh: List[Node] = []
            for item in incoming:
                item_id = item.id if isinstance(item, Node) else item.get("id")
                existing = self._by_id.get(item_id) if item_id is not None else None
                if existing is not None and any(member is existing for member in keep):
                    existing = None
                if existing is not None:
                    if existing is not item:
                        attrs = item.to_json() if isinstance(item, Node) else item
                        existing.set(attrs, **options)
                    keep.append(existing)
                else:
                    member = self._prepare(item)
                    keep.append(member)
                    fresh.append(member)

            for member in list(self.models):
                if not any(member is kept for kept in keep):
                    self._remove_one(member, options)
            for member in fresh:
                self._add_one(member, None, options)

            if [m.cid for m in self.models] != [m.cid for m in keep]:
                self.models = keep
                self._touch(options)
        return self

    def reset(self, items: Any = None, **options: Any) -> "OwnedCollection":
        incoming = [self._prepare(item) for item in self._as_items(items or [])]
        with self._batch():
            for member in list(self.models):
                self._detach(member)
            self.models = []
            self._by_id = {}
            for member in incoming:
                self._attach(member)
            if not options.get("silent"):
                self.trigger("reset", self, options)
            self._touch(options)
        return self

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _as_items(self, items: Any) -> List[Any]:
        from .containment import check_attributes

        if isinstance(items, OwnedCollection):
            return list(items.models)
        if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Iterable):
            raise TypeMismatchError(
                f"{type(self).__name__} expects a list, got {type(items).__name__}",
                {"value": repr(items)[:80]},
            )
        items = list(items)
        for item in items:
            if not isinstance(item, (Node, Mapping)):
                raise TypeMismatchError(
                    f"{type(self).__name__} members must be objects, got {type(item).__name__}",
                    {"value": repr(item)[:80]},
                )
            if not isinstance(item, self.model):
                check_attributes(self.model, item.to_json() if isinstance(item, Node) else item)
        return items

    def _prepare(self, item: Any) -> Node:
        if isinstance(item, self.model):
            return item
        if isinstance(item, Node):
            return self.model(item.to_json())
        if isinstance(item, Mapping):
            return self.model(item)
        raise TypeMismatchError(
            f"{type(self).__name__} members must be objects, got {type(item).__name__}",
            {"value": repr(item)[:80]},
        )

    def _attach(self, member: Node, position: Optional[int] = None) -> None:
        if position is None:
            self.models.append(member)
        else:
            self.models.insert(position, member)
        if member.id is not None:
            self._by_id[member.id] = member
        member.container = self
        member.on("change", self._on_member_change)

    def _detach(self, member: Node) -> None:
        self.models = [candidate for candidate in self.models if candidate is not member]
        if member.id is not None and self._by_id.get(member.id) is member:
            del self._by_id[member.id]
        member.off("change", self._on_member_change)
        if member.container is self:
            member.container = None

    def _add_one(self, member: Node, position: Optional[int], options: Mapping[str, Any]) -> None:
        self._attach(member, position)
        if not options.get("silent"):
            self.trigger("add", member, self, options)
        self._touch(options)

    def _remove_one(self, member: Node, options: Mapping[str, Any]) -> None:
        self._detach(member)
        if not options.get("silent"):
            self.trigger("remove", member, self, options)
        self._touch(options)

    def _on_member_change(self, member: Node, options: Mapping[str, Any]) -> None:
        if member.id is not None and self._by_id.get(member.id) is not member:
            self._reindex()
        with self._batch():
            self.trigger("change", member, options)
            self._touch(options)

    def _reindex(self) -> None:
        self._by_id = {member.id: member for member in self.models if member.id is not None}

    def _touch(self, options: Mapping[str, Any]) -> None:
        if not options.get("silent"):
            self._dirty = options

    @contextmanager
    def _batch(self) -> Iterator[None]:
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty is not None:
                dirty, self._dirty = self._dirty, None
                self.trigger("update", self, dirty)

    def to_json(self, trim: bool = False, deep: bool = True) -> List[Any]:
        return [to_plain(member, trim=trim, deep=deep) for member in self.models]


__all__ = ["Events", "Node", "OwnedCollection", "copy_raw", "to_plain"]
