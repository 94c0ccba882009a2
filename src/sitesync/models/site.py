"""Site entities: pages, their components, tours and the site itself."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .containment import OrderedCollection, SingleNode
from .entity import Entity
from .node import Node, OwnedCollection


def title_case(text: str, preserve_case: bool = False) -> str:
    """Upper-case the first letter of every space separated word."""
    words = (text if preserve_case else text.lower()).split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def unique_collection_id(collection: OwnedCollection, prefix: str) -> str:
    number = 1
    while f"{prefix}{number}" in collection:
        number += 1
    return f"{prefix}{number}"


class Component(Node):
    """A visual element placed on a page."""

    defaults = {
        "id": "",
        "view_class": "",
        "view_options": {},
        "monitor": {},
        "css": {},
        "notes": "",
    }
    contains = {
        "view_options": SingleNode(Node),
        "monitor": SingleNode(Node),
    }


class Page(Entity):
    """A page of the site, addressed by its url."""

    entity_type = "Page"
    defaults = {
        "id": "",
        "title": "",
        "description": "",
        "notes": "",
        "css": {},
        "components": [],
    }
    contains = {"components": OrderedCollection(Component)}
    transient = frozenset({"is_404_page"})

    @property
    def components(self) -> OwnedCollection:
        return self.attributes["components"]

    def add_component(self, view_class: str, view_options: Optional[Mapping[str, Any]] = None) -> Component:
        component = Component({
            "id": unique_collection_id(self.components, "c"),
            "view_class": view_class,
            "view_options": dict(view_options or {}),
            "css": {".nm-cv": "top:10px;"},
        })
        self.components.add(component)
        return component


class Tour(Entity):
    """An ordered sequence of pages, optionally auto-advancing."""

    entity_type = "Tour"
    defaults = {
        "id": "",
        "title": "",
        "description": "",
        "auto_next_sec": 10,
        "pages": [],
    }


class Site(Entity):
    entity_type = "Site"
    defaults = {
        "id": "default",
        "name": "Site Sync",
        "logo": "/static/images/logo.png",
        "favicon": "/static/images/favicon.ico",
        "css": "",
        "tours": [],
    }
    # Tour summaries (without their pages)
    contains = {"tours": OrderedCollection(Node)}


class Record(Entity):
    """A generic persisted record whose route is chosen per instance."""

    def __init__(
        self,
        attributes: Optional[Mapping[str, Any]] = None,
        sync: Any = None,
        entity_type: Optional[str] = None,
        **options: Any,
    ) -> None:
        super().__init__(attributes, sync=sync, **options)
        if entity_type:
            self.entity_type = entity_type


__all__ = [
    "Component",
    "Page",
    "Record",
    "Site",
    "Tour",
    "title_case",
    "unique_collection_id",
]
