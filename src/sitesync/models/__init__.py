"""Observable node graph and persisted site entities."""

from .containment import OrderedCollection, SingleNode, bind
from .entity import Entity
from .interfaces import Containing, Identifiable, Persistable
from .node import Events, Node, OwnedCollection
from .site import Component, Page, Record, Site, Tour, title_case
from .tree import TreeNode

__all__ = [
    "Component",
    "Containing",
    "Entity",
    "Events",
    "Identifiable",
    "Node",
    "OrderedCollection",
    "OwnedCollection",
    "Page",
    "Persistable",
    "Record",
    "SingleNode",
    "Site",
    "Tour",
    "TreeNode",
    "bind",
    "title_case",
]
