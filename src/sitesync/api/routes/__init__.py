"""HTTP API route handlers."""

from . import health, pages, sync, tree

__all__ = ["health", "pages", "sync", "tree"]
