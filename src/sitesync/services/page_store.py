"""URL-keyed cache of live pages with 404 fallback."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Type

from ..errors import NotFoundError
from ..models.site import Page, title_case
from .sync import SyncRegistry

logger = logging.getLogger(__name__)

NOT_FOUND_ID = "404"


def strip_query(url: str) -> str:
    return url.split("?", 1)[0]


def normalize_url(url: str) -> str:
    """Drop the query string, lower-case, and strip one trailing slash."""
    path = strip_query(url).lower()
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


class PageStore:
    """Resolves urls to live ``Page`` entities.

    A page is fetched with live sync on its first successful resolution and
    kept until it is invalidated, destroyed, or removed from the store.
    Unknown urls resolve to a transient copy of the ``404`` page that is
    never cached or persisted.
    """

    def __init__(self, sync: SyncRegistry, page_cls: Type[Page] = Page):
        self.sync = sync
        self.page_cls = page_cls
        self._cache: Dict[str, Page] = {}
        self._evictors: Dict[str, Callable[[Page], None]] = {}

    async def resolve(self, url: str) -> Page:
        key = normalize_url(url)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        page = self.page_cls({"id": key}, sync=self.sync)
        try:
            await page.fetch(live_sync=True)
        except NotFoundError:
            if key == NOT_FOUND_ID:
                logger.error("The 404 page is missing from the store")
                raise
            return await self._not_found_page(url, key)

        if str(page.id or "").lower() != key:
            # Correct the id in memory only; the stored file keeps its own
            page.set("id", key, is_sync_changing=True)
        self._populate(key, page)
        return page

    async def _not_found_page(self, url: str, key: str) -> Page:
        template = await self.resolve(NOT_FOUND_ID)
        data = template.to_json()
        last_segment = strip_query(url).rstrip("/").split("/")[-1]
        data.update(
            id=key,
            title=title_case(last_segment, preserve_case=True),
            is_404_page=True,
        )
        logger.debug(f"Serving the 404 page for '{key}'")
        return self.page_cls(data, sync=self.sync)

    def _populate(self, key: str, page: Page) -> None:
        previous = self._cache.get(key)
        if previous is not None and previous is not page:
            # A concurrent miss got here first; the later fetch wins
            self._release(previous)
        self._cache[key] = page

        def evict(entity: Page) -> None:
            if self._cache.get(key) is entity:
                logger.info(f"Evicting page '{key}' from the cache")
                del self._cache[key]
                self._release(entity)

        self._evictors[page.cid] = evict
        page.on("destroy", evict)
        page.on("removed", evict)
        logger.info(f"Cached page '{key}'")

    def _release(self, page: Page) -> None:
        evict = self._evictors.pop(page.cid, None)
        if evict is not None:
            page.off("destroy", evict)
            page.off("removed", evict)
        page.stop_live_sync()

    def get_cached(self, url: str) -> Optional[Page]:
        return self._cache.get(normalize_url(url))

    def cached_urls(self) -> List[str]:
        return list(self._cache)

    def invalidate(self, url: str) -> Optional[Page]:
        """Evict ``url`` and stop its live sync."""
        page = self._cache.pop(normalize_url(url), None)
        if page is not None:
            self._release(page)
        return page

    def clear(self) -> None:
        for key in list(self._cache):
            self.invalidate(key)


__all__ = ["NOT_FOUND_ID", "PageStore", "normalize_url", "strip_query"]
