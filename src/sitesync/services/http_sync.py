"""Sync adapter that talks to another sitesync process over HTTP."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from ..errors import ConflictOnCreateError, NotFoundError, ParseError, SyncError, TransportError
from .sync import DELETED, SyncAdapter, WatchCallback, WatchEvent, WatchHandle, WriteResult, state_digest

logger = logging.getLogger(__name__)

ORIGIN_HEADER = "X-Sitesync-Origin"


class HttpSyncAdapter(SyncAdapter):
    """Client side of the ``/api/sync`` routes.

    Live mode polls ``GET`` for the watched entity; states matching one of
    this adapter's own writes are reported with that write's origin.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 0.25,
        timeout: float = 30.0,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def _url(self, entity_type: str, id: Optional[str] = None) -> str:
        path = f"/api/sync/{quote(entity_type, safe='')}"
        if id is not None:
            path += f"/{quote(str(id), safe='')}"
        return path

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}", {"url": url}) from exc
        if response.status_code == 404:
            raise NotFoundError(f"Not found: {url}", {"url": url})
        if response.status_code == 409:
            raise ConflictOnCreateError(f"Already exists: {url}", {"url": url})
        if response.status_code >= 400:
            raise TransportError(
                f"{method} {url} returned {response.status_code}",
                {"url": url, "status": response.status_code, "body": response.text[:200]},
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON from {response.request.url}", {"body": response.text[:200]}) from exc
        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object from {response.request.url}")
        return data

    def _headers(self, origin: Optional[str]) -> Dict[str, str]:
        return {ORIGIN_HEADER: origin} if origin else {}

    async def create(
        self, entity_type: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        data = dict(attrs)
        revision = None
        if data.get("id"):
            revision = self._record_write(entity_type, str(data["id"]), data, origin)
        response = await self._request(
            "POST", self._url(entity_type), json=data, headers=self._headers(origin)
        )
        body = self._json(response)
        id = str(body["id"])
        if revision is None:
            data["id"] = id
            revision = self._record_write(entity_type, id, data, origin)
        return WriteResult(id=id, revision=revision)

    async def read(self, entity_type: str, id: str) -> Dict[str, Any]:
        response = await self._request("GET", self._url(entity_type, id))
        return self._json(response)

    async def update(
        self, entity_type: str, id: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        data = dict(attrs)
        revision = self._record_write(entity_type, str(id), data, origin)
        try:
            await self._request(
                "PUT", self._url(entity_type, id), json=data, headers=self._headers(origin)
            )
        except SyncError:
            self.ledger.forget(entity_type, str(id), revision)
            raise
        return WriteResult(id=id, revision=revision)

    async def delete(self, entity_type: str, id: str, *, origin: Optional[str] = None) -> None:
        revision = self._record_write(entity_type, str(id), None, origin)
        try:
            await self._request("DELETE", self._url(entity_type, id), headers=self._headers(origin))
        except SyncError:
            self.ledger.forget(entity_type, str(id), revision)
            raise

    def watch(self, entity_type: str, id: str, callback: WatchCallback) -> WatchHandle:
        handle = WatchHandle()
        task = asyncio.get_running_loop().create_task(self._poll(entity_type, str(id), callback, handle))
        handle._on_close = task.cancel
        return handle

    async def _poll(self, entity_type: str, id: str, callback: WatchCallback, handle: WatchHandle) -> None:
        last: Optional[str] = None
        failing = False
        while not handle.closed:
            try:
                attrs: Optional[Dict[str, Any]] = await self.read(entity_type, id)
            except NotFoundError:
                attrs = None
            except SyncError as exc:
                if not failing and not handle.closed:
                    failing = True
                    logger.warning(f"Polling {entity_type} '{id}' failed: {exc}")
                    self._deliver(callback, WatchEvent("error", entity_type, id, error=exc))
                await asyncio.sleep(self.poll_interval)
                continue
            failing = False
            digest = state_digest(attrs)
            if last is None:
                # First poll sets the baseline
                last = digest
            elif digest != last and not handle.closed:
                last = digest
                revision, origin = self._observe(entity_type, id, attrs)
                kind = "removed" if digest == DELETED else "changed"
                self._deliver(callback, WatchEvent(kind, entity_type, id, attrs=attrs, revision=revision, origin=origin))
            await asyncio.sleep(self.poll_interval)

    @staticmethod
    def _deliver(callback: WatchCallback, event: WatchEvent) -> None:
        try:
            callback(event)
        except Exception:
            logger.exception(f"Watch callback for {event.entity_type} '{event.id}' failed")

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


__all__ = ["HttpSyncAdapter", "ORIGIN_HEADER"]
