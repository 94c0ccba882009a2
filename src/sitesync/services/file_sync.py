"""Filesystem sync adapter: one JSON file per entity."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import (
    ConfigurationError,
    ConfigurationLockedError,
    ConflictOnCreateError,
    NotFoundError,
    ParseError,
    TransportError,
)
from .file_watch import DEFAULT_INTERVAL, FileLoad, watch_load
from .sync import SyncAdapter, WatchCallback, WatchEvent, WatchHandle, WriteResult

logger = logging.getLogger(__name__)


def dump_json(attrs: Mapping[str, Any]) -> str:
    """Pretty-printed, round-trip stable JSON text."""
    return json.dumps(attrs, indent=2, ensure_ascii=False) + "\n"


class FileSyncAdapter(SyncAdapter):
    """Persists ``<root>/<entity_type>/<id>.json``.

    An id naming an existing directory maps to ``<id>/index.json``. Leading
    slashes are stripped, so the page ``/docs/intro`` lives at
    ``Page/docs/intro.json``.
    """

    name = "file"

    def __init__(self, root_path: Optional[Union[str, Path]] = None, watch_interval: float = DEFAULT_INTERVAL):
        super().__init__()
        self._root: Optional[Path] = None
        self._used = False
        self.watch_interval = watch_interval
        if root_path is not None:
            self.set_root_path(root_path)

    @property
    def root_path(self) -> Optional[Path]:
        return self._root

    def set_root_path(self, path: Union[str, Path]) -> None:
        """Point the adapter at a store directory.

        Repeating the current path is allowed; a different path after the
        store has been used raises ``ConfigurationLockedError``.
        """
        resolved = Path(path).expanduser().resolve()
        if self._root is not None and resolved != self._root and self._used:
            raise ConfigurationLockedError(
                "The sync root path cannot change after first use",
                {"current": str(self._root), "requested": str(resolved)},
            )
        self._root = resolved

    def type_directory(self, entity_type: str) -> Path:
        if self._root is None:
            raise ConfigurationError("FileSyncAdapter has no root path")
        self._used = True
        return (self._root / entity_type).resolve()

    @staticmethod
    def _key(id: Any) -> str:
        return str(id).lstrip("/")

    def resolve_entity_path(self, entity_type: str, id: Any) -> Path:
        """Resolve the file holding ``id``; raises ValueError if it escapes the type directory."""
        type_dir = self.type_directory(entity_type)
        key = self._key(id)
        if not key or "\\" in key:
            raise ValueError(f"Invalid {entity_type} id: {id!r}")
        base = (type_dir / key).resolve()
        if not str(base).startswith(str(type_dir) + os.sep):
            raise ValueError(f"Id escapes the {entity_type} store: {id!r}")
        if base.is_dir():
            return base / "index.json"
        return base.with_name(base.name + ".json")

    # ------------------------------------------------------------------
    # Blocking helpers, run in a worker thread
    # ------------------------------------------------------------------

    def _read_file(self, entity_type: str, id: Any) -> Dict[str, Any]:
        path = self.resolve_entity_path(entity_type, id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"{entity_type} not found: {id}", {"entity_type": entity_type, "id": id}) from exc
        except OSError as exc:
            raise TransportError(f"Failed to read {path}: {exc}", {"path": str(path)}) from exc
        return self._parse(text, path)

    @staticmethod
    def _parse(text: str, path: Path) -> Dict[str, Any]:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ParseError(f"Malformed JSON in {path}: {exc}", {"path": str(path)}) from exc
        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object in {path}", {"path": str(path)})
        return data

    def _write_file(self, path: Path, attrs: Mapping[str, Any], exclusive: bool = False) -> None:
        # Write then rename so watchers never see a half-written file
        temp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp.write_text(dump_json(attrs), encoding="utf-8")
            if exclusive:
                # link() refuses an existing target, so only one create can win
                os.link(temp, path)
                temp.unlink()
            else:
                os.replace(temp, path)
        except FileExistsError as exc:
            temp.unlink(missing_ok=True)
            raise ConflictOnCreateError(f"Already exists: {path.name}", {"path": str(path)}) from exc
        except OSError as exc:
            temp.unlink(missing_ok=True)
            raise TransportError(f"Failed to write {path}: {exc}", {"path": str(path)}) from exc

    def _delete_file(self, entity_type: str, id: Any) -> None:
        path = self.resolve_entity_path(entity_type, id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"{entity_type} not found: {id}", {"entity_type": entity_type, "id": id}) from exc
        except OSError as exc:
            raise TransportError(f"Failed to delete {path}: {exc}", {"path": str(path)}) from exc

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def create(
        self, entity_type: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        data = dict(attrs)
        id = data.get("id") or uuid.uuid4().hex
        data["id"] = id
        path = self.resolve_entity_path(entity_type, id)
        revision = self._record_write(entity_type, self._key(id), data, origin)
        try:
            await asyncio.to_thread(self._write_file, path, data, True)
        except Exception:
            self.ledger.forget(entity_type, self._key(id), revision)
            raise
        logger.info(f"Created {entity_type} '{id}' at {path}")
        return WriteResult(id=id, revision=revision)

    async def read(self, entity_type: str, id: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read_file, entity_type, id)

    async def update(
        self, entity_type: str, id: str, attrs: Mapping[str, Any], *, origin: Optional[str] = None
    ) -> WriteResult:
        data = dict(attrs)
        path = self.resolve_entity_path(entity_type, id)
        revision = self._record_write(entity_type, self._key(id), data, origin)
        try:
            await asyncio.to_thread(self._write_file, path, data)
        except Exception:
            self.ledger.forget(entity_type, self._key(id), revision)
            raise
        logger.debug(f"Wrote {entity_type} '{id}' (rev {revision})")
        return WriteResult(id=id, revision=revision)

    async def delete(self, entity_type: str, id: str, *, origin: Optional[str] = None) -> None:
        revision = self._record_write(entity_type, self._key(id), None, origin)
        try:
            await asyncio.to_thread(self._delete_file, entity_type, id)
        except Exception:
            self.ledger.forget(entity_type, self._key(id), revision)
            raise
        logger.info(f"Deleted {entity_type} '{id}'")

    def watch(self, entity_type: str, id: str, callback: WatchCallback) -> WatchHandle:
        path = self.resolve_entity_path(entity_type, id)
        key = self._key(id)

        def on_load(load: FileLoad) -> None:
            if load.error is not None:
                if isinstance(load.error, FileNotFoundError):
                    revision, origin = self._observe(entity_type, key, None)
                    callback(WatchEvent("removed", entity_type, id, revision=revision, origin=origin))
                else:
                    error = TransportError(f"Failed to read {path}: {load.error}", {"path": str(path)})
                    callback(WatchEvent("error", entity_type, id, error=error))
                return
            try:
                attrs = self._parse(load.text or "", path)
            except ParseError as exc:
                callback(WatchEvent("error", entity_type, id, error=exc))
                return
            revision, origin = self._observe(entity_type, key, attrs)
            callback(WatchEvent("changed", entity_type, id, attrs=attrs, revision=revision, origin=origin))

        watcher = watch_load(path, on_load, interval=self.watch_interval)
        logger.debug(f"Watching {path}")
        return WatchHandle(watcher.close)


__all__ = ["FileSyncAdapter", "dump_json"]
