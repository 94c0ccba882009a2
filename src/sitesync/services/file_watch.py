"""Polling file and directory watchers on the running event loop."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.25

PathLike = Union[str, Path]


@dataclass(frozen=True)
class FileLoad:
    """Result of (re)loading a watched file."""

    text: Optional[str] = None
    error: Optional[OSError] = None


def _snapshot(path: Path) -> Optional[Tuple[Any, ...]]:
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    if not path.is_dir():
        return ("file", stat.st_mtime_ns, stat.st_size, stat.st_ino)
    entries = []
    try:
        with os.scandir(path) as listing:
            for entry in listing:
                try:
                    entry_stat = entry.stat()
                except FileNotFoundError:
                    continue
                entries.append((entry.name, entry.is_dir(), entry_stat.st_mtime_ns, entry_stat.st_size))
    except FileNotFoundError:
        return None
    return ("dir", tuple(sorted(entries)))


class FileWatcher:
    """Polls a path and reports ``"change"`` or ``"rename"`` to ``callback``.

    ``"rename"`` is reported when the path appears or disappears, ``"change"``
    when its content (or a directory's immediate listing) changed.
    """

    def __init__(self, path: PathLike, callback: Callable[[Any], None], interval: float = DEFAULT_INTERVAL):
        self.path = Path(path)
        self.callback = callback
        self.interval = interval
        self.closed = False
        self._snapshot = _snapshot(self.path)
        self._task = asyncio.get_running_loop().create_task(self._poll())

    async def _poll(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.interval)
            snapshot = await asyncio.to_thread(_snapshot, self.path)
            if self.closed or snapshot == self._snapshot:
                continue
            event = "rename" if (snapshot is None) != (self._snapshot is None) else "change"
            self._snapshot = snapshot
            logger.debug(f"{event} on {self.path}")
            await self._notify(event)

    async def _notify(self, event: str) -> None:
        self._deliver(event)

    def _deliver(self, payload: Any) -> None:
        if self.closed:
            return
        try:
            self.callback(payload)
        except Exception:
            logger.exception(f"Watch callback for {self.path} failed")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._task.cancel()


class LoadWatcher(FileWatcher):
    """A ``FileWatcher`` that reads the file on every change."""

    def __init__(
        self,
        path: PathLike,
        callback: Callable[[FileLoad], None],
        interval: float = DEFAULT_INTERVAL,
        preload: bool = False,
    ):
        self.preload = preload
        super().__init__(path, callback, interval)

    async def _poll(self) -> None:
        if self.preload:
            await self._notify("preload")
        await super()._poll()

    async def _notify(self, event: str) -> None:
        try:
            text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except OSError as exc:
            self._deliver(FileLoad(error=exc))
            return
        self._deliver(FileLoad(text=text))


def watch(path: PathLike, callback: Callable[[str], None], interval: float = DEFAULT_INTERVAL) -> FileWatcher:
    """Watch a file or directory. Must be called with a running event loop."""
    return FileWatcher(path, callback, interval)


def watch_load(
    path: PathLike,
    callback: Callable[[FileLoad], None],
    preload: bool = False,
    interval: float = DEFAULT_INTERVAL,
) -> LoadWatcher:
    """Watch a file and hand its content to ``callback`` on every change."""
    return LoadWatcher(path, callback, interval=interval, preload=preload)


async def mkdir_r(path: PathLike) -> Path:
    """Create ``path`` and any missing parents."""
    target = Path(path)
    await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
    return target


__all__ = ["DEFAULT_INTERVAL", "FileLoad", "FileWatcher", "LoadWatcher", "mkdir_r", "watch", "watch_load"]
