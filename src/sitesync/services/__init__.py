"""Service layer: configuration, sync adapters, page cache and probes."""

from .config import AppConfig, get_config, reload_config
from .file_sync import FileSyncAdapter
from .file_watch import FileLoad, mkdir_r, watch, watch_load
from .http_sync import HttpSyncAdapter
from .memory_sync import MemorySyncAdapter
from .page_store import PageStore, normalize_url
from .site import SiteService, get_site_service, reset_site_service
from .sync import SyncAdapter, SyncRegistry, SyncRoute, WatchEvent, WatchHandle, WriteResult
from .tree_probe import (
    DirectoryTreeProbe,
    EntityTreeProbe,
    LsRequest,
    PagesProbe,
    ProbeRegistry,
    ToursProbe,
    TreeProbe,
)

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "FileSyncAdapter",
    "FileLoad",
    "mkdir_r",
    "watch",
    "watch_load",
    "HttpSyncAdapter",
    "MemorySyncAdapter",
    "PageStore",
    "normalize_url",
    "SiteService",
    "get_site_service",
    "reset_site_service",
    "SyncAdapter",
    "SyncRegistry",
    "SyncRoute",
    "WatchEvent",
    "WatchHandle",
    "WriteResult",
    "DirectoryTreeProbe",
    "EntityTreeProbe",
    "LsRequest",
    "PagesProbe",
    "ProbeRegistry",
    "ToursProbe",
    "TreeProbe",
]
