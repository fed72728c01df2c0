"""
Local History

Keeps recent versions of edited files on disk, each labelled with why it
was recorded (saved, renamed, moved, or any caller-defined source), and
keeps that history attached to files that are moved or renamed.

Quick Start:
    from pathlib import Path
    from localhistory import HistoryService, LocalContentStore, get_default_store_path, load_or_create_config

    config = load_or_create_config(get_default_store_path())
    async with HistoryService(LocalContentStore(), config) as history:
        await history.add_entry(Path("/work/notes.md"))
        entries = await history.get_entries(Path("/work/notes.md"))

CLI Usage:
    localhistory add notes.md
    localhistory list notes.md
    localhistory mv notes.md archive/notes.md

Default Store:
    ~/.localhistory/ (history in ~/.localhistory/History/).
    Override with LOCALHISTORY_STORE_PATH or --store.

Environment Variables:
    LOCALHISTORY_STORE_PATH  - Override default store location
    LOCALHISTORY_REMOTE_URL  - Remote that may designate the history root
    LOCALHISTORY_REMOTE_KEY  - API key for the remote
    LOCALHISTORY_VERBOSE     - Set to 1 for debug logging in the CLI
"""

from .cancellation import CancellationToken, CancellationTokenSource
from .config import HistoryConfig, Settings, get_default_store_path, load_or_create_config
from .content_store import ContentStoreProtocol, FileStat, LocalContentStore
from .errors import ContentNotFoundError, ContentStoreError, RemoteEnvironmentError
from .model import HistoryModel
from .remote import HttpRemoteEnvironment, RemoteEnvironment
from .service import MAX_PARALLEL_HISTORY_IO_OPS, HistoryService
from .types import (
    DEFAULT_SOURCE,
    MOVED_SOURCE,
    RENAMED_SOURCE,
    FileMoveEvent,
    HistoryEntry,
    HistoryEvent,
    get_source_label,
    register_source,
)

__version__ = "0.1.0"
__all__ = [
    "HistoryService",
    "HistoryModel",
    "HistoryEntry",
    "HistoryEvent",
    "FileMoveEvent",
    "HistoryConfig",
    "Settings",
    "get_default_store_path",
    "load_or_create_config",
    "ContentStoreProtocol",
    "LocalContentStore",
    "FileStat",
    "ContentStoreError",
    "ContentNotFoundError",
    "RemoteEnvironmentError",
    "HttpRemoteEnvironment",
    "RemoteEnvironment",
    "CancellationToken",
    "CancellationTokenSource",
    "MAX_PARALLEL_HISTORY_IO_OPS",
    "DEFAULT_SOURCE",
    "MOVED_SOURCE",
    "RENAMED_SOURCE",
    "get_source_label",
    "register_source",
]
