"""
History model: the entries of one tracked resource.

Each model owns one history folder below the history root::

    <root>/<folder hash>/entries.json      listing (metadata)
    <root>/<folder hash>/aB3x.txt          one snapshot per entry

The in-memory entry list is reconciled with disk lazily, at most once per
model (until the model is re-keyed by a move). Entries added before that
first resolve are kept and win over what is found on disk.

All public operations on a model are serialized by a per-model lock.
Content-store failures are logged and tolerated everywhere except the
snapshot taken by ``add_entry``.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, NamedTuple, Optional, Protocol

from .cancellation import CancellationToken
from .config import Settings
from .content_store import ContentStoreProtocol, FileStat
from .errors import ContentNotFoundError, ContentStoreError
from .types import (
    DEFAULT_SOURCE,
    ENTRY_ID_LENGTH,
    HistoryEntry,
    HistoryEvent,
    history_folder_name,
    now_ms,
    random_entry_id,
    resource_key,
    resource_to_uri,
)

logger = logging.getLogger(__name__)

LISTING_VERSION = 1

# Snapshot file names: an entry id plus the extension the resource had when
# the entry was taken, which a rename may since have changed
_SNAPSHOT_NAME = re.compile(rf"[A-Za-z0-9]{{{ENTRY_ID_LENGTH}}}(\.[^./\\]+)?")


class NumberSettings(Protocol):
    """The slice of configuration a model reads."""

    def get_number(self, key: str, resource: Optional[Path] = None) -> float: ...


class ModelEvents(NamedTuple):
    """Emit callbacks handed to a model by its owner."""
    added: Callable[[HistoryEvent], None]
    changed: Callable[[HistoryEvent], None]
    replaced: Callable[[HistoryEvent], None]
    removed: Callable[[HistoryEvent], None]


class HistoryModel:
    """
    Entries for exactly one resource.

    Created on first access to a resource, re-keyed in place by
    ``move_entries`` when the resource moves.
    """

    ENTRIES_FILE = "entries.json"

    def __init__(
        self,
        resource: Path,
        history_home: Path,
        events: ModelEvents,
        content_store: ContentStoreProtocol,
        config: NumberSettings,
    ):
        """
        Args:
            resource: The tracked resource (absolute path)
            history_home: Root folder that holds all history folders
            events: Callbacks fired for added/changed/replaced/removed entries
            content_store: File operations
            config: Source of the max-entries and merge-period settings
        """
        self._history_home = history_home
        self._events = events
        self._content_store = content_store
        self._config = config

        self._lock = asyncio.Lock()
        self._should_store = False
        self._set_resource(resource)

    def _set_resource(self, resource: Path) -> None:
        self._resource = resource
        self._name = resource.name

        self._history_folder = self._to_history_folder(resource)
        self._listing_file = self._history_folder / self.ENTRIES_FILE

        # Reset entries and resolved cache
        self._entries: list[HistoryEntry] = []
        self._when_resolved: Optional[asyncio.Future] = None

    def _to_history_folder(self, resource: Path) -> Path:
        return self._history_home / history_folder_name(resource)

    @property
    def resource(self) -> Path:
        return self._resource

    @property
    def history_folder(self) -> Path:
        return self._history_folder

    @property
    def listing_file(self) -> Path:
        return self._listing_file

    def _number(self, key: str) -> float:
        return self._config.get_number(key, self._resource)

    # -------------------------------------------------------------------------
    # Entry operations
    # -------------------------------------------------------------------------

    async def add_entry(
        self,
        source: str = DEFAULT_SOURCE,
        timestamp: Optional[int] = None,
        token: CancellationToken = CancellationToken.NONE,
    ) -> Optional[HistoryEntry]:
        """
        Snapshot the resource as a new entry, or merge into the last one.

        The last entry is replaced instead when it has the same source and
        is at most ``merge_period`` seconds older than ``timestamp``. Only
        in-memory entries are consulted; this does not resolve from disk.

        Returns:
            The new or replaced entry, None if cancelled

        Raises:
            ContentStoreError: If the snapshot could not be taken
        """
        async with self._lock:
            return await self._add_entry(source, timestamp, token)

    async def _add_entry(
        self,
        source: str,
        timestamp: Optional[int],
        token: CancellationToken,
    ) -> Optional[HistoryEntry]:
        if token.is_cancellation_requested:
            return None
        if timestamp is None:
            timestamp = now_ms()

        # Same source within the merge period replaces the latest entry
        last_entry = self._entries[-1] if self._entries else None
        if last_entry is not None and last_entry.source == source:
            merge_period = self._number(Settings.MERGE_PERIOD)
            if timestamp - last_entry.timestamp <= merge_period * 1000:
                return await self._replace_entry(last_entry, timestamp)

        return await self._do_add_entry(source, timestamp)

    async def _do_add_entry(self, source: str, timestamp: int) -> HistoryEntry:
        id = random_entry_id(self._resource, {e.id for e in self._entries})
        location = self._history_folder / id
        await self._content_store.clone_file(self._resource, location)

        entry = HistoryEntry(
            id=id,
            resource=self._resource,
            name=self._name,
            location=location,
            timestamp=timestamp,
            source=source,
        )
        self._entries.append(entry)
        self._should_store = True

        self._events.added(HistoryEvent(entry))
        return entry

    async def _replace_entry(self, entry: HistoryEntry, timestamp: int) -> HistoryEntry:
        await self._content_store.clone_file(self._resource, entry.location)

        entry.timestamp = timestamp
        self._should_store = True

        self._events.replaced(HistoryEvent(entry))
        return entry

    def _find(self, entry: HistoryEntry) -> Optional[HistoryEntry]:
        for candidate in self._entries:
            if candidate is entry or candidate.id == entry.id:
                return candidate
        return None

    async def remove_entry(
        self,
        entry: HistoryEntry,
        token: CancellationToken = CancellationToken.NONE,
    ) -> bool:
        """
        Delete an entry and its snapshot.

        Returns:
            True if the entry was found and removed
        """
        async with self._lock:
            await self._resolve_entries_once()
            if token.is_cancellation_requested:
                return False

            existing = self._find(entry)
            if existing is None:
                return False

            await self._delete_entry(existing)
            self._entries.remove(existing)
            self._should_store = True

            self._events.removed(HistoryEvent(existing))
            return True

    async def update_entry(
        self,
        entry: HistoryEntry,
        source: str,
        token: CancellationToken = CancellationToken.NONE,
    ) -> None:
        """Relabel an entry. No-op if it is not (or no longer) part of this history."""
        async with self._lock:
            await self._resolve_entries_once()
            if token.is_cancellation_requested:
                return

            existing = self._find(entry)
            if existing is None:
                return

            existing.source = source
            self._should_store = True

            self._events.changed(HistoryEvent(existing))

    async def get_entries(self) -> list[HistoryEntry]:
        """
        The most recent entries, oldest first.

        At most ``max_file_entries`` are returned. Entries beyond the limit
        stay in the model until the next ``store``.
        """
        async with self._lock:
            await self._resolve_entries_once()

            max_entries = int(self._number(Settings.MAX_ENTRIES))
            if len(self._entries) > max_entries:
                return self._entries[len(self._entries) - max_entries:]
            return list(self._entries)

    async def has_entries(self, skip_resolve: bool = False) -> bool:
        """True if there are entries. With ``skip_resolve``, memory only."""
        if skip_resolve:
            return len(self._entries) > 0
        async with self._lock:
            await self._resolve_entries_once()
            return len(self._entries) > 0

    # -------------------------------------------------------------------------
    # Reconciliation with disk
    # -------------------------------------------------------------------------

    async def _resolve_entries_once(self) -> None:
        if self._when_resolved is None:
            self._when_resolved = asyncio.ensure_future(self._resolve_entries())
        # Shielded so a cancelled caller does not poison the cached result
        await asyncio.shield(self._when_resolved)

    async def _resolve_entries(self) -> None:
        listing_file = self._listing_file
        entries = await self._resolve_entries_from_disk()

        if listing_file != self._listing_file:
            return  # re-keyed while resolving, result belongs to the old location

        # Entries added before the listing was written are only in memory
        for entry in self._entries:
            entries[entry.id] = entry

        self._entries = sorted(entries.values(), key=lambda e: e.timestamp)

    async def _resolve_entries_from_disk(self) -> dict[str, HistoryEntry]:
        listing, stats = await asyncio.gather(
            self._read_entries_file(),
            self._read_entries_folder(),
        )

        # Snapshot files are the source of truth for which entries exist
        entries: dict[str, HistoryEntry] = {}
        for stat in stats or []:
            entries[stat.name] = HistoryEntry(
                id=stat.name,
                resource=self._resource,
                name=self._name,
                location=stat.path,
                timestamp=stat.mtime,
                source=DEFAULT_SOURCE,
            )

        # The listing has the more specific metadata
        for row in _listing_rows(listing):
            existing = entries.get(row["id"])
            if existing is not None:
                existing.timestamp = row["timestamp"]
                existing.source = row.get("source", DEFAULT_SOURCE)

        return entries

    async def _read_entries_file(self) -> Optional[dict]:
        try:
            raw = await self._content_store.read_file(self._listing_file)
        except ContentNotFoundError:
            return None
        except ContentStoreError as e:
            self._trace_error(e)
            return None

        try:
            listing = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            self._trace_error(e)
            return None
        if not isinstance(listing, dict):
            self._trace_error(ValueError(f"Unexpected listing in {self._listing_file}"))
            return None
        return listing

    async def _read_entries_folder(self) -> Optional[list[FileStat]]:
        try:
            children = await self._content_store.list_children(self._history_folder)
        except ContentNotFoundError:
            return None
        except ContentStoreError as e:
            self._trace_error(e)
            return None

        # Skip anything that does not look like a snapshot
        listing_key = resource_key(self._listing_file)
        return [
            child for child in children
            if not child.is_dir
            and resource_key(child.path) != listing_key
            and _SNAPSHOT_NAME.fullmatch(child.name)
        ]

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def store(self, token: CancellationToken = CancellationToken.NONE) -> None:
        """Apply retention and persist the listing. No disk access if unchanged."""
        async with self._lock:
            await self._store(token)

    async def _store(self, token: CancellationToken) -> None:
        if not self._should_store:
            return

        await self._resolve_entries_once()
        if token.is_cancellation_requested:
            return

        await self._clean_up_entries()

        if not self._entries:
            # Without entries, the history folder goes away
            try:
                await self._content_store.delete(self._history_folder, recursive=True)
            except ContentNotFoundError:
                pass
            except ContentStoreError as e:
                self._trace_error(e)
                return
        else:
            try:
                await self._write_entries_file()
            except ContentStoreError as e:
                self._trace_error(e)
                return

        self._should_store = False

    async def _clean_up_entries(self) -> None:
        max_entries = int(self._number(Settings.MAX_ENTRIES))
        if len(self._entries) <= max_entries:
            return

        cut = len(self._entries) - max_entries
        to_delete = self._entries[:cut]
        to_keep = self._entries[cut:]

        for entry in to_delete:
            await self._delete_entry(entry)

        self._entries = to_keep

        for entry in to_delete:
            self._events.removed(HistoryEvent(entry))

    async def _delete_entry(self, entry: HistoryEntry) -> None:
        try:
            await self._content_store.delete(entry.location)
        except ContentNotFoundError:
            pass
        except ContentStoreError as e:
            self._trace_error(e)

    async def _write_entries_file(self) -> None:
        serialized = {
            "version": LISTING_VERSION,
            "resource": resource_to_uri(self._resource),
            "entries": [_serialize_entry(entry) for entry in self._entries],
        }
        await self._content_store.write_file(
            self._listing_file,
            json.dumps(serialized).encode("utf-8"),
        )

    # -------------------------------------------------------------------------
    # Move
    # -------------------------------------------------------------------------

    async def move_entries(
        self,
        target: Path,
        source: str,
        token: CancellationToken = CancellationToken.NONE,
    ) -> None:
        """
        Follow the resource to ``target``.

        Flushes pending changes, renames the history folder, re-keys the
        model and records one entry tagged ``source`` for the move.
        """
        async with self._lock:
            await self._store(token)
            if token.is_cancellation_requested:
                return

            source_folder = self._history_folder
            target_folder = self._to_history_folder(target)
            try:
                await self._content_store.move(source_folder, target_folder, overwrite=True)
            except ContentNotFoundError:
                pass  # no history yet
            except ContentStoreError as e:
                self._trace_error(e)

            self._set_resource(target)

            try:
                await self._add_entry(source, None, token)
            except ContentStoreError as e:
                self._trace_error(e)

            await self._store(token)

    def _trace_error(self, error: Exception) -> None:
        logger.debug("[Local History] %s: %s", self._resource, error)


def _serialize_entry(entry: HistoryEntry) -> dict[str, Any]:
    row: dict[str, Any] = {"id": entry.id, "timestamp": entry.timestamp}
    if entry.source != DEFAULT_SOURCE:
        row["source"] = entry.source
    return row


def _listing_rows(listing: Optional[dict]) -> list[dict]:
    """Well-formed rows of a parsed listing; malformed rows are dropped."""
    if not listing:
        return []
    rows = listing.get("entries")
    if not isinstance(rows, list):
        return []
    return [
        row for row in rows
        if isinstance(row, dict)
        and isinstance(row.get("id"), str)
        and isinstance(row.get("timestamp"), int)
        and not isinstance(row.get("timestamp"), bool)
        and isinstance(row.get("source", ""), str)
    ]
