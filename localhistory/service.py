"""
History service: the registry of history models.

The service resolves the history root once (a remote-designated root if
the remote provides one, the local root otherwise), hands out one model
per resource, answers cross-resource queries, and keeps history attached
to resources that are moved or renamed through the content store.

Example:
    async with HistoryService(LocalContentStore(), config) as history:
        entry = await history.add_entry(Path("/work/notes.md"))
        entries = await history.get_entries(Path("/work/notes.md"))
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from .cancellation import CancellationToken
from .config import HistoryConfig
from .content_store import ContentStoreProtocol
from .errors import ContentNotFoundError, ContentStoreError
from .events import Emitter
from .model import HistoryModel, ModelEvents
from .remote import RemoteEnvironmentProtocol
from .types import (
    DEFAULT_SOURCE,
    MOVED_SOURCE,
    RENAMED_SOURCE,
    FileMoveEvent,
    HistoryEntry,
    HistoryEvent,
    is_equal_or_parent,
    relative_parts,
    resource_key,
    uri_to_resource,
)

logger = logging.getLogger(__name__)

# Upper bound of concurrent content-store operations for bulk work
MAX_PARALLEL_HISTORY_IO_OPS = 10

T = TypeVar("T")


class Limiter:
    """Runs queued coroutine factories with bounded concurrency."""

    def __init__(self, max_degree_of_parallelism: int):
        self._semaphore = asyncio.Semaphore(max_degree_of_parallelism)

    async def queue(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            return await factory()


class HistoryService:
    """
    Registry of history models keyed by canonical resource identity.

    Subscribe to changes with the ``on_did_*`` methods; each returns a
    callable that unsubscribes again.
    """

    def __init__(
        self,
        content_store: ContentStoreProtocol,
        config: HistoryConfig,
        *,
        local_history_home: Optional[Path] = None,
        remote_environment: Optional[RemoteEnvironmentProtocol] = None,
    ):
        """
        Args:
            content_store: File operations and move notifications
            config: Settings source. Its ``history_home`` is the local
                root unless ``local_history_home`` is given.
            local_history_home: Local history root override
            remote_environment: Probe that may designate another root
        """
        if local_history_home is None:
            local_history_home = config.history_home

        self._content_store = content_store
        self._config = config
        self._local_history_home = Path(local_history_home)
        self._remote_environment = remote_environment

        self._on_did_add_entry: Emitter[HistoryEvent] = Emitter("entry added")
        self._on_did_change_entry: Emitter[HistoryEvent] = Emitter("entry changed")
        self._on_did_replace_entry: Emitter[HistoryEvent] = Emitter("entry replaced")
        self._on_did_remove_entry: Emitter[HistoryEvent] = Emitter("entry removed")
        self._on_did_move_entries: Emitter[None] = Emitter("entries moved")
        self._on_did_remove_entries: Emitter[None] = Emitter("all entries removed")

        self.on_did_add_entry = self._on_did_add_entry.subscribe
        self.on_did_change_entry = self._on_did_change_entry.subscribe
        self.on_did_replace_entry = self._on_did_replace_entry.subscribe
        self.on_did_remove_entry = self._on_did_remove_entry.subscribe
        self.on_did_move_entries = self._on_did_move_entries.subscribe
        self.on_did_remove_entries = self._on_did_remove_entries.subscribe

        self._models: dict[str, HistoryModel] = {}
        self._pending_moves: set[asyncio.Task] = set()

        # Start resolving the history root right away when a loop is running
        self._history_home: Optional[asyncio.Task] = None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self._history_home_once()

        self._unsubscribe_move = content_store.on_did_move(self._on_did_move)

    # -------------------------------------------------------------------------
    # History root
    # -------------------------------------------------------------------------

    def _history_home_once(self) -> asyncio.Task:
        if self._history_home is None:
            self._history_home = asyncio.ensure_future(self._resolve_history_home())
        return self._history_home

    async def get_history_home(self) -> Path:
        """The history root shared by every model of this service."""
        return await asyncio.shield(self._history_home_once())

    async def _resolve_history_home(self) -> Path:
        history_home: Optional[Path] = None

        # Prefer history kept at the remote when connected to one
        if self._remote_environment is not None:
            try:
                remote_env = await self._remote_environment.get_environment()
                if remote_env is not None:
                    history_home = remote_env.history_home
            except Exception as e:
                logger.debug("Remote environment unavailable: %s", e)  # fall back to local

        # But fall back to local if there is no remote
        if history_home is None:
            history_home = self._local_history_home

        logger.debug("History home: %s", history_home)
        return history_home

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    async def _get_model(self, resource: Path) -> HistoryModel:
        history_home = await self.get_history_home()

        key = resource_key(resource)
        model = self._models.get(key)
        if model is None:
            model = self._create_model(resource, history_home)
            self._models[key] = model
        return model

    def _create_model(self, resource: Path, history_home: Path) -> HistoryModel:
        return HistoryModel(
            resource,
            history_home,
            ModelEvents(
                added=self._on_did_add_entry.fire,
                changed=self._on_did_change_entry.fire,
                replaced=self._on_did_replace_entry.fire,
                removed=self._on_did_remove_entry.fire,
            ),
            self._content_store,
            self._config,
        )

    # -------------------------------------------------------------------------
    # Entry operations
    # -------------------------------------------------------------------------

    async def add_entry(
        self,
        resource: Path,
        source: str = DEFAULT_SOURCE,
        timestamp: Optional[int] = None,
        token: CancellationToken = CancellationToken.NONE,
    ) -> Optional[HistoryEntry]:
        """
        Record the current content of ``resource``.

        Returns:
            The new (or merged) entry; None if the resource has no content
            store provider or the operation was cancelled

        Raises:
            ContentStoreError: If the snapshot could not be taken
        """
        if not self._content_store.has_provider(resource):
            return None

        model = await self._get_model(resource)
        if token.is_cancellation_requested:
            return None

        return await model.add_entry(source, timestamp, token)

    async def update_entry(
        self,
        entry: HistoryEntry,
        source: str,
        token: CancellationToken = CancellationToken.NONE,
    ) -> None:
        """Change the source label of an entry."""
        model = await self._get_model(entry.resource)
        if token.is_cancellation_requested:
            return

        await model.update_entry(entry, source, token)

    async def remove_entry(
        self,
        entry: HistoryEntry,
        token: CancellationToken = CancellationToken.NONE,
    ) -> bool:
        """Remove one entry and its snapshot. Returns False if not found."""
        model = await self._get_model(entry.resource)
        if token.is_cancellation_requested:
            return False

        return await model.remove_entry(entry, token)

    async def get_entries(
        self,
        resource: Path,
        token: CancellationToken = CancellationToken.NONE,
    ) -> list[HistoryEntry]:
        """Entries of ``resource``, oldest first, capped at the configured maximum."""
        model = await self._get_model(resource)
        if token.is_cancellation_requested:
            return []

        return await model.get_entries()

    async def get_all(
        self,
        token: CancellationToken = CancellationToken.NONE,
    ) -> list[Path]:
        """
        Every resource that has history.

        Combines models in memory (which may not be persisted yet) with a
        scan of the history root. Unreadable history folders are skipped.
        """
        history_home = await self.get_history_home()
        if token.is_cancellation_requested:
            return []

        all_resources: dict[str, Path] = {}

        # Known models, without resolving them (the disk scan below covers that)
        for key, model in list(self._models.items()):
            if await model.has_entries(skip_resolve=True):
                all_resources[key] = model.resource

        try:
            children = await self._content_store.list_children(history_home)
        except ContentStoreError:
            children = []  # no history at all yet

        limiter = Limiter(MAX_PARALLEL_HISTORY_IO_OPS)

        async def read_listing(folder: Path) -> None:
            if token.is_cancellation_requested:
                return
            try:
                raw = await self._content_store.read_file(folder / HistoryModel.ENTRIES_FILE)
                listing = json.loads(raw.decode("utf-8"))
                if listing["entries"]:
                    resource = uri_to_resource(listing["resource"])
                    all_resources.setdefault(resource_key(resource), resource)
            except (ContentStoreError, ValueError, KeyError, TypeError):
                pass  # listing missing or corrupt

        await asyncio.gather(*(
            limiter.queue(lambda folder=child.path: read_listing(folder))
            for child in children
            if child.is_dir
        ))

        if token.is_cancellation_requested:
            return []
        return list(all_resources.values())

    async def remove_all(self, token: CancellationToken = CancellationToken.NONE) -> None:
        """
        Forget all history: every model and the whole history root.

        Raises:
            ContentStoreError: If the history root could not be deleted
        """
        history_home = await self.get_history_home()
        if token.is_cancellation_requested:
            return

        self._models.clear()

        try:
            await self._content_store.delete(history_home, recursive=True)
        except ContentNotFoundError:
            pass
        logger.info("Removed all local history in %s", history_home)

        self._on_did_remove_entries.fire(None)

    async def store_all(self, token: CancellationToken = CancellationToken.NONE) -> None:
        """Persist every model with pending changes."""
        limiter = Limiter(MAX_PARALLEL_HISTORY_IO_OPS)
        await asyncio.gather(*(
            limiter.queue(lambda model=model: model.store(token))
            for model in list(self._models.values())
        ))

    # -------------------------------------------------------------------------
    # Moves
    # -------------------------------------------------------------------------

    def _on_did_move(self, event: FileMoveEvent) -> None:
        task = asyncio.ensure_future(self.on_resource_moved(event))
        self._pending_moves.add(task)
        task.add_done_callback(self._on_move_done)

    def _on_move_done(self, task: asyncio.Task) -> None:
        self._pending_moves.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Moving history failed: %s", task.exception())

    async def on_resource_moved(self, event: FileMoveEvent) -> None:
        """
        Move the history of every resource at or below ``event.source``.

        Resources below a moved folder keep their relative path under
        ``event.target``. A move within the same folder is recorded as a
        rename, anything else as a move.
        """
        source = event.source
        target = event.target

        limiter = Limiter(MAX_PARALLEL_HISTORY_IO_OPS)
        moves = []

        for model in list(self._models.values()):
            resource = model.resource
            if not is_equal_or_parent(resource, source):
                continue

            if resource_key(resource) == resource_key(source):
                target_resource = target
            else:
                target_resource = target.joinpath(*relative_parts(resource, source))

            if resource_key(resource.parent) == resource_key(target_resource.parent):
                save_source = RENAMED_SOURCE
            else:
                save_source = MOVED_SOURCE

            moves.append(limiter.queue(
                lambda m=model, s=save_source, r=resource, t=target_resource:
                    self._move_entries(m, s, r, t)
            ))

        if not moves:
            return

        await asyncio.gather(*moves)
        logger.info("Moved history of %d resource(s): %s -> %s", len(moves), source, target)

        self._on_did_move_entries.fire(None)

    async def _move_entries(
        self,
        model: HistoryModel,
        source: str,
        source_resource: Path,
        target_resource: Path,
    ) -> None:
        await model.move_entries(target_resource, source, CancellationToken.NONE)

        # Swap the registry key in one step
        source_key = resource_key(source_resource)
        if self._models.get(source_key) is model:
            del self._models[source_key]
        self._models[resource_key(target_resource)] = model

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Finish pending moves, persist all models and release resources."""
        self._unsubscribe_move()
        while True:
            pending = [t for t in self._pending_moves if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        await self.store_all()

        if self._remote_environment is not None:
            await self._remote_environment.aclose()
        if self._history_home is not None and not self._history_home.done():
            self._history_home.cancel()

        for emitter in (
            self._on_did_add_entry,
            self._on_did_change_entry,
            self._on_did_replace_entry,
            self._on_did_remove_entry,
            self._on_did_move_entries,
            self._on_did_remove_entries,
        ):
            emitter.dispose()

    async def __aenter__(self) -> "HistoryService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
