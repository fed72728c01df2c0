"""
Shared pytest fixtures for localhistory tests.

Provides a recording content store (real disk I/O, with call counters and
injectable failures), a config with test-friendly settings, and helpers to
build models and services against a temporary history root.
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import pytest

from localhistory.config import HistoryConfig, Settings
from localhistory.content_store import FileStat, LocalContentStore
from localhistory.model import HistoryModel, ModelEvents
from localhistory.remote import RemoteEnvironment
from localhistory.service import HistoryService
from localhistory.types import HistoryEvent


class RecordingContentStore(LocalContentStore):
    """
    LocalContentStore that counts calls and can fail on demand.

    ``fail_on`` maps an operation name ("clone_file", "delete", ...) to the
    exception to raise instead of performing it. With ``delay`` set, moves
    and reads pause inside the operation so overlapping calls show up in
    ``in_flight`` and ``peak``.
    """

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, Path]] = []
        self.fail_on: dict[str, Exception] = {}
        self.unsupported: set[Path] = set()
        self.delay = 0.0
        self.in_flight: Counter[str] = Counter()
        self.peak: Counter[str] = Counter()

    def _record(self, op: str, path: Path) -> None:
        self.calls.append((op, path))
        if op in self.fail_on:
            raise self.fail_on[op]

    def count(self, *ops: str) -> int:
        return sum(1 for op, _ in self.calls if op in ops)

    @asynccontextmanager
    async def _in_flight(self, op: str) -> AsyncIterator[None]:
        self.in_flight[op] += 1
        self.peak[op] = max(self.peak[op], self.in_flight[op])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield
        finally:
            self.in_flight[op] -= 1

    def has_provider(self, resource: Path) -> bool:
        if resource in self.unsupported:
            return False
        return super().has_provider(resource)

    async def clone_file(self, source: Path, target: Path) -> None:
        self._record("clone_file", target)
        await super().clone_file(source, target)

    async def move(self, source: Path, target: Path, overwrite: bool = False) -> None:
        self._record("move", source)
        async with self._in_flight("move"):
            await super().move(source, target, overwrite)

    async def delete(self, path: Path, *, recursive: bool = False) -> None:
        self._record("delete", path)
        await super().delete(path, recursive=recursive)

    async def read_file(self, path: Path) -> bytes:
        self._record("read_file", path)
        async with self._in_flight("read_file"):
            return await super().read_file(path)

    async def write_file(self, path: Path, data: bytes) -> None:
        self._record("write_file", path)
        await super().write_file(path, data)

    async def list_children(self, folder: Path) -> list[FileStat]:
        self._record("list_children", folder)
        return await super().list_children(folder)


class EventRecorder:
    """Collects model events by kind."""

    def __init__(self):
        self.added: list[HistoryEvent] = []
        self.changed: list[HistoryEvent] = []
        self.replaced: list[HistoryEvent] = []
        self.removed: list[HistoryEvent] = []

    def model_events(self) -> ModelEvents:
        return ModelEvents(
            added=self.added.append,
            changed=self.changed.append,
            replaced=self.replaced.append,
            removed=self.removed.append,
        )

    def attach(self, service: HistoryService) -> None:
        service.on_did_add_entry(self.added.append)
        service.on_did_change_entry(self.changed.append)
        service.on_did_replace_entry(self.replaced.append)
        service.on_did_remove_entry(self.removed.append)


class StaticRemoteEnvironment:
    """Remote probe with a canned answer (or failure)."""

    def __init__(self, history_home: Optional[Path] = None, error: Optional[Exception] = None):
        self.history_home = history_home
        self.error = error
        self.calls = 0
        self.closed = False

    async def get_environment(self) -> Optional[RemoteEnvironment]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.history_home is None:
            return None
        return RemoteEnvironment(history_home=self.history_home)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def store_path(tmp_path):
    """Store directory (config + history root)."""
    path = tmp_path / "store"
    path.mkdir()
    return path


@pytest.fixture
def history_home(store_path):
    return store_path / "History"


@pytest.fixture
def work_dir(tmp_path):
    """Folder holding the tracked files."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def config(store_path):
    """Config with a generous cap and merging disabled."""
    return HistoryConfig(
        path=store_path,
        settings={Settings.MAX_ENTRIES: 50, Settings.MERGE_PERIOD: 0},
    )


@pytest.fixture
def content_store():
    return RecordingContentStore()


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def make_file(work_dir):
    """Create (or overwrite) a tracked file with the given content."""
    def _make(name: str, content: str = "hello") -> Path:
        path = work_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path
    return _make


@pytest.fixture
def make_model(history_home, content_store, config, events):
    """Build a HistoryModel for a resource against the shared history root."""
    def _make(resource: Path) -> HistoryModel:
        return HistoryModel(resource, history_home, events.model_events(), content_store, config)
    return _make


@pytest.fixture
def service(content_store, config):
    """HistoryService over the recording store (no remote)."""
    return HistoryService(content_store, config)


@pytest.fixture
def static_remote():
    """Factory for StaticRemoteEnvironment probes."""
    return StaticRemoteEnvironment
