"""
Content store: the file operations local history is built on.

``ContentStoreProtocol`` is the contract the history model and service
depend on. ``LocalContentStore`` implements it on the local filesystem,
running blocking I/O in worker threads so the event loop stays free.

Every operation raises ``ContentNotFoundError`` when the path it needs is
missing and ``ContentStoreError`` for any other failure.
"""

import asyncio
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

from .errors import ContentNotFoundError, ContentStoreError
from .events import Emitter
from .types import FileMoveEvent


@dataclass(frozen=True)
class FileStat:
    """A directory child with the metadata history needs."""
    name: str
    path: Path
    mtime: int  # epoch milliseconds
    is_dir: bool = False


@runtime_checkable
class ContentStoreProtocol(Protocol):
    """File operations consumed by history models and the service."""

    def has_provider(self, resource: Path) -> bool: ...

    async def clone_file(self, source: Path, target: Path) -> None: ...

    async def move(self, source: Path, target: Path, overwrite: bool = False) -> None: ...

    async def delete(self, path: Path, *, recursive: bool = False) -> None: ...

    async def read_file(self, path: Path) -> bytes: ...

    async def write_file(self, path: Path, data: bytes) -> None: ...

    async def list_children(self, folder: Path) -> list[FileStat]: ...

    def on_did_move(self, listener: Callable[[FileMoveEvent], None]) -> Callable[[], None]: ...


def _translate(error: OSError, path: Path) -> ContentStoreError:
    if error.filename:
        path = Path(error.filename)
    if isinstance(error, FileNotFoundError):
        return ContentNotFoundError(f"Not found: {path}", path)
    return ContentStoreError(f"{type(error).__name__}: {error}", path)


class LocalContentStore:
    """
    Content store backed by the local filesystem.

    Writes go through a temporary file in the target folder followed by
    ``os.replace``, so readers never see a half-written snapshot or listing.
    Successful moves are announced to ``on_did_move`` subscribers.
    """

    def __init__(self) -> None:
        self._on_did_move: Emitter[FileMoveEvent] = Emitter("file move")

    def on_did_move(self, listener: Callable[[FileMoveEvent], None]) -> Callable[[], None]:
        return self._on_did_move.subscribe(listener)

    def has_provider(self, resource: Path) -> bool:
        """Local paths are supported when absolute."""
        return Path(resource).is_absolute()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def clone_file(self, source: Path, target: Path) -> None:
        """Copy ``source`` to ``target``, replacing ``target`` if it exists."""
        def _do_clone() -> None:
            if not source.is_file():
                raise FileNotFoundError(2, "No such file", str(source))
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            os.close(fd)
            try:
                shutil.copyfile(source, tmp)
                os.replace(tmp, target)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

        try:
            await asyncio.to_thread(_do_clone)
        except OSError as e:
            raise _translate(e, target) from e

    async def move(self, source: Path, target: Path, overwrite: bool = False) -> None:
        """Move a file or folder. With ``overwrite``, an existing target is replaced."""
        def _do_move() -> None:
            if not source.exists():
                raise FileNotFoundError(2, "No such file or directory", str(source))
            if target.exists() or target.is_symlink():
                if not overwrite:
                    raise FileExistsError(17, "File exists", str(target))
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                else:
                    target.unlink()
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))

        try:
            await asyncio.to_thread(_do_move)
        except OSError as e:
            raise _translate(e, source) from e

        self._on_did_move.fire(FileMoveEvent(Path(source), Path(target)))

    async def delete(self, path: Path, *, recursive: bool = False) -> None:
        """Delete a file, or a folder (empty unless ``recursive``)."""
        def _do_delete() -> None:
            if path.is_dir() and not path.is_symlink():
                if recursive:
                    shutil.rmtree(path)
                else:
                    path.rmdir()
            else:
                path.unlink()

        try:
            await asyncio.to_thread(_do_delete)
        except OSError as e:
            raise _translate(e, path) from e

    async def write_file(self, path: Path, data: bytes) -> None:
        """Atomically write ``data`` to ``path``, creating parent folders."""
        def _do_write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

        try:
            await asyncio.to_thread(_do_write)
        except OSError as e:
            raise _translate(e, path) from e

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def read_file(self, path: Path) -> bytes:
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise _translate(e, path) from e

    async def list_children(self, folder: Path) -> list[FileStat]:
        """List the immediate children of ``folder`` with modification times."""
        def _scan() -> list[FileStat]:
            children = []
            with os.scandir(folder) as it:
                for entry in it:
                    try:
                        st = entry.stat()
                    except FileNotFoundError:
                        continue  # removed while scanning
                    children.append(FileStat(
                        name=entry.name,
                        path=Path(entry.path),
                        mtime=st.st_mtime_ns // 1_000_000,
                        is_dir=entry.is_dir(),
                    ))
            return children

        try:
            return await asyncio.to_thread(_scan)
        except OSError as e:
            raise _translate(e, folder) from e
