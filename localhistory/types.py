"""
Data types for local history.

A history entry is one retained snapshot of a tracked resource. Resources
are absolute filesystem paths; their identity (for registry lookups) and
their serialized form (for listing files) are derived here so that every
module agrees on them.
"""

import os
import random
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname


# ---------------------------------------------------------------------------
# Source labels
# ---------------------------------------------------------------------------

_SOURCE_LABELS: dict[str, str] = {}


def register_source(source: str, label: str) -> str:
    """Register a human-readable label for a source id and return the id."""
    _SOURCE_LABELS[source] = label
    return source


def get_source_label(source: str) -> str:
    """Display label for a source id. Unknown ids are shown as-is."""
    return _SOURCE_LABELS.get(source, source)


DEFAULT_SOURCE = register_source("default.source", "File Saved")
MOVED_SOURCE = register_source("moved.source", "File Moved")
RENAMED_SOURCE = register_source("renamed.source", "File Renamed")


# ---------------------------------------------------------------------------
# Entries and events
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class HistoryEntry:
    """
    One snapshot of a tracked resource.

    ``timestamp`` is epoch milliseconds. ``timestamp`` and ``source`` are
    mutated in place when an entry is replaced or relabeled, so callers
    holding an entry see the update.
    """
    id: str
    resource: Path
    name: str
    location: Path
    timestamp: int
    source: str = DEFAULT_SOURCE

    @property
    def label(self) -> str:
        return get_source_label(self.source)


@dataclass(frozen=True)
class HistoryEvent:
    """Payload of the per-entry events (added, changed, replaced, removed)."""
    entry: HistoryEntry


@dataclass(frozen=True)
class FileMoveEvent:
    """A resource (file or folder) was moved from ``source`` to ``target``."""
    source: Path
    target: Path


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


# ---------------------------------------------------------------------------
# Resource identity
# ---------------------------------------------------------------------------

def resource_key(resource: Path) -> str:
    """Canonical registry key for a resource path."""
    return os.path.normcase(os.path.normpath(str(resource)))


def resource_to_uri(resource: Path) -> str:
    """Serialized form of a resource, as stored in listing files."""
    return Path(resource).as_uri()


def uri_to_resource(uri: str) -> Path:
    """Inverse of :func:`resource_to_uri`.

    Raises:
        ValueError: If the URI is not a ``file:`` URI
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"Not a file URI: {uri!r}")
    path = url2pathname(parsed.path) if os.name == "nt" else unquote(parsed.path)
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    return Path(path)


def is_equal_or_parent(resource: Path, candidate: Path) -> bool:
    """True if ``resource`` is ``candidate`` or lies somewhere below it."""
    res_parts = Path(resource_key(resource)).parts
    cand_parts = Path(resource_key(candidate)).parts
    return res_parts[:len(cand_parts)] == cand_parts


def relative_parts(resource: Path, parent: Path) -> tuple[str, ...]:
    """Path components of ``resource`` below ``parent`` (original casing).

    ``parent`` must satisfy :func:`is_equal_or_parent`.
    """
    depth = len(Path(resource_key(parent)).parts)
    return Path(os.path.normpath(str(resource))).parts[depth:]


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _number_hash(value: int, initial: int) -> int:
    return _to_int32(((initial << 5) - initial) + value)


def string_hash(s: str, hash_val: int = 0) -> int:
    """Deterministic signed 32-bit hash over the UTF-16 code units of ``s``.

    Stable across processes and interpreter versions, which Python's
    builtin ``hash()`` is not.
    """
    hash_val = _number_hash(149417, hash_val)
    data = s.encode("utf-16-le")
    for i in range(0, len(data), 2):
        hash_val = _number_hash(data[i] | (data[i + 1] << 8), hash_val)
    return hash_val


def history_folder_name(resource: Path) -> str:
    """Folder name holding the history of ``resource`` below the history root."""
    return format(string_hash(resource_to_uri(resource)), "x")


# ---------------------------------------------------------------------------
# Entry ids
# ---------------------------------------------------------------------------

ENTRY_ID_LENGTH = 4
_ID_ALPHABET = string.ascii_letters + string.digits


def random_entry_id(resource: Path, taken: Optional[set[str]] = None) -> str:
    """Short random id plus the resource extension, e.g. ``aB3x.py``."""
    suffix = Path(resource).suffix
    while True:
        id = "".join(random.choices(_ID_ALPHABET, k=ENTRY_ID_LENGTH)) + suffix
        if not taken or id not in taken:
            return id
