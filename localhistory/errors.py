"""
Error types and error logging for local history.

Content-store failures are split into "not found" (expected: no history
yet, nothing to rename) and everything else. The CLI logs full stack
traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class ContentStoreError(Exception):
    """A content-store operation failed."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class ContentNotFoundError(ContentStoreError):
    """The file or folder a content-store operation needed does not exist."""


class RemoteEnvironmentError(Exception):
    """Error talking to the remote environment endpoint."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting LOCALHISTORY_STORE_PATH."""
    store = os.environ.get("LOCALHISTORY_STORE_PATH")
    if store:
        return Path(store) / "localhistory-errors.log"
    return Path.home() / ".localhistory" / "localhistory-errors.log"


def _format_report(exc: Exception, context: str) -> str:
    header = f"[{datetime.now(timezone.utc).isoformat()}]"
    if context:
        header += f" {context}"
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'=' * 60}\n{header}\n{trace}"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Append the traceback of ``exc`` to the error log (mode 0600).

    Args:
        exc: The exception that occurred
        context: Where it happened, e.g. the CLI command

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(_format_report(exc, context))
    except OSError:
        pass  # an unwritable error log must not mask the original error
    return log_path
