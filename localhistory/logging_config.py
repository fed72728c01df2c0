"""
Logging configuration for local history.

Quiet by default; ``--verbose`` or LOCALHISTORY_VERBOSE=1 turns on debug
output, which includes the best-effort I/O failures the history model
tolerates. Moves and purges are always recorded in the store's ops log.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "localhistory-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Third-party loggers that only add noise to CLI output
_LIBRARY_LOGGERS = ("httpx", "httpcore", "asyncio")


def configure_quiet_mode(quiet: bool = True):
    """
    Silence warnings and library chatter.

    Args:
        quiet: If False, leave the interpreter defaults alone.
    """
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root_logger):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.DEBUG)
        stderr_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root_logger.addHandler(stderr_handler)

    for name in ("localhistory", "httpx"):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach the rotating operations log of a store.

    Records INFO and above from every ``localhistory`` logger into
    ``{store_path}/localhistory-ops.log``, whether or not ``--verbose`` is
    set. Pass the returned handler to :func:`remove_ops_log` when done.
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)

    ops_handler = RotatingFileHandler(
        str(store_path / OPS_LOG_FILENAME),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
    )
    ops_handler.setLevel(logging.INFO)
    ops_handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    package_logger = logging.getLogger("localhistory")
    package_logger.addHandler(ops_handler)
    # Quiet mode must not hide INFO records from the ops log
    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)

    return ops_handler


def remove_ops_log(handler: logging.Handler) -> None:
    """Detach and close a handler returned by :func:`configure_ops_log`."""
    logging.getLogger("localhistory").removeHandler(handler)
    handler.close()
