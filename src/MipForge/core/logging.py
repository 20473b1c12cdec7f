"""Logging setup for the image importer.

Console output stays terse; the rotating log file records the worker thread
name (``mipforge-import_N`` / ``mipforge-rescale_N``) so interleaved messages
from parallel imports and mip levels can be told apart.
"""

import logging
import logging.handlers
import os
import threading

logger = logging.getLogger("mipforge")

DEFAULT_LOG_FILENAME = "mipforge.log"
# 10 MB max per log file, keep 3 rotated backups
_LOG_MAX_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 3
_CONSOLE_FORMAT = "%(levelname)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"
_setup_lock = threading.Lock()


def resolve_log_path(log_target: str) -> str:
    """Return the log file for ``log_target``; a directory gets ``mipforge.log``."""
    if os.path.isdir(log_target) or log_target.endswith(("/", os.sep)):
        return os.path.join(log_target, DEFAULT_LOG_FILENAME)
    return log_target


def _file_handler(path: str) -> logging.Handler:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    return handler


def setup_logging(level: str = "INFO", log_file: str = None, force: bool = False):
    """Configure the ``mipforge`` logger hierarchy.

    ``log_file`` may be a file path or an output directory. When the host
    application already configured the root logger and ``force`` is False,
    only the ``mipforge`` logger is touched.
    """
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        logger.warning("Invalid log level '%s', defaulting to INFO", level)
        numeric_level = logging.INFO
    path = resolve_log_path(log_file) if log_file else None

    with _setup_lock:
        root = logging.getLogger()
        if force or not root.handlers:
            console = logging.StreamHandler()
            console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
            handlers = [console]
            if path:
                handlers.append(_file_handler(path))
            logging.basicConfig(level=numeric_level, handlers=handlers, force=force)
            logger.setLevel(numeric_level)
            return

        # Embedded mode: leave the host's root configuration alone.
        logger.setLevel(numeric_level)
        if not path:
            return
        target = os.path.abspath(path)
        if any(
            getattr(h, "baseFilename", None) == target for h in logger.handlers
        ):
            return
        logger.addHandler(_file_handler(path))
        logger.debug("Added log file handler: %s", target)
