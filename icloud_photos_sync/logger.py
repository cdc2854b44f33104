"""Logger naming and log sink setup."""

from __future__ import annotations

import logging
import os
from typing import Dict, Mapping, Optional

LOG_FILE_NAME = ".icloud-photos-sync.log"
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

LOGGER_NAMES: Dict[str, str] = {
    "auth": "icloud-auth",
    "photos": "icloud-photos",
    "retry": "icloud-retry",
    "mfa": "mfa-server",
    "sync-engine": "sync-engine",
    "library": "photos-library",
    "cli": "cli-interface",
}


def get_logger(component: str, names: Optional[Mapping[str, str]] = None) -> logging.Logger:
    """Return the logger registered for ``component``, falling back to the package logger."""

    mapping = names if names is not None else LOGGER_NAMES
    name = mapping.get(component) or LOGGER_NAMES.get(component)
    if not name:
        fallback = logging.getLogger("icloud_photos_sync")
        fallback.warning("Unable to find logger for component %s, providing default logger", component)
        return fallback
    return logging.getLogger(name)


def setup_logging(data_dir: str, level: str = "INFO", log_to_cli: bool = False) -> Optional[str]:
    """Configure the root logger once; returns the log file path when logging to disk."""

    root = logging.getLogger()
    if getattr(root, "_icloud_sync_configured", False):
        return None
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    log_file: Optional[str] = None
    if log_to_cli:
        handler: logging.Handler = logging.StreamHandler()
    else:
        os.makedirs(data_dir, exist_ok=True)
        log_file = os.path.join(data_dir, LOG_FILE_NAME)
        # Previous run's log is discarded
        handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric_level)
    root._icloud_sync_configured = True  # type: ignore[attr-defined]
    if numeric_level < logging.DEBUG:
        root.warning("Log level set below DEBUG, private data might be recorded in logs!")
    return log_file


__all__ = ["LOGGER_NAMES", "LOG_FILE_NAME", "get_logger", "setup_logging"]
