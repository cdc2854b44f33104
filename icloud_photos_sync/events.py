"""Warning channel kept separate from the session readiness signal."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from icloud_photos_sync.errors import SyncWarning

WarningListener = Callable[[SyncWarning], None]


class WarningChannel:
    """Fan-out of non-fatal anomalies to the log and any subscribers."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("icloud_photos_sync")
        self._listeners: List[WarningListener] = []
        self._lock = threading.Lock()
        self.history: List[SyncWarning] = []

    def subscribe(self, listener: WarningListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(self, warning: SyncWarning, *, level: int = logging.WARNING, logger: Optional[logging.Logger] = None) -> None:
        (logger or self.logger).log(level, "%s: %s", type(warning).__name__, warning)
        with self._lock:
            self.history.append(warning)
            listeners = list(self._listeners)
        for listener in listeners:
            listener(warning)

    def count(self, kind: type) -> int:
        with self._lock:
            return sum(1 for warning in self.history if isinstance(warning, kind))


__all__ = ["WarningChannel", "WarningListener"]
