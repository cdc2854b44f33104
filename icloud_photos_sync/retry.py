"""Session-expiry aware retry wrapper for remote photo-library operations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional, TypeVar

from icloud_photos_sync.constants import SESSION_EXPIRED_STATUSES
from icloud_photos_sync.errors import PhotosRequestError, RetriesExhausted

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from icloud_photos_sync.auth import AuthSession

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5


def is_recoverable(exc: BaseException) -> bool:
    """Only an expired session is worth a refresh; everything else is final."""

    return isinstance(exc, PhotosRequestError) and exc.status in SESSION_EXPIRED_STATUSES


class RetryController:
    def __init__(
        self,
        session: "AuthSession",
        max_retries: int = DEFAULT_MAX_RETRIES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.session = session
        self.max_retries = max_retries
        self.logger = logger or logging.getLogger("icloud-retry")

    def run(self, operation: Callable[[], T], description: str = "remote operation") -> T:
        """Run ``operation`` from scratch until it succeeds or retries are exhausted."""

        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            if self.session.cookies_stale():
                self.logger.info("Session cookies stale before %s, refreshing", description)
                self.session.refresh()
            try:
                return operation()
            except PhotosRequestError as exc:
                if not is_recoverable(exc):
                    raise
                self.logger.warning("%s failed on attempt %d/%d: %s", description, attempt, attempts, exc)
                if attempt == attempts:
                    raise RetriesExhausted(exc, attempt) from exc
                self.session.refresh()
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["DEFAULT_MAX_RETRIES", "RetryController", "is_recoverable"]
