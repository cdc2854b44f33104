"""Local album index persisted as JSON in the data directory."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Dict, List, Optional, Protocol

from icloud_photos_sync.constants import LIBRARY_FILE_NAME
from icloud_photos_sync.errors import LibraryFileError
from icloud_photos_sync.model import Album
from icloud_photos_sync.reconcile import OperationKind, SyncPlan

LIBRARY_FORMAT_VERSION = 1


class LocalLibrary(Protocol):
    def load_local_albums(self) -> List[Album]:
        ...

    def apply_plan(self, plan: SyncPlan) -> None:
        ...


class JsonLibraryStore:
    """Keeps the album tree in ``library.json``; synthetic albums are never written."""

    def __init__(self, path: str, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.logger = logger or logging.getLogger("photos-library")

    @classmethod
    def in_data_dir(cls, data_dir: str, logger: Optional[logging.Logger] = None) -> "JsonLibraryStore":
        return cls(os.path.join(data_dir, LIBRARY_FILE_NAME), logger=logger)

    def load_local_albums(self) -> List[Album]:
        """Load the stored albums; an absent file means an empty library."""
        if not os.path.exists(self.path):
            self.logger.info("No local library index at %s, starting empty", self.path)
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise LibraryFileError(f"Invalid JSON in library index '{self.path}': {exc}", cause=exc) from exc
        except OSError as exc:
            raise LibraryFileError(cause=exc) from exc
        entries = data.get("albums") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise LibraryFileError(f"Library index '{self.path}' has no 'albums' list")
        try:
            albums = [Album.from_dict(entry) for entry in entries]
        except (KeyError, TypeError, ValueError) as exc:
            raise LibraryFileError(f"Invalid album entry in '{self.path}': {exc}", cause=exc) from exc
        self.logger.info("Loaded %d local album(s)", len(albums))
        return albums

    def save_albums(self, albums: List[Album]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        payload = {
            "version": LIBRARY_FORMAT_VERSION,
            "albums": [album.to_dict() for album in albums if not album.is_synthetic],
        }
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".library.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def apply_plan(self, plan: SyncPlan) -> None:
        albums: Dict[str, Album] = {album.id: album for album in self.load_local_albums()}
        for operation in plan:
            album = operation.album
            if operation.kind is OperationKind.DELETE:
                if albums.pop(album.id, None) is None:
                    self.logger.warning("Album %s already absent locally", album.id)
                continue
            if operation.kind is OperationKind.CREATE and album.id in albums:
                self.logger.warning("Album %s already exists locally, overwriting", album.id)
            albums[album.id] = album.copy()
            self.logger.debug("Applied %s", operation.describe())
        self.save_albums(list(albums.values()))
        self.logger.info("Applied %d operation(s) to %s", len(plan), self.path)


__all__ = ["JsonLibraryStore", "LIBRARY_FORMAT_VERSION", "LocalLibrary"]
