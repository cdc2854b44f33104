"""Diff the remote album tree against the local one and order the resulting mutations."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Dict, Iterator, List, Optional, Set

from icloud_photos_sync.errors import InvalidHierarchy, NoDistanceToRoot
from icloud_photos_sync.events import WarningChannel
from icloud_photos_sync.model import STASH_ALBUM_ID, Album, AlbumIndex, AlbumType
from icloud_photos_sync.query import QueryExecutor
from icloud_photos_sync.retry import RetryController

DEFAULT_MAX_CONCURRENCY = 4


class OperationKind(Enum):
    CREATE = "create"
    UPDATE = "update"
    STASH = "stash"
    DELETE = "delete"


@dataclass
class Operation:
    kind: OperationKind
    album: Album
    previous: Optional[Album] = None

    def describe(self) -> str:
        return f"{self.kind.value} '{self.album.name}' ({self.album.id})"


@dataclass
class SyncPlan:
    operations: List[Operation] = field(default_factory=list)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def of_kind(self, kind: OperationKind) -> List[Operation]:
        return [operation for operation in self.operations if operation.kind is kind]

    def counts(self) -> Dict[str, int]:
        return {kind.value: len(self.of_kind(kind)) for kind in OperationKind}

    def summary(self) -> str:
        counts = self.counts()
        return ", ".join(f"{count} {kind}" for kind, count in counts.items())


class ReconciliationEngine:
    """Builds the remote album tree and turns it into an ordered ``SyncPlan``."""

    def __init__(
        self,
        executor: QueryExecutor,
        retry: RetryController,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        warnings: Optional[WarningChannel] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.executor = executor
        self.retry = retry
        self.max_concurrency = max(1, max_concurrency)
        self.logger = logger or logging.getLogger("sync-engine")
        self.warnings = warnings or WarningChannel(self.logger)

    # ------------------------------------------------------------------
    # Remote state
    # ------------------------------------------------------------------
    def fetch_remote_albums(self) -> List[Album]:
        albums = self.retry.run(self.executor.list_albums, "listing albums")
        targets = [album for album in albums if album.type == AlbumType.ALBUM]
        if not targets:
            return albums
        self.logger.info("Fetching assets for %d album(s) with %d worker(s)", len(targets), self.max_concurrency)
        with ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(targets))) as pool:
            futures = {
                pool.submit(
                    self.retry.run,
                    partial(self.executor.fetch_album_assets, album.id),
                    f"fetching assets of album {album.id}",
                ): album
                for album in targets
            }
            try:
                for future in as_completed(futures):
                    futures[future].assets = future.result()
            except BaseException:
                for pending in futures:
                    pending.cancel()
                raise
        return albums

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------
    def _invalid_subtrees(self, remote_index: AlbumIndex, remote: Dict[str, Album]) -> Set[str]:
        """Ids of remote albums whose placement would create a cycle, plus their remote descendants."""

        skipped: Set[str] = set()
        for album in remote.values():
            if album.id in skipped:
                continue
            parent = remote_index.get(album.parent_id)
            reason: Optional[str] = None
            if parent is not None and not parent.is_synthetic and (
                parent.id == album.id or remote_index.has_ancestor(parent, album)
            ):
                reason = f"parent {parent.id} descends from album {album.id}"
            else:
                try:
                    remote_index.distance_to_root(album)
                except InvalidHierarchy:
                    reason = f"ancestry of album {album.id} is cyclic"
            if reason is None:
                continue
            self.warnings.emit(InvalidHierarchy(f"Skipping '{album.name}' and its subtree: {reason}"), logger=self.logger)
            pending = [album]
            while pending:
                current = pending.pop()
                if current.id in skipped:
                    continue
                skipped.add(current.id)
                pending.extend(remote_index.children(current.id))
        return skipped

    @staticmethod
    def _distance(index: AlbumIndex, album: Album) -> int:
        try:
            return index.distance_to_root(album)
        except InvalidHierarchy as exc:
            raise NoDistanceToRoot(str(exc), cause=exc) from exc

    def diff(self, remote_albums: List[Album], local_albums: List[Album]) -> SyncPlan:
        remote = {album.id: album for album in remote_albums if not album.is_synthetic}
        local = {album.id: album for album in local_albums if not album.is_synthetic}
        remote_index = AlbumIndex(remote.values())
        local_index = AlbumIndex(local.values())
        stash = local_index.get(STASH_ALBUM_ID)
        skipped = self._invalid_subtrees(remote_index, remote)

        creates: List[Operation] = []
        updates: List[Operation] = []
        for album in remote.values():
            if album.id in skipped:
                continue
            existing = local.get(album.id)
            if existing is None:
                creates.append(Operation(OperationKind.CREATE, album.copy()))
            elif not album.equal(existing):
                target = album.copy()
                if existing.is_archived:
                    # Archived albums are frozen: only name and placement follow remote
                    target.apply(existing)
                    target.assets = dict(existing.assets)
                updates.append(Operation(OperationKind.UPDATE, target, previous=existing))

        stashes: List[Operation] = []
        deletes: List[Operation] = []
        for album in local.values():
            if album.id in remote:
                continue
            if stash is not None and (album.parent_id == STASH_ALBUM_ID or local_index.has_ancestor(album, stash)):
                continue
            if album.is_archived:
                moved = album.copy()
                moved.parent_id = STASH_ALBUM_ID
                stashes.append(Operation(OperationKind.STASH, moved, previous=album))
            else:
                deletes.append(Operation(OperationKind.DELETE, album, previous=album))

        creates.sort(key=lambda op: self._distance(remote_index, op.album))
        updates.sort(key=lambda op: self._distance(remote_index, op.album))
        stashes.sort(key=lambda op: self._distance(local_index, op.previous), reverse=True)  # type: ignore[arg-type]
        deletes.sort(key=lambda op: self._distance(local_index, op.album), reverse=True)

        plan = SyncPlan(creates + updates + stashes + deletes)
        self.logger.info("Sync plan: %s", plan.summary())
        for operation in plan:
            self.logger.debug("Planned %s", operation.describe())
        return plan

    def reconcile(self, local_albums: List[Album]) -> SyncPlan:
        remote_albums = self.fetch_remote_albums()
        self.logger.info("Diffing %d remote against %d local album(s)", len(remote_albums), len(local_albums))
        return self.diff(remote_albums, local_albums)


__all__ = ["DEFAULT_MAX_CONCURRENCY", "Operation", "OperationKind", "ReconciliationEngine", "SyncPlan"]
