"""Album entities and the parent-indexed hierarchy used for ordering."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Mapping, Optional, Set

from icloud_photos_sync.errors import InvalidHierarchy, MalformedResponse, NoDistanceToRoot

ROOT_ALBUM_ID = ""
STASH_ALBUM_ID = "_Archive"


class AlbumType(IntEnum):
    ALBUM = 0
    FOLDER = 3
    ARCHIVED = 99


def decode_field(value: str) -> str:
    """Decode a base64 ``*Enc`` record field."""

    try:
        return base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, TypeError) as exc:
        raise MalformedResponse(f"Unable to decode field value '{value}'") from exc


@dataclass
class Album:
    id: str
    type: AlbumType
    name: str
    parent_id: str = ROOT_ALBUM_ID
    assets: Dict[str, str] = field(default_factory=dict)

    @property
    def sanitized_name(self) -> str:
        return self.name.replace("/", "_")

    @property
    def is_archived(self) -> bool:
        return self.type == AlbumType.ARCHIVED

    @property
    def is_synthetic(self) -> bool:
        return self.id in (ROOT_ALBUM_ID, STASH_ALBUM_ID)

    def assets_equal(self, assets: Optional[Mapping[str, str]]) -> bool:
        return set(self.assets or {}) == set(assets or {})

    def equal(self, other: Optional["Album"]) -> bool:
        """Diff equality; asset membership and type are ignored when either side is archived."""

        if other is None:
            return False
        if (
            self.id != other.id
            or self.sanitized_name != other.sanitized_name
            or self.parent_id != other.parent_id
        ):
            return False
        if self.is_archived or other.is_archived:
            return True
        return self.type == other.type and self.assets_equal(other.assets)

    def apply(self, local: Optional["Album"]) -> "Album":
        """Carry the local album's type over to this (remote) album."""

        if local is not None:
            self.type = local.type
        return self

    def copy(self) -> "Album":
        return Album(self.id, self.type, self.name, self.parent_id, dict(self.assets))

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "type": int(self.type),
            "name": self.name,
            "parent_id": self.parent_id,
            "assets": dict(self.assets),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Album":
        return cls(
            id=str(data["id"]),
            type=AlbumType(int(data["type"])),  # type: ignore[arg-type]
            name=str(data.get("name", "")),
            parent_id=str(data.get("parent_id") or ROOT_ALBUM_ID),
            assets={str(key): str(value) for key, value in (data.get("assets") or {}).items()},  # type: ignore[union-attr]
        )

    @classmethod
    def from_record(cls, record: Mapping[str, object]) -> "Album":
        """Build an album from a ``CPLAlbum`` record; callers filter unknown type codes first."""

        fields = record.get("fields") or {}
        try:
            record_name = str(record["recordName"])
            album_type = AlbumType(int(fields["albumType"]["value"]))  # type: ignore[index]
            name = decode_field(fields["albumNameEnc"]["value"])  # type: ignore[index]
            parent = (fields.get("parentId") or {}).get("value") or ROOT_ALBUM_ID  # type: ignore[union-attr]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"Unable to parse album record {record.get('recordName')}") from exc
        return cls(record_name, album_type, name, str(parent))

    @classmethod
    def root(cls) -> "Album":
        return cls(ROOT_ALBUM_ID, AlbumType.FOLDER, "iCloud Photos Library", ROOT_ALBUM_ID)

    @classmethod
    def stash(cls) -> "Album":
        return cls(STASH_ALBUM_ID, AlbumType.FOLDER, "iCloud Photos Library Archive", ROOT_ALBUM_ID)


class AlbumIndex:
    """Identifier lookup over a working set, built once per reconciliation pass.

    The synthetic root and stash albums are always part of the index.
    """

    def __init__(self, albums: Iterable[Album]) -> None:
        self._by_id: Dict[str, Album] = {}
        self._children: Dict[str, List[Album]] = {}
        for album in [Album.root(), Album.stash(), *albums]:
            self._by_id[album.id] = album
        for album in self._by_id.values():
            if album.id == ROOT_ALBUM_ID:
                continue
            self._children.setdefault(album.parent_id, []).append(album)

    def __contains__(self, album_id: object) -> bool:
        return album_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, album_id: str) -> Optional[Album]:
        return self._by_id.get(album_id)

    def children(self, album_id: str) -> List[Album]:
        return list(self._children.get(album_id, []))

    def parent(self, album: Album) -> Optional[Album]:
        if album.parent_id == ROOT_ALBUM_ID:
            return None
        return self._by_id.get(album.parent_id)

    def distance_to_root(self, album: Album) -> int:
        distance = 0
        visited: Set[str] = {album.id}
        current = album
        while current.parent_id != ROOT_ALBUM_ID:
            parent = self._by_id.get(current.parent_id)
            if parent is None:
                raise NoDistanceToRoot(
                    f"Unable to determine distance to root for album {album.id}: parent {current.parent_id} unknown"
                )
            if parent.id in visited:
                raise InvalidHierarchy(f"Album {album.id} is part of a parent cycle")
            visited.add(parent.id)
            distance += 1
            current = parent
        return distance

    def has_ancestor(self, album: Album, potential_ancestor: Album) -> bool:
        visited: Set[str] = {album.id}
        current = album
        while current.parent_id != ROOT_ALBUM_ID:
            if current.parent_id == potential_ancestor.id:
                return True
            parent = self._by_id.get(current.parent_id)
            # A gap in the working set means ancestry is unknown
            if parent is None or parent.id in visited:
                return False
            visited.add(parent.id)
            current = parent
        return False


__all__ = [
    "Album",
    "AlbumIndex",
    "AlbumType",
    "ROOT_ALBUM_ID",
    "STASH_ALBUM_ID",
    "decode_field",
]
