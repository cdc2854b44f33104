"""Unit tests for the album model and hierarchy index."""

import pytest

from icloud_photos_sync.errors import InvalidHierarchy, MalformedResponse, NoDistanceToRoot
from icloud_photos_sync.model import (
    ROOT_ALBUM_ID,
    STASH_ALBUM_ID,
    Album,
    AlbumIndex,
    AlbumType,
    decode_field,
)


def test_equal_ignores_slash_sanitization():
    """Names only differing by '/' vs '_' are the same album."""
    remote = Album("a1", AlbumType.ALBUM, "2023/Summer", "f1", {"m1": "IMG_1.JPG"})
    local = Album("a1", AlbumType.ALBUM, "2023_Summer", "f1", {"m1": "IMG_1.JPG"})
    assert remote.equal(local)
    assert remote.sanitized_name == "2023_Summer"


def test_equal_detects_changes():
    base = Album("a1", AlbumType.ALBUM, "Trip", "", {"m1": "IMG_1.JPG"})
    assert not base.equal(None)
    assert not base.equal(Album("a1", AlbumType.ALBUM, "Trip", "f1", {"m1": "IMG_1.JPG"}))
    assert not base.equal(Album("a1", AlbumType.FOLDER, "Trip", "", {"m1": "IMG_1.JPG"}))
    assert not base.equal(Album("a1", AlbumType.ALBUM, "Trip", "", {"m2": "IMG_2.JPG"}))


def test_equal_ignores_assets_when_archived():
    """Archived albums are frozen; asset changes upstream do not count as a difference."""
    remote = Album("a1", AlbumType.ALBUM, "Trip", "", {"m1": "IMG_1.JPG", "m2": "IMG_2.JPG"})
    archived = Album("a1", AlbumType.ARCHIVED, "Trip", "", {"m1": "IMG_1.JPG"})
    assert remote.equal(archived)
    assert archived.equal(remote)


def test_apply_carries_local_type():
    remote = Album("a1", AlbumType.ALBUM, "Trip")
    assert remote.apply(Album("a1", AlbumType.ARCHIVED, "Trip")).type is AlbumType.ARCHIVED
    assert remote.apply(None) is remote


def test_from_record_decodes_name_and_parent(album_record):
    album = Album.from_record(album_record("a1", "Holidays", album_type=3, parent="f1"))
    assert album.id == "a1"
    assert album.type is AlbumType.FOLDER
    assert album.name == "Holidays"
    assert album.parent_id == "f1"

    top_level = Album.from_record(album_record("a2", "Top"))
    assert top_level.parent_id == ROOT_ALBUM_ID


def test_from_record_rejects_malformed_records():
    with pytest.raises(MalformedResponse):
        Album.from_record({"recordName": "a1", "fields": {"albumType": {"value": 0}}})
    with pytest.raises(MalformedResponse):
        decode_field("not base64!!")


def test_dict_round_trip_keeps_archived_type():
    album = Album("a1", AlbumType.ARCHIVED, "Trip", "f1", {"m1": "IMG_1.JPG"})
    assert Album.from_dict(album.to_dict()) == album


def test_index_always_contains_synthetic_albums():
    index = AlbumIndex([])
    assert ROOT_ALBUM_ID in index
    assert STASH_ALBUM_ID in index
    assert index.get(STASH_ALBUM_ID).is_synthetic
    assert [album.id for album in index.children(ROOT_ALBUM_ID)] == [STASH_ALBUM_ID]


def test_distance_to_root():
    folder = Album("f1", AlbumType.FOLDER, "Folder")
    child = Album("f2", AlbumType.FOLDER, "Child", "f1")
    grandchild = Album("a1", AlbumType.ALBUM, "Album", "f2")
    index = AlbumIndex([folder, child, grandchild])

    assert index.distance_to_root(folder) == 0
    assert index.distance_to_root(child) == 1
    assert index.distance_to_root(grandchild) == 2
    assert index.parent(grandchild) is index.get("f2")
    assert index.parent(folder) is None


def test_distance_to_root_without_link_is_fatal():
    orphan = Album("a1", AlbumType.ALBUM, "Orphan", "missing")
    with pytest.raises(NoDistanceToRoot) as exc_info:
        AlbumIndex([orphan]).distance_to_root(orphan)
    assert exc_info.value.fatal


def test_distance_to_root_detects_cycles():
    first = Album("a", AlbumType.FOLDER, "A", "b")
    second = Album("b", AlbumType.FOLDER, "B", "a")
    with pytest.raises(InvalidHierarchy):
        AlbumIndex([first, second]).distance_to_root(first)


def test_has_ancestor():
    folder = Album("f1", AlbumType.FOLDER, "Folder")
    child = Album("f2", AlbumType.FOLDER, "Child", "f1")
    album = Album("a1", AlbumType.ALBUM, "Album", "f2")
    other = Album("a2", AlbumType.ALBUM, "Other")
    index = AlbumIndex([folder, child, album, other])

    assert index.has_ancestor(album, folder)
    assert index.has_ancestor(album, child)
    assert not index.has_ancestor(folder, album)
    assert not index.has_ancestor(album, other)


def test_has_ancestor_with_gap_is_false():
    album = Album("a1", AlbumType.ALBUM, "Album", "unknown")
    folder = Album("f1", AlbumType.FOLDER, "Folder")
    assert not AlbumIndex([album, folder]).has_ancestor(album, folder)
