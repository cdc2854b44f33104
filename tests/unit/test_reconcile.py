"""Unit tests for the reconciliation engine."""

import threading

import pytest
import requests

from icloud_photos_sync.auth import AccountTokens, AuthSession
from icloud_photos_sync.errors import InvalidHierarchy, NoDistanceToRoot, PhotosRequestError
from icloud_photos_sync.library import JsonLibraryStore
from icloud_photos_sync.model import STASH_ALBUM_ID, Album, AlbumType
from icloud_photos_sync.reconcile import OperationKind, ReconciliationEngine
from icloud_photos_sync.retry import RetryController


@pytest.fixture
def engine(mocker, photos_session, warnings):
    executor = mocker.Mock()
    return ReconciliationEngine(executor, RetryController(photos_session, 2), max_concurrency=2, warnings=warnings)


def _tree():
    return [
        Album("f1", AlbumType.FOLDER, "Trips"),
        Album("f2", AlbumType.FOLDER, "Europe", "f1"),
        Album("a1", AlbumType.ALBUM, "Paris", "f2", {"M1": "IMG_1.JPG"}),
        Album("a2", AlbumType.ALBUM, "Beach", "", {"M2": "IMG_2.JPG"}),
    ]


def _kinds(plan):
    return [(operation.kind, operation.album.id) for operation in plan]


def test_identical_snapshots_give_empty_plan(engine):
    assert engine.diff(_tree(), _tree()).is_empty


def test_creates_parents_before_children(engine):
    plan = engine.diff(_tree(), [])

    assert len(plan) == 4
    order = [operation.album.id for operation in plan]
    assert order.index("f1") < order.index("f2") < order.index("a1")
    assert all(operation.kind is OperationKind.CREATE for operation in plan)


def test_deletes_children_before_parents(engine):
    plan = engine.diff([], _tree())

    order = [operation.album.id for operation in plan]
    assert order.index("a1") < order.index("f2") < order.index("f1")
    assert plan.counts() == {"create": 0, "update": 0, "stash": 0, "delete": 4}


def test_update_on_rename_move_and_asset_change(engine):
    local = _tree()
    remote = _tree()
    remote[3].name = "Beach 2023"
    remote[2].parent_id = "f1"
    remote[2].assets = {"M1": "IMG_1.JPG", "M3": "IMG_3.JPG"}

    plan = engine.diff(remote, local)

    assert _kinds(plan) == [(OperationKind.UPDATE, "a2"), (OperationKind.UPDATE, "a1")]
    assert plan.of_kind(OperationKind.UPDATE)[1].previous.parent_id == "f2"


def test_operation_order_groups_by_kind(engine):
    local = _tree() + [
        Album("old", AlbumType.ALBUM, "Old"),
        Album("arch", AlbumType.ARCHIVED, "Kept", "f2", {"M9": "IMG_9.JPG"}),
    ]
    remote = _tree() + [Album("new", AlbumType.ALBUM, "New")]
    remote[3].name = "Renamed"

    plan = engine.diff(remote, local)

    assert [operation.kind for operation in plan] == [
        OperationKind.CREATE,
        OperationKind.UPDATE,
        OperationKind.STASH,
        OperationKind.DELETE,
    ]


def test_archived_album_missing_remotely_is_stashed(engine):
    archived = Album("a1", AlbumType.ARCHIVED, "Paris", "f2", {"M1": "IMG_1.JPG"})
    local = _tree()[:2] + [archived]

    plan = engine.diff(_tree()[:2], local)

    assert _kinds(plan) == [(OperationKind.STASH, "a1")]
    stashed = plan.operations[0].album
    assert stashed.parent_id == STASH_ALBUM_ID
    assert stashed.type is AlbumType.ARCHIVED
    assert stashed.assets == {"M1": "IMG_1.JPG"}


def test_stashed_albums_are_never_deleted(engine):
    stashed = Album("a1", AlbumType.ARCHIVED, "Paris", STASH_ALBUM_ID, {"M1": "IMG_1.JPG"})
    assert engine.diff([], [stashed]).is_empty


def test_archived_album_keeps_frozen_assets(engine):
    archived = Album("a1", AlbumType.ARCHIVED, "Paris", "f2", {"M1": "IMG_1.JPG"})
    local = _tree()[:2] + [archived]
    remote = _tree()[:3]
    remote[2].assets = {"M1": "IMG_1.JPG", "M5": "IMG_5.JPG"}

    assert engine.diff(remote, local).is_empty

    remote[2].name = "Paris 2023"
    plan = engine.diff(remote, local)
    assert _kinds(plan) == [(OperationKind.UPDATE, "a1")]
    updated = plan.operations[0].album
    assert updated.type is AlbumType.ARCHIVED
    assert updated.name == "Paris 2023"
    assert updated.assets == {"M1": "IMG_1.JPG"}


def test_stashed_album_returning_remotely_is_restored(engine):
    stashed = Album("a2", AlbumType.ARCHIVED, "Beach", STASH_ALBUM_ID, {"M2": "IMG_2.JPG"})
    remote = [Album("a2", AlbumType.ALBUM, "Beach", "", {"M2": "IMG_2.JPG", "M4": "IMG_4.JPG"})]

    plan = engine.diff(remote, [stashed])

    assert _kinds(plan) == [(OperationKind.UPDATE, "a2")]
    assert plan.operations[0].album.parent_id == ""
    assert plan.operations[0].album.type is AlbumType.ARCHIVED


def test_cyclic_subtree_is_skipped_with_warning(engine, warnings):
    remote = [
        Album("c1", AlbumType.FOLDER, "Loop A", "c2"),
        Album("c2", AlbumType.FOLDER, "Loop B", "c1"),
        Album("c3", AlbumType.ALBUM, "Inside", "c1"),
        Album("ok", AlbumType.ALBUM, "Fine"),
    ]

    plan = engine.diff(remote, [])

    assert _kinds(plan) == [(OperationKind.CREATE, "ok")]
    assert warnings.count(InvalidHierarchy) == 1


def test_broken_ancestry_is_fatal(engine):
    remote = [Album("a1", AlbumType.ALBUM, "Orphan", "filtered-folder")]
    with pytest.raises(NoDistanceToRoot):
        engine.diff(remote, [])


def test_applying_plan_is_idempotent(engine, tmp_path):
    store = JsonLibraryStore(str(tmp_path / "library.json"))
    store.save_albums(
        [
            Album("gone", AlbumType.FOLDER, "Gone"),
            Album("gone-child", AlbumType.ALBUM, "Gone child", "gone"),
            Album("arch", AlbumType.ARCHIVED, "Archived", "gone", {"M7": "IMG_7.JPG"}),
            Album("a2", AlbumType.ALBUM, "Beach old name", "", {"M2": "IMG_2.JPG"}),
        ]
    )
    remote = _tree()

    store.apply_plan(engine.diff(remote, store.load_local_albums()))

    assert engine.diff(remote, store.load_local_albums()).is_empty
    stored = {album.id: album for album in store.load_local_albums()}
    assert stored["arch"].parent_id == STASH_ALBUM_ID
    assert "gone" not in stored and "gone-child" not in stored


def test_fetch_remote_albums_queries_albums_only(engine):
    engine.executor.list_albums.return_value = _tree()
    engine.executor.fetch_album_assets.side_effect = lambda album_id: {f"M-{album_id}": f"{album_id}.JPG"}

    albums = engine.fetch_remote_albums()

    by_id = {album.id: album for album in albums}
    assert by_id["a1"].assets == {"M-a1": "a1.JPG"}
    assert by_id["a2"].assets == {"M-a2": "a2.JPG"}
    assert by_id["f1"].assets == {}
    queried = sorted(call.args[0] for call in engine.executor.fetch_album_assets.call_args_list)
    assert queried == ["a1", "a2"]


def test_reconcile_fetches_and_diffs(engine):
    engine.executor.list_albums.return_value = [Album("a9", AlbumType.ALBUM, "Solo")]
    engine.executor.fetch_album_assets.return_value = {"M1": "IMG_1.JPG"}

    plan = engine.reconcile([Album("a8", AlbumType.ALBUM, "Removed")])

    assert _kinds(plan) == [(OperationKind.CREATE, "a9"), (OperationKind.DELETE, "a8")]
    assert plan.operations[0].album.assets == {"M1": "IMG_1.JPG"}


def test_fetch_remote_albums_runs_in_parallel_within_limit(engine):
    engine.executor.list_albums.return_value = [Album(f"a{index}", AlbumType.ALBUM, f"Album {index}") for index in range(4)]
    # Two workers must meet here, a single worker would time out
    barrier = threading.Barrier(2, timeout=5)
    lock = threading.Lock()
    active = [0]
    peak = [0]

    def fetch(album_id):
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        barrier.wait()
        with lock:
            active[0] -= 1
        return {f"M-{album_id}": f"{album_id}.JPG"}

    engine.executor.fetch_album_assets.side_effect = fetch

    albums = engine.fetch_remote_albums()

    assert peak[0] == 2
    assert all(album.assets == {f"M-{album.id}": f"{album.id}.JPG"} for album in albums)


def test_expired_session_in_parallel_workers_refreshes_once(
    mocker, tmp_path, make_response, make_cookie, counting_lock, warnings
):
    http = mocker.Mock(spec=requests.Session)
    session = AuthSession("user@example.com", "secret", data_dir=str(tmp_path), http=http, warnings=warnings)
    session.tokens = AccountTokens("session-token", "trust-token")
    session.cookies = [make_cookie()]
    session.cookies_acquired_at = session.clock()
    session._refresh_lock = counting_lock
    setup_body = {"webservices": {"ckdatabasews": {"url": "https://p00-ckdatabasews.icloud.com"}}, "dsInfo": {"dsid": "1"}}

    def slow_setup(url, **kwargs):
        # Hold the refresh open until the second worker has joined it
        counting_lock.second_entry.wait(5)
        return make_response(200, json_data=setup_body, cookies=[make_cookie("X-APPLE-WEBAUTH-TOKEN", "fresh")])

    http.post.side_effect = slow_setup

    executor = mocker.Mock()
    executor.list_albums.return_value = [Album("a1", AlbumType.ALBUM, "Paris"), Album("a2", AlbumType.ALBUM, "Rome")]
    barrier = threading.Barrier(2, timeout=5)
    lock = threading.Lock()
    attempts = {}

    def fetch(album_id):
        with lock:
            attempts[album_id] = attempts.get(album_id, 0) + 1
            first = attempts[album_id] == 1
        if first:
            barrier.wait()
            raise PhotosRequestError(401)
        return {f"M-{album_id}": f"{album_id}.JPG"}

    executor.fetch_album_assets.side_effect = fetch
    engine = ReconciliationEngine(executor, RetryController(session, 2), max_concurrency=2, warnings=warnings)

    albums = engine.fetch_remote_albums()

    assert http.post.call_count == 1
    assert attempts == {"a1": 2, "a2": 2}
    assert {album.id: album.assets for album in albums} == {"a1": {"M-a1": "a1.JPG"}, "a2": {"M-a2": "a2.JPG"}}
    assert session.cookie_header() == "X-APPLE-WEBAUTH-TOKEN=fresh"
