"""Paginated CloudKit queries against the iCloud Photos library.

The backend caps page sizes, returns overlapping pages with duplicate records,
interleaves container-relation records with the useful ones and reports counts
that do not always match what it later returns. Everything here works around
those quirks and hands clean ``Album`` objects and asset mappings upward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import requests

from icloud_photos_sync.constants import (
    ALBUM_DESIRED_KEYS,
    ASSET_DESIRED_KEYS,
    BATCH_QUERY_PATH,
    COUNT_INDEX_PREFIX,
    KNOWN_REMOTE_ALBUM_TYPES,
    MAX_RECORDS_LIMIT,
    QUERY_PATH,
    RECORD_TYPE_ALBUM,
    RECORD_TYPE_ALBUM_ASSETS_QUERY,
    RECORD_TYPE_ALBUM_QUERY,
    RECORD_TYPE_ASSET,
    RECORD_TYPE_CONTAINER_RELATION,
    RECORD_TYPE_COUNT_QUERY,
    RECORD_TYPE_MASTER,
    RECORDS_PER_ALBUM_ASSET,
    ROOT_FOLDER_RECORD_NAMES,
    SETUP_HEADERS,
    ZONE_ID,
)
from icloud_photos_sync.errors import (
    CountMismatch,
    DuplicateRecordFiltered,
    IrrelevantRecordTypeFiltered,
    MalformedResponse,
    PhotosRequestError,
    PhotosServiceNotReady,
    UndecodableFilename,
    UnknownAlbumType,
)
from icloud_photos_sync.events import WarningChannel
from icloud_photos_sync.model import ROOT_ALBUM_ID, Album, decode_field

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from icloud_photos_sync.auth import AuthSession

# Marker returned for album records already seen on an earlier page
_DUPLICATE = object()


@dataclass
class AlbumRecords:
    """Masters and assets of one album, keyed by record name."""

    album_id: str
    masters: Dict[str, dict] = field(default_factory=dict)
    assets: Dict[str, dict] = field(default_factory=dict)


def _field_value(record: dict, name: str) -> Any:
    fields = record.get("fields")
    entry = fields.get(name) if isinstance(fields, dict) else None
    return entry.get("value") if isinstance(entry, dict) else None


class QueryExecutor:
    """Issues album and asset queries using the session's cookies and photos endpoint."""

    def __init__(
        self,
        session: "AuthSession",
        *,
        page_size: int = MAX_RECORDS_LIMIT,
        warnings: Optional[WarningChannel] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if page_size <= 0 or page_size % RECORDS_PER_ALBUM_ASSET:
            raise ValueError(f"page_size must be a positive multiple of {RECORDS_PER_ALBUM_ASSET}")
        self.session = session
        self.page_size = page_size
        self.logger = logger or logging.getLogger("icloud-photos")
        self.warnings = warnings or getattr(session, "warnings", None) or WarningChannel(self.logger)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        base_url = self.session.photos_url
        if not base_url or not self.session.cookies:
            raise PhotosServiceNotReady("Photos endpoint or cookies unavailable")
        params = {"remapEnums": "true", "getCurrentSyncToken": "true"}
        dsid = (self.session.account_info or {}).get("dsid")
        if dsid:
            params["dsid"] = str(dsid)
        headers = dict(SETUP_HEADERS)
        headers["Cookie"] = self.session.cookie_header()
        try:
            response = self.session.http.post(
                f"{base_url.rstrip('/')}{path}",
                json=body,
                params=params,
                headers=headers,
                timeout=self.session.request_timeout,
            )
        except requests.RequestException as exc:
            raise PhotosRequestError(None, f"No response from iCloud Photos: {exc}") from exc
        if response.status_code != 200:
            raise PhotosRequestError(response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponse(cause=exc) from exc
        if not isinstance(data, dict):
            raise MalformedResponse("Expected a JSON object from iCloud Photos")
        return data

    @staticmethod
    def _records(data: Dict[str, Any]) -> List[dict]:
        records = data.get("records")
        if not isinstance(records, list):
            raise MalformedResponse("Response is missing the 'records' list")
        for record in records:
            if not isinstance(record, dict):
                raise MalformedResponse(f"Expected record objects, got {type(record).__name__}")
        return records

    # ------------------------------------------------------------------
    # Albums
    # ------------------------------------------------------------------
    def list_albums(self) -> List[Album]:
        albums: List[Album] = []
        seen: set = set()
        duplicates = 0
        marker: Optional[str] = None
        while True:
            body: Dict[str, Any] = {
                "query": {"recordType": RECORD_TYPE_ALBUM_QUERY},
                "zoneID": ZONE_ID,
                "resultsLimit": self.page_size,
                "desiredKeys": ALBUM_DESIRED_KEYS,
            }
            if marker:
                body["continuationMarker"] = marker
            data = self._post(QUERY_PATH, body)
            records = self._records(data)
            for record in records:
                album = self._parse_album_record(record, seen)
                if album is None:
                    continue
                if album is _DUPLICATE:
                    duplicates += 1
                    continue
                albums.append(album)  # type: ignore[arg-type]
            marker = data.get("continuationMarker")
            if not marker or not records:
                break
        if duplicates:
            self.warnings.emit(
                DuplicateRecordFiltered(f"Filtered {duplicates} duplicate album record(s)"),
                level=logging.INFO,
                logger=self.logger,
            )
        self.logger.info("Fetched %d album(s) from iCloud Photos", len(albums))
        return albums

    def _parse_album_record(self, record: dict, seen: set) -> Any:
        record_name = record.get("recordName")
        if record.get("recordType") != RECORD_TYPE_ALBUM:
            self.warnings.emit(
                IrrelevantRecordTypeFiltered(f"Ignoring {record.get('recordType')} record {record_name} in album list"),
                level=logging.DEBUG,
                logger=self.logger,
            )
            return None
        if record_name in ROOT_FOLDER_RECORD_NAMES or record.get("deleted") or _field_value(record, "isDeleted"):
            return None
        if record_name in seen:
            return _DUPLICATE
        seen.add(record_name)
        type_code = _field_value(record, "albumType")
        if type_code not in KNOWN_REMOTE_ALBUM_TYPES:
            self.warnings.emit(
                UnknownAlbumType(f"Ignoring album {record_name} with type code {type_code}"),
                level=logging.DEBUG,
                logger=self.logger,
            )
            return None
        album = Album.from_record(record)
        if album.parent_id in ROOT_FOLDER_RECORD_NAMES:
            album.parent_id = ROOT_ALBUM_ID
        return album

    # ------------------------------------------------------------------
    # Album assets
    # ------------------------------------------------------------------
    def count_album_assets(self, album_id: str) -> int:
        body = {
            "batch": [
                {
                    "resultsLimit": 1,
                    "query": {
                        "filterBy": {
                            "fieldName": "indexCountID",
                            "fieldValue": {"type": "STRING_LIST", "value": [f"{COUNT_INDEX_PREFIX}:{album_id}"]},
                            "comparator": "IN",
                        },
                        "recordType": RECORD_TYPE_COUNT_QUERY,
                    },
                    "zoneWide": True,
                    "zoneID": ZONE_ID,
                }
            ]
        }
        data = self._post(BATCH_QUERY_PATH, body)
        try:
            return int(data["batch"][0]["records"][0]["fields"]["itemCount"]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"Unable to read asset count for album {album_id}") from exc

    def _album_assets_query(self, album_id: str, start_rank: int) -> Dict[str, Any]:
        return {
            "query": {
                "recordType": RECORD_TYPE_ALBUM_ASSETS_QUERY,
                "filterBy": [
                    {"fieldName": "startRank", "comparator": "EQUALS", "fieldValue": {"type": "INT64", "value": start_rank}},
                    {"fieldName": "direction", "comparator": "EQUALS", "fieldValue": {"type": "STRING", "value": "ASCENDING"}},
                    {"fieldName": "parentId", "comparator": "EQUALS", "fieldValue": {"type": "STRING", "value": album_id}},
                ],
            },
            "zoneID": ZONE_ID,
            "resultsLimit": self.page_size,
            "desiredKeys": ASSET_DESIRED_KEYS,
        }

    def list_assets_for_album(
        self,
        album_id: str,
        expected_master_count: int,
        expected_asset_count: int,
    ) -> AlbumRecords:
        result = AlbumRecords(album_id)
        masters_per_page = self.page_size // RECORDS_PER_ALBUM_ASSET
        start_rank = 0
        duplicates = 0
        relations = 0
        others = 0
        while True:
            records = self._records(self._post(QUERY_PATH, self._album_assets_query(album_id, start_rank)))
            page_masters = 0
            for record in records:
                record_type = record.get("recordType")
                if record_type == RECORD_TYPE_CONTAINER_RELATION:
                    relations += 1
                    continue
                if record_type == RECORD_TYPE_MASTER:
                    target = result.masters
                    page_masters += 1
                elif record_type == RECORD_TYPE_ASSET:
                    target = result.assets
                else:
                    others += 1
                    continue
                record_name = record.get("recordName")
                if record_name in target:
                    # Overlapping page windows return identical copies
                    duplicates += 1
                    continue
                target[record_name] = record
            if page_masters < masters_per_page:
                break
            start_rank += page_masters

        if relations or others:
            self.warnings.emit(
                IrrelevantRecordTypeFiltered(
                    f"Filtered {relations} container relation and {others} other record(s) for album {album_id}"
                ),
                level=logging.DEBUG,
                logger=self.logger,
            )
        if duplicates:
            self.warnings.emit(
                DuplicateRecordFiltered(f"Filtered {duplicates} duplicate record(s) for album {album_id}"),
                level=logging.INFO,
                logger=self.logger,
            )
        if len(result.masters) != expected_master_count or len(result.assets) != expected_asset_count:
            self.warnings.emit(
                CountMismatch(
                    f"Album {album_id}: expected {expected_master_count} master(s)/{expected_asset_count} asset(s), "
                    f"received {len(result.masters)}/{len(result.assets)}"
                ),
                logger=self.logger,
            )
        return result

    def pair_assets(self, records: AlbumRecords) -> Dict[str, str]:
        """Match every asset to its master and map master id -> presented filename."""

        paired: Dict[str, str] = {}
        unmatched = 0
        undecodable = 0
        for asset in records.assets.values():
            master_ref = _field_value(asset, "masterRef") or {}
            master_name = master_ref.get("recordName") if isinstance(master_ref, dict) else None
            master = records.masters.get(master_name) if master_name else None
            if master is None:
                unmatched += 1
                continue
            paired[master_name] = master_name
            encoded_name = _field_value(master, "filenameEnc")
            if not encoded_name:
                continue
            try:
                paired[master_name] = decode_field(encoded_name)
            except MalformedResponse:
                undecodable += 1
        if unmatched:
            self.logger.debug("Album %s: %d asset(s) without matching master", records.album_id, unmatched)
        if undecodable:
            self.warnings.emit(
                UndecodableFilename(f"Album {records.album_id}: kept record name for {undecodable} master(s)"),
                logger=self.logger,
            )
        return paired

    def fetch_album_assets(self, album_id: str) -> Dict[str, str]:
        expected = self.count_album_assets(album_id)
        records = self.list_assets_for_album(album_id, expected, expected)
        assets = self.pair_assets(records)
        self.logger.debug("Album %s: %d asset(s)", album_id, len(assets))
        return assets


__all__ = ["AlbumRecords", "QueryExecutor"]
