"""Endpoints, header names and record types of the iCloud web API."""

from __future__ import annotations

from typing import Dict, FrozenSet

TRUST_TOKEN_FILE_NAME = ".trust-token.icloud"
LIBRARY_FILE_NAME = "library.json"

# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------
AUTH_ENDPOINT_BASE = "https://idmsa.apple.com/appleauth/auth"
SIGNIN_URL = f"{AUTH_ENDPOINT_BASE}/signin"
TRUST_URL = f"{AUTH_ENDPOINT_BASE}/2sv/trust"
MFA_DEVICE_URL = f"{AUTH_ENDPOINT_BASE}/verify/trusteddevice"
MFA_DEVICE_CODE_URL = f"{AUTH_ENDPOINT_BASE}/verify/trusteddevice/securitycode"
MFA_PHONE_URL = f"{AUTH_ENDPOINT_BASE}/verify/phone"
MFA_PHONE_CODE_URL = f"{AUTH_ENDPOINT_BASE}/verify/phone/securitycode"
SETUP_URL = "https://setup.icloud.com/setup/ws/1/accountLogin"

CLIENT_ID = "d39ba9916b7251055b22c7f910e2ea796ee65e98b2ddecea8f5dde8d9d1a815d"
USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:97.0) Gecko/20100101 Firefox/97.0"

DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
    "Content-Type": "application/json",
    "Connection": "keep-alive",
}

AUTH_HEADERS: Dict[str, str] = {
    **DEFAULT_HEADERS,
    "Origin": "https://idmsa.apple.com",
    "Referer": "https://idmsa.apple.com/",
    "X-Apple-Widget-Key": CLIENT_ID,
    "X-Apple-OAuth-Client-Id": CLIENT_ID,
    "X-Apple-I-FD-Client-Info": '{"U":"' + USER_AGENT + '","L":"en-US","Z":"GMT+01:00","V":"1.1","F":""}',
    "X-Apple-OAuth-Response-Type": "code",
    "X-Apple-OAuth-Response-Mode": "web_message",
    "X-Apple-OAuth-Client-Type": "firstPartyAuth",
}

SETUP_HEADERS: Dict[str, str] = {
    **DEFAULT_HEADERS,
    "Origin": "https://www.icloud.com",
    "Referer": "https://www.icloud.com/",
}

HEADER_SESSION_TOKEN = "X-Apple-Session-Token"
HEADER_TRUST_TOKEN = "X-Apple-TwoSV-Trust-Token"
HEADER_SCNT = "scnt"
HEADER_SESSION_ID = "X-Apple-ID-Session-Id"
COOKIE_AASP = "aasp"

PHOTOS_SERVICE_KEY = "ckdatabasews"

# ----------------------------------------------------------------------
# Photos (CloudKit)
# ----------------------------------------------------------------------
PHOTOS_DB_PATH = "/database/1/com.apple.photos.cloud/production/private"
QUERY_PATH = f"{PHOTOS_DB_PATH}/records/query"
BATCH_QUERY_PATH = f"{PHOTOS_DB_PATH}/internal/records/query/batch"
ZONE_ID: Dict[str, str] = {
    "zoneName": "PrimarySync",
    "zoneType": "REGULAR_CUSTOM_ZONE",
}

RECORD_TYPE_ALBUM_QUERY = "CPLAlbumByPositionLive"
RECORD_TYPE_ALBUM_ASSETS_QUERY = "CPLContainerRelationLiveByAssetDate"
RECORD_TYPE_COUNT_QUERY = "HyperionIndexCountLookup"
COUNT_INDEX_PREFIX = "CPLContainerRelationNotDeletedByAssetDate"

RECORD_TYPE_ALBUM = "CPLAlbum"
RECORD_TYPE_MASTER = "CPLMaster"
RECORD_TYPE_ASSET = "CPLAsset"
RECORD_TYPE_CONTAINER_RELATION = "CPLContainerRelation"

ALBUM_DESIRED_KEYS = ["recordName", "albumType", "albumNameEnc", "parentId", "isDeleted", "position"]
ASSET_DESIRED_KEYS = [
    "recordName",
    "recordType",
    "filenameEnc",
    "masterRef",
    "resOriginalFileType",
    "resOriginalFingerprint",
    "isDeleted",
]

# Container records standing in for the library root
ROOT_FOLDER_RECORD_NAMES: FrozenSet[str] = frozenset({"----Root-Folder----", "----Project-Root-Folder----"})

# Remote album type codes that are represented locally
REMOTE_ALBUM_TYPE_ALBUM = 0
REMOTE_ALBUM_TYPE_FOLDER = 3
KNOWN_REMOTE_ALBUM_TYPES: FrozenSet[int] = frozenset({REMOTE_ALBUM_TYPE_ALBUM, REMOTE_ALBUM_TYPE_FOLDER})

# Should be 200; 198 divides by 3 (relation/asset/master triplets) and 2
MAX_RECORDS_LIMIT = 198
RECORDS_PER_ALBUM_ASSET = 3

# Statuses that mean the session cookies expired mid-sync
SESSION_EXPIRED_STATUSES: FrozenSet[int] = frozenset({401, 403, 421})

# Observed lifetime of account-setup cookies
SESSION_VALIDITY_SECONDS = 3600
