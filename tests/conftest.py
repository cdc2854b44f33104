"""Test configuration for pytest."""

import base64
import json
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import requests
from requests.cookies import create_cookie
from requests.structures import CaseInsensitiveDict

# Add the project root directory to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from icloud_photos_sync.events import WarningChannel  # noqa: E402

PHOTOS_URL = "https://p123-ckdatabasews.icloud.com:443"


def encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


@pytest.fixture
def make_response() -> Callable[..., requests.Response]:
    """Build real ``requests.Response`` objects with headers, cookies and a JSON body."""

    def _make(
        status: int = 200,
        json_data: Optional[object] = None,
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[List] = None,
        text: Optional[str] = None,
    ) -> requests.Response:
        response = requests.Response()
        response.status_code = status
        response.headers = CaseInsensitiveDict(headers or {})
        if text is not None:
            response._content = text.encode("utf-8")
        elif json_data is not None:
            response._content = json.dumps(json_data).encode("utf-8")
        else:
            response._content = b""
        response.encoding = "utf-8"
        for cookie in cookies or []:
            response.cookies.set_cookie(cookie)
        return response

    return _make


@pytest.fixture
def make_cookie():
    def _make(name: str = "X-APPLE-WEBAUTH-TOKEN", value: str = "v", expires_in: int = 3600):
        return create_cookie(name, value, domain=".icloud.com", expires=int(time.time()) + expires_in)

    return _make


@pytest.fixture
def warnings() -> WarningChannel:
    return WarningChannel()


@pytest.fixture
def photos_session(mocker, make_cookie, warnings):
    """Stand-in for an account-ready session as seen by the query layer."""

    session = mocker.Mock()
    session.photos_url = PHOTOS_URL
    session.cookies = [make_cookie()]
    session.cookie_header.return_value = "X-APPLE-WEBAUTH-TOKEN=v"
    session.account_info = {"dsid": "1234"}
    session.request_timeout = 30
    session.warnings = warnings
    session.cookies_stale.return_value = False
    return session


@pytest.fixture
def album_record():
    def _make(name: str, title: str, album_type: int = 0, parent: Optional[str] = None, record_type: str = "CPLAlbum"):
        fields = {
            "albumType": {"value": album_type},
            "albumNameEnc": {"value": encode(title)},
        }
        if parent is not None:
            fields["parentId"] = {"value": parent}
        return {"recordName": name, "recordType": record_type, "fields": fields}

    return _make


@pytest.fixture
def master_record():
    def _make(name: str, filename: str):
        return {"recordName": name, "recordType": "CPLMaster", "fields": {"filenameEnc": {"value": encode(filename)}}}

    return _make


@pytest.fixture
def asset_record():
    def _make(name: str, master: str):
        return {"recordName": name, "recordType": "CPLAsset", "fields": {"masterRef": {"value": {"recordName": master}}}}

    return _make


@pytest.fixture
def relation_record():
    def _make(name: str):
        return {"recordName": name, "recordType": "CPLContainerRelation", "fields": {}}

    return _make


class CountingLock:
    """Lock that signals once a second caller has entered."""

    def __init__(self):
        self._lock = threading.Lock()
        self.entries = 0
        self.second_entry = threading.Event()

    def __enter__(self):
        self._lock.acquire()
        self.entries += 1
        if self.entries == 2:
            self.second_entry.set()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()
        return False


@pytest.fixture
def counting_lock() -> CountingLock:
    return CountingLock()
