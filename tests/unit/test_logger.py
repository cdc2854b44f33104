"""Unit tests for logger naming and the warning channel."""

import logging

from icloud_photos_sync.errors import CountMismatch, UnknownAlbumType
from icloud_photos_sync.events import WarningChannel
from icloud_photos_sync.logger import get_logger


def test_get_logger_uses_component_mapping():
    assert get_logger("auth").name == "icloud-auth"
    assert get_logger("auth", {"auth": "custom-auth"}).name == "custom-auth"
    # Overrides only replace the components they name
    assert get_logger("photos", {"auth": "custom-auth"}).name == "icloud-photos"


def test_get_logger_unknown_component_falls_back(caplog):
    with caplog.at_level(logging.WARNING):
        logger = get_logger("nope")
    assert logger.name == "icloud_photos_sync"
    assert "Unable to find logger for component nope" in caplog.text


def test_warning_channel_logs_and_notifies(caplog):
    channel = WarningChannel(logging.getLogger("sync-engine"))
    received = []
    channel.subscribe(received.append)

    with caplog.at_level(logging.DEBUG):
        channel.emit(CountMismatch("album a1 short by 2"))
        channel.emit(UnknownAlbumType(), level=logging.DEBUG)

    assert [type(warning) for warning in received] == [CountMismatch, UnknownAlbumType]
    assert channel.count(CountMismatch) == 1
    assert "CountMismatch: album a1 short by 2" in caplog.text
    assert not received[0].fatal
