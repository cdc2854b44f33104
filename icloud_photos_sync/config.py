"""Configuration loading for the iCloud Photos sync tool."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from icloud_photos_sync.constants import MAX_RECORDS_LIMIT, RECORDS_PER_ALBUM_ASSET, SESSION_VALIDITY_SECONDS
from icloud_photos_sync.logger import LOGGER_NAMES


class ConfigError(Exception):
    """Base exception for configuration issues."""


class MissingEnvError(ConfigError):
    """Raised when required environment variables are missing."""


class ConfigFileError(ConfigError):
    """Raised when the JSON config file is missing or invalid."""


load_dotenv()

CONFIG_ENV = os.getenv("SYNC_CONFIG_PATH", "sync_config.json")
CONFIG_PATH = CONFIG_ENV

DEFAULT_DATA_DIR = "/opt/icloud-photos-library"
DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_REQUEST_TIMEOUT = 30


def _resolve_config_path(path: str) -> str:
    """Resolve a config path: try as given, then relative to repo root when missing.

    If `path` is absolute, return it. For relative paths, prefer the cwd location
    if present, otherwise look for the file under the repository root (parent of
    the package directory). Returns the absolute candidate path (even if it does
    not exist) so callers can attempt to open it and handle missing files.
    """
    if os.path.isabs(path):
        return path
    cwd_candidate = os.path.abspath(path)
    if os.path.exists(cwd_candidate):
        return cwd_candidate
    pkg_dir = os.path.dirname(__file__)
    repo_root = os.path.abspath(os.path.join(pkg_dir, os.pardir))
    repo_candidate = os.path.join(repo_root, path)
    if os.path.exists(repo_candidate):
        return repo_candidate
    return cwd_candidate


def _int_setting(section: str, data: Dict[str, object], key: str, default: int, minimum: int = 1) -> int:
    raw_value = data.get(key, default)
    try:
        value = int(raw_value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigFileError(f"{section}.{key} must be an integer, got {raw_value!r}") from exc
    if value < minimum:
        raise ConfigFileError(f"{section}.{key} must be at least {minimum}, got {value}")
    return value


@dataclass
class AccountSettings:
    username: str
    password: str
    trust_token: Optional[str]
    fail_on_mfa: bool
    refresh_token: bool

    @classmethod
    def from_env(cls, json_section: Dict[str, object]) -> "AccountSettings":
        username = os.getenv("ICLOUD_USERNAME")
        password = os.getenv("ICLOUD_PASSWORD")
        if not all([username, password]):
            raise MissingEnvError("ICLOUD_* environment variables are required (USERNAME, PASSWORD)")
        trust_token = os.getenv("ICLOUD_TRUST_TOKEN") or None
        return cls(
            username=str(username),
            password=str(password),
            trust_token=trust_token,
            fail_on_mfa=bool(json_section.get("fail_on_mfa", False)),
            refresh_token=bool(json_section.get("refresh_token", False)),
        )


@dataclass
class PathSettings:
    data_dir: str

    @classmethod
    def from_json(cls, data: Dict[str, object]) -> "PathSettings":
        raw_dir = str(data.get("data_dir") or os.getenv("ICLOUD_DATA_DIR") or DEFAULT_DATA_DIR).strip()
        return cls(data_dir=os.path.abspath(os.path.expanduser(raw_dir)))


@dataclass
class SyncSettings:
    max_retries: int
    session_validity_seconds: int
    page_size: int
    max_concurrency: int
    request_timeout: int

    @classmethod
    def from_json(cls, data: Dict[str, object]) -> "SyncSettings":
        page_size = _int_setting("sync", data, "page_size", MAX_RECORDS_LIMIT)
        if page_size % RECORDS_PER_ALBUM_ASSET:
            raise ConfigFileError(
                f"sync.page_size must be divisible by {RECORDS_PER_ALBUM_ASSET}, got {page_size}"
            )
        return cls(
            max_retries=_int_setting("sync", data, "max_retries", DEFAULT_MAX_RETRIES, minimum=0),
            session_validity_seconds=_int_setting("sync", data, "session_validity_seconds", SESSION_VALIDITY_SECONDS),
            page_size=page_size,
            max_concurrency=_int_setting("sync", data, "max_concurrency", DEFAULT_MAX_CONCURRENCY),
            request_timeout=_int_setting("sync", data, "request_timeout", DEFAULT_REQUEST_TIMEOUT),
        )


@dataclass
class LoggingSettings:
    level: str
    log_to_cli: bool
    logger_names: Dict[str, str] = field(default_factory=lambda: dict(LOGGER_NAMES))

    @classmethod
    def from_json(cls, data: Dict[str, object]) -> "LoggingSettings":
        names = dict(LOGGER_NAMES)
        overrides = data.get("logger_names") or {}
        if not isinstance(overrides, dict):
            raise ConfigFileError("logging.logger_names must be an object")
        names.update({str(key): str(value) for key, value in overrides.items()})
        return cls(
            level=str(data.get("level", "INFO") or "INFO").upper(),
            log_to_cli=bool(data.get("log_to_cli", False)),
            logger_names=names,
        )


@dataclass
class AppConfig:
    account: AccountSettings
    paths: PathSettings
    sync: SyncSettings
    logging: LoggingSettings


def _load_json_config(path: str = CONFIG_PATH) -> Dict[str, object]:
    resolved = _resolve_config_path(path)
    try:
        with open(resolved, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        tried = [os.path.abspath(path), resolved]
        tried_unique = []
        for p in tried:
            if p not in tried_unique:
                tried_unique.append(p)
        print(f"⚠️  Config file not found (tried): {', '.join(tried_unique)}; continuing with defaults")
        return {}
    except json.JSONDecodeError as exc:
        raise ConfigFileError(f"Invalid JSON in config file '{resolved}': {exc}") from exc


def load_app_config(path: str | None = None) -> AppConfig:
    data = _load_json_config(path or CONFIG_PATH)
    return AppConfig(
        account=AccountSettings.from_env(data.get("account", {})),
        paths=PathSettings.from_json(data.get("paths", {})),
        sync=SyncSettings.from_json(data.get("sync", {})),
        logging=LoggingSettings.from_json(data.get("logging", {})),
    )


__all__ = [
    "AccountSettings",
    "AppConfig",
    "ConfigError",
    "ConfigFileError",
    "LoggingSettings",
    "MissingEnvError",
    "PathSettings",
    "SyncSettings",
    "load_app_config",
]
