"""Building blocks for the iCloud Photos album synchronizer."""

__version__ = "0.1.0-dev"

from .auth import AuthSession, SessionState
from .config import (
	AppConfig,
	ConfigError,
	ConfigFileError,
	MissingEnvError,
	load_app_config,
)
from .errors import ICloudSyncError, RetriesExhausted, SyncWarning
from .library import JsonLibraryStore
from .model import Album, AlbumType
from .reconcile import ReconciliationEngine, SyncPlan
from .sync import SyncOrchestrator, SyncPhase, SyncResult

__all__ = [
	"__version__",
	"Album",
	"AlbumType",
	"AppConfig",
	"AuthSession",
	"ConfigError",
	"ConfigFileError",
	"ICloudSyncError",
	"JsonLibraryStore",
	"MissingEnvError",
	"ReconciliationEngine",
	"RetriesExhausted",
	"SessionState",
	"SyncOrchestrator",
	"SyncPhase",
	"SyncPlan",
	"SyncResult",
	"SyncWarning",
	"load_app_config",
]
