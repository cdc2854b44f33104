"""Error taxonomy shared by the authentication and reconciliation layers."""

from __future__ import annotations

from typing import Optional


class ICloudSyncError(Exception):
    """Base exception for everything raised by the synchronizer."""

    fatal = True
    default_message = "iCloud sync error"

    def __init__(self, message: Optional[str] = None, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message or self.default_message)
        self.cause = cause


class SyncWarning(ICloudSyncError):
    """Non-fatal anomaly; emitted on the warning channel and never raised past it."""

    fatal = False


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------
class AuthSecretsMissing(ICloudSyncError):
    default_message = "Unable to process auth secrets"


class UnexpectedHttpResponse(ICloudSyncError):
    default_message = "Unexpected HTTP response"

    def __init__(self, status: Optional[int] = None, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status


class UnknownUsername(ICloudSyncError):
    default_message = "Username does not seem to exist"


class BadCredentials(ICloudSyncError):
    default_message = "Username/Password does not seem to match"


class NoResponse(ICloudSyncError):
    default_message = "No response received during authentication"


class MfaRequiredButDisallowed(ICloudSyncError):
    default_message = "MFA code required, failing due to failOnMfa flag"


class MfaServerStartFailed(ICloudSyncError):
    default_message = "Unable to start MFA server"


class MfaResendFailed(SyncWarning):
    default_message = "Unable to request new MFA code"


class MfaSubmitFailed(ICloudSyncError):
    default_message = "Unable to submit MFA code"


class TokenAcquisitionFailed(ICloudSyncError):
    default_message = "Unable to acquire account tokens"


class AccountSetupFailed(ICloudSyncError):
    default_message = "Unable to setup iCloud Account"


class PhotosServiceNotReady(ICloudSyncError):
    default_message = "Unable to get iCloud Photos service ready"


class InvalidTransition(ICloudSyncError):
    default_message = "Invalid session state transition"


# ----------------------------------------------------------------------
# Remote queries
# ----------------------------------------------------------------------
class PhotosRequestError(ICloudSyncError):
    """A photo-library request failed; ``status`` is None when nothing came back."""

    default_message = "iCloud Photos request failed"

    def __init__(self, status: Optional[int] = None, message: Optional[str] = None) -> None:
        detail = message or self.default_message
        if status is not None:
            detail = f"{detail} (status {status})"
        super().__init__(detail)
        self.status = status


class MalformedResponse(ICloudSyncError):
    default_message = "Unable to parse iCloud Photos response"


class RetriesExhausted(ICloudSyncError):
    def __init__(self, original: BaseException, attempts: int) -> None:
        super().__init__(f"{original} (gave up after {attempts} attempt(s))", cause=original)
        self.original = original
        self.attempts = attempts


class UnknownAlbumType(SyncWarning):
    default_message = "Ignoring album with unknown type"


class DuplicateRecordFiltered(SyncWarning):
    default_message = "Filtered duplicate record"


class IrrelevantRecordTypeFiltered(SyncWarning):
    default_message = "Filtered irrelevant record type"


class CountMismatch(SyncWarning):
    default_message = "Realised record count does not match expected count"


class UndecodableFilename(SyncWarning):
    default_message = "Unable to decode master filename, using record name"


# ----------------------------------------------------------------------
# Library / hierarchy
# ----------------------------------------------------------------------
class NoDistanceToRoot(ICloudSyncError):
    default_message = "Unable to determine distance to root, no link to root!"


class InvalidHierarchy(SyncWarning):
    default_message = "Album placement would create a cycle"


class LibraryFileError(ICloudSyncError):
    default_message = "Unable to read the local library index"


__all__ = [
    "AccountSetupFailed",
    "AuthSecretsMissing",
    "BadCredentials",
    "CountMismatch",
    "DuplicateRecordFiltered",
    "ICloudSyncError",
    "InvalidHierarchy",
    "InvalidTransition",
    "IrrelevantRecordTypeFiltered",
    "LibraryFileError",
    "MalformedResponse",
    "MfaRequiredButDisallowed",
    "MfaResendFailed",
    "MfaServerStartFailed",
    "MfaSubmitFailed",
    "NoDistanceToRoot",
    "NoResponse",
    "PhotosRequestError",
    "PhotosServiceNotReady",
    "RetriesExhausted",
    "SyncWarning",
    "TokenAcquisitionFailed",
    "UndecodableFilename",
    "UnexpectedHttpResponse",
    "UnknownAlbumType",
    "UnknownUsername",
]
