"""Sync error hierarchy surfaced to callers of the sync service."""


class SyncError(Exception):
    """Base class for all sync failures."""

    message = "Sync failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class NotAuthenticatedError(SyncError):
    message = "Not signed in to the sync account"


class NetworkUnavailableError(SyncError):
    message = "Network connection unavailable"


class ConflictError(SyncError):
    message = "Sync conflict detected"


class QuotaExceededError(SyncError):
    message = "Sync storage quota exceeded"


class EncryptionError(SyncError):
    message = "Failed to encrypt data for sync"


class DecryptionError(SyncError):
    message = "Failed to decrypt synced data"


class RecordNotFoundError(SyncError):
    message = "Record not found in sync store"


class ServerRejectedError(SyncError):
    message = "Server rejected request"


class SyncInProgressError(SyncError):
    message = "A sync operation is already running"
