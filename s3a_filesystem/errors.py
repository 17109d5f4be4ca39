from __future__ import annotations
"""Error types raised by the S3 filesystem layer."""


class S3FileSystemError(OSError):
    """Base class for filesystem failures."""


class NotFoundError(S3FileSystemError, FileNotFoundError):
    """Raised when a path or object does not exist."""


class AlreadyExistsError(S3FileSystemError, FileExistsError):
    """Raised when creating a path that already exists."""


class NotEmptyDirectoryError(S3FileSystemError):
    """Raised when a populated directory is deleted without ``recursive``."""


class IllegalRenameTargetError(S3FileSystemError):
    """Raised when a rename destination is incompatible with its source."""


class BackendError(S3FileSystemError):
    """Raised when the store cannot be reached or fails server-side."""

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class BackendRejectedError(BackendError):
    """Raised when the store rejects a request with a client error other than 404."""


class CredentialResolutionError(S3FileSystemError):
    """Raised when credentials cannot be resolved."""


class TransferCancelledError(RuntimeError):
    """Raised when an upload or copy is cancelled by the caller."""
