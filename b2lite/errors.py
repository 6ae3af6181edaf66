"""
Error Types

Every failure the client can report is a StoreError subclass, so callers
can catch the whole family or pick out the cases they treat differently
(most importantly NotFoundError vs. a transient DownloadError).

Hierarchy:
```
StoreError
├── ConfigurationError
├── AuthenticationError
├── EndpointAcquisitionError
├── UploadError
│   └── BatchUploadError
├── DownloadError
│   └── NotFoundError
├── StoreRequestError        # list / delete
└── ArchiveFormatError
```

Nothing here is retried inside the library. The only self-healing is
cache invalidation, so the *next* call starts from fresh credentials.
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    """
    Base class for all client errors.

    Attributes:
        message: Human readable description
        status: HTTP status of the failing response, if there was one
        code: Store error code from the JSON error body (e.g. 'bad_auth_token')
        details: Extra context (file name, bucket id, ...)
    """

    def __init__(self, message: str, status: Optional[int] = None,
                 code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        parts = [self.message]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code:
            parts.append(f"code={self.code}")
        return " ".join(parts)


class ConfigurationError(StoreError):
    """Missing or invalid client configuration."""


class AuthenticationError(StoreError):
    """Bad credentials or the authorization endpoint failed."""


class EndpointAcquisitionError(StoreError):
    """Could not obtain an upload URL for a bucket."""

    def __init__(self, message: str, bucket_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.bucket_id = bucket_id


class UploadError(StoreError):
    """An upload request failed after a valid endpoint was obtained."""

    def __init__(self, message: str, file_name: str, **kwargs):
        super().__init__(message, **kwargs)
        self.file_name = file_name


class BatchUploadError(UploadError):
    """
    First failure of a batch upload.

    Carries the position of the failing item and the records of the
    items that were already stored (they are not rolled back).
    """

    def __init__(self, index: int, file_name: str, cause: StoreError,
                 completed: Optional[list] = None):
        super().__init__(
            f"Batch upload aborted at item {index} ({file_name}): {cause.message}",
            file_name=file_name,
            status=cause.status,
            code=cause.code,
        )
        self.index = index
        self.cause = cause
        self.completed = completed or []


class DownloadError(StoreError):
    """A download request failed."""

    def __init__(self, message: str, target: str, **kwargs):
        super().__init__(message, **kwargs)
        self.target = target


class NotFoundError(DownloadError):
    """The download target does not exist in the store."""


class StoreRequestError(StoreError):
    """A JSON API call (list, delete) failed."""


class ArchiveFormatError(StoreError):
    """Archive bytes are malformed or truncated."""

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message, details={'offset': offset})
        self.offset = offset


__all__ = [
    'StoreError',
    'ConfigurationError',
    'AuthenticationError',
    'EndpointAcquisitionError',
    'UploadError',
    'BatchUploadError',
    'DownloadError',
    'NotFoundError',
    'StoreRequestError',
    'ArchiveFormatError',
]
