"""
b2lite - Async client for a token-authenticated object store

Uploads and downloads byte payloads, verifies them by SHA-1, bounds
concurrent requests and bundles several payloads into one archive.
"""

from .client import StoreClient, ClientConfig
from .config import Config, load_config
from .errors import (
    StoreError,
    ConfigurationError,
    AuthenticationError,
    EndpointAcquisitionError,
    UploadError,
    BatchUploadError,
    DownloadError,
    NotFoundError,
    StoreRequestError,
    ArchiveFormatError,
)
from .file import ArchiveCodec, ArchiveEntry, ContentHasher
from .models import FileRecord, FileListing, DownloadResult
from .session import Credentials, AuthSession, UploadEndpoint
from .transfer import BatchItem, ConcurrencyLimiter, format_range

__version__ = '0.1.0'

__all__ = [
    'StoreClient',
    'ClientConfig',
    'Config',
    'load_config',
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
    'ArchiveCodec',
    'ArchiveEntry',
    'ContentHasher',
    'FileRecord',
    'FileListing',
    'DownloadResult',
    'Credentials',
    'AuthSession',
    'UploadEndpoint',
    'BatchItem',
    'ConcurrencyLimiter',
    'format_range',
]
