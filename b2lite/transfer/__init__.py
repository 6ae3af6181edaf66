"""
Transfer Module - Upload/Download

Moves payload bytes between the caller and the store.
"""

from .limiter import ConcurrencyLimiter
from .uploader import FileUploader, build_upload_headers
from .downloader import FileDownloader, format_range
from .batch import BatchUploader, BatchItem, split_waves, DEFAULT_CONCURRENCY

__all__ = [
    'ConcurrencyLimiter',
    'FileUploader',
    'build_upload_headers',
    'FileDownloader',
    'format_range',
    'BatchUploader',
    'BatchItem',
    'split_waves',
    'DEFAULT_CONCURRENCY',
]
