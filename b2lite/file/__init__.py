"""
File Module - Hashing and Archive Bundling

Pure, in-memory helpers: no network access happens here.
"""

from .hasher import ContentHasher, CHUNK_SIZE, EMPTY_SHA1
from .archive import (
    ArchiveCodec, ArchiveEntry, ARCHIVE_CONTENT_TYPE, archive_file_info
)

__all__ = [
    'ContentHasher',
    'CHUNK_SIZE',
    'EMPTY_SHA1',
    'ArchiveCodec',
    'ArchiveEntry',
    'ARCHIVE_CONTENT_TYPE',
    'archive_file_info',
]
