"""
Content Hasher

Design Decision: Digest Algorithm
=================================

The store verifies every upload against an X-Bz-Content-Sha1 header and
returns the same value in listings and download headers, so the digest
has to be SHA-1. It is an integrity check against corruption in transit,
not a security boundary.

Hashing Strategy:
- In-memory buffers: one hashlib call
- Incremental: update()/hexdigest() for data that arrives in pieces
  (download bodies, fed chunk by chunk from StoreProtocol.read_body)
- Local files: read in CHUNK_SIZE blocks with aiofiles
"""

import hashlib
from pathlib import Path
from typing import Optional

import aiofiles

# Read size for hashing local files: 256KB
CHUNK_SIZE = 256 * 1024

# SHA-1 of the empty byte string
EMPTY_SHA1 = 'da39a3ee5e6b4b0d3255bfef95601890afd80709'


class ContentHasher:
    """
    Computes the integrity digest used by the store (SHA-1, hex).

    Use the static helpers for whole buffers, or an instance to hash
    data piece by piece:

        hasher = ContentHasher()
        for block in blocks:
            hasher.update(block)
        hasher.hexdigest()
    """

    def __init__(self, data: Optional[bytes] = None):
        self._hash = hashlib.sha1()
        self.bytes_hashed = 0
        if data:
            self.update(data)

    def update(self, data: bytes) -> 'ContentHasher':
        self._hash.update(data)
        self.bytes_hashed += len(data)
        return self

    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    @staticmethod
    def digest(data: bytes) -> str:
        """Hex SHA-1 of a byte buffer. Pure and deterministic."""
        return hashlib.sha1(data).hexdigest()

    @staticmethod
    def verify(data: bytes, expected: str) -> bool:
        """Check bytes against a previously recorded digest (case-insensitive)."""
        return hashlib.sha1(data).hexdigest() == expected.strip().lower()

    @staticmethod
    async def digest_file(file_path: Path, chunk_size: int = CHUNK_SIZE) -> str:
        """Hex SHA-1 of a local file, read asynchronously."""
        hasher = hashlib.sha1()

        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                hasher.update(chunk)

        return hasher.hexdigest()
