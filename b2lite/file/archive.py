"""
Archive Codec

Design Decision: Bundle Format
==============================

Several small payloads are often shipped as one object so a batch costs
one upload and one download. We need a container that can be built and
read fully in memory without an archive library.

Options Considered:
1. zip / tar via the standard library
   - Well known, but brings per-entry headers and alignment we don't use
2. Single-byte length prefix + JSON metadata
   - Tiny, but caps every metadata record at 255 bytes, which breaks
     silently on long file names
3. 4-byte big-endian length prefix + JSON metadata
   - Same shape as option 2, no practical cap

Decision: Option 3, the same framing as our message codec elsewhere
(struct '>I' + JSON).

Layout:
```
+-----------+------------------------+
| Len (4B)  | Header {"fileCount":N} |
+-----------+------------------------+
| Len (4B)  | Meta {"fileName", "size", "sha1"?} | payload (size bytes) |
+-----------+------------------------------------+----------------------+
  ... repeated N times
```

Decoding is strict: truncated input, unparsable JSON, missing fields,
bytes left over after the last record, or a recorded sha1 that does not
match the payload all raise ArchiveFormatError.
"""

import json
import logging
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ..errors import ArchiveFormatError
from .hasher import ContentHasher

logger = logging.getLogger(__name__)

# Length prefix: unsigned 32-bit big-endian
LENGTH_PREFIX = struct.Struct('>I')

# Content type used when an archive is uploaded as one object
ARCHIVE_CONTENT_TYPE = 'application/x-b2lite-archive'


@dataclass(frozen=True)
class ArchiveEntry:
    """One named payload inside an archive."""
    file_name: str
    data: bytes
    sha1: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    def as_tuple(self) -> Tuple[str, bytes]:
        return self.file_name, self.data

    def metadata(self, include_sha1: bool = False) -> dict:
        meta = {'fileName': self.file_name, 'size': self.size}
        if include_sha1:
            meta['sha1'] = self.sha1 or ContentHasher.digest(self.data)
        return meta


EntryLike = Union[ArchiveEntry, Tuple[str, bytes]]


def _as_entry(item: EntryLike) -> ArchiveEntry:
    if isinstance(item, ArchiveEntry):
        return item
    file_name, data = item
    return ArchiveEntry(file_name=file_name, data=bytes(data))


class ArchiveCodec:
    """
    Packs (name, bytes) pairs into one blob and unpacks them losslessly.

    decode(encode(x)) returns the same names, order and bytes as x.
    """

    @staticmethod
    def _frame(obj: dict) -> bytes:
        blob = json.dumps(obj, separators=(',', ':'), ensure_ascii=False).encode('utf-8')
        return LENGTH_PREFIX.pack(len(blob)) + blob

    @classmethod
    def encode(cls, entries: Iterable[EntryLike], include_sha1: bool = False) -> bytes:
        """
        Encode entries into an archive blob.

        Args:
            entries: ArchiveEntry objects or (file_name, data) tuples
            include_sha1: Record each payload's SHA-1 so decode can verify it
        """
        items = [_as_entry(e) for e in entries]

        parts = [cls._frame({'fileCount': len(items)})]
        for entry in items:
            parts.append(cls._frame(entry.metadata(include_sha1)))
            parts.append(entry.data)

        blob = b''.join(parts)
        logger.debug(f"Encoded archive: {len(items)} files, {len(blob):,} bytes")
        return blob

    @staticmethod
    def _read_frame(blob: memoryview, offset: int, what: str) -> Tuple[dict, int]:
        end = offset + LENGTH_PREFIX.size
        if end > len(blob):
            raise ArchiveFormatError(f"Truncated archive: missing {what} length", offset)
        (length,) = LENGTH_PREFIX.unpack(blob[offset:end])

        start, end = end, end + length
        if end > len(blob):
            raise ArchiveFormatError(
                f"Truncated archive: {what} needs {length} bytes, "
                f"{len(blob) - start} left", start
            )
        try:
            obj = json.loads(bytes(blob[start:end]).decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArchiveFormatError(f"Invalid {what} JSON: {e}", start) from e
        if not isinstance(obj, dict):
            raise ArchiveFormatError(f"Invalid {what}: expected an object", start)
        return obj, end

    @classmethod
    def decode(cls, blob: bytes) -> List[ArchiveEntry]:
        """
        Decode an archive blob back into its entries, in original order.

        Raises:
            ArchiveFormatError: malformed, truncated or corrupted input
        """
        view = memoryview(blob)
        header, offset = cls._read_frame(view, 0, 'header')

        file_count = header.get('fileCount')
        if not isinstance(file_count, int) or isinstance(file_count, bool) or file_count < 0:
            raise ArchiveFormatError(f"Invalid fileCount in header: {file_count!r}", 0)

        entries: List[ArchiveEntry] = []
        for index in range(file_count):
            meta, offset = cls._read_frame(view, offset, f'record {index} metadata')

            file_name = meta.get('fileName')
            size = meta.get('size')
            sha1 = meta.get('sha1')
            if not isinstance(file_name, str):
                raise ArchiveFormatError(f"Record {index}: missing fileName", offset)
            if not isinstance(size, int) or isinstance(size, bool) or size < 0:
                raise ArchiveFormatError(f"Record {index}: invalid size {size!r}", offset)

            end = offset + size
            if end > len(view):
                raise ArchiveFormatError(
                    f"Truncated archive: {file_name} needs {size} bytes, "
                    f"{len(view) - offset} left", offset
                )
            data = bytes(view[offset:end])

            if sha1 is not None and not ContentHasher.verify(data, str(sha1)):
                raise ArchiveFormatError(f"Digest mismatch for {file_name}", offset)

            entries.append(ArchiveEntry(file_name=file_name, data=data, sha1=sha1))
            offset = end

        if offset != len(view):
            raise ArchiveFormatError(
                f"{len(view) - offset} unexpected trailing bytes after {file_count} files",
                offset
            )

        logger.debug(f"Decoded archive: {len(entries)} files")
        return entries

    @classmethod
    def decode_pairs(cls, blob: bytes) -> List[Tuple[str, bytes]]:
        """Decode to plain (file_name, data) tuples."""
        return [e.as_tuple() for e in cls.decode(blob)]


def archive_file_info(entries: Sequence[EntryLike], include_sha1: bool = False) -> dict:
    """file_info headers that mark an uploaded object as an archive."""
    info = {'archive': 'true', 'fileCount': str(len(entries))}
    if include_sha1:
        info['metadata'] = 'included'
    return info
