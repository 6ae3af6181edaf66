"""
Store Data Model

Design Decision: Record Types
=============================

The store answers in camelCase JSON. We keep one dataclass per shape
the caller actually handles and convert at the edge:

- FileRecord: result of an upload, entry of a file listing
- FileListing: one page of a listing plus the cursor for the next one
- DownloadResult: downloaded bytes plus the metadata from headers

Options Considered:
1. Hand the raw dicts to callers
   - No conversion cost, but every caller re-learns the wire names
2. Pydantic models
   - Validation for free, heavier than needed for four flat shapes
3. Frozen dataclasses with to_dict/from_dict
   - Same pattern as the rest of the package, immutable results

Decision: Frozen dataclasses (option 3)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class FileRecord:
    """
    A file stored in the bucket.

    Created by a successful upload or returned by a listing. The store
    cannot tell a plain payload from an archive blob; file_info
    {"archive": "true", "fileCount": "N"} is how archives are marked.
    """
    file_id: str
    file_name: str
    content_type: str
    content_length: int
    content_sha1: str
    file_info: Dict[str, str] = field(default_factory=dict)
    bucket_id: Optional[str] = None
    upload_timestamp: Optional[int] = None
    action: Optional[str] = None

    @property
    def is_archive(self) -> bool:
        return self.file_info.get('archive') == 'true'

    @property
    def archive_file_count(self) -> Optional[int]:
        """Number of bundled files for an archive, None otherwise."""
        if not self.is_archive:
            return None
        try:
            return int(self.file_info.get('fileCount', ''))
        except ValueError:
            return None

    def to_dict(self) -> Dict:
        """Serialize to the store's wire shape."""
        data = {
            'fileId': self.file_id,
            'fileName': self.file_name,
            'contentType': self.content_type,
            'contentLength': self.content_length,
            'contentSha1': self.content_sha1,
            'fileInfo': dict(self.file_info),
        }
        if self.bucket_id is not None:
            data['bucketId'] = self.bucket_id
        if self.upload_timestamp is not None:
            data['uploadTimestamp'] = self.upload_timestamp
        if self.action is not None:
            data['action'] = self.action
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'FileRecord':
        """Build from a store response. Raises KeyError/ValueError on bad input."""
        return cls(
            file_id=data['fileId'],
            file_name=data['fileName'],
            content_type=data.get('contentType') or 'application/octet-stream',
            content_length=int(data.get('contentLength') or 0),
            content_sha1=data.get('contentSha1') or '',
            file_info={str(k): str(v) for k, v in (data.get('fileInfo') or {}).items()},
            bucket_id=data.get('bucketId'),
            upload_timestamp=data.get('uploadTimestamp'),
            action=data.get('action'),
        )


@dataclass(frozen=True)
class FileListing:
    """One page of b2_list_file_names."""
    files: List[FileRecord]
    next_file_name: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_file_name is not None

    @classmethod
    def from_dict(cls, data: Dict) -> 'FileListing':
        return cls(
            files=[FileRecord.from_dict(f) for f in data.get('files', [])],
            next_file_name=data.get('nextFileName'),
        )


@dataclass(frozen=True)
class DownloadResult:
    """Downloaded bytes and the metadata the store sent with them."""
    data: bytes
    content_type: str
    content_length: int
    file_name: str
    content_sha1: Optional[str] = None
    file_info: Dict[str, str] = field(default_factory=dict)
    # digest of the received bytes; None for ranged downloads
    computed_sha1: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def sha1_matches(self) -> Optional[bool]:
        """Whether the received bytes match the store's digest, None if unknown."""
        if not self.content_sha1 or not self.computed_sha1:
            return None
        return self.content_sha1.lower() == self.computed_sha1

    def to_dict(self) -> Dict:
        """Metadata only; the payload is left out."""
        return {
            'file_name': self.file_name,
            'content_type': self.content_type,
            'content_length': self.content_length,
            'content_sha1': self.content_sha1,
            'computed_sha1': self.computed_sha1,
            'file_info': dict(self.file_info),
        }


__all__ = [
    'FileRecord',
    'FileListing',
    'DownloadResult',
]
