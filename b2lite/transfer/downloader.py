"""
Download Pipeline

Design Decision: Addressing
===========================

The store serves the same bytes two ways:
1. By name:  GET {downloadUrl}/file/{bucketName}/{encoded name}
2. By id:    GET {downloadUrl}/b2api/v2/b2_download_file_by_id?fileId=...

Callers that only kept a FileRecord know the id; callers that work
with names (batch scripts, archives) know the name. Both go through the
same streaming read, so progress, range requests and error mapping are
identical. For the id variant the file name is recovered from the
X-Bz-File-Name response header.

Error Mapping:
| Status        | Raised          | Side effect                  |
|---------------|-----------------|------------------------------|
| 404           | NotFoundError   | -                            |
| 401           | DownloadError   | auth session invalidated     |
| other non-2xx | DownloadError   | -                            |
| timeout/net   | DownloadError   | -                            |

Full-body downloads are hashed as the chunks arrive and the digest is
reported as DownloadResult.computed_sha1. A mismatch with the
X-Bz-Content-Sha1 header is logged, not raised; callers decide through
DownloadResult.sha1_matches. A ranged read cannot be checked.
"""

import logging
from typing import Dict, Optional
from urllib.parse import unquote

import httpx

from ..errors import DownloadError, NotFoundError, AuthenticationError
from ..file.hasher import ContentHasher
from ..models import DownloadResult
from ..protocol import (
    StoreProtocol, ProtocolTimeout, ProgressCallback, error_details, info_headers,
    encode_file_name, API_VERSION_PATH, DEFAULT_CONTENT_TYPE,
    HEADER_FILE_NAME, HEADER_CONTENT_SHA1,
)
from ..session.auth import AuthManager

logger = logging.getLogger(__name__)


def format_range(start: int, end: Optional[int] = None) -> str:
    """Range header value for bytes start..end (inclusive); open-ended if end is None."""
    if start < 0 or (end is not None and end < start):
        raise ValueError(f"Invalid byte range: {start}-{end}")
    return f"bytes={start}-{'' if end is None else end}"


class FileDownloader:
    """Downloads payloads from one bucket by name or by file id."""

    def __init__(self, protocol: StoreProtocol, auth: AuthManager, bucket_name: str):
        self.protocol = protocol
        self.auth = auth
        self.bucket_name = bucket_name

        # Statistics
        self.files_downloaded = 0
        self.total_bytes = 0

    async def download_by_name(self, file_name: str, byte_range: Optional[str] = None,
                               on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        """
        Download a file by its name in the bucket.

        Args:
            file_name: Name as uploaded (not encoded)
            byte_range: Optional Range header value, e.g. format_range(0, 1023)
            on_progress: Called with percent complete when the length is known

        Raises:
            NotFoundError: no such file
            DownloadError: any other failure
        """
        session = await self._session(file_name)
        url = (f"{session.download_url.rstrip('/')}/file/"
               f"{self.bucket_name}/{encode_file_name(file_name)}")
        return await self._fetch(file_name, url, None, session.authorization_token,
                                 byte_range, on_progress, known_name=file_name)

    async def download_by_id(self, file_id: str, byte_range: Optional[str] = None,
                             on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        """Download a file by its store-assigned id."""
        session = await self._session(file_id)
        url = f"{session.download_url.rstrip('/')}{API_VERSION_PATH}/b2_download_file_by_id"
        return await self._fetch(file_id, url, {'fileId': file_id},
                                 session.authorization_token, byte_range, on_progress)

    async def _session(self, target: str):
        try:
            return await self.auth.acquire()
        except AuthenticationError as e:
            raise DownloadError(
                f"Cannot download {target} without authorization: {e.message}",
                target=target, status=e.status, code=e.code,
            ) from e

    async def _fetch(self, target: str, url: str, params: Optional[Dict[str, str]],
                     token: str, byte_range: Optional[str],
                     on_progress: Optional[ProgressCallback],
                     known_name: Optional[str] = None) -> DownloadResult:
        headers = {'Authorization': token}
        if byte_range:
            headers['Range'] = byte_range

        try:
            async with self.protocol.stream(url, headers, params) as response:
                if not response.is_success:
                    await response.aread()
                    self._raise_for_status(target, response)

                hasher = None if byte_range else ContentHasher()
                data = await self.protocol.read_body(response, on_progress, hasher)
                result = self._build_result(response, data, known_name,
                                            hasher.hexdigest() if hasher is not None else None)
        except (httpx.RequestError, ProtocolTimeout) as e:
            logger.warning(f"Download of {target} failed: {e}")
            raise DownloadError(f"Download of {target} failed: {e}", target=target) from e

        if result.sha1_matches is False:
            logger.warning(f"SHA-1 mismatch for {result.file_name}: expected "
                           f"{result.content_sha1}, received {result.computed_sha1}")

        self.files_downloaded += 1
        self.total_bytes += len(data)
        logger.info(f"Downloaded {result.file_name} ({len(data):,} bytes)")
        return result

    def _raise_for_status(self, target: str, response: httpx.Response):
        code, message = error_details(response)
        status = response.status_code

        if status == 404:
            raise NotFoundError(f"Not found: {target}", target=target,
                                status=status, code=code)
        if status == 401:
            self.auth.invalidate()

        logger.warning(f"Download of {target} rejected ({status}): {message}")
        raise DownloadError(f"Download of {target} rejected: {message}",
                            target=target, status=status, code=code)

    @staticmethod
    def _build_result(response: httpx.Response, data: bytes,
                      known_name: Optional[str],
                      computed_sha1: Optional[str] = None) -> DownloadResult:
        headers = response.headers
        header_name = headers.get(HEADER_FILE_NAME)
        file_name = known_name or (unquote(header_name) if header_name else 'unknown')

        return DownloadResult(
            data=data,
            content_type=headers.get('Content-Type', DEFAULT_CONTENT_TYPE),
            content_length=int(headers.get('Content-Length') or len(data)),
            file_name=file_name,
            content_sha1=headers.get(HEADER_CONTENT_SHA1),
            file_info=info_headers(headers),
            computed_sha1=computed_sha1,
        )

    def get_stats(self) -> dict:
        """Get downloader statistics."""
        return {
            'files_downloaded': self.files_downloaded,
            'total_bytes': self.total_bytes,
        }
