"""
Store Client - Main Controller

This is the entry point that wires all components together:
- AuthManager: account session, authorized lazily
- UploadEndpointCache: per-bucket upload URLs
- FileUploader / BatchUploader: single and batched uploads
- FileDownloader: downloads by name or id
- ArchiveCodec: bundling several payloads into one object

Every piece of shared state lives on the client instance, so several
independently configured clients can run side by side.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from .config import Config
from .errors import StoreRequestError, AuthenticationError
from .file import ArchiveCodec, ArchiveEntry, ARCHIVE_CONTENT_TYPE, archive_file_info
from .models import DownloadResult, FileListing, FileRecord
from .protocol import StoreProtocol, ProtocolTimeout, ProgressCallback, error_details, DEFAULT_AUTH_URL
from .session import AuthManager, Credentials, UploadEndpointCache
from .transfer import (
    BatchUploader, BatchItem, ConcurrencyLimiter, FileDownloader, FileUploader,
    DEFAULT_CONCURRENCY,
)

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """Plain values a StoreClient is built from."""
    credentials: Credentials
    bucket_id: str
    bucket_name: str
    auth_url: str = DEFAULT_AUTH_URL
    timeout: float = 30.0
    max_concurrent: int = DEFAULT_CONCURRENCY
    fresh_endpoint_per_upload: bool = False

    @classmethod
    def from_config(cls, config: Config) -> 'ClientConfig':
        config.validate()
        return cls(
            credentials=Credentials(config.key_id, config.app_key),
            bucket_id=config.bucket_id,
            bucket_name=config.bucket_name,
            auth_url=config.auth_url,
            timeout=config.timeout,
            max_concurrent=config.max_concurrent,
            fresh_endpoint_per_upload=config.fresh_endpoint_per_upload,
        )


class StoreClient:
    """
    Client for one bucket of the store.

    Two use cases cover most callers:
    - upload(name, data) / upload_archive(name, files): put payloads in
    - download_by_name(name) / download_archive(name): get them back

    Usage:
        async with StoreClient(config) as client:
            record = await client.upload('notes.txt', b'hello')
            result = await client.download_by_name('notes.txt')
    """

    def __init__(self, config: ClientConfig,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize a store client.

        Args:
            config: Credentials, bucket and tuning values
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.config = config

        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout),
            transport=transport,
        )
        self.protocol = StoreProtocol(self._http, timeout=config.timeout)

        # Shared state
        self.auth = AuthManager(self.protocol, config.credentials, config.auth_url)
        self.endpoints = UploadEndpointCache(self.protocol, self.auth)

        # Pipelines
        self.uploader = FileUploader(
            self.protocol, self.endpoints, config.bucket_id,
            fresh_endpoint_per_upload=config.fresh_endpoint_per_upload,
        )
        self.batch = BatchUploader(self.uploader)
        self.downloader = FileDownloader(self.protocol, self.auth, config.bucket_name)

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> 'StoreClient':
        """Build from a loaded Config (env / file)."""
        return cls(ClientConfig.from_config(config), **kwargs)

    async def __aenter__(self) -> 'StoreClient':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        """Close the underlying HTTP client."""
        await self._http.aclose()

    def clear_cache(self):
        """Drop the auth session and all cached upload endpoints."""
        self.auth.invalidate()
        self.endpoints.clear()
        logger.info("Cleared auth session and upload endpoints")

    # === Uploads ===

    async def upload(self, file_name: str, data: bytes,
                     content_type: Optional[str] = None,
                     file_info: Optional[Dict[str, str]] = None,
                     on_progress: Optional[ProgressCallback] = None) -> FileRecord:
        """Upload one payload. See FileUploader.upload."""
        return await self.uploader.upload(file_name, data, content_type, file_info, on_progress)

    async def upload_many(self, files: Sequence[Union[BatchItem, Tuple]],
                          concurrency: Optional[int] = None) -> List[FileRecord]:
        """Upload many payloads, at most `concurrency` in flight. Order-preserving."""
        return await self.batch.upload_many(
            files, self.config.max_concurrent if concurrency is None else concurrency
        )

    async def upload_archive(self, archive_name: str,
                             files: Sequence[Union[ArchiveEntry, Tuple[str, bytes]]],
                             include_sha1: bool = False,
                             on_progress: Optional[ProgressCallback] = None) -> FileRecord:
        """
        Bundle files into one archive object and upload it.

        The record's file_info marks it: {"archive": "true", "fileCount": "N"}.
        """
        files = list(files)
        blob = ArchiveCodec.encode(files, include_sha1=include_sha1)
        logger.info(f"Uploading archive {archive_name} ({len(files)} files, {len(blob):,} bytes)")
        return await self.uploader.upload(
            archive_name, blob,
            content_type=ARCHIVE_CONTENT_TYPE,
            file_info=archive_file_info(files, include_sha1),
            on_progress=on_progress,
        )

    async def rebundle(self, archive_name: str, file_names: Sequence[str],
                       include_sha1: bool = False) -> FileRecord:
        """
        Download files already in the bucket and upload them as one archive.

        Downloads run at most max_concurrent at a time. The first failure
        cancels the downloads still pending and nothing is uploaded.
        """
        limiter = ConcurrencyLimiter(self.config.max_concurrent)

        async def fetch(name: str) -> ArchiveEntry:
            async with limiter:
                result = await self.downloader.download_by_name(name)
            return ArchiveEntry(file_name=name, data=result.data)

        tasks = [asyncio.ensure_future(fetch(name)) for name in file_names]
        try:
            entries = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return await self.upload_archive(archive_name, entries, include_sha1=include_sha1)

    # === Downloads ===

    async def download_by_name(self, file_name: str, byte_range: Optional[str] = None,
                               on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        return await self.downloader.download_by_name(file_name, byte_range, on_progress)

    async def download_by_id(self, file_id: str, byte_range: Optional[str] = None,
                             on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        return await self.downloader.download_by_id(file_id, byte_range, on_progress)

    async def download_archive(self, archive_name: str,
                               on_progress: Optional[ProgressCallback] = None) -> List[ArchiveEntry]:
        """Download an archive object and unpack it."""
        result = await self.downloader.download_by_name(archive_name, on_progress=on_progress)
        return ArchiveCodec.decode(result.data)

    # === Bucket operations ===

    async def _api_call(self, name: str, payload: Dict) -> Dict:
        try:
            session = await self.auth.acquire()
        except AuthenticationError as e:
            raise StoreRequestError(f"{name} needs authorization: {e.message}",
                                    status=e.status, code=e.code) from e

        try:
            response = await self.protocol.call(
                session.api_url, name, session.authorization_token, payload
            )
        except (httpx.RequestError, ProtocolTimeout) as e:
            raise StoreRequestError(f"{name} failed: {e}") from e

        if not response.is_success:
            code, message = error_details(response)
            if response.status_code == 401:
                self.auth.invalidate()
            raise StoreRequestError(f"{name} rejected: {message}",
                                    status=response.status_code, code=code,
                                    details=payload)
        try:
            return response.json()
        except ValueError as e:
            raise StoreRequestError(f"{name} returned invalid JSON: {e}",
                                    status=response.status_code) from e

    async def list_files(self, start_file_name: Optional[str] = None,
                         max_file_count: int = 100) -> FileListing:
        """One page of file names, starting at start_file_name (inclusive)."""
        payload = {'bucketId': self.config.bucket_id, 'maxFileCount': max_file_count}
        if start_file_name:
            payload['startFileName'] = start_file_name

        data = await self._api_call('b2_list_file_names', payload)
        try:
            return FileListing.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise StoreRequestError(f"Malformed file listing: {e}") from e

    async def iter_files(self, start_file_name: Optional[str] = None,
                         page_size: int = 100) -> AsyncIterator[FileRecord]:
        """Every file in the bucket, following nextFileName across pages."""
        cursor = start_file_name
        while True:
            page = await self.list_files(cursor, page_size)
            for record in page.files:
                yield record
            if not page.has_more:
                break
            cursor = page.next_file_name

    async def delete_file(self, file_name: str, file_id: str) -> None:
        """Delete one version of a file."""
        await self._api_call('b2_delete_file_version',
                             {'fileName': file_name, 'fileId': file_id})
        logger.info(f"Deleted {file_name} ({file_id})")

    def get_stats(self) -> dict:
        """Client statistics."""
        return {
            'bucket_id': self.config.bucket_id,
            'bucket_name': self.config.bucket_name,
            'authorized': self.auth.session is not None,
            'authorizations': self.auth.authorizations,
            'endpoint_acquisitions': self.endpoints.acquisitions,
            'upload': self.uploader.get_stats(),
            'download': self.downloader.get_stats(),
        }
