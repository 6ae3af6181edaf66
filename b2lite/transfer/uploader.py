"""
Upload Pipeline

Upload Flow:
1. Get the bucket's upload endpoint (cache hit or one shared fetch,
   or a private one when fresh_endpoint_per_upload is set)
2. Hash the payload (SHA-1)
3. Build headers: file name, content type, length, digest, file info
4. POST the whole buffer to the upload URL with the upload token
5. On failure: drop the endpoint that was used (it may be retired or
   single-use) if it is still the cached one, and raise UploadError. No retry here; the next upload refetches.
6. On success: parse the FileRecord
"""

import logging
from typing import Dict, Optional

import httpx

from ..errors import UploadError
from ..file.hasher import ContentHasher
from ..models import FileRecord
from ..protocol import (
    StoreProtocol, ProtocolTimeout, ProgressCallback, error_details,
    encode_file_name, encode_info_value,
    DEFAULT_CONTENT_TYPE, HEADER_FILE_NAME, HEADER_CONTENT_SHA1, HEADER_INFO_PREFIX,
)
from ..session.endpoints import UploadEndpoint, UploadEndpointCache

logger = logging.getLogger(__name__)


def build_upload_headers(endpoint: UploadEndpoint, file_name: str, sha1: str,
                         content_type: Optional[str] = None,
                         file_info: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Headers for one upload request.

    Content-Length is added by the protocol layer from the body itself.
    """
    headers = {
        'Authorization': endpoint.authorization_token,
        HEADER_FILE_NAME: encode_file_name(file_name),
        'Content-Type': content_type or DEFAULT_CONTENT_TYPE,
        HEADER_CONTENT_SHA1: sha1,
    }
    for key, value in (file_info or {}).items():
        headers[f"{HEADER_INFO_PREFIX}{key}"] = encode_info_value(value)
    return headers


class FileUploader:
    """
    Uploads single payloads into one bucket.

    Shares the endpoint cache with every other uploader of the client.
    """

    def __init__(self, protocol: StoreProtocol, endpoints: UploadEndpointCache,
                 bucket_id: str, fresh_endpoint_per_upload: bool = False):
        self.protocol = protocol
        self.endpoints = endpoints
        self.bucket_id = bucket_id
        self.fresh_endpoint_per_upload = fresh_endpoint_per_upload

        # Statistics
        self.files_uploaded = 0
        self.bytes_uploaded = 0

    async def upload(self, file_name: str, data: bytes,
                     content_type: Optional[str] = None,
                     file_info: Optional[Dict[str, str]] = None,
                     on_progress: Optional[ProgressCallback] = None) -> FileRecord:
        """
        Upload one payload.

        Args:
            file_name: Name in the bucket (plain text, encoded here once)
            data: Payload, may be empty
            content_type: Defaults to application/octet-stream
            file_info: Custom metadata, sent as X-Bz-Info-* headers
            on_progress: Called with percent complete as the body is sent

        Raises:
            EndpointAcquisitionError: no upload URL could be obtained
            UploadError: the upload request failed
        """
        if self.fresh_endpoint_per_upload:
            endpoint = await self.endpoints.fetch_fresh(self.bucket_id)
        else:
            endpoint = await self.endpoints.get(self.bucket_id)

        sha1 = ContentHasher.digest(data)
        headers = build_upload_headers(endpoint, file_name, sha1, content_type, file_info)

        try:
            response = await self.protocol.upload(
                endpoint.upload_url, headers, data, on_progress
            )
        except (httpx.RequestError, ProtocolTimeout) as e:
            self.endpoints.invalidate(self.bucket_id, endpoint)
            logger.warning(f"Upload of {file_name} failed: {e}")
            raise UploadError(f"Upload of {file_name} failed: {e}", file_name=file_name) from e

        if not response.is_success:
            self.endpoints.invalidate(self.bucket_id, endpoint)
            code, message = error_details(response)
            logger.warning(f"Upload of {file_name} rejected ({response.status_code}): {message}")
            raise UploadError(
                f"Upload of {file_name} rejected: {message}",
                file_name=file_name, status=response.status_code, code=code,
            )

        try:
            record = FileRecord.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise UploadError(
                f"Malformed upload response for {file_name}: {e}",
                file_name=file_name, status=response.status_code,
            ) from e

        self.files_uploaded += 1
        self.bytes_uploaded += len(data)
        logger.info(f"Uploaded {file_name} ({len(data):,} bytes, id {record.file_id})")
        return record

    def get_stats(self) -> dict:
        """Get uploader statistics."""
        return {
            'files_uploaded': self.files_uploaded,
            'bytes_uploaded': self.bytes_uploaded,
            'bucket_id': self.bucket_id,
        }


__all__ = ['FileUploader', 'build_upload_headers']
