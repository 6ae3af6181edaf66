"""
Upload Endpoint Cache

Design Decision: Upload URL Reuse
=================================

Every upload goes to a bucket-scoped (uploadUrl, authorizationToken)
pair obtained from b2_get_upload_url.

Options Considered:
1. Fetch a fresh endpoint for every upload
   - Always valid, one extra round trip per file
2. Cache per bucket, drop on failure
   - One round trip per bucket in the common case
   - A URL the store has retired is only discovered by a failed upload

Decision: Option 2 by default, option 1 behind the
`fresh_endpoint_per_upload` setting. Upload URLs may be single-use or
short-lived, so cache-until-failure is a trade-off, not a guarantee:
the uploader invalidates the endpoint it used right after any failed
attempt and the next upload refetches. With the setting on, each upload
gets a private endpoint from fetch_fresh(), which neither reads nor
fills the cache and is never shared with a concurrent upload.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from ..errors import EndpointAcquisitionError, AuthenticationError
from ..protocol import StoreProtocol, ProtocolTimeout, error_details
from .auth import AuthManager
from .singleflight import SingleFlight

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadEndpoint:
    """Where and with which token to upload into one bucket."""
    bucket_id: str
    upload_url: str
    authorization_token: str = field(repr=False)

    @classmethod
    def from_dict(cls, data: dict) -> 'UploadEndpoint':
        return cls(
            bucket_id=data['bucketId'],
            upload_url=data['uploadUrl'],
            authorization_token=data['authorizationToken'],
        )


class UploadEndpointCache:
    """Per-bucket upload endpoints, fetched once per bucket while valid."""

    def __init__(self, protocol: StoreProtocol, auth: AuthManager):
        self.protocol = protocol
        self.auth = auth

        self._endpoints: Dict[str, UploadEndpoint] = {}
        self._flight = SingleFlight()

        # Statistics
        self.acquisitions = 0

    def cached(self, bucket_id: str) -> bool:
        return bucket_id in self._endpoints

    async def get(self, bucket_id: str) -> UploadEndpoint:
        """Cached endpoint for the bucket, or one shared fetch for all waiters."""
        endpoint = self._endpoints.get(bucket_id)
        if endpoint is not None:
            logger.debug(f"Upload endpoint cache hit for bucket {bucket_id}")
            return endpoint
        return await self._flight.do(bucket_id, lambda: self._acquire(bucket_id))

    async def fetch_fresh(self, bucket_id: str) -> UploadEndpoint:
        """A new endpoint for one caller; not cached and not shared."""
        return await self._request(bucket_id)

    def invalidate(self, bucket_id: str, endpoint: Optional[UploadEndpoint] = None):
        """
        Remove one bucket's endpoint.

        With `endpoint` given, only that exact entry is removed; a newer
        endpoint cached since then is left alone.
        """
        current = self._endpoints.get(bucket_id)
        if current is None:
            return
        if endpoint is not None and current is not endpoint:
            logger.debug(f"Upload endpoint for bucket {bucket_id} already replaced")
            return
        del self._endpoints[bucket_id]
        logger.warning(f"Invalidated upload endpoint for bucket {bucket_id}")

    def clear(self):
        self._endpoints.clear()

    async def _acquire(self, bucket_id: str) -> UploadEndpoint:
        endpoint = await self._request(bucket_id)
        self._endpoints[bucket_id] = endpoint
        return endpoint

    async def _request(self, bucket_id: str) -> UploadEndpoint:
        try:
            session = await self.auth.acquire()
        except AuthenticationError as e:
            raise EndpointAcquisitionError(
                f"Cannot get upload URL without authorization: {e.message}",
                bucket_id=bucket_id, status=e.status, code=e.code,
            ) from e

        self.acquisitions += 1
        try:
            response = await self.protocol.call(
                session.api_url, 'b2_get_upload_url',
                session.authorization_token, {'bucketId': bucket_id},
            )
        except (httpx.RequestError, ProtocolTimeout) as e:
            raise EndpointAcquisitionError(
                f"Upload URL request failed: {e}", bucket_id=bucket_id
            ) from e

        if not response.is_success:
            code, message = error_details(response)
            if response.status_code == 401:
                self.auth.invalidate()
            raise EndpointAcquisitionError(
                f"Failed to get upload URL: {message}",
                bucket_id=bucket_id, status=response.status_code, code=code,
            )

        try:
            endpoint = UploadEndpoint.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise EndpointAcquisitionError(
                f"Malformed upload URL response: {e}",
                bucket_id=bucket_id, status=response.status_code,
            ) from e

        logger.debug(f"Got upload endpoint for bucket {bucket_id}")
        return endpoint
