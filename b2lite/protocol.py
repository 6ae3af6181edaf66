"""
Store Wire Protocol

Design Decision: HTTP Client
============================

Options Considered:
1. requests in a thread pool
   - Familiar, but every call burns an executor thread
2. aiohttp
   - Fast, but its own session/connector lifecycle to manage
3. httpx.AsyncClient
   - Native asyncio, streaming request and response bodies,
     MockTransport for tests without a network

Decision: httpx.AsyncClient, shared by every component of one client.

The store speaks a small JSON API plus two raw-byte paths:

| Call                   | Method | Where                                         |
|------------------------|--------|-----------------------------------------------|
| authorize account      | GET    | fixed auth URL, Basic credentials             |
| get upload url         | POST   | {apiUrl}/b2api/v2/b2_get_upload_url           |
| upload file            | POST   | uploadUrl from the call above, raw body       |
| list file names        | POST   | {apiUrl}/b2api/v2/b2_list_file_names          |
| delete file version    | POST   | {apiUrl}/b2api/v2/b2_delete_file_version      |
| download by name       | GET    | {downloadUrl}/file/{bucket}/{name}            |
| download by id         | GET    | {downloadUrl}/b2api/v2/b2_download_file_by_id |

Error bodies are JSON: {"status": 401, "code": "bad_auth_token", "message": "..."}.

Every call is wrapped in asyncio.wait_for with the configured timeout, so
a slow request fails like any other network failure.
"""

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple
from urllib.parse import quote, unquote

import httpx

from .file.hasher import ContentHasher

logger = logging.getLogger(__name__)

API_VERSION_PATH = '/b2api/v2'
DEFAULT_AUTH_URL = 'https://api.backblazeb2.com/b2api/v2/b2_authorize_account'
DEFAULT_CONTENT_TYPE = 'application/octet-stream'

# Upload body is handed to the transport in pieces of this size so
# progress can be observed
UPLOAD_PIECE_SIZE = 64 * 1024

# Headers
HEADER_FILE_NAME = 'X-Bz-File-Name'
HEADER_FILE_ID = 'X-Bz-File-Id'
HEADER_CONTENT_SHA1 = 'X-Bz-Content-Sha1'
HEADER_INFO_PREFIX = 'X-Bz-Info-'

# Progress callback: receives percent complete (0.0 - 100.0)
ProgressCallback = Callable[[float], None]


class ProtocolTimeout(Exception):
    """A store call exceeded its timeout."""


def api_url(base: str, call: str) -> str:
    """Full URL of a JSON API call, e.g. api_url(apiUrl, 'b2_list_file_names')."""
    return f"{base.rstrip('/')}{API_VERSION_PATH}/{call}"


def encode_file_name(file_name: str) -> str:
    """Percent-encode a file name for a header or URL path ('/' kept)."""
    return quote(file_name, safe='/')


def encode_info_value(value: str) -> str:
    return quote(str(value), safe='')


def basic_auth_header(key_id: str, key: str) -> str:
    token = base64.b64encode(f"{key_id}:{key}".encode('utf-8')).decode('ascii')
    return f"Basic {token}"


def error_details(response: httpx.Response) -> Tuple[Optional[str], str]:
    """
    Extract (code, message) from a store error response.

    Falls back to the HTTP reason phrase when the body is not JSON.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        return body.get('code'), body.get('message') or response.reason_phrase
    return None, response.reason_phrase or f"HTTP {response.status_code}"


def info_headers(headers: httpx.Headers) -> Dict[str, str]:
    """Collect X-Bz-Info-* response headers into a file_info dict."""
    info = {}
    prefix = HEADER_INFO_PREFIX.lower()
    # raw keeps the original key case
    for raw_name, raw_value in headers.raw:
        name = raw_name.decode('latin-1')
        if name.lower().startswith(prefix):
            info[name[len(prefix):]] = unquote(raw_value.decode('latin-1'))
    return info


class StoreProtocol:
    """
    Thin async layer over httpx for the store's HTTP calls.

    It knows paths, headers and timeouts; it does not interpret status
    codes. Callers map failures to their own error types.
    """

    def __init__(self, http: httpx.AsyncClient, timeout: float = 30.0):
        self.http = http
        self.timeout = timeout

    async def _bounded(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProtocolTimeout(f"Request timed out after {self.timeout}s") from e

    async def authorize(self, auth_url: str, key_id: str, key: str) -> httpx.Response:
        """GET the authorization endpoint with Basic credentials."""
        return await self._bounded(self.http.get(
            auth_url,
            headers={'Authorization': basic_auth_header(key_id, key)},
        ))

    async def call(self, base_url: str, name: str, token: str,
                   payload: Dict) -> httpx.Response:
        """POST a JSON API call."""
        url = api_url(base_url, name)
        logger.debug(f"POST {name}")
        return await self._bounded(self.http.post(
            url,
            json=payload,
            headers={'Authorization': token},
        ))

    async def upload(self, upload_url: str, headers: Dict[str, str], data: bytes,
                     on_progress: Optional[ProgressCallback] = None) -> httpx.Response:
        """
        POST a raw body to an upload URL.

        The body is streamed in UPLOAD_PIECE_SIZE pieces; on_progress gets
        the percentage handed to the transport after each piece.
        """
        total = len(data)

        async def body() -> AsyncIterator[bytes]:
            sent = 0
            view = memoryview(data)
            while sent < total:
                piece = bytes(view[sent:sent + UPLOAD_PIECE_SIZE])
                yield piece
                sent += len(piece)
                if on_progress:
                    on_progress(sent / total * 100)

        headers = dict(headers)
        headers['Content-Length'] = str(total)

        response = await self._bounded(self.http.post(
            upload_url,
            content=body(),
            headers=headers,
        ))
        if on_progress and total == 0:
            on_progress(100.0)
        return response

    @asynccontextmanager
    async def stream(self, url: str, headers: Dict[str, str],
                     params: Optional[Dict[str, str]] = None):
        """Open a streaming GET; yields the httpx response."""
        request = self.http.build_request('GET', url, headers=headers, params=params)
        response = await self._bounded(self.http.send(request, stream=True))
        try:
            yield response
        finally:
            await response.aclose()

    async def read_body(self, response: httpx.Response,
                        on_progress: Optional[ProgressCallback] = None,
                        hasher: Optional[ContentHasher] = None) -> bytes:
        """
        Read a streamed body, reporting percent progress when the total
        length is known from Content-Length. Each chunk is fed to `hasher`
        as it arrives.
        """
        total = int(response.headers.get('Content-Length') or 0)

        async def collect() -> bytes:
            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                if hasher is not None:
                    hasher.update(chunk)
                received += len(chunk)
                if on_progress and total > 0:
                    on_progress(min(received / total, 1.0) * 100)
            return b''.join(chunks)

        return await self._bounded(collect())
