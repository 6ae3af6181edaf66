"""
Shared fixtures.

FakeStore is an in-memory stand-in for the object store, served to the
client through httpx.MockTransport. It counts calls per endpoint and
records how many uploads are in flight at once.
"""

import asyncio
import base64
import hashlib
import json
from typing import Dict, List, Optional, Set
from urllib.parse import quote, unquote

import httpx
import pytest
import pytest_asyncio

from b2lite import StoreClient, ClientConfig, Credentials

AUTH_URL = 'https://auth.test/b2api/v2/b2_authorize_account'
API_URL = 'https://api.test'
DOWNLOAD_URL = 'https://download.test'
UPLOAD_HOST = 'https://upload.test'

KEY_ID = 'key-id-0001'
APP_KEY = 'app-key-secret'
BUCKET_ID = 'bucket-0001'
BUCKET_NAME = 'test-bucket'


def error_response(status: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(status, json={'status': status, 'code': code, 'message': message})


class FakeStore:
    """In-memory object store speaking the B2-style wire protocol."""

    def __init__(self):
        self.files: Dict[str, dict] = {}      # file_id -> record + data
        self.next_id = 0

        # Call counters
        self.auth_calls = 0
        self.upload_url_calls = 0
        self.upload_calls = 0
        self.download_calls = 0

        # Concurrency tracking
        self.in_flight = 0
        self.peak_in_flight = 0
        self.events: List[tuple] = []          # ('start'|'end', file_name)
        self.upload_delay = 0.0
        self.auth_delay = 0.0

        # Failure injection
        self.reject_auth = False
        self.fail_upload_names: Set[str] = set()
        self.fail_next_uploads = 0
        self.fail_upload_url = False
        self.expired_download_token = False

        # Issued tokens
        self.account_token = 'account-token-1'
        self.upload_urls_issued: List[str] = []
        self.upload_urls_used: List[str] = []
        self.last_upload_headers: Optional[httpx.Headers] = None
        self.last_download_headers: Optional[httpx.Headers] = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # === Helpers for tests ===

    def put(self, file_name: str, data: bytes, content_type: str = 'application/octet-stream',
            file_info: Optional[dict] = None) -> dict:
        self.next_id += 1
        file_id = f"file-{self.next_id:04d}"
        record = {
            'fileId': file_id,
            'fileName': file_name,
            'contentType': content_type,
            'contentLength': len(data),
            'contentSha1': hashlib.sha1(data).hexdigest(),
            'fileInfo': dict(file_info or {}),
            'bucketId': BUCKET_ID,
            'uploadTimestamp': 1700000000000 + self.next_id,
            'action': 'upload',
        }
        self.files[file_id] = {'record': record, 'data': data}
        return record

    def by_name(self, file_name: str) -> Optional[dict]:
        for entry in self.files.values():
            if entry['record']['fileName'] == file_name:
                return entry
        return None

    # === Request handling ===

    async def handle(self, request: httpx.Request) -> httpx.Response:
        url = request.url
        if str(url).startswith(AUTH_URL):
            return await self._authorize(request)
        if url.host == 'api.test':
            return self._api(request)
        if url.host == 'upload.test':
            return await self._upload(request)
        if url.host == 'download.test':
            return self._download(request)
        return httpx.Response(404)

    async def _authorize(self, request: httpx.Request) -> httpx.Response:
        self.auth_calls += 1
        if self.auth_delay:
            await asyncio.sleep(self.auth_delay)

        expected = 'Basic ' + base64.b64encode(f"{KEY_ID}:{APP_KEY}".encode()).decode()
        if self.reject_auth or request.headers.get('Authorization') != expected:
            return error_response(401, 'bad_auth_token', 'Invalid application key')

        return httpx.Response(200, json={
            'accountId': 'account-0001',
            'authorizationToken': self.account_token,
            'apiUrl': API_URL,
            'downloadUrl': DOWNLOAD_URL,
        })

    def _api(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get('Authorization') != self.account_token:
            return error_response(401, 'expired_auth_token', 'Authorization token expired')

        call = request.url.path.rsplit('/', 1)[-1]
        body = json.loads(request.content or b'{}')

        if call == 'b2_get_upload_url':
            self.upload_url_calls += 1
            if self.fail_upload_url:
                return error_response(503, 'service_unavailable', 'No upload pods')
            n = self.upload_url_calls
            upload_url = f"{UPLOAD_HOST}/upload/{n}"
            self.upload_urls_issued.append(upload_url)
            return httpx.Response(200, json={
                'bucketId': body['bucketId'],
                'uploadUrl': upload_url,
                'authorizationToken': f"upload-token-{n}",
            })

        if call == 'b2_list_file_names':
            start = body.get('startFileName') or ''
            limit = body.get('maxFileCount', 100)
            records = sorted((e['record'] for e in self.files.values()),
                             key=lambda r: r['fileName'])
            records = [r for r in records if r['fileName'] >= start]
            page, rest = records[:limit], records[limit:]
            return httpx.Response(200, json={
                'files': page,
                'nextFileName': rest[0]['fileName'] if rest else None,
            })

        if call == 'b2_delete_file_version':
            entry = self.files.get(body.get('fileId'))
            if entry is None or entry['record']['fileName'] != body.get('fileName'):
                return error_response(400, 'file_not_present', 'File not present')
            del self.files[body['fileId']]
            return httpx.Response(200, json={'fileId': body['fileId'],
                                             'fileName': body['fileName']})

        return error_response(400, 'bad_request', f"Unknown call {call}")

    async def _upload(self, request: httpx.Request) -> httpx.Response:
        self.upload_calls += 1
        self.last_upload_headers = request.headers
        self.upload_urls_used.append(str(request.url))
        file_name = unquote(request.headers['X-Bz-File-Name'])

        n = request.url.path.rsplit('/', 1)[-1]
        if request.headers.get('Authorization') != f"upload-token-{n}":
            return error_response(401, 'bad_auth_token', 'Upload token mismatch')

        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        self.events.append(('start', file_name))
        try:
            if self.upload_delay:
                await asyncio.sleep(self.upload_delay)

            if self.fail_next_uploads > 0:
                self.fail_next_uploads -= 1
                return error_response(503, 'service_unavailable', 'Upload pod busy')
            if file_name in self.fail_upload_names:
                return error_response(500, 'internal_error', f"Cannot store {file_name}")

            data = request.content
            if int(request.headers['Content-Length']) != len(data):
                return error_response(400, 'bad_request', 'Content-Length mismatch')
            if request.headers['X-Bz-Content-Sha1'] != hashlib.sha1(data).hexdigest():
                return error_response(400, 'bad_request', 'Sha1 did not match data received')

            prefix = 'x-bz-info-'
            file_info = {
                k.decode()[len(prefix):]: unquote(v.decode())
                for k, v in request.headers.raw
                if k.decode().lower().startswith(prefix)
            }
            record = self.put(file_name, data, request.headers['Content-Type'], file_info)
            return httpx.Response(200, json=record)
        finally:
            self.in_flight -= 1
            self.events.append(('end', file_name))

    def _download(self, request: httpx.Request) -> httpx.Response:
        self.download_calls += 1
        self.last_download_headers = request.headers

        if self.expired_download_token or request.headers.get('Authorization') != self.account_token:
            return error_response(401, 'expired_auth_token', 'Authorization token expired')

        path = request.url.path
        if path.endswith('/b2_download_file_by_id'):
            entry = self.files.get(request.url.params.get('fileId'))
        else:
            prefix = f"/file/{BUCKET_NAME}/"
            entry = self.by_name(unquote(path[len(prefix):])) if path.startswith(prefix) else None

        if entry is None:
            return error_response(404, 'not_found', 'File not present')

        record, data = entry['record'], entry['data']
        headers = {
            'Content-Type': record['contentType'],
            'X-Bz-File-Name': quote(record['fileName'], safe='/'),
            'X-Bz-File-Id': record['fileId'],
            'X-Bz-Content-Sha1': record['contentSha1'],
        }
        for key, value in record['fileInfo'].items():
            headers[f"X-Bz-Info-{key}"] = quote(value, safe='')

        status = 200
        range_header = request.headers.get('Range')
        if range_header:
            start, _, end = range_header[len('bytes='):].partition('-')
            data = data[int(start):(int(end) + 1) if end else None]
            status = 206

        return httpx.Response(status, content=data, headers=headers)


def make_client(store: FakeStore, **overrides) -> StoreClient:
    config = ClientConfig(
        credentials=Credentials(KEY_ID, APP_KEY),
        bucket_id=BUCKET_ID,
        bucket_name=BUCKET_NAME,
        auth_url=AUTH_URL,
        timeout=overrides.pop('timeout', 5.0),
        **overrides,
    )
    return StoreClient(config, transport=store.transport())


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest_asyncio.fixture
async def client(store):
    c = make_client(store)
    yield c
    await c.close()
