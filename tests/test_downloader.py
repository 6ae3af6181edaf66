"""
Tests for the download pipeline
"""

import logging

import pytest

from b2lite.errors import DownloadError, NotFoundError
from b2lite.file import ContentHasher
from b2lite.transfer import format_range

from .conftest import make_client


class TestFormatRange:
    def test_closed(self):
        assert format_range(0, 99) == 'bytes=0-99'

    def test_open_ended(self):
        assert format_range(100) == 'bytes=100-'

    @pytest.mark.parametrize('start,end', [(-1, 5), (10, 5)])
    def test_invalid(self, start, end):
        with pytest.raises(ValueError):
            format_range(start, end)


class TestDownloadByName:
    @pytest.mark.asyncio
    async def test_returns_bytes_and_metadata(self, client, store):
        store.put('docs/readme.md', b'# Title\n', content_type='text/markdown')

        result = await client.download_by_name('docs/readme.md')

        assert result.data == b'# Title\n'
        assert result.file_name == 'docs/readme.md'
        assert result.content_type == 'text/markdown'
        assert result.content_length == 8
        assert result.content_sha1 == ContentHasher.digest(b'# Title\n')
        assert result.size == 8

    @pytest.mark.asyncio
    async def test_request_path_and_token(self, client, store):
        store.put('a b.txt', b'x')

        await client.download_by_name('a b.txt')

        assert store.last_download_headers['Authorization'] == store.account_token

    @pytest.mark.asyncio
    async def test_upload_then_download(self, client):
        payload = bytes(range(256)) * 50
        await client.upload('bin/data.bin', payload)

        result = await client.download_by_name('bin/data.bin')

        assert result.data == payload
        assert ContentHasher.verify(result.data, result.content_sha1)

    @pytest.mark.asyncio
    async def test_file_info_from_headers(self, client, store):
        store.put('a', b'1', file_info={'archive': 'true', 'fileCount': '3'})

        result = await client.download_by_name('a')

        assert result.file_info == {'archive': 'true', 'fileCount': '3'}

    @pytest.mark.asyncio
    async def test_byte_range(self, client, store):
        store.put('a', b'0123456789')

        result = await client.download_by_name('a', byte_range=format_range(2, 5))

        assert result.data == b'2345'
        assert store.last_download_headers['Range'] == 'bytes=2-5'

    @pytest.mark.asyncio
    async def test_progress(self, client, store):
        store.put('a', b'z' * 5000)
        progress = []

        await client.download_by_name('a', on_progress=progress.append)

        assert progress
        assert progress[-1] == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_body_hashed_while_streaming(self, client, store):
        payload = b'chunk' * 20000
        store.put('big.bin', payload)

        result = await client.download_by_name('big.bin')

        assert result.computed_sha1 == ContentHasher.digest(payload)
        assert result.sha1_matches is True

    @pytest.mark.asyncio
    async def test_ranged_body_not_hashed(self, client, store):
        store.put('a', b'0123456789')

        result = await client.download_by_name('a', byte_range=format_range(0, 3))

        assert result.computed_sha1 is None
        assert result.sha1_matches is None

    @pytest.mark.asyncio
    async def test_digest_mismatch_logged(self, client, store, caplog):
        record = store.put('a', b'real bytes')
        record['contentSha1'] = ContentHasher.digest(b'other bytes')

        with caplog.at_level(logging.WARNING, logger='b2lite.transfer.downloader'):
            result = await client.download_by_name('a')

        assert result.data == b'real bytes'
        assert result.sha1_matches is False
        assert 'SHA-1 mismatch' in caplog.text

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        with pytest.raises(NotFoundError) as exc:
            await client.download_by_name('missing.txt')

        assert exc.value.status == 404
        assert exc.value.target == 'missing.txt'
        assert isinstance(exc.value, DownloadError)

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_session(self, client, store):
        store.put('a', b'1')
        await client.auth.acquire()
        store.expired_download_token = True

        with pytest.raises(DownloadError) as exc:
            await client.download_by_name('a')

        assert not isinstance(exc.value, NotFoundError)
        assert exc.value.status == 401
        assert client.auth.session is None

        store.expired_download_token = False
        result = await client.download_by_name('a')
        assert result.data == b'1'
        assert store.auth_calls == 2

    @pytest.mark.asyncio
    async def test_timeout(self, store):
        store.auth_delay = 0.5
        c = make_client(store, timeout=0.05)
        try:
            with pytest.raises(DownloadError):
                await c.download_by_name('a')
        finally:
            await c.close()


class TestDownloadById:
    @pytest.mark.asyncio
    async def test_name_recovered_from_header(self, client, store):
        record = store.put('photos/cat 1.jpg', b'jpeg')

        result = await client.download_by_id(record['fileId'])

        assert result.data == b'jpeg'
        assert result.file_name == 'photos/cat 1.jpg'

    @pytest.mark.asyncio
    async def test_unknown_id(self, client):
        with pytest.raises(NotFoundError) as exc:
            await client.download_by_id('file-9999')

        assert exc.value.target == 'file-9999'

    @pytest.mark.asyncio
    async def test_stats(self, client, store):
        record = store.put('a', b'12345')

        await client.download_by_id(record['fileId'])
        await client.download_by_name('a')

        assert client.downloader.get_stats() == {'files_downloaded': 2, 'total_bytes': 10}
