"""
Tests for ContentHasher
"""

import hashlib

import pytest

from b2lite.file import ContentHasher, EMPTY_SHA1


class TestDigest:
    """Whole-buffer digests"""

    def test_known_value(self):
        assert ContentHasher.digest(b'abc') == 'a9993e364706816aba3e25717850c26c9cd0d89d'

    def test_empty_input(self):
        assert ContentHasher.digest(b'') == EMPTY_SHA1

    def test_deterministic(self):
        data = bytes(range(256)) * 100
        assert ContentHasher.digest(data) == ContentHasher.digest(bytes(data))

    def test_single_byte_change(self):
        data = bytearray(b'x' * 4096)
        original = ContentHasher.digest(bytes(data))
        data[2048] ^= 0x01
        assert ContentHasher.digest(bytes(data)) != original


class TestVerify:
    def test_matches(self):
        assert ContentHasher.verify(b'hello', hashlib.sha1(b'hello').hexdigest())

    def test_case_and_whitespace_insensitive(self):
        expected = hashlib.sha1(b'hello').hexdigest().upper() + '\n'
        assert ContentHasher.verify(b'hello', expected)

    def test_mismatch(self):
        assert not ContentHasher.verify(b'hello', EMPTY_SHA1)


class TestIncremental:
    def test_pieces_equal_whole(self):
        pieces = [b'alpha', b'', b'beta', b'gamma' * 1000]
        hasher = ContentHasher()
        for piece in pieces:
            hasher.update(piece)

        assert hasher.hexdigest() == ContentHasher.digest(b''.join(pieces))
        assert hasher.bytes_hashed == sum(len(p) for p in pieces)

    def test_initial_data(self):
        assert ContentHasher(b'abc').hexdigest() == ContentHasher.digest(b'abc')


class TestDigestFile:
    @pytest.mark.asyncio
    async def test_matches_buffer_digest(self, tmp_path):
        data = b'0123456789' * 70000   # spans several read chunks
        path = tmp_path / 'payload.bin'
        path.write_bytes(data)

        assert await ContentHasher.digest_file(path) == ContentHasher.digest(data)

    @pytest.mark.asyncio
    async def test_small_chunk_size(self, tmp_path):
        path = tmp_path / 'small.txt'
        path.write_bytes(b'hello world')

        assert await ContentHasher.digest_file(path, chunk_size=3) == ContentHasher.digest(b'hello world')

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty'
        path.write_bytes(b'')

        assert await ContentHasher.digest_file(path) == EMPTY_SHA1
