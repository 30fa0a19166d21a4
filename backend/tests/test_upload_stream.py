"""
Tests for the streaming multipart reader.

Bodies are fed through async generators the way a server hands over a
chunked request, so the tests can check how much of a body was read
before the reader gave up.
"""

import pytest

from starlette.requests import ClientDisconnect

from app.services.upload_stream import (
    MalformedUploadError,
    MissingUploadFieldError,
    MultipartFileStream,
    RequestBodyTooLargeError,
    UploadDisconnectedError,
)


BOUNDARY = b"reelstage-test-boundary"

ONE_MIB = 1024 * 1024


class _CountingBody:
    """Async body source that records how many bytes were handed out."""

    def __init__(self, body: bytes, chunk_size: int = 4096):
        self.body = body
        self.chunk_size = chunk_size
        self.consumed = 0

    async def __aiter__(self):
        for offset in range(0, len(self.body), self.chunk_size):
            chunk = self.body[offset : offset + self.chunk_size]
            self.consumed += len(chunk)
            yield chunk


def _stream(body, field_name: str = "video", max_body_bytes: int = ONE_MIB):
    return MultipartFileStream(body.__aiter__(), BOUNDARY, field_name, max_body_bytes)


async def _read_all(upload: MultipartFileStream, size: int = 1024) -> bytes:
    data = bytearray()
    while chunk := await upload.read(size):
        assert len(chunk) <= size
        data += chunk
    return bytes(data)


class TestOpen:
    async def test_part_headers(self, multipart_body):
        body = _CountingBody(multipart_body(b"frames", content_type="Video/MP4; codecs=avc1"))

        upload = await _stream(body).open()

        assert upload.filename == "boots.mp4"
        assert upload.content_type == "Video/MP4; codecs=avc1"

    async def test_part_without_content_type(self, multipart_body):
        body = _CountingBody(multipart_body(b"frames", content_type=None))

        upload = await _stream(body).open()

        assert upload.content_type is None

    async def test_headers_known_before_part_is_read(self, multipart_body):
        body = _CountingBody(multipart_body(b"x" * 200_000), chunk_size=1024)

        await _stream(body).open()

        assert body.consumed < 4096

    async def test_other_parts_are_skipped(self, multipart_body):
        body = _CountingBody(
            multipart_body(b"frames", fields={"title": "Boots", "video_note": "first cut"})
        )

        upload = await _stream(body).open()

        assert await _read_all(upload) == b"frames"

    async def test_missing_field(self, multipart_body):
        body = _CountingBody(multipart_body(b"frames", field="file"))

        with pytest.raises(MissingUploadFieldError, match="'video'"):
            await _stream(body).open()

    async def test_plain_field_with_same_name_is_not_a_file(self, multipart_body):
        body = _CountingBody(multipart_body(b"frames", field="file", fields={"video": "x"}))

        with pytest.raises(MissingUploadFieldError):
            await _stream(body).open()

    async def test_malformed_body(self):
        with pytest.raises(MalformedUploadError):
            await _stream(_CountingBody(b"garbage, not a form")).open()


class TestRead:
    async def test_reads_whole_part_in_bounded_pieces(self, multipart_body):
        data = bytes(range(256)) * 400
        upload = await _stream(_CountingBody(multipart_body(data))).open()

        assert await _read_all(upload, size=1000) == data
        assert upload.complete.is_set()
        assert await upload.read(1000) == b""

    async def test_data_resembling_a_boundary_is_kept(self, multipart_body):
        data = b"\r\n--reelstage-test\r\n" * 50
        upload = await _stream(_CountingBody(multipart_body(data), chunk_size=7)).open()

        assert await _read_all(upload) == data

    async def test_body_ending_inside_part(self, multipart_body):
        body = multipart_body(b"x" * 10_000)[:5_000]
        upload = await _stream(_CountingBody(body)).open()

        with pytest.raises(MalformedUploadError, match="ended inside"):
            await _read_all(upload)


class TestBodyLimit:
    async def test_stops_one_chunk_past_limit(self, multipart_body):
        limit = 16 * 1024
        body = _CountingBody(multipart_body(b"x" * ONE_MIB), chunk_size=4096)
        upload = await _stream(body, max_body_bytes=limit).open()

        with pytest.raises(RequestBodyTooLargeError) as exc_info:
            await _read_all(upload, size=4096)

        assert exc_info.value.limit_bytes == limit
        assert body.consumed <= limit + 4096

    async def test_limit_applies_before_the_file_part(self, multipart_body):
        body = _CountingBody(multipart_body(b"frames", fields={"notes": "n" * 50_000}))

        with pytest.raises(RequestBodyTooLargeError):
            await _stream(body, max_body_bytes=8192).open()

        assert body.consumed <= 8192 + 4096

    async def test_body_at_limit_is_accepted(self, multipart_body):
        body = multipart_body(b"x" * 5000)
        upload = await _stream(_CountingBody(body), max_body_bytes=len(body)).open()

        assert await _read_all(upload) == b"x" * 5000


class TestDisconnect:
    async def test_client_disconnect(self, multipart_body):
        head = multipart_body(b"x" * 10_000)[:6_000]

        async def body():
            yield head
            raise ClientDisconnect()

        upload = await MultipartFileStream(body(), BOUNDARY, "video", ONE_MIB).open()

        with pytest.raises(UploadDisconnectedError):
            await _read_all(upload)
