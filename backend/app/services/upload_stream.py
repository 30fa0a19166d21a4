"""
Streaming reader for the file part of a multipart upload.

The request body is parsed incrementally with python-multipart instead of
letting the framework spool the whole form to a temp file first. This lets
the upload endpoint:

- stop reading as soon as the body grows past the upload limit, with or
  without a declared Content-Length
- see the file part's headers, and so its declared content type, before any
  of its bytes are written anywhere
- hand the part's bytes to the staging pipeline as they arrive

Only the first file part named ``field_name`` is kept. Other parts are parsed
and dropped.
"""

import asyncio
import logging

from collections.abc import AsyncIterator

from python_multipart.exceptions import FormParserError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect, Request

from app.utils.file_validator import format_file_size, parse_media_type


logger = logging.getLogger(__name__)

MULTIPART_FORM_DATA = "multipart/form-data"


class UploadStreamError(Exception):
    """Base exception for upload body errors."""


class MalformedUploadError(UploadStreamError):
    """The body is not a well-formed multipart form."""


class MissingUploadFieldError(UploadStreamError):
    """The form has no file part with the expected field name."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Unable to parse form file '{field_name}'")


class RequestBodyTooLargeError(UploadStreamError):
    """More body bytes arrived than the upload limit allows."""

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(f"Upload exceeds the {format_file_size(limit_bytes)} limit")


class UploadDisconnectedError(UploadStreamError):
    """The client went away before the file part was read."""


class MultipartFileStream:
    """
    One file part of a multipart body, read as the body arrives.

    ``open()`` reads until the part's headers are parsed, after which
    ``filename`` and ``content_type`` are set and no part bytes have been
    written anywhere but memory. ``read()`` then returns the part's bytes;
    ``b""`` marks its end.

    Every body byte counts against ``max_body_bytes``, framing included, so
    at most one transport chunk past the limit is ever read.

    Example:
        ```python
        upload = await MultipartFileStream.from_request(request, "video", 1 << 30).open()
        if upload.content_type == "video/mp4":
            chunk = await upload.read(1 << 20)
        ```
    """

    def __init__(
        self,
        body: AsyncIterator[bytes],
        boundary: bytes,
        field_name: str,
        max_body_bytes: int,
    ) -> None:
        self.field_name = field_name
        self.max_body_bytes = max_body_bytes
        self.body_bytes = 0
        self.filename: str | None = None
        self.content_type: str | None = None
        # Set once the whole file part has been parsed
        self.complete = asyncio.Event()

        self._body = body
        self._exhausted = False
        self._found = False
        self._in_field = False
        self._buffer = bytearray()
        self._disposition = b""
        self._part_content_type = b""
        self._header_name = b""
        self._header_value = b""

        try:
            self._parser = MultipartParser(
                boundary,
                callbacks={
                    "on_part_begin": self._on_part_begin,
                    "on_part_data": self._on_part_data,
                    "on_part_end": self._on_part_end,
                    "on_header_field": self._on_header_field,
                    "on_header_value": self._on_header_value,
                    "on_header_end": self._on_header_end,
                    "on_headers_finished": self._on_headers_finished,
                },
            )
        except FormParserError as e:
            raise MalformedUploadError(str(e)) from e

    @classmethod
    def from_request(
        cls, request: Request, field_name: str, max_body_bytes: int
    ) -> "MultipartFileStream":
        """
        Read ``field_name`` from the body of ``request``.

        Raises:
            MalformedUploadError: If the request is not multipart form data
                with a boundary
        """
        content_type = request.headers.get("content-type")
        _, options = parse_options_header(content_type)
        boundary = options.get(b"boundary")
        if parse_media_type(content_type) != MULTIPART_FORM_DATA or not boundary:
            raise MalformedUploadError("Expected a multipart/form-data body with a boundary")
        return cls(request.stream(), boundary, field_name, max_body_bytes)

    async def open(self) -> "MultipartFileStream":
        """
        Read until the headers of the file part are parsed.

        Raises:
            MissingUploadFieldError: If the body ends without the part
            RequestBodyTooLargeError: If the limit is passed first
            MalformedUploadError: If the body cannot be parsed
            UploadDisconnectedError: If the client goes away
        """
        while not self._found:
            if not await self._feed():
                raise MissingUploadFieldError(self.field_name)
        logger.debug(
            "Upload part headers parsed",
            extra={
                "field_name": self.field_name,
                "upload_filename": self.filename,
                "content_type": self.content_type,
                "body_bytes": self.body_bytes,
            },
        )
        return self

    async def read(self, size: int = -1) -> bytes:
        """Return up to ``size`` bytes of the part (all buffered if negative)."""
        while not self._buffer and not self.complete.is_set():
            if not await self._feed():
                raise MalformedUploadError("Request body ended inside the file part")

        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data

    async def _feed(self) -> bool:
        """Parse the next body chunk; False once the body is exhausted."""
        if self._exhausted:
            return False
        try:
            chunk = await anext(self._body)
        except StopAsyncIteration:
            self._exhausted = True
            self._parser.finalize()
            return False
        except ClientDisconnect as e:
            raise UploadDisconnectedError("Client disconnected during upload") from e

        self.body_bytes += len(chunk)
        if self.body_bytes > self.max_body_bytes:
            raise RequestBodyTooLargeError(self.max_body_bytes)

        try:
            self._parser.write(chunk)
        except FormParserError as e:
            raise MalformedUploadError(f"Malformed multipart body: {e}") from e
        return True

    # Parser callbacks; they run synchronously inside ``MultipartParser.write``

    def _on_part_begin(self) -> None:
        self._disposition = b""
        self._part_content_type = b""

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._in_field:
            self._buffer += data[start:end]

    def _on_part_end(self) -> None:
        if self._in_field:
            self._in_field = False
            self.complete.set()

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        name = self._header_name.lower()
        if name == b"content-disposition":
            self._disposition = self._header_value
        elif name == b"content-type":
            self._part_content_type = self._header_value
        self._header_name = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        if self._found:
            return
        _, options = parse_options_header(self._disposition)
        name = options.get(b"name")
        if name is None or b"filename" not in options:
            return
        if name.decode("utf-8", errors="replace") != self.field_name:
            return

        self._found = True
        self._in_field = True
        self.filename = options[b"filename"].decode("utf-8", errors="replace")
        self.content_type = self._part_content_type.decode("latin-1").strip() or None
