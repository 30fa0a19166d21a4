"""
External media tool runner for ReelStage.

Wraps the two external programs the staging pipeline depends on:

- ``ffprobe`` to read per-stream metadata (codec, dimensions, display aspect
  ratio) from a staged upload without decoding it
- ``ffmpeg`` to remux a staged upload with ``-movflags faststart`` so the
  MP4 index sits at the front of the file and playback can begin before the
  download completes; streams are copied, never re-encoded

Both run as async subprocesses with an argument vector (no shell), a
wall-clock timeout, and kill-on-cancel so a hung tool or a disconnected
client never leaves a process behind. Failures raise ``MediaToolError`` with
the tool's own diagnostic output attached for operators.
"""

import asyncio
import contextlib
import logging
import os

from pydantic import BaseModel, Field, ValidationError

from app.config import Settings


logger = logging.getLogger(__name__)

# Suffix appended to the staged path to name the remuxed output
REMUX_OUTPUT_SUFFIX = ".processing"

# ffmpeg muxer used for the fast-start copy
REMUX_CONTAINER_FORMAT = "mp4"

# Cap on diagnostic text carried by an exception
MAX_DIAGNOSTIC_CHARS = 4000


class MediaToolError(Exception):
    """
    An external media tool failed, timed out, or produced unusable output.

    Attributes:
        tool: Name of the tool (``ffprobe`` or ``ffmpeg``)
        returncode: Process exit status, or None if it never exited normally
        diagnostics: Captured stderr/stdout of the tool, truncated
    """

    def __init__(
        self,
        tool: str,
        message: str,
        returncode: int | None = None,
        diagnostics: str = "",
    ) -> None:
        self.tool = tool
        self.returncode = returncode
        self.diagnostics = diagnostics[-MAX_DIAGNOSTIC_CHARS:]
        super().__init__(f"{tool}: {message}")

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostics:
            return f"{base}: {self.diagnostics.strip()}"
        return base


class MediaToolTimeoutError(MediaToolError):
    """The tool did not finish within the configured timeout and was killed."""


class StreamInfo(BaseModel):
    """One entry of ffprobe's ``streams`` array."""

    index: int | None = None
    codec_name: str | None = None
    codec_type: str | None = None
    width: int | None = None
    height: int | None = None
    display_aspect_ratio: str | None = None


class ProbeResult(BaseModel):
    """Parsed ``ffprobe -show_streams -print_format json`` output."""

    streams: list[StreamInfo] = Field(default_factory=list)

    @property
    def video_stream(self) -> StreamInfo | None:
        """The first stream whose codec type is ``video``."""
        for stream in self.streams:
            if stream.codec_type == "video":
                return stream
        return None

    @property
    def aspect_ratio(self) -> str:
        """Display aspect ratio of the first video stream, ``""`` if there is none."""
        stream = self.video_stream
        if stream is None or not stream.display_aspect_ratio:
            return ""
        return stream.display_aspect_ratio


def _decode(output: bytes | None) -> str:
    return (output or b"").decode("utf-8", errors="replace")


class MediaToolRunner:
    """
    Runs ffprobe and ffmpeg on local files.

    Example:
        ```python
        runner = MediaToolRunner(settings)
        probe = await runner.probe("/tmp/reelstage_x/upload.mp4")
        print(probe.aspect_ratio)  # "16:9"
        output_path = await runner.remux("/tmp/reelstage_x/upload.mp4")
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self.ffprobe_path = settings.ffprobe_path
        self.ffmpeg_path = settings.ffmpeg_path
        self.timeout = settings.media_tool_timeout_seconds

    async def probe(self, file_path: str) -> ProbeResult:
        """
        Read stream metadata from a fully written local media file.

        Raises:
            MediaToolError: Non-zero exit, timeout, or output that is not
                ffprobe JSON.
        """
        stdout, stderr = await self._run(
            "ffprobe",
            self.ffprobe_path,
            ["-v", "error", "-print_format", "json", "-show_streams", str(file_path)],
        )

        try:
            result = ProbeResult.model_validate_json(stdout)
        except ValidationError as e:
            raise MediaToolError(
                "ffprobe",
                "could not parse stream metadata",
                returncode=0,
                diagnostics=_decode(stdout) + _decode(stderr),
            ) from e

        logger.debug(
            "Probed media file",
            extra={
                "file_path": str(file_path),
                "stream_count": len(result.streams),
                "aspect_ratio": result.aspect_ratio,
            },
        )
        return result

    async def get_video_aspect_ratio(self, file_path: str) -> str:
        """Display aspect ratio of the first video stream, ``""`` if there is none."""
        return (await self.probe(file_path)).aspect_ratio

    async def remux(self, file_path: str) -> str:
        """
        Write a fast-start copy of ``file_path`` next to it and return its path.

        The copy is named ``<file_path>.processing``. It is only returned once
        ffmpeg has exited successfully; on any failure a partially written
        output is removed before the error propagates.

        Raises:
            MediaToolError: Non-zero exit, timeout, or missing output.
        """
        output_path = f"{file_path}{REMUX_OUTPUT_SUFFIX}"
        args = [
            "-y",
            "-v",
            "error",
            "-i",
            str(file_path),
            "-c",
            "copy",
            "-movflags",
            "faststart",
            "-f",
            REMUX_CONTAINER_FORMAT,
            output_path,
        ]

        try:
            await self._run("ffmpeg", self.ffmpeg_path, args)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.remove(output_path)
            raise

        if not os.path.isfile(output_path):
            raise MediaToolError("ffmpeg", f"exited cleanly but wrote no file at {output_path}")

        logger.debug("Remuxed media file for fast start", extra={"output_path": output_path})
        return output_path

    async def _run(self, tool: str, executable: str, args: list[str]) -> tuple[bytes, bytes]:
        """Run one tool invocation to completion and return (stdout, stderr)."""
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MediaToolError(tool, f"could not start {executable}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process)
            logger.error(
                "%s timed out after %.1f seconds and was killed",
                tool,
                self.timeout,
                extra={"tool": tool, "tool_args": args},
            )
            raise MediaToolTimeoutError(
                tool, f"timed out after {self.timeout:g} seconds"
            ) from e
        except asyncio.CancelledError:
            await self._kill(process)
            logger.warning("%s cancelled; process killed", tool, extra={"tool": tool})
            raise

        if process.returncode != 0:
            diagnostics = _decode(stderr) or _decode(stdout)
            logger.error(
                "%s exited with status %s",
                tool,
                process.returncode,
                extra={"tool": tool, "tool_args": args, "diagnostics": diagnostics},
            )
            raise MediaToolError(
                tool,
                f"exited with status {process.returncode}",
                returncode=process.returncode,
                diagnostics=diagnostics,
            )

        return stdout, stderr

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
