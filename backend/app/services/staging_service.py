"""
Video staging pipeline for ReelStage.

Takes one accepted upload for one video record through the fixed sequence:

1. Buffer the uploaded part, as it streams in, into a staged file in a
   private temp directory
2. Probe the staged file with ffprobe for its display aspect ratio
3. Classify the ratio into a storage category
4. Remux the staged file for fast start with ffmpeg
5. Upload the remuxed file under ``{category}/{random}.{ext}``
6. Point the video record at the uploaded object (``bucket,key``)
7. Return the record with a freshly signed playback URL

Stages never run out of order and nothing is retried. A failure at any stage
raises ``StagingError`` naming the stage, after the staging directory has been
removed. Errors reading the request body itself (``UploadStreamError``)
propagate unwrapped so the endpoint can answer them as client errors. An
object that was uploaded but never committed to the record is
deleted, so storage does not collect unreferenced files.
"""

import asyncio
import logging
import os
import secrets
import tempfile

from enum import Enum

import aiofiles

from app.config import Settings
from app.models.video import Video
from app.services.media_tools import MediaToolError, MediaToolRunner
from app.services.storage_service import (
    StorageService,
    StorageServiceError,
    build_storage_reference,
)
from app.services.upload_stream import MultipartFileStream, UploadStreamError
from app.services.video_service import VideoService, VideoServiceError
from app.utils.file_validator import format_file_size
from app.utils.logger import ContextLoggerAdapter, add_log_context
from app.utils.video_category import VideoCategory, classify_aspect_ratio


logger = logging.getLogger(__name__)

STAGING_DIR_PREFIX = "reelstage_"

# Random bytes in a storage key token (256 bits)
STORAGE_KEY_TOKEN_BYTES = 32


class StagingStage(str, Enum):
    """Pipeline stages, in the only order they can be reached."""

    RECEIVED = "received"
    BUFFERED_LOCALLY = "buffered_locally"
    PROBED = "probed"
    CLASSIFIED = "classified"
    REMUXED = "remuxed"
    UPLOADED = "uploaded"
    RECORD_UPDATED = "record_updated"
    DONE = "done"


class StagingError(Exception):
    """
    The pipeline could not reach ``stage``.

    Attributes:
        stage: The stage that was being worked towards when it failed
        cause: The underlying error
    """

    def __init__(self, stage: StagingStage, cause: Exception | str) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Staging failed at stage '{stage.value}': {cause}")


class UploadTooLargeError(StagingError):
    """The upload stream exceeded the configured size limit."""

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(
            StagingStage.BUFFERED_LOCALLY,
            f"upload exceeds the {format_file_size(limit_bytes)} limit",
        )


def build_storage_key(category: VideoCategory, extension: str) -> str:
    """
    Build a fresh storage key ``{category}/{token}.{extension}``.

    The token is 32 random bytes, URL-safe base64 encoded without padding.
    """
    return f"{category.value}/{secrets.token_urlsafe(STORAGE_KEY_TOKEN_BYTES)}.{extension}"


class VideoStagingService:
    """
    Runs the staging pipeline for accepted uploads.

    The caller has already authenticated the user, checked ownership of
    ``video`` and validated the declared content type of the opened part.

    Example:
        ```python
        service = VideoStagingService(settings, MediaToolRunner(settings), storage, videos)
        signed_video = await service.stage_upload(video, upload)
        ```
    """

    def __init__(
        self,
        settings: Settings,
        media_tools: MediaToolRunner,
        storage: StorageService,
        videos: VideoService,
    ) -> None:
        self.media_tools = media_tools
        self.storage = storage
        self.videos = videos
        self.max_upload_size_bytes = settings.max_upload_size_bytes
        self.chunk_size = settings.upload_chunk_size_bytes
        self.staging_dir = settings.staging_dir
        self.content_type = settings.accepted_video_content_type
        self.extension = settings.video_file_extension

    async def stage_upload(self, video: Video, upload: MultipartFileStream) -> Video:
        """
        Stage ``upload`` as the file for ``video``.

        Returns:
            Video: The updated record with ``video_url`` signed for playback.

        Raises:
            UploadTooLargeError: If the stream is larger than the limit
            StagingError: If any other stage fails. At ``DONE`` only signing
                failed: the record already points at the uploaded object and
                keeps it, and a later read signs it again.
            UploadStreamError: If the request body cannot be read
        """
        log = add_log_context(logger, video_id=video.id, user_id=video.user_id)
        stage = StagingStage.RECEIVED
        log.info("Staging upload", extra={"upload_filename": upload.filename})

        try:
            with tempfile.TemporaryDirectory(
                prefix=STAGING_DIR_PREFIX, dir=self.staging_dir
            ) as staging_dir:
                staged_path = os.path.join(staging_dir, f"upload.{self.extension}")

                async with aiofiles.open(staged_path, "w+b") as staged:
                    stage = StagingStage.BUFFERED_LOCALLY
                    size = await self._buffer_upload(upload, staged)
                    log.debug("Upload buffered locally", extra={"size_bytes": size})

                    stage = StagingStage.PROBED
                    probe = await self.media_tools.probe(staged_path)
                    await staged.seek(0)

                stage = StagingStage.CLASSIFIED
                if probe.video_stream is None:
                    log.warning("Upload has no video stream; classifying as other")
                category = classify_aspect_ratio(probe.aspect_ratio)
                log.info(
                    "Upload classified",
                    extra={"aspect_ratio": probe.aspect_ratio, "category": category.value},
                )

                stage = StagingStage.REMUXED
                remuxed_path = await self.media_tools.remux(staged_path)

                stage = StagingStage.UPLOADED
                key = build_storage_key(category, self.extension)
                await self._upload(remuxed_path, key, log)

                stage = StagingStage.RECORD_UPDATED
                reference = build_storage_reference(self.storage.bucket_name, key)
                updated = await self._commit_reference(video, key, reference, log)

            stage = StagingStage.DONE
            signed = await self.videos.sign_video(updated)

        except StagingError:
            raise
        except UploadStreamError as e:
            log.warning("Upload body could not be read: %s", e, extra={"stage": stage.value})
            raise
        except (MediaToolError, StorageServiceError, VideoServiceError, OSError) as e:
            log.error("Staging failed at stage %s: %s", stage.value, e, extra={"stage": stage.value})
            raise StagingError(stage, e) from e

        log.info("Upload staged", extra={"video_url": updated.video_url})
        return signed

    async def _buffer_upload(self, upload: MultipartFileStream, staged) -> int:
        """Copy the upload into ``staged`` in chunks, enforcing the size limit."""
        total = 0
        while True:
            chunk = await upload.read(self.chunk_size)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_upload_size_bytes:
                raise UploadTooLargeError(self.max_upload_size_bytes)
            await staged.write(chunk)
        await staged.flush()
        return total

    async def _upload(self, file_path: str, key: str, log: ContextLoggerAdapter) -> None:
        """
        Upload ``file_path`` to ``key``.

        The transfer runs on a worker thread that cannot be interrupted. On
        cancellation this waits for it to end, so the staging directory is
        not removed under it, then deletes whatever it wrote.
        """
        transfer = asyncio.ensure_future(
            self.storage.upload_file(key, file_path, self.content_type)
        )
        try:
            await asyncio.shield(transfer)
        except asyncio.CancelledError:
            log.warning("Staging cancelled during upload", extra={"object_key": key})
            try:
                await transfer
            except StorageServiceError:
                log.info("Cancelled upload did not complete", extra={"object_key": key})
            else:
                await self._discard_object(key, log)
            raise

    async def _commit_reference(
        self,
        video: Video,
        key: str,
        reference: str,
        log: ContextLoggerAdapter,
    ) -> Video:
        """
        Persist ``reference`` on the record, deleting the object if that fails.

        A cancellation here lets the in-flight update finish; a committed
        record keeps its object.
        """
        update = asyncio.ensure_future(self.videos.update_video_url(video.id, reference))
        try:
            return await asyncio.shield(update)
        except asyncio.CancelledError:
            log.warning("Staging cancelled during record update", extra={"object_key": key})
            try:
                await update
            except VideoServiceError:
                await self._discard_object(key, log)
            raise
        except VideoServiceError:
            await self._discard_object(key, log)
            raise

    async def _discard_object(self, key: str, log: ContextLoggerAdapter) -> None:
        try:
            await self.storage.delete_file(key)
        except StorageServiceError:
            log.exception("Failed to delete unreferenced object", extra={"object_key": key})
        else:
            log.info("Deleted unreferenced object", extra={"object_key": key})
