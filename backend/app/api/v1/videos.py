"""
FastAPI Videos Router for ReelStage

Endpoints:
- POST /videos/{video_id}/upload - Upload the file for an existing video record
- GET /videos/{video_id} - Get one of the caller's videos with a signed playback URL
- GET /videos - List the caller's videos with signed playback URLs

The upload endpoint validates in a fixed order so the cheapest checks reject
first: declared size, video id, bearer token, record lookup, ownership,
multipart field, content type. The body is parsed as it streams in, so the
size limit holds without a Content-Length and the part content type is
checked before any of its bytes reach disk. The staging pipeline then reads
the rest of the part. If the client disconnects while the pipeline is
running, the pipeline task is cancelled so external tools and temp files do
not outlive the request.
"""

import asyncio
import contextlib
import logging
import uuid

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials

from app.config import Settings, get_settings
from app.core.auth import authenticate_credentials, bearer_scheme, get_current_user_id
from app.core.database import get_db_client
from app.models.video import Video, VideoResponse
from app.services.media_tools import MediaToolRunner
from app.services.staging_service import (
    StagingError,
    StagingStage,
    UploadTooLargeError,
    VideoStagingService,
)
from app.services.storage_service import StorageService
from app.services.upload_stream import (
    MissingUploadFieldError,
    MultipartFileStream,
    RequestBodyTooLargeError,
    UploadDisconnectedError,
    UploadStreamError,
)
from app.services.video_service import (
    VideoNotFoundError,
    VideoService,
    VideoServiceError,
    VideoSigningError,
)
from app.utils.file_validator import (
    exceeds_upload_limit,
    format_file_size,
    is_accepted_content_type,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["videos"])

# Seconds between client disconnect checks while the pipeline runs
DISCONNECT_POLL_INTERVAL_SECONDS = 0.5

# Non-standard status logged for requests the client abandoned
CLIENT_CLOSED_REQUEST = 499


# ==============================================================================
# Dependencies
# ==============================================================================


class _ServiceContainer:
    """Container for the process-wide storage service."""

    storage: StorageService | None = None


_container = _ServiceContainer()


def get_storage_service(settings: Settings = Depends(get_settings)) -> StorageService:
    """Process-wide S3 storage service, created on first use."""
    if _container.storage is None:
        _container.storage = StorageService.from_settings(settings)
    return _container.storage


def get_video_service(
    settings: Settings = Depends(get_settings),
    storage: StorageService = Depends(get_storage_service),
) -> VideoService:
    """Video record service bound to the ``videos`` collection."""
    return VideoService(
        get_db_client().get_videos_collection(),
        storage,
        settings.video_url_expiration_seconds,
    )


def get_staging_service(
    settings: Settings = Depends(get_settings),
    storage: StorageService = Depends(get_storage_service),
    videos: VideoService = Depends(get_video_service),
) -> VideoStagingService:
    """Staging pipeline wired to the shared storage and record services."""
    return VideoStagingService(settings, MediaToolRunner(settings), storage, videos)


# ==============================================================================
# Helpers
# ==============================================================================


def _error(status_code: int, error: str, message: str, **fields: Any) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": message, **fields},
    )


def _parse_video_id(video_id: str) -> str:
    try:
        return str(uuid.UUID(video_id))
    except ValueError as e:
        logger.warning("Rejected invalid video id", extra={"video_id": video_id})
        raise _error(
            status.HTTP_400_BAD_REQUEST, "invalid_video_id", "Invalid ID"
        ) from e


async def _load_owned_video(videos: VideoService, video_id: str, user_id: str) -> Video:
    """Load a record and check that ``user_id`` owns it."""
    try:
        video = await videos.get_video(video_id)
    except VideoNotFoundError as e:
        logger.warning("Video not found", extra={"video_id": video_id, "user_id": user_id})
        raise _error(status.HTTP_404_NOT_FOUND, "not_found", "Couldn't find video") from e
    except VideoServiceError as e:
        logger.exception("Failed to load video %s", video_id)
        raise _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "database_error", "Couldn't load video"
        ) from e

    if not video.is_owned_by(user_id):
        logger.warning(
            "User does not own video",
            extra={"video_id": video_id, "user_id": user_id, "owner_id": video.user_id},
        )
        raise _error(
            status.HTTP_401_UNAUTHORIZED, "unauthorized", "User is not the owner of this video"
        )
    return video


async def _sign(videos: VideoService, video: Video) -> VideoResponse:
    try:
        signed = await videos.sign_video(video)
    except VideoSigningError as e:
        raise _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "signing_failed", "Couldn't sign video URL"
        ) from e
    return VideoResponse.from_video(signed)


async def _wait_for_disconnect(request: Request, upload: MultipartFileStream) -> None:
    # The body belongs to the pipeline until the file part is read
    await upload.complete.wait()
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL_SECONDS)


def _stream_error(error: UploadStreamError, video_id: str) -> HTTPException:
    """Map a request body error to its client error response."""
    logger.warning("Rejected upload body: %s", error, extra={"video_id": video_id})
    if isinstance(error, RequestBodyTooLargeError):
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "upload_too_large", str(error)
        )
    if isinstance(error, MissingUploadFieldError):
        return _error(status.HTTP_400_BAD_REQUEST, "missing_file", str(error))
    return _error(status.HTTP_400_BAD_REQUEST, "invalid_form", str(error))


# ==============================================================================
# Endpoints
# ==============================================================================


@router.post(
    "/{video_id}/upload",
    response_model=VideoResponse,
    summary="Upload the video file for a record",
    responses={
        400: {"description": "Invalid id, malformed form, missing field or wrong content type"},
        401: {"description": "Missing or invalid token, or caller does not own the video"},
        404: {"description": "Video record not found"},
        413: {"description": "Upload larger than the configured limit"},
        500: {"description": "A staging stage failed, or the stored video could not be signed"},
    },
)
async def upload_video(
    video_id: str,
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    videos: VideoService = Depends(get_video_service),
    staging: VideoStagingService = Depends(get_staging_service),
) -> Any:
    """
    Stage an MP4 upload as the file for ``video_id``.

    The multipart body must carry the file in the ``video`` field with a
    ``video/mp4`` content type. On success the updated record is returned
    with a signed playback URL.
    """
    limit = settings.max_upload_size_bytes
    if exceeds_upload_limit(request.headers.get("content-length"), limit):
        logger.warning(
            "Rejected oversized upload",
            extra={"video_id": video_id, "content_length": request.headers.get("content-length")},
        )
        raise _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "upload_too_large",
            f"Upload exceeds the {format_file_size(limit)} limit",
        )

    video_id = _parse_video_id(video_id)
    user_id = authenticate_credentials(credentials, settings)
    video = await _load_owned_video(videos, video_id, user_id)

    try:
        upload = await MultipartFileStream.from_request(
            request, settings.upload_field_name, limit
        ).open()
    except UploadDisconnectedError:
        logger.warning("Client disconnected before the file part", extra={"video_id": video_id})
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except UploadStreamError as e:
        raise _stream_error(e, video_id) from e

    # Only the part headers have been read so far; nothing is on disk yet
    if not is_accepted_content_type(upload.content_type, settings.accepted_video_content_type):
        logger.warning(
            "Rejected upload content type",
            extra={"video_id": video_id, "content_type": upload.content_type},
        )
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "invalid_content_type",
            f"Invalid file type, only {settings.accepted_video_content_type} is allowed",
        )

    pipeline = asyncio.create_task(staging.stage_upload(video, upload))
    watcher = asyncio.create_task(_wait_for_disconnect(request, upload))
    try:
        await asyncio.wait({pipeline, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not pipeline.done():
            pipeline.cancel()
            with contextlib.suppress(asyncio.CancelledError, StagingError, UploadStreamError):
                await pipeline

    if pipeline.cancelled():
        logger.warning("Client disconnected; staging cancelled", extra={"video_id": video_id})
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    try:
        signed = pipeline.result()
    except UploadDisconnectedError:
        logger.warning("Client disconnected during upload", extra={"video_id": video_id})
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except UploadStreamError as e:
        raise _stream_error(e, video_id) from e
    except UploadTooLargeError as e:
        logger.warning("Upload stream exceeded limit", extra={"video_id": video_id})
        raise _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "upload_too_large", str(e)
        ) from e
    except StagingError as e:
        logger.error(
            "Staging failed for video %s at stage %s",
            video_id,
            e.stage.value,
            extra={"video_id": video_id, "stage": e.stage.value, "cause": str(e.cause)},
        )
        if e.stage is StagingStage.DONE:
            raise _error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "signing_failed",
                "Video was stored but its playback URL couldn't be signed",
                stage=e.stage.value,
            ) from e
        raise _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "staging_failed",
            str(e),
            stage=e.stage.value,
        ) from e

    return VideoResponse.from_video(signed)


@router.get(
    "/{video_id}",
    response_model=VideoResponse,
    summary="Get a video with a signed playback URL",
)
async def get_video(
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    videos: VideoService = Depends(get_video_service),
) -> VideoResponse:
    """Return one of the caller's videos, signing ``video_url`` afresh."""
    video_id = _parse_video_id(video_id)
    video = await _load_owned_video(videos, video_id, user_id)
    return await _sign(videos, video)


@router.get(
    "",
    response_model=list[VideoResponse],
    summary="List the caller's videos",
)
async def list_videos(
    user_id: str = Depends(get_current_user_id),
    videos: VideoService = Depends(get_video_service),
) -> list[VideoResponse]:
    """Return the caller's videos, newest first, each with a signed URL."""
    try:
        records = await videos.list_user_videos(user_id)
    except VideoServiceError as e:
        raise _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "database_error", "Couldn't retrieve videos"
        ) from e

    return [await _sign(videos, video) for video in records]
