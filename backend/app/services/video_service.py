"""
Video record service for ReelStage.

Reads and updates video records in the ``videos`` collection and turns a
stored ``bucket,key`` reference into a short-lived signed playback URL when a
record is handed to a client.
"""

import logging

from datetime import UTC, datetime

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from app.models.video import Video
from app.services.storage_service import (
    StorageService,
    StorageServiceError,
    parse_storage_reference,
)


logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


class VideoServiceError(Exception):
    """Base exception for video record errors."""


class VideoNotFoundError(VideoServiceError):
    """Raised when no record exists for a video id."""

    def __init__(self, video_id: str) -> None:
        self.video_id = video_id
        super().__init__(f"Video not found: {video_id}")


class VideoSigningError(VideoServiceError):
    """Raised when a stored reference cannot be turned into a signed URL."""


class VideoService:
    """
    Access to video records.

    Args:
        collection: The Motor ``videos`` collection
        storage: Storage service used to presign playback URLs
        url_expiration_seconds: Lifetime of generated playback URLs
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        storage: StorageService,
        url_expiration_seconds: int,
    ) -> None:
        self.collection = collection
        self.storage = storage
        self.url_expiration_seconds = url_expiration_seconds

    async def get_video(self, video_id: str) -> Video:
        """
        Load a video record by id.

        Raises:
            VideoNotFoundError: If there is no such record
            VideoServiceError: If the database query fails
        """
        try:
            document = await self.collection.find_one({"_id": video_id})
        except PyMongoError as e:
            logger.exception("Failed to load video %s", video_id)
            raise VideoServiceError(f"Failed to load video {video_id}: {e}") from e

        if document is None:
            raise VideoNotFoundError(video_id)
        return Video.model_validate(document)

    async def list_user_videos(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Video]:
        """Videos owned by ``user_id``, newest first."""
        try:
            cursor = self.collection.find({"user_id": user_id}).sort("created_at", -1).limit(limit)
            documents = await cursor.to_list(length=limit)
        except PyMongoError as e:
            logger.exception("Failed to list videos for user %s", user_id)
            raise VideoServiceError(f"Failed to list videos: {e}") from e

        return [Video.model_validate(document) for document in documents]

    async def update_video_url(self, video_id: str, storage_reference: str) -> Video:
        """
        Point a video record at its uploaded object.

        Only ``video_url`` and ``updated_at`` change; every other field of
        the record is left as it was.

        Raises:
            VideoNotFoundError: If the record disappeared
            VideoServiceError: If the update fails
        """
        try:
            document = await self.collection.find_one_and_update(
                {"_id": video_id},
                {"$set": {"video_url": storage_reference, "updated_at": datetime.now(UTC)}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.exception("Failed to update video %s", video_id)
            raise VideoServiceError(f"Failed to update video {video_id}: {e}") from e

        if document is None:
            raise VideoNotFoundError(video_id)

        logger.info(
            "Video record updated with storage reference",
            extra={"video_id": video_id, "video_url": storage_reference},
        )
        return Video.model_validate(document)

    async def sign_video(self, video: Video) -> Video:
        """
        Return a copy of ``video`` whose ``video_url`` is a signed GET URL.

        Records without an uploaded file are returned unchanged.

        Raises:
            VideoSigningError: If the stored reference is malformed or the
                URL cannot be generated
        """
        if not video.video_url:
            return video

        try:
            bucket, key = parse_storage_reference(video.video_url)
            presigned = await self.storage.generate_presigned_download_url(
                key,
                expiration=self.url_expiration_seconds,
                bucket_name=bucket,
            )
        except StorageServiceError as e:
            logger.error(
                "Could not sign video %s: %s", video.id, e, extra={"video_url": video.video_url}
            )
            raise VideoSigningError(f"Could not sign video {video.id}: {e}") from e

        return video.model_copy(update={"video_url": presigned["url"]})
