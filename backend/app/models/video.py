"""
Video Pydantic models for ReelStage.

The Video record is owned by the metadata store; the staging pipeline only
ever writes its ``video_url`` field, and only after the processed file has
landed in object storage. The stored value is a storage reference
(``bucket,key``), never a signed URL: signed URLs expire, so a fresh one is
generated every time a record is rendered for a client.
"""

import uuid

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Video(BaseModel):
    """
    Video record as stored in the ``videos`` collection.

    Attributes:
        id: Video UUID as string (aliased from Mongo ``_id``)
        user_id: UUID of the owning user
        title: Display title
        description: Optional free-form description
        thumbnail_url: Thumbnail location, managed outside the staging pipeline
        video_url: Storage reference ``bucket,key`` or, in API responses,
            a signed playback URL
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="_id")
    user_id: str = Field(..., description="UUID of the owning user")
    title: str = Field(default="", max_length=500)
    description: str | None = Field(default=None)
    thumbnail_url: str | None = Field(default=None)
    video_url: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def stringify_uuid(cls, v: object) -> object:
        """Accept ``uuid.UUID`` values coming from callers or BSON decoding."""
        if isinstance(v, uuid.UUID):
            return str(v)
        return v

    def is_owned_by(self, user_id: str | uuid.UUID) -> bool:
        """Check whether ``user_id`` owns this video."""
        return self.user_id == str(user_id)

    def to_document(self) -> dict:
        """Serialize for MongoDB with ``_id`` as the key."""
        return self.model_dump(by_alias=True)


class VideoResponse(BaseModel):
    """
    API representation of a Video.

    ``video_url`` carries a freshly signed, time-limited playback URL when
    the video has been uploaded, and ``None`` otherwise.
    """

    id: str
    user_id: str
    title: str
    description: str | None = None
    thumbnail_url: str | None = None
    video_url: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_video(cls, video: Video) -> "VideoResponse":
        return cls(
            id=video.id,
            user_id=video.user_id,
            title=video.title,
            description=video.description,
            thumbnail_url=video.thumbnail_url,
            video_url=video.video_url,
            created_at=video.created_at,
            updated_at=video.updated_at,
        )
