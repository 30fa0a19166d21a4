"""
Models Package for ReelStage.

Pydantic models for records owned by the metadata store. Video documents use
the video UUID string as the MongoDB ``_id``.
"""

from app.models.video import Video, VideoResponse


__all__ = ["Video", "VideoResponse"]
