"""
Aspect-ratio based storage categories for processed videos.

Every stored video lives under one of three key prefixes chosen from the
display aspect ratio reported by ffprobe for its first video stream.
"""

from enum import Enum


class VideoCategory(str, Enum):
    """Storage key prefix for a processed video."""

    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    OTHER = "other"

    def __str__(self) -> str:
        return self.value


ASPECT_RATIO_CATEGORIES: dict[str, VideoCategory] = {
    "16:9": VideoCategory.LANDSCAPE,
    "9:16": VideoCategory.PORTRAIT,
}


def classify_aspect_ratio(aspect_ratio: str | None) -> VideoCategory:
    """
    Map a display aspect ratio such as ``"16:9"`` to its storage category.

    Total over all inputs: unknown ratios, the empty string (no video
    stream found) and ``None`` all land in ``VideoCategory.OTHER``.
    """
    if not aspect_ratio:
        return VideoCategory.OTHER
    return ASPECT_RATIO_CATEGORIES.get(aspect_ratio, VideoCategory.OTHER)
