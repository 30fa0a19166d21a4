"""
ReelStage API v1 Router Aggregator.

Combines the v1 endpoint routers into a single APIRouter for registration
with the main FastAPI application under the /api/v1 prefix.

Router Structure:
    - /videos: Video upload, read and listing endpoints
"""

from fastapi import APIRouter

from app.api.v1.videos import router as videos_router


api_router = APIRouter()

api_router.include_router(
    videos_router,
    prefix="/videos",
    tags=["videos"],
)

__all__ = ["api_router"]
