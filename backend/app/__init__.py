"""
ReelStage Backend Application Package

FastAPI service that stages uploaded videos for playback:

- Authenticated, owner-checked MP4 uploads for existing video records
- Aspect-ratio probing with ffprobe and landscape/portrait/other classification
- Fast-start remuxing with ffmpeg
- S3/MinIO storage with short-lived signed playback URLs

Package Structure:
- api/: REST API endpoints organized by version (v1)
- core/: Core infrastructure (database, auth)
- models/: Pydantic data models
- services/: Staging pipeline, media tools, storage and record services
- utils/: Logging, content-type validation, video categories
"""

__version__ = "1.0.0"
__app_name__ = "ReelStage"
