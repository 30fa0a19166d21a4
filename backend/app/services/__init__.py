"""
Services module for the ReelStage backend application.

- staging_service: The upload staging pipeline (buffer, probe, classify,
  remux, upload, record update, sign)
- media_tools: ffprobe/ffmpeg subprocess runner
- storage_service: S3-compatible storage operations with MinIO/AWS S3
- video_service: Video record reads, updates and URL signing

Services are constructed per request by the router's dependency providers
so tests can replace them through ``app.dependency_overrides``.
"""
