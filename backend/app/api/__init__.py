"""
ReelStage API Package.

Package Structure:
    - v1/: Version 1 API endpoints
        - videos.py: Video upload, read and listing endpoints

All endpoints are versioned under the /api/v1 URL prefix.
"""
