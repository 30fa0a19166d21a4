"""
Pytest Configuration and Test Fixtures for the ReelStage Backend

Provides:
- Test settings with a private staging directory and short tool timeouts
- Signed bearer tokens for an owner and a non-owner user
- Sample video records
- Mocked video, storage and staging services
- Multipart bodies and opened upload streams for the staging pipeline
- A FastAPI TestClient wired to the mocks through dependency overrides

The TestClient is used without entering its context manager, so the
application lifespan (MongoDB connect) never runs during tests.
"""

import os
import stat
import uuid

from collections.abc import AsyncIterator, Generator
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from fastapi.testclient import TestClient

from app.api.v1.videos import get_staging_service, get_storage_service, get_video_service
from app.config import ONE_GIB, Settings, get_settings
from app.core.auth import create_access_token
from app.main import app
from app.models.video import Video
from app.services.staging_service import VideoStagingService
from app.services.storage_service import StorageService
from app.services.upload_stream import MultipartFileStream
from app.services.video_service import VideoService


TEST_BUCKET = "test-bucket"

MULTIPART_BOUNDARY = "reelstage-test-boundary"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    """Private staging directory; tests assert it is empty after each run."""
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(staging_dir: Path) -> Settings:
    """Settings instance with test-specific configuration values."""
    return Settings(
        app_env="testing",
        app_name="ReelStage-Test",
        debug=True,
        json_logs=False,
        secret_key="test-secret-key-for-jwt-signing-minimum-32-chars",
        mongodb_uri="mongodb://localhost:27017",
        mongodb_db_name="test_reelstage",
        s3_endpoint_url="http://localhost:9000",
        s3_access_key_id="test-access-key",
        s3_secret_access_key="test-secret-key",
        s3_bucket_name=TEST_BUCKET,
        s3_region="us-east-1",
        jwt_algorithm="HS256",
        staging_dir=str(staging_dir),
        media_tool_timeout_seconds=5.0,
    )


# ==============================================================================
# Identity Fixtures
# ==============================================================================


@pytest.fixture
def owner_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def other_user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def auth_headers(test_settings: Settings, owner_id: str) -> dict[str, str]:
    """Authorization header for the video owner."""
    token = create_access_token(owner_id, test_settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(test_settings: Settings, other_user_id: str) -> dict[str, str]:
    """Authorization header for a user who owns nothing."""
    token = create_access_token(other_user_id, test_settings)
    return {"Authorization": f"Bearer {token}"}


# ==============================================================================
# Record Fixtures
# ==============================================================================


@pytest.fixture
def sample_video(owner_id: str) -> Video:
    """A video record with no uploaded file yet."""
    return Video(
        id=str(uuid.uuid4()),
        user_id=owner_id,
        title="Boots on the ground",
        description="Field footage",
    )


@pytest.fixture
def signed_video(sample_video: Video) -> Video:
    """``sample_video`` after staging, as returned to the client."""
    return sample_video.model_copy(
        update={
            "video_url": (
                f"https://localhost:9000/{TEST_BUCKET}/landscape/abc.mp4"
                "?X-Amz-Signature=deadbeef&X-Amz-Expires=300"
            )
        }
    )


# ==============================================================================
# Multipart Body Fixtures
# ==============================================================================


def build_multipart_body(
    data: bytes,
    content_type: str | None = "video/mp4",
    field: str = "video",
    filename: str = "boots.mp4",
    fields: dict[str, str] | None = None,
) -> bytes:
    """Encode ``data`` as a file part, after any plain ``fields``."""
    body = bytearray()
    for name, value in (fields or {}).items():
        body += (
            f"--{MULTIPART_BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
            f"{value}\r\n"
        ).encode()
    body += (
        f"--{MULTIPART_BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="{field}"; filename="{filename}"\r\n'
    ).encode()
    if content_type is not None:
        body += f"Content-Type: {content_type}\r\n".encode()
    body += b"\r\n" + data + f"\r\n--{MULTIPART_BOUNDARY}--\r\n".encode()
    return bytes(body)


async def iter_chunks(body: bytes, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
    """Yield ``body`` the way a server hands over a streamed request."""
    for offset in range(0, len(body), chunk_size):
        yield body[offset : offset + chunk_size]


@pytest.fixture
def multipart_body():
    """The multipart body builder, for tests that feed bodies themselves."""
    return build_multipart_body


@pytest.fixture
def multipart_content_type() -> str:
    """Request Content-Type matching ``build_multipart_body`` output."""
    return f"multipart/form-data; boundary={MULTIPART_BOUNDARY}"


@pytest.fixture
def open_upload():
    """
    Factory returning an opened ``MultipartFileStream`` over ``data``.

    The body limit defaults to 1 GiB so the staging pipeline's own limit is
    the one under test.
    """

    async def _open(
        data: bytes,
        content_type: str | None = "video/mp4",
        max_body_bytes: int = ONE_GIB,
    ) -> MultipartFileStream:
        body = build_multipart_body(data, content_type=content_type)
        stream = MultipartFileStream(
            iter_chunks(body), MULTIPART_BOUNDARY.encode(), "video", max_body_bytes
        )
        return await stream.open()

    return _open


# ==============================================================================
# Service Mocks
# ==============================================================================


@pytest.fixture
def mock_storage_service() -> Mock:
    """Mocked storage service with async operations."""
    mock = Mock(spec=StorageService)
    mock.bucket_name = TEST_BUCKET
    mock.upload_file = AsyncMock(
        side_effect=lambda key, path, content_type, bucket_name=None: {
            "success": True,
            "object_key": key,
            "bucket": TEST_BUCKET,
        }
    )
    mock.delete_file = AsyncMock(return_value={"success": True})
    mock.generate_presigned_download_url = AsyncMock(
        side_effect=lambda key, expiration=300, bucket_name=None: {
            "url": f"https://localhost:9000/{bucket_name}/{key}?X-Amz-Expires={expiration}",
            "object_key": key,
            "bucket": bucket_name,
            "expiration_seconds": expiration,
            "method": "GET",
        }
    )
    return mock


@pytest.fixture
def mock_video_service(sample_video: Video) -> Mock:
    """Mocked video record service that knows ``sample_video``."""
    mock = Mock(spec=VideoService)
    mock.get_video = AsyncMock(return_value=sample_video)
    mock.list_user_videos = AsyncMock(return_value=[sample_video])
    mock.update_video_url = AsyncMock()
    mock.sign_video = AsyncMock(side_effect=lambda video: video)
    return mock


@pytest.fixture
def mock_staging_service(signed_video: Video) -> Mock:
    """Mocked staging pipeline returning ``signed_video``."""
    mock = Mock(spec=VideoStagingService)
    mock.stage_upload = AsyncMock(return_value=signed_video)
    return mock


# ==============================================================================
# Client Fixtures
# ==============================================================================


@pytest.fixture
def client(
    test_settings: Settings,
    mock_storage_service: Mock,
    mock_video_service: Mock,
    mock_staging_service: Mock,
) -> Generator[TestClient, None, None]:
    """TestClient with settings and services replaced by test doubles."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_storage_service] = lambda: mock_storage_service
    app.dependency_overrides[get_video_service] = lambda: mock_video_service
    app.dependency_overrides[get_staging_service] = lambda: mock_staging_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ==============================================================================
# Stub Executables
# ==============================================================================


@pytest.fixture
def make_executable(tmp_path: Path):
    """
    Factory writing a ``/bin/sh`` script to ``tmp_path`` and returning its path.

    Used to stand in for ffprobe/ffmpeg so tool handling is tested without
    the real binaries installed.
    """

    def _make(name: str, body: str) -> str:
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return os.fspath(path)

    return _make
