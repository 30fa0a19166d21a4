"""
ReelStage Configuration Management Module

This module provides configuration management for the ReelStage video staging
backend using Pydantic Settings. It loads and validates all environment
variables required for:
- Application settings (name, environment, debug mode, logging)
- MongoDB connection for video records
- S3/MinIO object storage and signed playback URLs
- Local JWT bearer-token validation
- Upload limits and the accepted video container type
- External media tools (ffprobe, ffmpeg) and their timeouts

The Settings instance is frozen once loaded and is passed explicitly to the
services that need it rather than read from module globals.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# One gibibyte, the hard cap on a single video upload
ONE_GIB = 1 << 30


class Settings(BaseSettings):
    """
    Configuration settings for the ReelStage backend.

    Settings are loaded from environment variables and an optional ``.env``
    file. The model is frozen so that a single validated configuration value
    can be shared safely between concurrent requests.

    Example usage:
        ```python
        from app.config import get_settings

        settings = get_settings()
        print(f"Uploading to bucket: {settings.s3_bucket_name}")
        ```
    """

    # =========================================================================
    # Application Settings
    # =========================================================================

    app_name: str = Field(
        default="ReelStage",
        description="Application name displayed in API documentation and logs",
    )

    app_env: str = Field(
        default="development",
        description="Application environment (development, staging, production, testing)",
    )

    debug: bool = Field(default=False, description="Enable debug mode with hot-reload")

    log_level: str = Field(
        default="info", description="Logging level (debug, info, warning, error, critical)"
    )

    json_logs: bool = Field(
        default=True, description="Emit JSON structured logs instead of plain text"
    )

    secret_key: str = Field(
        default="development-secret-key-change-in-production-32chars",
        description="Secret key for JWT signing. Must be a secure random string.",
        min_length=32,
    )

    host: str = Field(default="0.0.0.0", description="Host address for the API server to bind to")

    port: int = Field(default=8091, description="Port number for the API server", ge=1, le=65535)

    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="List of allowed CORS origins for frontend access",
    )

    # =========================================================================
    # MongoDB Configuration
    # =========================================================================

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI (e.g., mongodb://localhost:27017)",
    )

    mongodb_db_name: str = Field(
        default="reelstage", description="MongoDB database name for video records"
    )

    mongodb_min_pool_size: int = Field(
        default=1, description="Minimum number of connections in MongoDB connection pool", ge=0
    )

    mongodb_max_pool_size: int = Field(
        default=50, description="Maximum number of connections in MongoDB connection pool", ge=1
    )

    # =========================================================================
    # S3/MinIO Storage Configuration
    # =========================================================================

    s3_endpoint_url: str | None = Field(
        default=None, description="S3-compatible endpoint URL for MinIO (None for AWS S3)"
    )

    s3_access_key_id: str | None = Field(
        default=None,
        description="S3/MinIO access key ID (None to use the default AWS credential chain)",
    )

    s3_secret_access_key: str | None = Field(
        default=None,
        description="S3/MinIO secret access key",
    )

    s3_bucket_name: str = Field(
        default="reelstage-videos", description="S3 bucket that receives processed videos"
    )

    s3_region: str = Field(
        default="us-east-1",
        description="AWS region for S3 bucket (also used for MinIO compatibility)",
    )

    video_url_expiration_seconds: int = Field(
        default=300,
        description="Lifetime of signed playback URLs in seconds (5 minutes)",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Authentication
    # =========================================================================

    jwt_algorithm: str = Field(
        default="HS256", description="JWT signing algorithm for locally issued tokens"
    )

    jwt_expiration_hours: int = Field(
        default=24, description="JWT token expiration time in hours", ge=1, le=168
    )

    # =========================================================================
    # Video Upload Settings
    # =========================================================================

    max_upload_size_bytes: int = Field(
        default=ONE_GIB,
        description="Maximum accepted upload size in bytes (1 GiB)",
        ge=1,
        le=ONE_GIB,
    )

    accepted_video_content_type: str = Field(
        default="video/mp4",
        description="The single MIME type accepted for video uploads",
    )

    upload_field_name: str = Field(
        default="video", description="Multipart form field that carries the video file"
    )

    upload_chunk_size_bytes: int = Field(
        default=1024 * 1024,
        description="Chunk size used when copying the request body to local storage",
        ge=4096,
    )

    staging_dir: str | None = Field(
        default=None,
        description="Directory for per-request staging files (None for the system temp dir)",
    )

    # =========================================================================
    # External Media Tools
    # =========================================================================

    ffprobe_path: str = Field(default="ffprobe", description="Media inspection executable")

    ffmpeg_path: str = Field(default="ffmpeg", description="Remux executable")

    media_tool_timeout_seconds: float = Field(
        default=300.0,
        description="Wall-clock limit for a single ffprobe/ffmpeg invocation",
        gt=0,
    )

    # =========================================================================
    # Model Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        normalized = v.lower()
        if normalized not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {', '.join(valid_levels)}")
        return normalized

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate that app_env is a valid environment name."""
        valid_envs = {"development", "staging", "production", "testing"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {', '.join(valid_envs)}")
        return normalized

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only symmetric algorithms are usable with a shared secret key."""
        valid_algorithms = {"HS256", "HS384", "HS512"}
        if v.upper() not in valid_algorithms:
            raise ValueError(
                f"Invalid jwt_algorithm '{v}'. Must be one of: {', '.join(valid_algorithms)}"
            )
        return v.upper()

    @field_validator("accepted_video_content_type")
    @classmethod
    def validate_accepted_content_type(cls, v: str) -> str:
        """The accepted type must be a bare ``type/subtype`` pair."""
        normalized = v.strip().lower()
        major, _, minor = normalized.partition("/")
        if not major or not minor or ";" in normalized:
            raise ValueError(f"Invalid accepted_video_content_type '{v}'")
        return normalized

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string if provided as string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def video_file_extension(self) -> str:
        """Storage key extension derived from the accepted content type (``video/mp4`` -> ``mp4``)."""
        return self.accepted_video_content_type.split("/", 1)[1]

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get the process-wide Settings instance.

    The settings are loaded from the environment once and cached; FastAPI
    routes receive them through ``Depends(get_settings)`` so tests can
    override the dependency with their own instance.

    Returns:
        Settings: The cached configuration instance.
    """
    return Settings()
