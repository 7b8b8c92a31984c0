"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Portfolio Media API"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing
    TRACING_ENABLED: bool = False
    OTLP_ENDPOINT: Optional[str] = None

    # CORS
    CORS_ORIGINS: list[str] = []

    # FFmpeg binaries
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"

    # Transcode defaults
    TRANSCODE_MAX_WIDTH: int = 1920
    TRANSCODE_MAX_HEIGHT: int = 1080
    TRANSCODE_BITRATE: int = 6_000_000  # 6 Mbps
    TRANSCODE_FRAME_RATE: int = 30
    TRANSCODE_AUDIO_BITRATE: int = 128_000  # 128 kbps
    TRANSCODE_PROBE_TIMEOUT_SECONDS: float = 45.0
    TRANSCODE_MAX_DURATION_SECONDS: float = 300.0  # 5 minutes
    TRANSCODE_PROGRESS_INTERVAL_SECONDS: float = 0.8
    TRANSCODE_END_GRACE_SECONDS: float = 0.1
    TRANSCODE_PAUSE_GRACE_SECONDS: float = 0.3
    TRANSCODE_DRAW_ERROR_GRACE_SECONDS: float = 0.0
    TRANSCODE_TIMESLICE_SECONDS: float = 0.2

    # Uploads
    MAX_UPLOAD_BYTES: int = 500 * 1024 * 1024  # 500 MB
    UPLOAD_KEY_PREFIX: str = "public-videos"

    # Photo uploads are re-encoded as JPEG inside this box
    IMAGE_MAX_WIDTH: int = 800
    IMAGE_MAX_HEIGHT: int = 800
    IMAGE_JPEG_QUALITY: int = 80

    # Poster frames captured from video uploads
    POSTER_ENABLED: bool = True
    POSTER_KEY_PREFIX: str = "public-posters"
    POSTER_JPEG_QUALITY: int = 85
    POSTER_TIMEOUT_SECONDS: float = 15.0

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True
    STORAGE_PUBLIC_READ: bool = True

    # CDN Configuration (optional, for any backend)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
