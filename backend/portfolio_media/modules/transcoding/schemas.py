"""Pydantic schemas for the transcoding module."""

from pydantic import BaseModel, Field

from portfolio_media.core.config import settings


class TranscodeOptions(BaseModel):
    """Per-run transcode parameters. Defaults come from settings."""

    max_width: int = Field(default_factory=lambda: settings.TRANSCODE_MAX_WIDTH, ge=2, description="Output width bound")
    max_height: int = Field(default_factory=lambda: settings.TRANSCODE_MAX_HEIGHT, ge=2, description="Output height bound")
    target_bitrate: int = Field(default_factory=lambda: settings.TRANSCODE_BITRATE, gt=0, description="Video bitrate in bps")
    frame_rate: int = Field(default_factory=lambda: settings.TRANSCODE_FRAME_RATE, ge=1, le=120)
    audio_bitrate: int = Field(default_factory=lambda: settings.TRANSCODE_AUDIO_BITRATE, gt=0, description="Audio bitrate in bps")
    probe_timeout: float = Field(default_factory=lambda: settings.TRANSCODE_PROBE_TIMEOUT_SECONDS, gt=0)
    max_duration: float = Field(default_factory=lambda: settings.TRANSCODE_MAX_DURATION_SECONDS, gt=0, description="Ceiling on source position in seconds")
    progress_interval: float = Field(default_factory=lambda: settings.TRANSCODE_PROGRESS_INTERVAL_SECONDS, ge=0)
    end_grace_period: float = Field(default_factory=lambda: settings.TRANSCODE_END_GRACE_SECONDS, ge=0)
    pause_grace_period: float = Field(default_factory=lambda: settings.TRANSCODE_PAUSE_GRACE_SECONDS, ge=0)
    draw_error_grace: float = Field(default_factory=lambda: settings.TRANSCODE_DRAW_ERROR_GRACE_SECONDS, ge=0)
    timeslice: float = Field(default_factory=lambda: settings.TRANSCODE_TIMESLICE_SECONDS, gt=0)


class TranscodeSummary(BaseModel):
    """Transcode details reported alongside an upload."""
    mime_type: str
    width: int
    height: int
    duration: float = Field(..., ge=0)
    termination: str
