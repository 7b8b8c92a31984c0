"""Pydantic schemas for the upload API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from portfolio_media.modules.transcoding.schemas import TranscodeSummary


class UploadResponse(BaseModel):
    """Schema for a successful upload."""
    success: bool = True
    name: str = Field(..., description="Stored object name, <timestamp>-<filename>")
    url: str = Field(..., description="Public URL of the stored object")
    size: int = Field(..., ge=0, description="Stored size in bytes")
    mime_type: str
    original_size: Optional[int] = None
    transcode: Optional[TranscodeSummary] = None
    poster_url: Optional[str] = Field(None, description="JPEG poster frame for video uploads")


class StoredFile(BaseModel):
    """One stored upload in a listing."""
    name: str = Field(..., description="Original filename without the timestamp prefix")
    url: str
    size: int = Field(..., ge=0)
    upload_time: Optional[datetime] = None


class FileListResponse(BaseModel):
    """Schema for the upload listing."""
    success: bool = True
    files: list[StoredFile]


class ErrorResponse(BaseModel):
    """Schema for a failed request."""
    success: bool = False
    error: str
