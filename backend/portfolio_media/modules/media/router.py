"""Upload API router.

Accepts the file as the raw request body with its name in ``X-Filename``.
"""

import logging
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from portfolio_media.core.logging import log_error
from portfolio_media.modules.media.schemas import (
    ErrorResponse,
    FileListResponse,
    StoredFile,
    UploadResponse,
)
from portfolio_media.modules.media.service import (
    InvalidUploadError,
    MediaUploadService,
    StorageFailedError,
    UploadTooLargeError,
)
from portfolio_media.modules.transcoding.errors import MediaLoadTimeout, TranscodeError
from portfolio_media.modules.transcoding.models import SourceMedia
from portfolio_media.modules.transcoding.schemas import TranscodeOptions, TranscodeSummary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])


def get_upload_service() -> MediaUploadService:
    return MediaUploadService()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _transcode_status(error: TranscodeError) -> int:
    if isinstance(error, MediaLoadTimeout):
        return 504
    if error.kind in ("media_load_error", "playback_start_error", "empty_output"):
        return 422
    return 500


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def upload_file(
    request: Request,
    x_filename: Optional[str] = Header(None),
    content_type: Optional[str] = Header(None),
    transcode: bool = Query(True, description="Transcode videos and compress photos before storing"),
    poster: Optional[bool] = Query(None, description="Store a poster frame for video uploads"),
    max_width: Optional[int] = Query(None, ge=2),
    max_height: Optional[int] = Query(None, ge=2),
    bitrate: Optional[int] = Query(None, gt=0),
    fps: Optional[int] = Query(None, ge=1, le=120),
    service: MediaUploadService = Depends(get_upload_service),
):
    """Upload a file as the raw request body."""
    too_large = f"File too large (maximum {service.max_bytes // (1024 * 1024)}MB)"
    declared_length = request.headers.get("content-length")
    if declared_length and declared_length.isdigit() and int(declared_length) > service.max_bytes:
        return _error(413, too_large)

    if not x_filename:
        return _error(400, "Filename is required")

    # Chunked uploads carry no length, so count while reading
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > service.max_bytes:
            return _error(413, too_large)

    source = SourceMedia(
        data=bytes(body),
        mime_type=(content_type or "application/octet-stream").strip(),
        filename=unquote(x_filename),
    )

    overrides = {
        "max_width": max_width,
        "max_height": max_height,
        "target_bitrate": bitrate,
        "frame_rate": fps,
    }
    options = TranscodeOptions(**{k: v for k, v in overrides.items() if v is not None})

    try:
        result = await service.upload(source, transcode=transcode, options=options, poster=poster)
    except InvalidUploadError as e:
        return _error(400, str(e))
    except UploadTooLargeError as e:
        return _error(413, str(e))
    except TranscodeError as e:
        return _error(_transcode_status(e), e.detail)
    except StorageFailedError as e:
        log_error(logger, "Upload storage failed", exception=e)
        return _error(500, str(e))

    summary = None
    if result.artifact is not None:
        summary = TranscodeSummary(
            mime_type=result.artifact.mime_type,
            width=result.artifact.width,
            height=result.artifact.height,
            duration=result.artifact.duration,
            termination=result.artifact.termination.value,
        )

    return UploadResponse(
        name=result.name,
        url=result.url,
        size=result.size,
        mime_type=result.mime_type,
        original_size=result.original_size,
        transcode=summary,
        poster_url=result.poster_url,
    )


@router.get(
    "/files",
    response_model=FileListResponse,
    responses={500: {"model": ErrorResponse}},
)
async def list_files(service: MediaUploadService = Depends(get_upload_service)):
    """List stored uploads."""
    try:
        uploads = await service.list_uploads()
    except StorageFailedError as e:
        log_error(logger, "Upload listing failed", exception=e)
        return _error(500, str(e))

    return FileListResponse(
        files=[
            StoredFile(name=u.name, url=u.url, size=u.size, upload_time=u.uploaded_at)
            for u in uploads
        ]
    )


@router.api_route(
    "/upload",
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def upload_method_not_allowed():
    return _error(405, "Method not allowed")
