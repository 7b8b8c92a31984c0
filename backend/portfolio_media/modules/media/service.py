"""Media upload service.

Validates an upload, transcodes videos or compresses photos when asked,
stores the resulting bytes with a poster frame for videos, and lists what
has been stored.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from portfolio_media.core.config import settings
from portfolio_media.core.logging import log_warning
from portfolio_media.core.metrics import UPLOADS_TOTAL
from portfolio_media.core.storage import StorageService, StoreMetadata
from portfolio_media.modules.media.images import CompressedImage, ImageCompressionError, compress_image
from portfolio_media.modules.transcoding.cancellation import CancellationToken
from portfolio_media.modules.transcoding.errors import TranscodeError
from portfolio_media.modules.transcoding.ffmpeg import FFmpegRuntime
from portfolio_media.modules.transcoding.models import OutputArtifact, SourceMedia
from portfolio_media.modules.transcoding.pipeline import TranscodePipeline
from portfolio_media.modules.transcoding.progress import ProgressCallback
from portfolio_media.modules.transcoding.runtime import MediaRuntime
from portfolio_media.modules.transcoding.schemas import TranscodeOptions

logger = logging.getLogger(__name__)


class MediaServiceError(Exception):
    """Base exception for media service errors."""

    pass


class InvalidUploadError(MediaServiceError):
    """Raised when the upload has no usable name or no content."""

    pass


class UploadTooLargeError(MediaServiceError):
    """Raised when the upload exceeds the configured size limit."""

    pass


class StorageFailedError(MediaServiceError):
    """Raised when the storage backend rejects the write."""

    pass


@dataclass
class UploadResult:
    """A stored upload."""
    name: str
    key: str
    url: str
    size: int
    mime_type: str
    original_size: int
    artifact: Optional[OutputArtifact] = None
    image: Optional[CompressedImage] = None
    poster_url: Optional[str] = None

    @property
    def transcoded(self) -> bool:
        return self.artifact is not None


@dataclass
class StoredUpload:
    """An upload already in storage."""
    name: str
    key: str
    url: str
    size: int
    uploaded_at: Optional[datetime] = None


def validate_upload(filename: str, size: int, max_bytes: int) -> None:
    """Validate upload name and size.

    Raises:
        InvalidUploadError: Missing filename or empty body
        UploadTooLargeError: Body above ``max_bytes``
    """
    if not filename or not Path(filename.strip()).name:
        raise InvalidUploadError("Filename is required")

    if size > max_bytes:
        raise UploadTooLargeError(
            f"File too large (maximum {max_bytes // (1024 * 1024)}MB)"
        )

    if size <= 0:
        raise InvalidUploadError("File is empty")


def output_filename(filename: str, extension: str) -> str:
    """Swap the extension of ``filename`` for the transcoded container's."""
    return f"{Path(filename).stem}.{extension}"


def stored_name(key: str) -> str:
    """Original filename of a stored key, without the timestamp prefix."""
    return re.sub(r"^\d+-", "", key.rsplit("/", 1)[-1])


class MediaUploadService:
    """Upload orchestration: validate, compress or transcode, store."""

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        runtime: Optional[MediaRuntime] = None,
        max_bytes: Optional[int] = None,
    ):
        self.storage = storage or StorageService()
        self.runtime = runtime or FFmpegRuntime()
        self.max_bytes = max_bytes if max_bytes is not None else settings.MAX_UPLOAD_BYTES

    async def upload(
        self,
        source: SourceMedia,
        transcode: bool = True,
        options: Optional[TranscodeOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        poster: Optional[bool] = None,
    ) -> UploadResult:
        """Store an upload, processing it first when ``transcode`` is set.

        Videos run through the transcode pipeline and photos are downscaled
        to JPEG. A photo that cannot be decoded is stored as uploaded.

        Args:
            source: Uploaded bytes with declared MIME type and filename
            transcode: Transcode videos and compress photos before storing
            options: Transcode parameters, settings defaults when omitted
            on_progress: Transcode progress callback
            cancel_token: Cancels an in-flight transcode
            poster: Store a JPEG poster frame for videos, settings default
                when omitted

        Returns:
            UploadResult with the public URL

        Raises:
            InvalidUploadError: Missing filename or empty body
            UploadTooLargeError: Body above the size limit
            TranscodeError: Transcoding failed
            StorageFailedError: The storage backend rejected the write
        """
        try:
            validate_upload(source.filename, source.size, self.max_bytes)
        except MediaServiceError:
            UPLOADS_TOTAL.labels(result="rejected").inc()
            raise

        data = source.data
        mime_type = source.mime_type
        filename = Path(source.filename.strip()).name
        artifact = None
        image = None

        if transcode and source.is_video:
            pipeline = TranscodePipeline(runtime=self.runtime, options=options)
            try:
                artifact = await pipeline.run(source, on_progress=on_progress, cancel_token=cancel_token)
            except Exception:
                UPLOADS_TOTAL.labels(result="transcode_failed").inc()
                raise
            data = artifact.data
            mime_type = artifact.mime_type
            filename = output_filename(filename, artifact.extension)
        elif transcode and source.is_image:
            image = await self._compress_image(source)
            if image is not None:
                data = image.data
                mime_type = image.mime_type
                filename = output_filename(filename, image.extension)

        result = await self.storage.store(
            data,
            StoreMetadata(
                filename=filename,
                content_type=mime_type.split(";")[0],
                prefix=settings.UPLOAD_KEY_PREFIX,
                extra={"original-size": str(source.size)},
            ),
        )
        if not result.success:
            UPLOADS_TOTAL.labels(result="storage_failed").inc()
            raise StorageFailedError(result.error_message or "Storage write failed")

        poster_url = None
        if source.is_video and (settings.POSTER_ENABLED if poster is None else poster):
            poster_url = await self._store_poster(source, filename)

        UPLOADS_TOTAL.labels(result="stored").inc()
        logger.info(
            f"Upload stored: {result.key}",
            extra={"original_size": source.size, "stored_size": len(data), "transcoded": artifact is not None},
        )
        return UploadResult(
            name=result.key.rsplit("/", 1)[-1],
            key=result.key,
            url=result.url,
            size=len(data),
            mime_type=mime_type,
            original_size=source.size,
            artifact=artifact,
            image=image,
            poster_url=poster_url,
        )

    async def _compress_image(self, source: SourceMedia) -> Optional[CompressedImage]:
        try:
            return await asyncio.to_thread(
                compress_image,
                source.data,
                settings.IMAGE_MAX_WIDTH,
                settings.IMAGE_MAX_HEIGHT,
                settings.IMAGE_JPEG_QUALITY,
            )
        except ImageCompressionError as e:
            log_warning(logger, f"Storing {source.filename} uncompressed: {e}")
            return None

    async def _store_poster(self, source: SourceMedia, filename: str) -> Optional[str]:
        """Capture and store a poster frame. Failures only cost the poster."""
        try:
            jpeg = await self.runtime.capture_poster(source)
        except TranscodeError as e:
            log_warning(logger, f"Poster capture failed for {source.filename}: {e.detail}", error_kind=e.kind)
            return None

        result = await self.storage.store(
            jpeg,
            StoreMetadata(
                filename=output_filename(filename, "jpg"),
                content_type="image/jpeg",
                prefix=settings.POSTER_KEY_PREFIX,
            ),
        )
        if not result.success:
            log_warning(logger, f"Poster storage failed for {source.filename}: {result.error_message}")
            return None
        return result.url

    async def list_uploads(self) -> list[StoredUpload]:
        """List stored uploads, oldest first.

        Raises:
            StorageFailedError: The storage backend could not be listed
        """
        try:
            objects = await self.storage.list_files(settings.UPLOAD_KEY_PREFIX)
        except (OSError, BotoCoreError, ClientError) as e:
            raise StorageFailedError(f"Could not list uploads: {e}") from e

        return [
            StoredUpload(
                name=stored_name(obj.key),
                key=obj.key,
                url=obj.url,
                size=obj.size,
                uploaded_at=obj.last_modified,
            )
            for obj in objects
        ]
