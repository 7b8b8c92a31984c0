"""Value types for the transcode pipeline."""

import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class TerminationReason(str, Enum):
    """Why the drawing loop stopped."""
    ENDED = "ended"
    PAUSED = "paused"
    MAX_DURATION = "max_duration"
    DRAW_ERROR = "draw_error"


@dataclass(frozen=True)
class SourceMedia:
    """Input file handle: raw bytes plus declared MIME type and filename."""
    data: bytes
    mime_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @classmethod
    def from_path(cls, path: Path | str, mime_type: Optional[str] = None) -> "SourceMedia":
        """Read a file from disk, guessing the MIME type from its extension."""
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(data=path.read_bytes(), mime_type=mime_type, filename=path.name)


@dataclass(frozen=True)
class MediaInfo:
    """Metadata probed from a source without decoding frame data."""
    width: int
    height: int
    duration: float  # seconds, 0.0 when unknown
    has_audio: bool = False


@dataclass(frozen=True)
class GeometryPlan:
    """Bounded, even-integer output dimensions for a source."""
    source_width: int
    source_height: int
    output_width: int
    output_height: int

    @property
    def resized(self) -> bool:
        return (self.output_width, self.output_height) != (self.source_width, self.source_height)

    @property
    def scale(self) -> float:
        return self.output_width / self.source_width


@dataclass(frozen=True)
class EncoderCandidate:
    """One row of the container/codec preference table.

    ``video_codec``/``audio_codec`` of ``None`` leave the choice to the
    container's default encoder.
    """
    mime_type: str
    container: str
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None

    @property
    def extension(self) -> str:
        return {"webm": "webm", "mp4": "mp4", "matroska": "mkv"}.get(self.container, self.container)


@dataclass(frozen=True)
class EncoderConfig:
    """Encoder settings chosen once at pipeline start."""
    target_bitrate: int
    frame_rate: int
    has_audio: bool
    container_format: str
    mime_type: str
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_bitrate: int = 128_000

    @property
    def extension(self) -> str:
        return EncoderCandidate(self.mime_type, self.container_format).extension


@dataclass(frozen=True)
class OutputArtifact:
    """The finished encoded byte sequence."""
    data: bytes
    mime_type: str
    width: int
    height: int
    duration: float
    termination: TerminationReason
    extension: str = "webm"

    @property
    def size(self) -> int:
        return len(self.data)
