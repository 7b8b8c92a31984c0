"""Interfaces between the transcode pipeline and the media runtime.

The pipeline only orchestrates. Decoding, encoding, audio routing and
capability queries live behind these protocols; ``ffmpeg.py`` provides the
production implementation.
"""

from typing import Optional, Protocol

import numpy as np

from portfolio_media.modules.transcoding.capabilities import CapabilityProbe
from portfolio_media.modules.transcoding.models import (
    EncoderConfig,
    GeometryPlan,
    MediaInfo,
    SourceMedia,
)
from portfolio_media.modules.transcoding.surface import DrawingSurface


class FrameSource(Protocol):
    """Decodes a source into frames at the output frame rate.

    Playback state mirrors a media element: ``current_time`` is the source
    position in seconds after the last frame read.
    """

    current_time: float
    duration: float
    ended: bool
    paused: bool
    seeking: bool

    async def probe(self) -> MediaInfo:
        """Load metadata only. Raises MediaLoadError on decode failure."""
        ...

    async def start(self, frame_rate: int) -> None:
        """Begin playback at ``frame_rate``. Raises PlaybackStartError on failure."""
        ...

    async def read_frame(self) -> Optional[np.ndarray]:
        """Return the next HxWx3 uint8 frame, or None at end of stream."""
        ...

    async def close(self) -> None:
        """Stop decoding and release the temporary source handle."""
        ...


class AudioRoute(Protocol):
    """Audio extracted from the source and routed into the encoder."""

    async def close(self) -> None:
        ...


class FrameSink(Protocol):
    """Incremental encoder fed with surface snapshots."""

    async def start(self) -> None:
        """Begin encoding. Raises EncodingError if the encoder cannot start."""
        ...

    async def write(self, frame: bytes) -> None:
        ...

    async def stop(self) -> list[bytes]:
        """Flush and return every encoded chunk in emission order.

        Raises EncodingError if the encoder reported a fault.
        """
        ...

    async def abort(self) -> None:
        """Tear the encoder down without collecting output."""
        ...


class MediaRuntime(Protocol):
    """Factory for the runtime pieces a single pipeline run owns."""

    capabilities: CapabilityProbe

    async def open_source(self, source: SourceMedia) -> FrameSource:
        ...

    async def open_audio_route(
        self,
        source: FrameSource,
        config: EncoderConfig,
    ) -> Optional[AudioRoute]:
        """Route the source's audio into the encoder, or None when unavailable."""
        ...

    def create_surface(self, width: int, height: int) -> DrawingSurface:
        ...

    def create_sink(
        self,
        config: EncoderConfig,
        geometry: GeometryPlan,
        audio: Optional[AudioRoute],
        timeslice: float = 0.2,
    ) -> FrameSink:
        ...

    async def capture_poster(
        self,
        source: SourceMedia,
        timestamp: Optional[float] = None,
        timeout: Optional[float] = None,
        quality: Optional[int] = None,
    ) -> bytes:
        """Return one frame of ``source`` as JPEG bytes.

        Raises MediaLoadError or MediaLoadTimeout when no frame can be taken.
        """
        ...
