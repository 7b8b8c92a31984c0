"""In-memory media runtime for exercising the transcode pipeline.

Every piece records whether it was opened and released so tests can check
cleanup on every exit path.
"""

import asyncio
from typing import Optional

import numpy as np

from portfolio_media.modules.transcoding.errors import EncodingError
from portfolio_media.modules.transcoding.models import (
    EncoderCandidate,
    EncoderConfig,
    GeometryPlan,
    MediaInfo,
    SourceMedia,
)
from portfolio_media.modules.transcoding.surface import DrawingSurface

ALL_ENCODERS = frozenset({"libvpx-vp9", "libopus", "libvpx", "libvorbis", "libx264", "aac"})
POSTER_JPEG = b"\xff\xd8fake-poster\xff\xd9"


class FakeCapabilityProbe:
    def __init__(self, supported=ALL_ENCODERS, audio_supported=None):
        self.supported = set(supported)
        self.audio_supported = set(audio_supported) if audio_supported is not None else self.supported
        self.checked: list[EncoderCandidate] = []

    def supports(self, candidate: EncoderCandidate) -> bool:
        self.checked.append(candidate)
        return candidate.video_codec is None or candidate.video_codec in self.supported

    def supports_audio(self, candidate: EncoderCandidate) -> bool:
        return candidate.audio_codec is None or candidate.audio_codec in self.audio_supported


class FakeFrameSource:
    def __init__(self, runtime: "FakeRuntime"):
        self.runtime = runtime
        self.current_time = 0.0
        self.duration = runtime.info.duration
        self.ended = False
        self.paused = True
        self.seeking = False

        self.frame_rate = 30
        self.frames_read = 0
        self.started = False
        self.closed = False

    async def probe(self) -> MediaInfo:
        rt = self.runtime
        if rt.probe_hangs:
            await asyncio.Event().wait()
        if rt.probe_delay:
            await asyncio.sleep(rt.probe_delay)
        if rt.probe_error is not None:
            raise rt.probe_error
        return rt.info

    async def start(self, frame_rate: int) -> None:
        if self.runtime.start_error is not None:
            raise self.runtime.start_error
        self.frame_rate = frame_rate
        self.started = True
        self.paused = False

    async def read_frame(self) -> Optional[np.ndarray]:
        rt = self.runtime
        if rt.read_error_after is not None and self.frames_read >= rt.read_error_after:
            raise RuntimeError("frame decode failed")
        if self.frames_read >= rt.frame_count:
            self.ended = True
            self.paused = True
            return None

        self.frames_read += 1
        self.current_time = self.frames_read / self.frame_rate
        if rt.pause_after is not None and self.frames_read >= rt.pause_after:
            self.paused = True
        return np.full((rt.info.height, rt.info.width, 3), self.frames_read % 256, dtype=np.uint8)

    async def close(self) -> None:
        self.closed = True


class FakeAudioRoute:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeFrameSink:
    def __init__(self, runtime, config, geometry, audio, timeslice):
        self.runtime = runtime
        self.config = config
        self.geometry = geometry
        self.audio = audio
        self.timeslice = timeslice
        self.frames: list[bytes] = []
        self.started = False
        self.stopped = False
        self.aborted = False

    async def start(self) -> None:
        if self.runtime.sink_start_error is not None:
            raise self.runtime.sink_start_error
        self.started = True

    async def write(self, frame: bytes) -> None:
        rt = self.runtime
        if rt.write_error_after is not None and len(self.frames) >= rt.write_error_after:
            raise BrokenPipeError("encoder pipe closed")
        self.frames.append(frame)

    async def stop(self) -> list[bytes]:
        rt = self.runtime
        if rt.encoder_fault:
            raise EncodingError("encoder reported a fault")
        self.stopped = True
        if rt.empty_output:
            return []
        return [f"chunk-{i};".encode() for i in range(len(self.frames))]

    async def abort(self) -> None:
        self.aborted = True


class FakeRuntime:
    """Scriptable MediaRuntime."""

    def __init__(
        self,
        info: MediaInfo = MediaInfo(width=64, height=48, duration=1.0, has_audio=True),
        frame_count: int = 30,
        supported=ALL_ENCODERS,
        audio_supported=None,
        probe_delay: float = 0.0,
        probe_hangs: bool = False,
        probe_error: Optional[Exception] = None,
        start_error: Optional[Exception] = None,
        sink_start_error: Optional[Exception] = None,
        pause_after: Optional[int] = None,
        read_error_after: Optional[int] = None,
        write_error_after: Optional[int] = None,
        audio_available: bool = True,
        empty_output: bool = False,
        encoder_fault: bool = False,
        poster_error: Optional[Exception] = None,
    ):
        self.info = info
        self.frame_count = frame_count
        self.capabilities = FakeCapabilityProbe(supported, audio_supported)
        self.probe_delay = probe_delay
        self.probe_hangs = probe_hangs
        self.probe_error = probe_error
        self.start_error = start_error
        self.sink_start_error = sink_start_error
        self.pause_after = pause_after
        self.read_error_after = read_error_after
        self.write_error_after = write_error_after
        self.audio_available = audio_available
        self.empty_output = empty_output
        self.encoder_fault = encoder_fault
        self.poster_error = poster_error

        self.sources: list[FakeFrameSource] = []
        self.audio_routes: list[FakeAudioRoute] = []
        self.surfaces: list[DrawingSurface] = []
        self.sinks: list[FakeFrameSink] = []
        self.posters: list[SourceMedia] = []

    async def open_source(self, source: SourceMedia) -> FakeFrameSource:
        frame_source = FakeFrameSource(self)
        self.sources.append(frame_source)
        return frame_source

    async def open_audio_route(self, source, config: EncoderConfig) -> Optional[FakeAudioRoute]:
        if not self.audio_available:
            return None
        route = FakeAudioRoute()
        self.audio_routes.append(route)
        return route

    def create_surface(self, width: int, height: int) -> DrawingSurface:
        surface = DrawingSurface(width, height)
        self.surfaces.append(surface)
        return surface

    def create_sink(self, config: EncoderConfig, geometry: GeometryPlan, audio, timeslice: float = 0.2) -> FakeFrameSink:
        sink = FakeFrameSink(self, config, geometry, audio, timeslice)
        self.sinks.append(sink)
        return sink

    async def capture_poster(self, source: SourceMedia, timestamp=None, timeout=None, quality=None) -> bytes:
        if self.poster_error is not None:
            raise self.poster_error
        self.posters.append(source)
        return POSTER_JPEG

    @property
    def frames_encoded(self) -> int:
        return sum(len(sink.frames) for sink in self.sinks)

    def all_released(self) -> bool:
        return (
            all(s.closed for s in self.sources)
            and all(s.released for s in self.surfaces)
            and all(a.closed for a in self.audio_routes)
            and all(k.stopped or k.aborted for k in self.sinks)
        )


def video_source(size: int = 1024, mime_type: str = "video/mp4", filename: str = "clip.mp4") -> SourceMedia:
    return SourceMedia(data=b"\x00" * size, mime_type=mime_type, filename=filename)
