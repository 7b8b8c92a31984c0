"""FFmpeg-backed media runtime.

Decoding, encoding and capability queries run as ffprobe/ffmpeg
subprocesses driven by asyncio. Frames travel as raw RGB24 over pipes:
the decoder writes them to stdout, the pipeline draws them onto a surface,
and the encoder reads surface snapshots from stdin and writes the container
to stdout.
"""

import asyncio
import json
import logging
import mimetypes
import os
import subprocess
import tempfile
from collections import deque
from pathlib import Path
from typing import Optional

import numpy as np

from portfolio_media.core.config import settings
from portfolio_media.modules.transcoding.errors import (
    EncodingError,
    MediaLoadError,
    MediaLoadTimeout,
    PlaybackStartError,
)
from portfolio_media.modules.transcoding.models import (
    EncoderCandidate,
    EncoderConfig,
    GeometryPlan,
    MediaInfo,
    SourceMedia,
)
from portfolio_media.modules.transcoding.poster import encode_jpeg, poster_timestamp
from portfolio_media.modules.transcoding.surface import DrawingSurface

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


def parse_encoder_list(output: str) -> set[str]:
    """Extract encoder names from ``ffmpeg -encoders`` output.

    Lines after the ``------`` separator look like
    `` V....D libx264  libx264 H.264 / AVC ...``.
    """
    encoders: set[str] = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if stripped.startswith("------"):
            in_table = True
            continue
        if not in_table or not stripped:
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            encoders.add(parts[1])
    return encoders


def _stream_rotation(stream: dict) -> int:
    """Rotation in degrees from display-matrix side data or the legacy rotate tag."""
    for side_data in stream.get("side_data_list") or []:
        if "rotation" in side_data:
            try:
                return int(float(side_data["rotation"]))
            except (TypeError, ValueError):
                continue
    raw = (stream.get("tags") or {}).get("rotate")
    try:
        return int(float(raw)) if raw is not None else 0
    except ValueError:
        return 0


def parse_probe_output(raw: bytes | str) -> MediaInfo:
    """Build MediaInfo from ffprobe JSON output.

    Width and height are reported as displayed: a quarter-turn rotation
    swaps the coded dimensions, matching the frames ffmpeg decodes with
    autorotation on.

    Raises:
        MediaLoadError: If the output is not JSON or has no video stream
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MediaLoadError(f"Unreadable probe output: {e}") from e

    width = height = 0
    has_audio = False
    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and width == 0:
            width = int(stream.get("width") or 0)
            height = int(stream.get("height") or 0)
            if _stream_rotation(stream) % 180 == 90:
                width, height = height, width
        elif codec_type == "audio":
            has_audio = True

    if width <= 0 or height <= 0:
        raise MediaLoadError("Source has no decodable video stream")

    duration = 0.0
    raw_duration = data.get("format", {}).get("duration")
    if raw_duration not in (None, "N/A"):
        try:
            duration = max(float(raw_duration), 0.0)
        except ValueError:
            duration = 0.0

    return MediaInfo(width=width, height=height, duration=duration, has_audio=has_audio)


class FFmpegCapabilityProbe:
    """Capability table lookups against the local ffmpeg build."""

    def __init__(self, ffmpeg_path: Optional[str] = None, encoders: Optional[set[str]] = None):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self._encoders = encoders

    @property
    def encoders(self) -> set[str]:
        if self._encoders is None:
            self._encoders = self._load_encoders()
        return self._encoders

    def _load_encoders(self) -> set[str]:
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-hide_banner", "-encoders"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Could not query ffmpeg encoders: {e}")
            return set()
        return parse_encoder_list(result.stdout)

    def supports(self, candidate: EncoderCandidate) -> bool:
        return candidate.video_codec is None or candidate.video_codec in self.encoders

    def supports_audio(self, candidate: EncoderCandidate) -> bool:
        return candidate.audio_codec is None or candidate.audio_codec in self.encoders


class TemporarySourceFile:
    """The source bytes written to a temp file so ffmpeg can seek in them."""

    def __init__(self, source: SourceMedia):
        suffix = Path(source.filename).suffix or mimetypes.guess_extension(source.mime_type) or ""
        fd, name = tempfile.mkstemp(prefix="pm_src_", suffix=suffix)
        with os.fdopen(fd, "wb") as f:
            f.write(source.data)
        self.path = Path(name)

    @property
    def released(self) -> bool:
        return not self.path.exists()

    def release(self) -> None:
        self.path.unlink(missing_ok=True)


async def _drain_stderr(stream: asyncio.StreamReader, tail: deque) -> None:
    """Read stderr continuously so ffmpeg never blocks on a full pipe."""
    async for line in stream:
        tail.append(line.decode("utf-8", errors="replace").rstrip())


async def _kill(process: Optional[asyncio.subprocess.Process]) -> None:
    if process is not None and process.returncode is None:
        process.kill()
        await process.wait()


class FFmpegFrameSource:
    """Decodes the temp file into RGB24 frames at a fixed frame rate."""

    def __init__(self, handle: TemporarySourceFile, ffmpeg_path: str, ffprobe_path: str):
        self.handle = handle
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

        self.current_time = 0.0
        self.duration = 0.0
        self.ended = False
        self.paused = True
        self.seeking = False

        self._info: Optional[MediaInfo] = None
        self._probe_process: Optional[asyncio.subprocess.Process] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        self._frame_rate = 30
        self._frames_read = 0

    @property
    def path(self) -> Path:
        return self.handle.path

    async def probe(self) -> MediaInfo:
        try:
            self._probe_process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v", "error",
                "-show_entries",
                "stream=codec_type,width,height:stream_side_data=rotation:stream_tags=rotate:format=duration",
                "-of", "json",
                str(self.path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MediaLoadError(f"Could not run ffprobe: {e}") from e

        stdout, stderr = await self._probe_process.communicate()
        if self._probe_process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip() or "unknown error"
            raise MediaLoadError(f"Could not read video metadata: {detail}")

        self._info = parse_probe_output(stdout)
        self.duration = self._info.duration
        return self._info

    def build_command(self, frame_rate: int) -> list[str]:
        """Build the decoder command line.

        Autorotation stays on so frames come out at the probed display size.
        """
        return [
            self.ffmpeg_path,
            "-v", "error",
            "-nostdin",
            "-i", str(self.path),
            "-map", "0:v:0",
            "-an",
            "-vf", f"fps={frame_rate}",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "pipe:1",
        ]

    async def start(self, frame_rate: int) -> None:
        if self._info is None:
            raise PlaybackStartError("Source must be probed before playback")

        self._frame_rate = frame_rate
        cmd = self.build_command(frame_rate)
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PlaybackStartError(f"Could not start decoder: {e}") from e

        self._stderr_task = asyncio.create_task(_drain_stderr(self._process.stderr, self._stderr_tail))
        self.paused = False
        logger.debug(f"Decoder started for {self.path.name} at {frame_rate}fps")

    async def read_frame(self) -> Optional[np.ndarray]:
        if self.ended or self._process is None:
            return None

        width, height = self._info.width, self._info.height
        try:
            data = await self._process.stdout.readexactly(width * height * 3)
        except asyncio.IncompleteReadError:
            self.ended = True
            self.paused = True
            returncode = await self._process.wait()
            if returncode != 0:
                raise MediaLoadError(
                    f"Decoder exited with code {returncode}: {' | '.join(self._stderr_tail)}"
                )
            return None

        self._frames_read += 1
        self.current_time = self._frames_read / self._frame_rate
        return np.frombuffer(data, dtype=np.uint8).reshape(height, width, 3)

    async def close(self) -> None:
        self.paused = True
        await _kill(self._probe_process)
        await _kill(self._process)
        if self._stderr_task is not None:
            await asyncio.gather(self._stderr_task, return_exceptions=True)
        await asyncio.to_thread(self.handle.release)


class FFmpegAudioRoute:
    """Maps the source's first audio stream into the encoder as input #1."""

    def __init__(self, source_path: Path, codec: Optional[str], bitrate: int):
        self.source_path = source_path
        self.codec = codec
        self.bitrate = bitrate
        self.closed = False

    def input_args(self) -> list[str]:
        return ["-i", str(self.source_path)]

    def output_args(self) -> list[str]:
        args = ["-map", "1:a:0"]
        if self.codec:
            args += ["-c:a", self.codec]
        args += ["-b:a", str(self.bitrate), "-shortest"]
        return args

    async def close(self) -> None:
        self.closed = True


class FFmpegFrameSink:
    """Encodes raw frames written to stdin into a container on stdout.

    Output is collected continuously and cut into one chunk per
    ``timeslice`` seconds, like a recorder started with a timeslice.
    """

    READ_SIZE = 64 * 1024

    def __init__(
        self,
        ffmpeg_path: str,
        config: EncoderConfig,
        geometry: GeometryPlan,
        audio: Optional[FFmpegAudioRoute] = None,
        timeslice: float = 0.2,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.config = config
        self.geometry = geometry
        self.audio = audio
        self.timeslice = timeslice

        self._process: Optional[asyncio.subprocess.Process] = None
        self._chunks: list[bytes] = []
        self._pending = bytearray()
        self._reader: Optional[asyncio.Task] = None
        self._slicer: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)

    def build_command(self) -> list[str]:
        """Build the encoder command line."""
        config = self.config
        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{self.geometry.output_width}x{self.geometry.output_height}",
            "-framerate", str(config.frame_rate),
            "-i", "pipe:0",
        ]
        if self.audio is not None:
            cmd += self.audio.input_args()

        cmd += ["-map", "0:v:0"]
        if config.video_codec:
            cmd += ["-c:v", config.video_codec]
        cmd += ["-b:v", str(config.target_bitrate), "-pix_fmt", "yuv420p"]

        # Speed settings per encoder
        if config.video_codec == "libvpx-vp9":
            cmd += ["-deadline", "realtime", "-cpu-used", "8", "-row-mt", "1"]
        elif config.video_codec == "libvpx":
            cmd += ["-deadline", "realtime", "-cpu-used", "8"]
        elif config.video_codec == "libx264":
            cmd += ["-preset", "veryfast"]

        if self.audio is not None:
            cmd += self.audio.output_args()

        # mp4 cannot seek back on a pipe, so it must be fragmented
        if config.container_format == "mp4":
            cmd += ["-movflags", "frag_keyframe+empty_moov"]

        cmd += ["-f", config.container_format, "pipe:1"]
        return cmd

    async def start(self) -> None:
        cmd = self.build_command()
        logger.debug(f"Encoder command: {' '.join(cmd)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodingError(f"Could not start encoder: {e}") from e

        self._reader = asyncio.create_task(self._read_output())
        self._slicer = asyncio.create_task(self._slice_loop())
        self._stderr_task = asyncio.create_task(_drain_stderr(self._process.stderr, self._stderr_tail))

    async def _read_output(self) -> None:
        while True:
            data = await self._process.stdout.read(self.READ_SIZE)
            if not data:
                break
            self._pending.extend(data)

    async def _slice_loop(self) -> None:
        while True:
            await asyncio.sleep(self.timeslice)
            self._flush_pending()

    def _flush_pending(self) -> None:
        if self._pending:
            self._chunks.append(bytes(self._pending))
            self._pending.clear()

    async def write(self, frame: bytes) -> None:
        self._process.stdin.write(frame)
        await self._process.stdin.drain()

    async def stop(self) -> list[bytes]:
        if self._process is None:
            return []

        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()
            try:
                await stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                # Encoder already exited; its return code reports why
                logger.debug("Encoder stdin closed by peer")

        await self._reader
        returncode = await self._process.wait()

        self._slicer.cancel()
        await asyncio.gather(self._slicer, self._stderr_task, return_exceptions=True)
        self._flush_pending()

        if returncode != 0:
            raise EncodingError(
                f"Encoder exited with code {returncode}: {' | '.join(self._stderr_tail) or 'no output'}"
            )
        return list(self._chunks)

    async def abort(self) -> None:
        await _kill(self._process)
        for task in (self._reader, self._slicer, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        tasks = [t for t in (self._reader, self._slicer, self._stderr_task) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)


class FFmpegRuntime:
    """Production MediaRuntime built on ffmpeg and ffprobe."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        capabilities: Optional[FFmpegCapabilityProbe] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.capabilities = capabilities or FFmpegCapabilityProbe(self.ffmpeg_path)

    async def open_source(self, source: SourceMedia) -> FFmpegFrameSource:
        try:
            handle = await asyncio.to_thread(TemporarySourceFile, source)
        except OSError as e:
            raise MediaLoadError(f"Could not stage source file: {e}") from e
        return FFmpegFrameSource(handle, self.ffmpeg_path, self.ffprobe_path)

    async def open_audio_route(
        self,
        source: FFmpegFrameSource,
        config: EncoderConfig,
    ) -> Optional[FFmpegAudioRoute]:
        if not config.has_audio or source.handle.released:
            return None
        return FFmpegAudioRoute(source.path, config.audio_codec, config.audio_bitrate)

    def create_surface(self, width: int, height: int) -> DrawingSurface:
        return DrawingSurface(width, height)

    def create_sink(
        self,
        config: EncoderConfig,
        geometry: GeometryPlan,
        audio: Optional[FFmpegAudioRoute],
        timeslice: float = 0.2,
    ) -> FFmpegFrameSink:
        return FFmpegFrameSink(self.ffmpeg_path, config, geometry, audio, timeslice)

    def poster_command(self, path: Path, timestamp: float) -> list[str]:
        """Build the command that decodes one RGB24 frame at ``timestamp``."""
        return [
            self.ffmpeg_path,
            "-v", "error",
            "-nostdin",
            "-ss", f"{timestamp:.3f}",
            "-i", str(path),
            "-map", "0:v:0",
            "-frames:v", "1",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "pipe:1",
        ]

    async def _grab_frame(self, path: Path, info: MediaInfo, timestamp: float) -> Optional[np.ndarray]:
        process = await asyncio.create_subprocess_exec(
            *self.poster_command(path, timestamp),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        finally:
            await _kill(process)

        frame_size = info.width * info.height * 3
        if process.returncode != 0 or len(stdout) < frame_size:
            logger.debug(
                f"No poster frame at {timestamp:.3f}s: "
                f"{stderr.decode('utf-8', errors='replace').strip() or 'no frame decoded'}"
            )
            return None
        return np.frombuffer(stdout[:frame_size], dtype=np.uint8).reshape(info.height, info.width, 3)

    async def capture_poster(
        self,
        source: SourceMedia,
        timestamp: Optional[float] = None,
        timeout: Optional[float] = None,
        quality: Optional[int] = None,
    ) -> bytes:
        """Capture one frame of ``source`` as a JPEG poster.

        The frame is taken at ``timestamp``, or at a random point away from
        the clip's edges, falling back to the first frame when the seek
        lands past the end.

        Raises:
            MediaLoadTimeout: Probing and capture took longer than ``timeout``
            MediaLoadError: The source has no decodable frame
        """
        timeout = timeout if timeout is not None else settings.POSTER_TIMEOUT_SECONDS
        quality = quality if quality is not None else settings.POSTER_JPEG_QUALITY

        frame_source = await self.open_source(source)
        try:
            frame = await asyncio.wait_for(self._capture_frame(frame_source, timestamp), timeout)
        except asyncio.TimeoutError as e:
            raise MediaLoadTimeout(f"Poster capture did not finish within {timeout:g}s") from e
        finally:
            await frame_source.close()

        return await asyncio.to_thread(encode_jpeg, frame, quality)

    async def _capture_frame(self, frame_source: FFmpegFrameSource, timestamp: Optional[float]) -> np.ndarray:
        info = await frame_source.probe()
        at = timestamp if timestamp is not None else poster_timestamp(info.duration)
        for position in dict.fromkeys((at, 0.0)):
            try:
                frame = await self._grab_frame(frame_source.path, info, position)
            except OSError as e:
                raise MediaLoadError(f"Could not run ffmpeg: {e}") from e
            if frame is not None:
                return frame
        raise MediaLoadError("Source has no decodable frame for a poster")
