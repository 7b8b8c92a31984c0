"""Transcode pipeline.

Turns a source video into a size- and bitrate-bounded artifact:

    probe -> plan geometry/encoder -> set up surface, audio and encoder
          -> pump frames until a termination condition -> finalize

The pipeline owns every resource it opens and releases all of them on every
exit path. A run either returns one OutputArtifact or raises one
TranscodeError subclass.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from portfolio_media.core.logging import log_error, log_info, log_warning
from portfolio_media.core.metrics import (
    TRANSCODE_DURATION_SECONDS,
    TRANSCODE_FAILURES_TOTAL,
    TRANSCODE_OUTPUT_BYTES,
    TRANSCODE_RUNS_TOTAL,
    TRANSCODES_IN_PROGRESS,
)
from portfolio_media.core.tracing import add_span_attributes, create_span, record_exception
from portfolio_media.modules.transcoding.cancellation import CancellationToken
from portfolio_media.modules.transcoding.capabilities import select_encoder
from portfolio_media.modules.transcoding.errors import (
    EmptyOutputError,
    EncodingError,
    MediaLoadError,
    MediaLoadTimeout,
    PlaybackStartError,
    TranscodeError,
)
from portfolio_media.modules.transcoding.geometry import plan_geometry
from portfolio_media.modules.transcoding.models import (
    MediaInfo,
    OutputArtifact,
    SourceMedia,
    TerminationReason,
)
from portfolio_media.modules.transcoding.progress import ProgressCallback, ProgressReporter
from portfolio_media.modules.transcoding.runtime import (
    AudioRoute,
    FrameSink,
    FrameSource,
    MediaRuntime,
)
from portfolio_media.modules.transcoding.schemas import TranscodeOptions
from portfolio_media.modules.transcoding.surface import DrawingSurface

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _guard(awaitable: Awaitable[T], error_cls: type[TranscodeError], message: str) -> T:
    """Await ``awaitable``, mapping foreign exceptions onto ``error_cls``."""
    try:
        return await awaitable
    except TranscodeError:
        raise
    except Exception as e:
        raise error_cls(f"{message}: {e}") from e


class _RunResources:
    """Everything a single run has opened, released in reverse order."""

    def __init__(self) -> None:
        self.source: Optional[FrameSource] = None
        self.audio: Optional[AudioRoute] = None
        self.surface: Optional[DrawingSurface] = None
        self.sink: Optional[FrameSink] = None
        self.sink_stopped = False

    async def release(self) -> None:
        if self.sink is not None and not self.sink_stopped:
            try:
                await self.sink.abort()
            except Exception as e:
                log_warning(logger, f"Failed to abort encoder: {e}")

        if self.audio is not None:
            try:
                await self.audio.close()
            except Exception as e:
                log_warning(logger, f"Failed to close audio route: {e}")

        if self.surface is not None:
            self.surface.release()

        if self.source is not None:
            try:
                await self.source.close()
            except Exception as e:
                log_warning(logger, f"Failed to release source: {e}")


class TranscodePipeline:
    """Runs the transcode state machine against a media runtime."""

    def __init__(
        self,
        runtime: Optional[MediaRuntime] = None,
        options: Optional[TranscodeOptions] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if runtime is None:
            from portfolio_media.modules.transcoding.ffmpeg import FFmpegRuntime

            runtime = FFmpegRuntime()
        self.runtime = runtime
        self.options = options or TranscodeOptions()
        self._clock = clock
        self._sleep = sleep

    async def run(
        self,
        source: SourceMedia,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OutputArtifact:
        """Transcode ``source``.

        Args:
            source: Input video
            on_progress: Receives percentages in [0, 100], non-decreasing,
                ending with exactly 100 on success
            cancel_token: Cooperative cancellation signal

        Returns:
            OutputArtifact with non-empty data

        Raises:
            TranscodeError: One subclass describing the failure
        """
        token = cancel_token or CancellationToken()
        reporter = ProgressReporter(on_progress, self.options.progress_interval, self._clock)
        resources = _RunResources()
        started_at = time.monotonic()

        TRANSCODES_IN_PROGRESS.inc()
        with create_span(
            "transcode.run",
            {"source.mime_type": source.mime_type, "source.size": source.size},
        ):
            try:
                artifact = await self._execute(source, reporter, token, resources)
            except TranscodeError as e:
                TRANSCODE_RUNS_TOTAL.labels(outcome="failed").inc()
                TRANSCODE_FAILURES_TOTAL.labels(kind=e.kind).inc()
                record_exception(e)
                log_error(logger, f"Transcode failed: {e.detail}", error_kind=e.kind)
                raise
            finally:
                await resources.release()
                TRANSCODES_IN_PROGRESS.dec()

            TRANSCODE_RUNS_TOTAL.labels(outcome="succeeded").inc()
            TRANSCODE_DURATION_SECONDS.observe(time.monotonic() - started_at)
            TRANSCODE_OUTPUT_BYTES.observe(artifact.size)
            add_span_attributes({
                "output.size": artifact.size,
                "output.mime_type": artifact.mime_type,
                "output.termination": artifact.termination.value,
            })
            log_info(
                logger,
                f"Transcode complete: {source.size} -> {artifact.size} bytes",
                output_width=artifact.width,
                output_height=artifact.height,
                output_mime_type=artifact.mime_type,
                termination=artifact.termination.value,
            )
            return artifact

    async def _execute(
        self,
        source: SourceMedia,
        reporter: ProgressReporter,
        token: CancellationToken,
        resources: _RunResources,
    ) -> OutputArtifact:
        options = self.options

        # Probe
        token.raise_if_cancelled()
        frame_source = await _guard(
            self.runtime.open_source(source), MediaLoadError, "Could not open source"
        )
        resources.source = frame_source
        with create_span("transcode.probe"):
            info = await self._probe(frame_source, token)

        # Plan
        geometry = plan_geometry(info.width, info.height, options.max_width, options.max_height)
        config = select_encoder(
            self.runtime.capabilities,
            target_bitrate=options.target_bitrate,
            frame_rate=options.frame_rate,
            has_audio=info.has_audio,
            audio_bitrate=options.audio_bitrate,
        )
        logger.info(
            f"Transcode plan: {info.width}x{info.height} -> "
            f"{geometry.output_width}x{geometry.output_height} as {config.mime_type}"
        )
        token.raise_if_cancelled()

        # Setup
        surface = self.runtime.create_surface(geometry.output_width, geometry.output_height)
        resources.surface = surface

        if config.has_audio:
            try:
                resources.audio = await self.runtime.open_audio_route(frame_source, config)
            except Exception as e:
                log_warning(logger, f"Audio routing failed: {e}")
                resources.audio = None
            if resources.audio is None:
                log_warning(logger, "Audio could not be routed, recording video only")

        sink = self.runtime.create_sink(config, geometry, resources.audio, options.timeslice)
        resources.sink = sink
        await _guard(sink.start(), EncodingError, "Could not start encoder")
        token.raise_if_cancelled()

        # Draw loop
        await _guard(frame_source.start(options.frame_rate), PlaybackStartError, "Playback failed to start")
        with create_span("transcode.encode"):
            reason, frames_written = await self._pump(frame_source, surface, sink, reporter, token)

        grace = self.grace_period(reason)
        if grace > 0:
            await self._sleep(grace)

        # Finalize
        chunks = await _guard(sink.stop(), EncodingError, "Encoder failed to finalize")
        resources.sink_stopped = True
        data = b"".join(chunks)
        if not data:
            raise EmptyOutputError(
                f"Recording produced no data ({frames_written} frames written, stopped on {reason.value})"
            )

        reporter.complete()
        return OutputArtifact(
            data=data,
            mime_type=config.mime_type,
            width=geometry.output_width,
            height=geometry.output_height,
            duration=frames_written / options.frame_rate,
            termination=reason,
            extension=config.extension,
        )

    async def _probe(self, source: FrameSource, token: CancellationToken) -> MediaInfo:
        """Race metadata loading against the probe timeout and cancellation."""
        timeout = self.options.probe_timeout
        probe_task = asyncio.ensure_future(source.probe())
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {probe_task, cancel_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (probe_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(probe_task, cancel_task, return_exceptions=True)

        token.raise_if_cancelled()
        if probe_task in done:
            try:
                return probe_task.result()
            except TranscodeError:
                raise
            except Exception as e:
                raise MediaLoadError(f"Could not read video metadata: {e}") from e

        raise MediaLoadTimeout(f"Video metadata did not load within {timeout:g}s")

    def grace_period(self, reason: TerminationReason) -> float:
        """Seconds to let the encoder drain after ``reason`` before stopping it."""
        return {
            TerminationReason.ENDED: self.options.end_grace_period,
            TerminationReason.PAUSED: self.options.pause_grace_period,
            TerminationReason.DRAW_ERROR: self.options.draw_error_grace,
        }.get(reason, 0.0)

    def _termination(self, source: FrameSource) -> Optional[TerminationReason]:
        if source.ended:
            return TerminationReason.ENDED
        if source.paused and not source.seeking and source.current_time > 0:
            return TerminationReason.PAUSED
        if source.current_time >= self.options.max_duration:
            return TerminationReason.MAX_DURATION
        return None

    async def _pump(
        self,
        source: FrameSource,
        surface: DrawingSurface,
        sink: FrameSink,
        reporter: ProgressReporter,
        token: CancellationToken,
    ) -> tuple[TerminationReason, int]:
        """Draw frames into the encoder until a termination condition holds."""
        frames_written = 0
        while True:
            token.raise_if_cancelled()
            reason = self._termination(source)
            if reason is not None:
                logger.debug(f"Recording stopped: {reason.value} at {source.current_time:.2f}s")
                return reason, frames_written

            try:
                frame = await source.read_frame()
                if frame is None:
                    return TerminationReason.ENDED, frames_written
                if not source.paused:
                    surface.draw(frame)
                    await sink.write(surface.to_bytes())
                    frames_written += 1
            except Exception as e:
                log_error(
                    logger,
                    "Frame draw failed, finalizing captured output",
                    exception=e,
                    frames_written=frames_written,
                )
                return TerminationReason.DRAW_ERROR, frames_written

            reporter.update(source.current_time, source.duration)
            await asyncio.sleep(0)


async def transcode_video(
    source: SourceMedia,
    options: Optional[TranscodeOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    runtime: Optional[MediaRuntime] = None,
) -> OutputArtifact:
    """Transcode ``source`` with a one-off pipeline."""
    pipeline = TranscodePipeline(runtime=runtime, options=options)
    return await pipeline.run(source, on_progress=on_progress, cancel_token=cancel_token)
