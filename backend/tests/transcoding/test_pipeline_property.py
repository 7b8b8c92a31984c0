"""Property-based tests for the transcode pipeline.

Runs the full probe -> plan -> record -> finalize cycle against an
in-memory runtime that tracks every resource it hands out.
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from portfolio_media.core.metrics import REGISTRY
from portfolio_media.modules.transcoding.cancellation import CancellationToken
from portfolio_media.modules.transcoding.errors import (
    EmptyOutputError,
    EncodingError,
    MediaLoadError,
    MediaLoadTimeout,
    PlaybackStartError,
    TranscodeCancelled,
)
from portfolio_media.modules.transcoding.models import MediaInfo, TerminationReason
from portfolio_media.modules.transcoding.pipeline import TranscodePipeline, transcode_video
from portfolio_media.modules.transcoding.schemas import TranscodeOptions
from transcode_fakes import FakeAudioRoute, FakeRuntime, video_source


def fast_options(**overrides) -> TranscodeOptions:
    values = {
        "progress_interval": 0,
        "end_grace_period": 0,
        "pause_grace_period": 0,
        "draw_error_grace": 0,
        "probe_timeout": 1.0,
    }
    values.update(overrides)
    return TranscodeOptions(**values)


async def run_pipeline(runtime: FakeRuntime, options: TranscodeOptions | None = None, **kwargs):
    pipeline = TranscodePipeline(runtime=runtime, options=options or fast_options())
    return await pipeline.run(video_source(), **kwargs)


class TestSuccessfulRun:
    """A readable source produces a non-empty artifact."""

    @pytest.mark.asyncio
    async def test_artifact_is_concatenation_of_chunks(self) -> None:
        runtime = FakeRuntime(frame_count=30)

        artifact = await run_pipeline(runtime)

        expected = b"".join(f"chunk-{i};".encode() for i in range(30))
        assert artifact.data == expected
        assert artifact.size == len(expected)
        assert artifact.termination == TerminationReason.ENDED
        assert artifact.mime_type == "video/webm;codecs=vp9"
        assert artifact.extension == "webm"
        assert (artifact.width, artifact.height) == (64, 48)
        assert artifact.duration == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_large_source_drawn_at_planned_size(self) -> None:
        runtime = FakeRuntime(info=MediaInfo(3840, 2160, 0.1, False), frame_count=3)

        artifact = await run_pipeline(runtime)

        assert (artifact.width, artifact.height) == (1920, 1080)
        sink = runtime.sinks[0]
        assert (sink.geometry.output_width, sink.geometry.output_height) == (1920, 1080)
        assert all(len(frame) == 1920 * 1080 * 3 for frame in sink.frames)

    @pytest.mark.asyncio
    async def test_options_reach_the_encoder(self) -> None:
        runtime = FakeRuntime(frame_count=5)

        await run_pipeline(runtime, fast_options(target_bitrate=2_500_000, frame_rate=24, timeslice=0.5))

        sink = runtime.sinks[0]
        assert sink.config.target_bitrate == 2_500_000
        assert sink.config.frame_rate == 24
        assert sink.timeslice == 0.5
        assert runtime.sources[0].frame_rate == 24

    @pytest.mark.asyncio
    async def test_transcode_video_convenience(self) -> None:
        runtime = FakeRuntime(frame_count=10)

        artifact = await transcode_video(video_source(), options=fast_options(), runtime=runtime)

        assert artifact.size > 0
        assert runtime.all_released()


class TestProgressProperty:
    """Progress is non-decreasing and ends at exactly 100."""

    @given(
        frame_count=st.integers(min_value=1, max_value=60),
        duration=st.floats(min_value=0, max_value=5, allow_nan=False),
    )
    @settings(max_examples=50, deadline=None)
    @pytest.mark.asyncio
    async def test_progress_monotonic_and_final_100(self, frame_count: int, duration: float) -> None:
        seen: list[float] = []
        runtime = FakeRuntime(info=MediaInfo(16, 16, duration, False), frame_count=frame_count)

        await run_pipeline(runtime, on_progress=seen.append)

        assert seen == sorted(seen)
        assert seen[-1] == 100.0
        assert seen.count(100.0) == 1
        assert all(0 <= v <= 99 for v in seen[:-1])

    @pytest.mark.asyncio
    async def test_no_100_on_failure(self) -> None:
        seen: list[float] = []
        runtime = FakeRuntime(empty_output=True)

        with pytest.raises(EmptyOutputError):
            await run_pipeline(runtime, on_progress=seen.append)

        assert 100.0 not in seen


class TestTermination:
    """Each stop condition finalizes whatever was captured."""

    @pytest.mark.asyncio
    async def test_max_duration_truncates(self) -> None:
        runtime = FakeRuntime(info=MediaInfo(16, 16, 10.0, False), frame_count=300)

        artifact = await run_pipeline(runtime, fast_options(max_duration=2.0))

        assert artifact.termination == TerminationReason.MAX_DURATION
        assert runtime.frames_encoded == 60
        assert artifact.duration == pytest.approx(2.0)

    @given(max_duration=st.floats(min_value=0.1, max_value=3.0))
    @settings(max_examples=30, deadline=None)
    @pytest.mark.asyncio
    async def test_output_never_exceeds_ceiling(self, max_duration: float) -> None:
        runtime = FakeRuntime(info=MediaInfo(16, 16, 10.0, False), frame_count=300)

        artifact = await run_pipeline(runtime, fast_options(max_duration=max_duration))

        assert artifact.duration <= max_duration + 1 / 30 + 1e-9

    @pytest.mark.asyncio
    async def test_pause_after_start_stops_recording(self) -> None:
        runtime = FakeRuntime(frame_count=30, pause_after=10)

        artifact = await run_pipeline(runtime)

        assert artifact.termination == TerminationReason.PAUSED
        # the frame read as playback paused is not drawn
        assert runtime.frames_encoded == 9

    @pytest.mark.asyncio
    async def test_read_failure_finalizes_partial_output(self) -> None:
        runtime = FakeRuntime(frame_count=30, read_error_after=5)

        artifact = await run_pipeline(runtime)

        assert artifact.termination == TerminationReason.DRAW_ERROR
        assert runtime.frames_encoded == 5
        assert artifact.size > 0
        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_write_failure_finalizes_partial_output(self) -> None:
        runtime = FakeRuntime(frame_count=30, write_error_after=3)

        artifact = await run_pipeline(runtime)

        assert artifact.termination == TerminationReason.DRAW_ERROR
        assert runtime.frames_encoded == 3

    @pytest.mark.asyncio
    async def test_failure_before_first_frame_is_empty_output(self) -> None:
        runtime = FakeRuntime(read_error_after=0)

        with pytest.raises(EmptyOutputError):
            await run_pipeline(runtime)

        assert runtime.all_released()


class TestFailures:
    """Every failure raises one typed error and releases everything."""

    @pytest.mark.asyncio
    async def test_empty_output_rejected(self) -> None:
        runtime = FakeRuntime(empty_output=True)
        before = REGISTRY.get_sample_value("transcode_failures_total", {"kind": "empty_output"}) or 0

        with pytest.raises(EmptyOutputError):
            await run_pipeline(runtime)

        after = REGISTRY.get_sample_value("transcode_failures_total", {"kind": "empty_output"})
        assert after == before + 1
        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_probe_timeout_never_draws_or_encodes(self) -> None:
        runtime = FakeRuntime(probe_hangs=True)

        with pytest.raises(MediaLoadTimeout):
            await run_pipeline(runtime, fast_options(probe_timeout=0.05))

        assert runtime.surfaces == []
        assert runtime.sinks == []
        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_probe_error_is_media_load_error(self) -> None:
        runtime = FakeRuntime(probe_error=MediaLoadError("moov atom not found"))

        with pytest.raises(MediaLoadError, match="moov atom"):
            await run_pipeline(runtime)

        assert runtime.sinks == []
        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_unexpected_probe_exception_is_wrapped(self) -> None:
        runtime = FakeRuntime(probe_error=ValueError("bad header"))

        with pytest.raises(MediaLoadError):
            await run_pipeline(runtime)

    @pytest.mark.asyncio
    async def test_source_without_dimensions_rejected(self) -> None:
        runtime = FakeRuntime(info=MediaInfo(0, 0, 1.0, False))

        with pytest.raises(MediaLoadError):
            await run_pipeline(runtime)

        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_playback_start_failure(self) -> None:
        runtime = FakeRuntime(start_error=RuntimeError("autoplay blocked"))

        with pytest.raises(PlaybackStartError):
            await run_pipeline(runtime)

        assert runtime.sinks[0].aborted
        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_encoder_start_failure(self) -> None:
        runtime = FakeRuntime(sink_start_error=OSError("no such encoder"))

        with pytest.raises(EncodingError):
            await run_pipeline(runtime)

        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_encoder_fault_on_finalize(self) -> None:
        runtime = FakeRuntime(encoder_fault=True)

        with pytest.raises(EncodingError):
            await run_pipeline(runtime)

        assert runtime.sinks[0].aborted
        assert runtime.all_released()


class TestCodecFallback:
    """Missing preferred codecs fall back to the generic container."""

    @pytest.mark.asyncio
    async def test_generic_container_when_no_codec_supported(self) -> None:
        runtime = FakeRuntime(supported=set())

        artifact = await run_pipeline(runtime)

        assert artifact.mime_type == "video/x-matroska"
        assert artifact.extension == "mkv"
        assert artifact.size > 0

    @pytest.mark.asyncio
    async def test_mp4_when_only_h264_available(self) -> None:
        runtime = FakeRuntime(supported={"libx264", "aac"})

        artifact = await run_pipeline(runtime)

        assert artifact.mime_type == "video/mp4;codecs=avc1"
        assert artifact.extension == "mp4"


class TestAudio:
    """Audio is routed when possible and skipped otherwise."""

    @pytest.mark.asyncio
    async def test_audio_routed_into_encoder(self) -> None:
        runtime = FakeRuntime()

        await run_pipeline(runtime)

        assert isinstance(runtime.sinks[0].audio, FakeAudioRoute)
        assert runtime.audio_routes[0].closed

    @pytest.mark.asyncio
    async def test_unavailable_audio_records_video_only(self) -> None:
        runtime = FakeRuntime(audio_available=False)

        artifact = await run_pipeline(runtime)

        assert artifact.size > 0
        assert runtime.sinks[0].audio is None

    @pytest.mark.asyncio
    async def test_silent_source_opens_no_audio_route(self) -> None:
        runtime = FakeRuntime(info=MediaInfo(64, 48, 1.0, has_audio=False))

        await run_pipeline(runtime)

        assert runtime.audio_routes == []
        assert not runtime.sinks[0].config.has_audio


class TestCancellation:
    """Cancellation raises TranscodeCancelled after releasing resources."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self) -> None:
        runtime = FakeRuntime()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(TranscodeCancelled):
            await run_pipeline(runtime, cancel_token=token)

        assert runtime.sources == []

    @pytest.mark.asyncio
    async def test_cancel_wins_over_slow_probe(self) -> None:
        runtime = FakeRuntime(probe_hangs=True)
        token = CancellationToken()

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(TranscodeCancelled):
            await run_pipeline(runtime, fast_options(probe_timeout=5.0), cancel_token=token)
        await canceller

        assert runtime.sinks == []
        assert runtime.all_released()

    @pytest.mark.asyncio
    async def test_cancel_during_recording(self) -> None:
        runtime = FakeRuntime(frame_count=300, info=MediaInfo(16, 16, 10.0, False))
        token = CancellationToken()

        def on_progress(value: float) -> None:
            if value >= 10:
                token.cancel()

        with pytest.raises(TranscodeCancelled):
            await run_pipeline(runtime, on_progress=on_progress, cancel_token=token)

        assert 0 < runtime.frames_encoded < 300
        assert runtime.sinks[0].aborted
        assert runtime.all_released()


class TestGracePeriods:
    """The encoder drains for a reason-specific grace before it is stopped."""

    @staticmethod
    def grace_options(**overrides) -> TranscodeOptions:
        values = {"end_grace_period": 0.1, "pause_grace_period": 0.3, "draw_error_grace": 0.0}
        values.update(overrides)
        return fast_options(**values)

    @staticmethod
    async def run_recording_sleeps(runtime: FakeRuntime, options: TranscodeOptions):
        slept: list[tuple[float, bool]] = []

        async def record_sleep(seconds: float) -> None:
            slept.append((seconds, runtime.sinks[0].stopped))

        pipeline = TranscodePipeline(runtime=runtime, options=options, sleep=record_sleep)
        artifact = await pipeline.run(video_source())
        return artifact, slept

    @pytest.mark.asyncio
    async def test_natural_end_waits_end_grace(self) -> None:
        artifact, slept = await self.run_recording_sleeps(FakeRuntime(frame_count=5), self.grace_options())

        assert artifact.termination == TerminationReason.ENDED
        assert slept == [(0.1, False)]

    @pytest.mark.asyncio
    async def test_pause_waits_pause_grace(self) -> None:
        runtime = FakeRuntime(frame_count=30, pause_after=3)

        artifact, slept = await self.run_recording_sleeps(runtime, self.grace_options())

        assert artifact.termination == TerminationReason.PAUSED
        assert slept == [(0.3, False)]

    @pytest.mark.asyncio
    async def test_ceiling_waits_nothing(self) -> None:
        runtime = FakeRuntime(info=MediaInfo(16, 16, 10.0, False), frame_count=300)

        artifact, slept = await self.run_recording_sleeps(runtime, self.grace_options(max_duration=1.0))

        assert artifact.termination == TerminationReason.MAX_DURATION
        assert slept == []

    @pytest.mark.asyncio
    async def test_draw_error_waits_nothing(self) -> None:
        runtime = FakeRuntime(frame_count=30, read_error_after=3)

        artifact, slept = await self.run_recording_sleeps(runtime, self.grace_options())

        assert artifact.termination == TerminationReason.DRAW_ERROR
        assert slept == []

    @pytest.mark.parametrize(
        "reason, expected",
        [
            (TerminationReason.ENDED, 0.1),
            (TerminationReason.PAUSED, 0.3),
            (TerminationReason.MAX_DURATION, 0.0),
            (TerminationReason.DRAW_ERROR, 0.0),
        ],
    )
    def test_default_grace_per_reason(self, reason: TerminationReason, expected: float) -> None:
        pipeline = TranscodePipeline(runtime=FakeRuntime(), options=TranscodeOptions())

        assert pipeline.grace_period(reason) == expected


class TestProgressCallbackFailure:
    """A raising progress callback does not fail the run."""

    @pytest.mark.asyncio
    async def test_run_completes_when_callback_raises(self) -> None:
        runtime = FakeRuntime(frame_count=10)
        calls: list[float] = []

        def on_progress(value: float) -> None:
            calls.append(value)
            raise ValueError("progress bar closed")

        artifact = await run_pipeline(runtime, on_progress=on_progress)

        assert artifact.termination == TerminationReason.ENDED
        assert runtime.frames_encoded == 10
        assert calls[-1] == 100.0
        assert runtime.all_released()
