"""Property-based tests for encoder selection and codec fallback."""

from hypothesis import given, settings, strategies as st

from portfolio_media.modules.transcoding.capabilities import (
    ENCODER_PREFERENCES,
    GENERIC_FALLBACK,
    select_candidate,
    select_encoder,
)
from transcode_fakes import ALL_ENCODERS, FakeCapabilityProbe


supported_sets = st.sets(st.sampled_from(sorted(ALL_ENCODERS)))


class TestCandidateSelection:
    """The first supported preference wins, otherwise the generic container."""

    @given(supported=supported_sets)
    @settings(max_examples=100)
    def test_selects_first_supported_preference(self, supported: set[str]) -> None:
        probe = FakeCapabilityProbe(supported)

        chosen = select_candidate(probe)

        expected = next(
            (c for c in ENCODER_PREFERENCES if c.video_codec in supported),
            GENERIC_FALLBACK,
        )
        assert chosen == expected

    def test_prefers_vp9(self) -> None:
        chosen = select_candidate(FakeCapabilityProbe(ALL_ENCODERS))
        assert chosen.mime_type == "video/webm;codecs=vp9"

    def test_falls_back_to_vp8(self) -> None:
        chosen = select_candidate(FakeCapabilityProbe({"libvpx", "libvorbis"}))
        assert chosen.mime_type == "video/webm;codecs=vp8"

    def test_generic_container_when_nothing_supported(self) -> None:
        probe = FakeCapabilityProbe(set())

        chosen = select_candidate(probe)

        assert chosen is GENERIC_FALLBACK
        assert GENERIC_FALLBACK not in probe.checked


class TestEncoderConfig:
    """Encoder configuration carries the run parameters."""

    @given(
        bitrate=st.integers(min_value=100_000, max_value=50_000_000),
        fps=st.integers(min_value=1, max_value=120),
    )
    @settings(max_examples=100)
    def test_parameters_pass_through(self, bitrate: int, fps: int) -> None:
        config = select_encoder(FakeCapabilityProbe(), bitrate, fps, has_audio=True)

        assert config.target_bitrate == bitrate
        assert config.frame_rate == fps
        assert config.audio_bitrate == 128_000

    def test_audio_dropped_when_source_silent(self) -> None:
        config = select_encoder(FakeCapabilityProbe(), 6_000_000, 30, has_audio=False)
        assert not config.has_audio

    def test_audio_dropped_when_audio_codec_missing(self) -> None:
        probe = FakeCapabilityProbe(ALL_ENCODERS, audio_supported=set())

        config = select_encoder(probe, 6_000_000, 30, has_audio=True)

        assert config.video_codec == "libvpx-vp9"
        assert not config.has_audio

    def test_generic_container_keeps_audio(self) -> None:
        config = select_encoder(FakeCapabilityProbe(set()), 6_000_000, 30, has_audio=True)

        assert config.container_format == "matroska"
        assert config.extension == "mkv"
        assert config.has_audio
