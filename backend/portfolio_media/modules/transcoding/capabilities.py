"""Container/codec selection from an ordered capability table."""

import logging
from typing import Protocol

from portfolio_media.modules.transcoding.models import EncoderCandidate, EncoderConfig

logger = logging.getLogger(__name__)


# Most preferred first. VP9 gives the best size/quality ratio for web playback.
ENCODER_PREFERENCES: tuple[EncoderCandidate, ...] = (
    EncoderCandidate(
        mime_type="video/webm;codecs=vp9",
        container="webm",
        video_codec="libvpx-vp9",
        audio_codec="libopus",
    ),
    EncoderCandidate(
        mime_type="video/webm;codecs=vp8",
        container="webm",
        video_codec="libvpx",
        audio_codec="libvorbis",
    ),
    EncoderCandidate(
        mime_type="video/mp4;codecs=avc1",
        container="mp4",
        video_codec="libx264",
        audio_codec="aac",
    ),
)

# Untyped last resort: the container's own default encoders, never probed.
GENERIC_FALLBACK = EncoderCandidate(
    mime_type="video/x-matroska",
    container="matroska",
)


class CapabilityProbe(Protocol):
    """Answers whether the runtime can encode a candidate."""

    def supports(self, candidate: EncoderCandidate) -> bool:
        ...

    def supports_audio(self, candidate: EncoderCandidate) -> bool:
        ...


def select_candidate(
    probe: CapabilityProbe,
    preferences: tuple[EncoderCandidate, ...] = ENCODER_PREFERENCES,
) -> EncoderCandidate:
    """Return the first supported candidate, or the generic fallback."""
    for candidate in preferences:
        if probe.supports(candidate):
            return candidate
        logger.debug(f"Encoder candidate not supported: {candidate.mime_type}")

    logger.warning(
        "No preferred codec supported, using generic container",
        extra={"mime_type": GENERIC_FALLBACK.mime_type},
    )
    return GENERIC_FALLBACK


def select_encoder(
    probe: CapabilityProbe,
    target_bitrate: int,
    frame_rate: int,
    has_audio: bool,
    audio_bitrate: int = 128_000,
    preferences: tuple[EncoderCandidate, ...] = ENCODER_PREFERENCES,
) -> EncoderConfig:
    """Pick the encoder configuration for a run.

    Args:
        probe: Runtime capability query
        target_bitrate: Video bitrate in bps
        frame_rate: Output frame rate
        has_audio: Whether the source carries an audio stream
        audio_bitrate: Fixed audio bitrate in bps
        preferences: Ordered candidate table

    Returns:
        EncoderConfig for the first supported candidate
    """
    candidate = select_candidate(probe, preferences)
    audio_ok = has_audio and (candidate is GENERIC_FALLBACK or probe.supports_audio(candidate))

    return EncoderConfig(
        target_bitrate=target_bitrate,
        frame_rate=frame_rate,
        has_audio=audio_ok,
        container_format=candidate.container,
        mime_type=candidate.mime_type,
        video_codec=candidate.video_codec,
        audio_codec=candidate.audio_codec,
        audio_bitrate=audio_bitrate,
    )
