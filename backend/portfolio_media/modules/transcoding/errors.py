"""Transcode error taxonomy.

Every failure of a pipeline run surfaces as exactly one of these. None are
retried internally; retry policy belongs to the caller.
"""


class TranscodeError(Exception):
    """Base exception for transcode failures."""

    kind = "transcode_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.detail!r})"


class MediaLoadTimeout(TranscodeError):
    """Metadata probing did not finish within the probe timeout."""

    kind = "media_load_timeout"


class MediaLoadError(TranscodeError):
    """The source is malformed, unreadable, or has no decodable video."""

    kind = "media_load_error"


class PlaybackStartError(TranscodeError):
    """The source could not begin producing frames."""

    kind = "playback_start_error"


class EncodingError(TranscodeError):
    """The incremental encoder reported an internal fault."""

    kind = "encoding_error"


class EmptyOutputError(TranscodeError):
    """Recording finished without producing a single encoded chunk."""

    kind = "empty_output"


class TranscodeCancelled(TranscodeError):
    """The caller cancelled the run through its cancellation token."""

    kind = "cancelled"
