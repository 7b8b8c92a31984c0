"""Poster frame selection and encoding.

A poster is one decoded frame saved as JPEG, used as a cover image for a
stored video.
"""

import io
import math
import random
from typing import Optional

import numpy as np
from PIL import Image

# Keep clear of black lead-in and fade-out frames
EDGE_MARGIN_SECONDS = 0.5


def poster_timestamp(duration: float, rng: Optional[random.Random] = None) -> float:
    """Pick a random capture time away from the start and end of the clip.

    Args:
        duration: Source duration in seconds, 0 or non-finite when unknown

    Returns:
        Seek position in seconds
    """
    if not math.isfinite(duration) or duration <= 0:
        return EDGE_MARGIN_SECONDS

    rng = rng or random.Random()
    latest = max(EDGE_MARGIN_SECONDS, duration - EDGE_MARGIN_SECONDS)
    earliest = min(EDGE_MARGIN_SECONDS, duration * 0.1)
    return rng.uniform(earliest, latest)


def encode_jpeg(frame: np.ndarray, quality: int = 85) -> bytes:
    """Encode an HxWx3 uint8 RGB frame as JPEG."""
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise ValueError(f"Expected an HxWx3 frame, got shape {frame.shape}")

    output = io.BytesIO()
    Image.fromarray(frame).save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()
