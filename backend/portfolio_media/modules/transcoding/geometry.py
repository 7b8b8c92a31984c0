"""Output geometry planning.

Scales a source down (never up) to fit a bounding box, keeping its aspect
ratio, and rounds both sides down to even numbers for the encoders that
require 4:2:0 chroma.
"""

from portfolio_media.modules.transcoding.errors import MediaLoadError
from portfolio_media.modules.transcoding.models import GeometryPlan

MIN_DIMENSION = 2


def _floor_even(value: float) -> int:
    # epsilon absorbs float error such as 1079.9999999 for an exact 1080
    return int(value + 1e-6) // 2 * 2


def plan_geometry(
    source_width: int,
    source_height: int,
    max_width: int,
    max_height: int,
) -> GeometryPlan:
    """Compute the output size for a source and a size cap.

    Args:
        source_width: Probed source width in pixels
        source_height: Probed source height in pixels
        max_width: Maximum output width
        max_height: Maximum output height

    Returns:
        GeometryPlan with even output dimensions inside both the bound and
        the source size

    Raises:
        MediaLoadError: If the source reports no usable dimensions, or is
            too small or too narrow to keep both sides at least 2px
        ValueError: If the bound is smaller than the minimum dimension
    """
    if source_width <= 0 or source_height <= 0:
        raise MediaLoadError(f"Source has no video dimensions ({source_width}x{source_height})")
    if max_width < MIN_DIMENSION or max_height < MIN_DIMENSION:
        raise ValueError(f"Bound must be at least {MIN_DIMENSION}x{MIN_DIMENSION}, got {max_width}x{max_height}")

    scale = min(max_width / source_width, max_height / source_height, 1.0)

    if scale < 1.0:
        # Scale from the limiting side so it lands exactly on the bound
        if max_width / source_width <= max_height / source_height:
            width = float(max_width)
            height = source_height * max_width / source_width
        else:
            height = float(max_height)
            width = source_width * max_height / source_height
    else:
        width, height = float(source_width), float(source_height)

    output_width = _floor_even(width)
    output_height = _floor_even(height)
    if output_width < MIN_DIMENSION or output_height < MIN_DIMENSION:
        raise MediaLoadError(
            f"Source {source_width}x{source_height} is too small or too narrow to encode "
            f"inside {max_width}x{max_height}"
        )

    return GeometryPlan(
        source_width=source_width,
        source_height=source_height,
        output_width=output_width,
        output_height=output_height,
    )
