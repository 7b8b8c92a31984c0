"""Output-sized RGB drawing surface."""

from typing import Optional

import numpy as np


class DrawingSurface:
    """An RGB24 canvas the size of the planned output.

    ``draw`` resamples a decoded frame onto the canvas with nearest-neighbour
    sampling. Index maps are cached per source size, so the per-frame cost is
    one fancy-indexing copy.
    """

    CHANNELS = 3

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self._pixels: Optional[np.ndarray] = np.zeros((height, width, self.CHANNELS), dtype=np.uint8)
        self._index_cache: dict[tuple[int, int], tuple[np.ndarray, np.ndarray]] = {}

    @property
    def released(self) -> bool:
        return self._pixels is None

    @property
    def frame_size(self) -> int:
        """Bytes per RGB24 frame at the surface size."""
        return self.width * self.height * self.CHANNELS

    def _indices(self, src_height: int, src_width: int) -> tuple[np.ndarray, np.ndarray]:
        key = (src_height, src_width)
        if key not in self._index_cache:
            rows = (np.arange(self.height) * src_height // self.height).astype(np.intp)
            cols = (np.arange(self.width) * src_width // self.width).astype(np.intp)
            self._index_cache[key] = (rows, cols)
        return self._index_cache[key]

    def draw(self, frame: np.ndarray) -> None:
        """Copy ``frame`` (H x W x 3, uint8) onto the surface at output size."""
        if self._pixels is None:
            raise RuntimeError("Surface has been released")
        if frame.ndim != 3 or frame.shape[2] != self.CHANNELS:
            raise ValueError(f"Expected an HxWx{self.CHANNELS} frame, got shape {frame.shape}")

        src_height, src_width = frame.shape[:2]
        if (src_height, src_width) == (self.height, self.width):
            np.copyto(self._pixels, frame)
            return

        rows, cols = self._indices(src_height, src_width)
        self._pixels[...] = frame[rows[:, None], cols[None, :]]

    def to_bytes(self) -> bytes:
        if self._pixels is None:
            raise RuntimeError("Surface has been released")
        return self._pixels.tobytes()

    def release(self) -> None:
        self._pixels = None
        self._index_cache.clear()
