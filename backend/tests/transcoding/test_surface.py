"""Tests for the drawing surface."""

import numpy as np
import pytest

from portfolio_media.modules.transcoding.surface import DrawingSurface


class TestDrawingSurface:
    def test_same_size_frame_copied(self) -> None:
        surface = DrawingSurface(4, 2)
        frame = np.arange(4 * 2 * 3, dtype=np.uint8).reshape(2, 4, 3)

        surface.draw(frame)

        assert surface.to_bytes() == frame.tobytes()

    def test_frame_downscaled_to_surface_size(self) -> None:
        surface = DrawingSurface(2, 2)
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame[:2, :2] = 10
        frame[:2, 2:] = 20
        frame[2:, :2] = 30
        frame[2:, 2:] = 40

        surface.draw(frame)

        pixels = np.frombuffer(surface.to_bytes(), dtype=np.uint8).reshape(2, 2, 3)
        assert pixels[0, 0, 0] == 10
        assert pixels[0, 1, 0] == 20
        assert pixels[1, 0, 0] == 30
        assert pixels[1, 1, 0] == 40

    def test_frame_size(self) -> None:
        surface = DrawingSurface(1920, 1080)
        assert surface.frame_size == 1920 * 1080 * 3
        assert len(surface.to_bytes()) == surface.frame_size

    def test_bad_shape_rejected(self) -> None:
        surface = DrawingSurface(4, 4)
        with pytest.raises(ValueError):
            surface.draw(np.zeros((4, 4), dtype=np.uint8))

    def test_draw_after_release_fails(self) -> None:
        surface = DrawingSurface(4, 4)
        surface.release()

        assert surface.released
        with pytest.raises(RuntimeError):
            surface.draw(np.zeros((4, 4, 3), dtype=np.uint8))
