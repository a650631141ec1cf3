"""Shared fixtures: small artwork files and profile lookup."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from dtf_rip.imaging.buffers import PixelBuffer
from dtf_rip.profiles.models import ColorProfile, default_profiles


def make_buffer(pixels: list[list[tuple[int, int, int, int]]]) -> PixelBuffer:
    """PixelBuffer from nested rows of RGBA tuples."""
    return PixelBuffer(np.array(pixels, dtype=np.uint8))


@pytest.fixture()
def profiles() -> dict[str, ColorProfile]:
    return {p.id: p for p in default_profiles()}


@pytest.fixture()
def red_white_png(tmp_path: Path) -> Path:
    """2x2 opaque PNG: red at (0, 0), white elsewhere."""
    rgba = np.full((2, 2, 4), 255, dtype=np.uint8)
    rgba[0, 0] = (255, 0, 0, 255)
    path = tmp_path / "red_white.png"
    Image.fromarray(rgba).save(path)
    return path


@pytest.fixture()
def logo_png(tmp_path: Path) -> Path:
    """40x30 PNG: opaque blue square on a transparent background."""
    rgba = np.zeros((30, 40, 4), dtype=np.uint8)
    rgba[10:20, 12:28] = (20, 60, 200, 255)
    path = tmp_path / "logo.png"
    Image.fromarray(rgba).save(path)
    return path
