"""Pixel and channel buffers passed between pipeline stages.

Shapes:
    - PixelBuffer.rgba: (H, W, 4) uint8, RGBA
    - ChannelBuffer.values / .alpha: (H, W) uint8

The canonical buffer is produced once per job and is read-only from then
on; its array is flagged non-writeable so separation and underbase can
share it without copying.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

CMYK_CHANNELS: tuple[str, ...] = ("cyan", "magenta", "yellow", "black")
WHITE_CHANNEL = "white"
ALL_CHANNELS: tuple[str, ...] = CMYK_CHANNELS + (WHITE_CHANNEL,)
"""Ink order used for persistence and dispatch."""


@dataclass(frozen=True)
class PixelBuffer:
    """Canonical RGBA buffer for one job."""

    rgba: np.ndarray

    def __post_init__(self) -> None:
        arr = self.rgba
        if not isinstance(arr, np.ndarray) or arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(
                f"PixelBuffer expects an (H, W, 4) array, got "
                f"{getattr(arr, 'shape', type(arr).__name__)}"
            )
        if arr.dtype != np.uint8:
            raise ValueError(f"PixelBuffer expects uint8 samples, got {arr.dtype}")
        arr.setflags(write=False)

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        """(height, width)"""
        return (self.height, self.width)

    @property
    def alpha(self) -> np.ndarray:
        return self.rgba[..., 3]


@dataclass(frozen=True)
class ChannelBuffer:
    """Single-ink intensity samples plus the source alpha."""

    name: str
    values: np.ndarray
    alpha: np.ndarray

    def __post_init__(self) -> None:
        if self.values.shape != self.alpha.shape or self.values.ndim != 2:
            raise ValueError(
                f"Channel {self.name!r}: values {self.values.shape} and alpha "
                f"{self.alpha.shape} must be matching (H, W) arrays"
            )
        if self.values.dtype != np.uint8 or self.alpha.dtype != np.uint8:
            raise ValueError(f"Channel {self.name!r}: samples must be uint8")

    @property
    def shape(self) -> tuple[int, int]:
        return (int(self.values.shape[0]), int(self.values.shape[1]))
