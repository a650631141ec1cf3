"""Color separation -- canonical RGBA buffer to C, M, Y, K ink channels.

Per pixel (all values normalised to [0, 1])::

    k = 1 - max(r, g, b)
    c = (1 - r - k) / (1 - k)      # likewise m (green), y (blue)
    c = m = y = 0                  # when k == 1 (pure black)

C/M/Y/K are expressed as percentages [0, 100].  Profiles listed in the
separation multiplier table (``vivid`` 1.1, ``muted`` 0.9 by default) scale
C, M and Y before clamping to [0, 100]; K is never rescaled and all other
profiles, ICC imports included, pass through unadjusted.  Percentages are
quantised to 8-bit with round-half-up (``pct / 100 * 255``).

Fully transparent pixels (alpha == 0) receive no ink in any channel.  Each
channel keeps the source alpha alongside its samples.

The buffer is processed in horizontal bands of ``rows_per_band`` scanlines.
Bands are independent, so with ``workers > 1`` they are spread over a
thread pool; numpy releases the GIL for the heavy array maths.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Mapping

import numpy as np

from dtf_rip.errors import SeparationFailure
from dtf_rip.imaging.buffers import CMYK_CHANNELS, ChannelBuffer, PixelBuffer
from dtf_rip.profiles.models import ColorProfile

logger = logging.getLogger(__name__)

DEFAULT_CMY_SCALE: Mapping[str, float] = {"vivid": 1.1, "muted": 0.9}


# ---------------------------------------------------------------------------
# Per-pixel maths (vectorised)
# ---------------------------------------------------------------------------


def rgb_to_cmyk_percent(rgb: np.ndarray) -> np.ndarray:
    """Convert uint8 RGB samples to CMYK percentages.

    Parameters
    ----------
    rgb : np.ndarray
        (..., 3) uint8 samples

    Returns
    -------
    np.ndarray
        (..., 4) float64 array of C, M, Y, K in [0, 100]
    """
    norm = rgb.astype(np.float64) / 255.0
    k = 1.0 - norm.max(axis=-1)
    denom = 1.0 - k

    out = np.zeros(rgb.shape[:-1] + (4,), dtype=np.float64)
    chromatic = denom > 0.0
    for i in range(3):
        # (1 - x - k) / (1 - k); zero where k == 1
        out[..., i] = np.divide(
            1.0 - norm[..., i] - k, denom,
            out=np.zeros_like(k), where=chromatic,
        )
    out[..., 3] = k
    return np.clip(out * 100.0, 0.0, 100.0)


def quantize_percent(pct: np.ndarray) -> np.ndarray:
    """Map [0, 100] percentages to uint8 with round-half-up."""
    return np.clip(np.floor(pct / 100.0 * 255.0 + 0.5), 0, 255).astype(np.uint8)


def cmy_multiplier(
    profile: ColorProfile,
    table: Mapping[str, float] | None = None,
) -> float:
    """Return the C/M/Y multiplier for *profile* (1.0 when unlisted)."""
    table = DEFAULT_CMY_SCALE if table is None else table
    if profile.type == "icc":
        return 1.0
    return float(table.get(profile.id, 1.0))


def _separate_band(rgba: np.ndarray, multiplier: float) -> np.ndarray:
    """Separate one band; returns (rows, W, 4) uint8 C, M, Y, K samples."""
    cmyk = rgb_to_cmyk_percent(rgba[..., :3])
    if multiplier != 1.0:
        cmyk[..., :3] = np.clip(cmyk[..., :3] * multiplier, 0.0, 100.0)
    samples = quantize_percent(cmyk)
    samples[rgba[..., 3] == 0] = 0
    return samples


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def separate(
    buffer: PixelBuffer,
    profile: ColorProfile,
    *,
    cmy_scale_by_profile: Mapping[str, float] | None = None,
    rows_per_band: int = 256,
    workers: int = 1,
) -> dict[str, ChannelBuffer]:
    """Split the canonical buffer into cyan, magenta, yellow and black.

    Parameters
    ----------
    buffer : PixelBuffer
        Canonical RGBA buffer (read only).
    profile : ColorProfile
        Resolved profile; its id selects the C/M/Y multiplier.
    cmy_scale_by_profile : Mapping[str, float] | None
        Multiplier table keyed by profile id.
    rows_per_band : int
        Scanlines per independently processed band.
    workers : int
        Threads used for bands; 1 processes them in-line.

    Returns
    -------
    dict[str, ChannelBuffer]
        Keys ``cyan``, ``magenta``, ``yellow``, ``black``; every buffer has
        the canonical buffer's shape.

    Raises
    ------
    SeparationFailure
        If the buffer is not a readable (H, W, 4) uint8 array.
    """
    rgba = getattr(buffer, "rgba", None)
    if not isinstance(rgba, np.ndarray) or rgba.ndim != 3 or rgba.shape[2] != 4:
        raise SeparationFailure("Canonical buffer is not a readable RGBA array")
    if rows_per_band < 1:
        raise SeparationFailure(f"rows_per_band must be >= 1, got {rows_per_band}")

    height, width = rgba.shape[:2]
    multiplier = cmy_multiplier(profile, cmy_scale_by_profile)
    samples = np.zeros((height, width, 4), dtype=np.uint8)
    bands = [(y0, min(y0 + rows_per_band, height)) for y0 in range(0, height, rows_per_band)]

    def run(band: tuple[int, int]) -> None:
        y0, y1 = band
        samples[y0:y1] = _separate_band(rgba[y0:y1], multiplier)

    try:
        if workers > 1 and len(bands) > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sep") as pool:
                list(pool.map(run, bands))
        else:
            for band in bands:
                run(band)
    except (ValueError, TypeError, MemoryError) as exc:
        raise SeparationFailure(f"Color separation failed: {exc}") from exc

    logger.debug(
        "Separated %dx%d in %d band(s), profile=%s multiplier=%.2f",
        width, height, len(bands), profile.id, multiplier,
    )

    alpha = np.array(rgba[..., 3], dtype=np.uint8)
    return {
        name: ChannelBuffer(name, np.ascontiguousarray(samples[..., i]), alpha)
        for i, name in enumerate(CMYK_CHANNELS)
    }
