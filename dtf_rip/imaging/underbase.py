"""White underbase generation.

White ink intensity comes from opacity alone: an opaque pixel gets full
white, a transparent one none, whatever its color.

Expansion grows the mask so the white backing reaches slightly past the
artwork edge and no bare film shows around colored ink.  Each pass blurs
the mask with a 3x3 box filter and re-thresholds it: a pixel whose blurred
value is non-zero is raised to at least the ceiling of that value, and no
pixel is ever lowered.  The non-zero set therefore only grows with the
number of passes.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import ndimage

from dtf_rip.errors import UnderbaseFailure
from dtf_rip.imaging.buffers import WHITE_CHANNEL, ChannelBuffer, PixelBuffer
from dtf_rip.profiles.models import ColorProfile

logger = logging.getLogger(__name__)


def resolve_expansion(profile: ColorProfile | None, job_expansion: int = 0) -> int:
    """Per-job expansion wins; otherwise the profile's, otherwise none."""
    if job_expansion > 0:
        return int(job_expansion)
    if profile is not None:
        return int(profile.settings.white_expansion)
    return 0


def expand_mask(mask: np.ndarray, passes: int) -> np.ndarray:
    """Grow a uint8 mask by *passes* blur + re-threshold steps."""
    out = mask.astype(np.float64)
    for _ in range(passes):
        blurred = ndimage.uniform_filter(out, size=3, mode="constant", cval=0.0)
        # uniform_filter can leave ~1e-17 noise where the true value is 0
        blurred[blurred < 1e-9] = 0.0
        out = np.maximum(out, np.ceil(blurred))
    return np.clip(out, 0, 255).astype(np.uint8)


def generate_underbase(buffer: PixelBuffer, *, expansion: int = 0) -> ChannelBuffer:
    """Derive the white channel from the canonical buffer's alpha.

    Parameters
    ----------
    buffer : PixelBuffer
        Canonical RGBA buffer (read only).
    expansion : int
        Number of growth passes; 0 leaves the mask equal to alpha.

    Returns
    -------
    ChannelBuffer
        ``white`` channel with the canonical buffer's shape.

    Raises
    ------
    UnderbaseFailure
        If the buffer is unreadable or *expansion* is negative.
    """
    rgba = getattr(buffer, "rgba", None)
    if not isinstance(rgba, np.ndarray) or rgba.ndim != 3 or rgba.shape[2] != 4:
        raise UnderbaseFailure("Canonical buffer is not a readable RGBA array")
    if expansion < 0:
        raise UnderbaseFailure(f"White expansion must be >= 0, got {expansion}")

    alpha = np.array(rgba[..., 3], dtype=np.uint8)
    # round(alpha / 255 * 255) == alpha for 8-bit samples
    white = alpha.copy()
    if expansion > 0:
        white = expand_mask(white, expansion)
        logger.debug(
            "Expanded underbase by %d pass(es): %d -> %d covered pixels",
            expansion, int(np.count_nonzero(alpha)), int(np.count_nonzero(white)),
        )
    return ChannelBuffer(WHITE_CHANNEL, white, alpha)
