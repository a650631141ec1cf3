"""Layer assembly -- persist channel buffers and the preview.

Output layout per job::

    <output_root>/<job_id>/
        cyan.png  magenta.png  yellow.png  black.png  white.png   (mode L)
        preview.png                                               (RGBA)

Writes are all-or-nothing: files go to a hidden staging directory that is
renamed to ``<job_id>`` only once every file is on disk.  Any failure
removes the staging directory and raises ``PersistFailure``; a partial
manifest is never returned.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from PIL import Image

from dtf_rip.errors import PersistFailure
from dtf_rip.imaging.buffers import ALL_CHANNELS, ChannelBuffer, PixelBuffer
from dtf_rip.utils import fs

logger = logging.getLogger(__name__)

PREVIEW_KEY = "preview"
DEFAULT_PREVIEW_MAX_PX = 800


@dataclass(frozen=True)
class LayerManifest:
    """Stored files of one processed job."""

    job_id: str
    output_dir: Path
    files: dict[str, str]

    def channel_files(self) -> list[str]:
        """Channel file paths in ink order (cyan .. white)."""
        return [self.files[name] for name in ALL_CHANNELS]


def preview_size(width: int, height: int, max_px: int = DEFAULT_PREVIEW_MAX_PX) -> tuple[int, int]:
    """Fit (width, height) inside a max_px square, preserving aspect, no upscaling."""
    scale = min(1.0, max_px / width, max_px / height)
    return (max(1, round(width * scale)), max(1, round(height * scale)))


class LayerAssembler:
    """Writes job layers under a shared output root.

    Parameters
    ----------
    output_root : str | Path
        Parent directory of all job output directories.
    preview_max_px : int
        Bounding-box edge for the preview image.
    """

    def __init__(
        self,
        output_root: str | Path,
        preview_max_px: int = DEFAULT_PREVIEW_MAX_PX,
    ) -> None:
        self._root = Path(output_root)
        self._preview_max_px = preview_max_px

    @property
    def output_root(self) -> Path:
        return self._root

    def job_dir(self, job_id: str) -> Path:
        return self._root / job_id

    def assemble(
        self,
        job_id: str,
        channels: Mapping[str, ChannelBuffer],
        canonical: PixelBuffer,
    ) -> LayerManifest:
        """Persist all five channels and the preview.

        Raises
        ------
        PersistFailure
            If a channel is missing or mis-sized, or any write fails.
        """
        missing = [name for name in ALL_CHANNELS if name not in channels]
        if missing:
            raise PersistFailure(f"Missing channel buffers: {', '.join(missing)}")
        for name in ALL_CHANNELS:
            if channels[name].shape != canonical.shape:
                raise PersistFailure(
                    f"Channel {name} is {channels[name].shape}, "
                    f"expected {canonical.shape}"
                )

        final_dir = self.job_dir(job_id)
        staging = self._root / f".{job_id}.{uuid.uuid4().hex[:8]}.staging"

        try:
            fs.ensure_dir(staging)
            for name in ALL_CHANNELS:
                fs.atomic_save_image(channels[name].values, staging / f"{name}.png", mode="L")
            self._write_preview(canonical, staging / f"{PREVIEW_KEY}.png")

            if final_dir.exists():
                shutil.rmtree(final_dir)
            staging.replace(final_dir)
        except (OSError, RuntimeError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise PersistFailure(f"Failed to write layers for job {job_id}: {exc}") from exc

        files = {name: str(final_dir / f"{name}.png") for name in ALL_CHANNELS}
        files[PREVIEW_KEY] = str(final_dir / f"{PREVIEW_KEY}.png")
        logger.info("Wrote %d layer files to %s", len(files), final_dir)
        return LayerManifest(job_id=job_id, output_dir=final_dir, files=files)

    def _write_preview(self, canonical: PixelBuffer, path: Path) -> None:
        img = Image.fromarray(canonical.rgba)
        size = preview_size(canonical.width, canonical.height, self._preview_max_px)
        if size != (canonical.width, canonical.height):
            img = img.resize(size, Image.Resampling.LANCZOS)
        fs.atomic_save_image(img, path, mode="RGBA")

    def remove(self, job_id: str) -> bool:
        """Delete a job's output directory; False if there was none."""
        removed = fs.remove_tree(self.job_dir(job_id))
        for leftover in self._root.glob(f".{job_id}.*.staging"):
            shutil.rmtree(leftover, ignore_errors=True)
        return removed
