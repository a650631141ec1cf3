"""Image ingestion -- source artwork to canonical RGBA buffer.

Raster files (``.png``, ``.jpg``, ``.jpeg``) are decoded with Pillow and
converted to RGBA.  PDF files are rasterized with pypdfium2: only the
first page is rendered, at a fixed scale onto a transparent background,
so vector artwork keeps its cut-out edges.  Extra pages are ignored.

Ingestion has no side effects beyond reading the source file.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pypdfium2 as pdfium
from PIL import Image, UnidentifiedImageError

from dtf_rip.errors import DecodeFailure, RenderFailure, UnsupportedFormat
from dtf_rip.imaging.buffers import PixelBuffer

logger = logging.getLogger(__name__)

RASTER_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})
VECTOR_EXTENSIONS = frozenset({".pdf"})
SUPPORTED_EXTENSIONS = RASTER_EXTENSIONS | VECTOR_EXTENSIONS

DEFAULT_PDF_SCALE = 2.0


def detect_extension(path: str | Path, file_name: str | None = None) -> str:
    """Return the lower-cased extension of *file_name*, falling back to *path*.

    Uploads are often stored under generated names, so the original file
    name decides the format when it is known.
    """
    return Path(file_name or str(path)).suffix.lower()


def load_canonical(
    path: str | Path,
    file_name: str | None = None,
    *,
    pdf_scale: float = DEFAULT_PDF_SCALE,
) -> PixelBuffer:
    """Decode or rasterize *path* into the canonical buffer.

    Parameters
    ----------
    path : str | Path
        Location of the source artwork.
    file_name : str | None
        Original file name; its extension selects the decoder.
    pdf_scale : float
        Render scale for vector input (1.0 = 72 dpi).

    Returns
    -------
    PixelBuffer
        (H, W, 4) uint8 RGBA buffer.

    Raises
    ------
    UnsupportedFormat
        Unknown extension.
    DecodeFailure
        Raster file missing or corrupt.
    RenderFailure
        PDF missing, empty or not renderable.
    """
    ext = detect_extension(path, file_name)
    if ext in RASTER_EXTENSIONS:
        return _decode_raster(Path(path))
    if ext in VECTOR_EXTENSIONS:
        return _render_pdf_first_page(Path(path), pdf_scale)
    raise UnsupportedFormat(
        f"Unsupported file type '{ext or '(none)'}'; expected one of "
        f"{', '.join(sorted(SUPPORTED_EXTENSIONS))}"
    )


def _decode_raster(path: Path) -> PixelBuffer:
    try:
        with Image.open(path) as img:
            img.load()
            rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
    # Damaged chunks past the header surface from load() as SyntaxError
    # (PNG) or ValueError, not as OSError.
    except (
        UnidentifiedImageError,
        OSError,
        SyntaxError,
        ValueError,
        Image.DecompressionBombError,
    ) as exc:
        raise DecodeFailure(f"Failed to decode image {path.name}: {exc}") from exc

    logger.info("Decoded %s (%dx%d)", path.name, rgba.shape[1], rgba.shape[0])
    return PixelBuffer(rgba)


def _render_pdf_first_page(path: Path, scale: float) -> PixelBuffer:
    try:
        pdf = pdfium.PdfDocument(str(path))
    except (pdfium.PdfiumError, OSError) as exc:
        raise RenderFailure(f"Failed to open PDF {path.name}: {exc}") from exc

    try:
        page_count = len(pdf)
        if page_count == 0:
            raise RenderFailure(f"PDF {path.name} has no pages")
        if page_count > 1:
            logger.warning(
                "PDF %s has %d pages; only the first is processed",
                path.name, page_count,
            )
        page = pdf[0]
        try:
            bitmap = page.render(scale=scale, fill_color=(0, 0, 0, 0))
            rgba = np.array(bitmap.to_pil().convert("RGBA"), dtype=np.uint8)
        finally:
            page.close()
    except pdfium.PdfiumError as exc:
        raise RenderFailure(f"Failed to render PDF {path.name}: {exc}") from exc
    finally:
        pdf.close()

    logger.info(
        "Rendered %s page 1 at %.1fx (%dx%d)",
        path.name, scale, rgba.shape[1], rgba.shape[0],
    )
    return PixelBuffer(rgba)
