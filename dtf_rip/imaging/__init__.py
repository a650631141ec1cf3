"""
Imaging pipeline stages.

Ingest artwork into a canonical RGBA buffer, separate it into CMYK ink
channels, derive the white underbase, and persist the layer set.
"""

from dtf_rip.imaging.assembler import LayerAssembler, LayerManifest
from dtf_rip.imaging.buffers import ALL_CHANNELS, CMYK_CHANNELS, ChannelBuffer, PixelBuffer
from dtf_rip.imaging.ingest import load_canonical
from dtf_rip.imaging.separation import separate
from dtf_rip.imaging.underbase import generate_underbase

__all__ = [
    "ALL_CHANNELS",
    "CMYK_CHANNELS",
    "ChannelBuffer",
    "LayerAssembler",
    "LayerManifest",
    "PixelBuffer",
    "generate_underbase",
    "load_canonical",
    "separate",
]
