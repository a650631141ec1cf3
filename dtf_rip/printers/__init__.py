"""Printer records and registry."""

from dtf_rip.printers.models import (
    DispatchResult,
    PrinterCapabilities,
    PrinterRecord,
    default_printers,
)
from dtf_rip.printers.registry import (
    InMemoryPrinterRegistry,
    JsonPrinterRegistry,
    PrinterRegistry,
)

__all__ = [
    "DispatchResult",
    "InMemoryPrinterRegistry",
    "JsonPrinterRegistry",
    "PrinterCapabilities",
    "PrinterRecord",
    "PrinterRegistry",
    "default_printers",
]
