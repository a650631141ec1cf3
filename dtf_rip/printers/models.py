"""Printer and dispatch records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PrinterState = Literal["online", "offline", "printing", "error"]

DEFAULT_INK_LEVELS: Dict[str, int] = {"C": 80, "M": 75, "Y": 90, "K": 85, "W": 60}


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PrinterCapabilities(_Record):
    """Printable area in mm, resolution and ink set."""

    max_width: float = Field(329, gt=0)
    max_height: float = Field(1200, gt=0)
    resolution_dpi: int = Field(1440, gt=0)
    color_channels: List[str] = Field(default_factory=lambda: ["C", "M", "Y", "K", "W"])


class PrinterRecord(_Record):
    """A configured printer."""

    id: str
    name: str = "New Printer"
    model: str = "Unknown"
    type: str = "DTF"
    status: PrinterState = "offline"
    capabilities: PrinterCapabilities = Field(default_factory=PrinterCapabilities)
    connection: Dict[str, Any] = Field(default_factory=lambda: {"type": "usb", "port": "auto"})
    ink_levels: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_INK_LEVELS))


class DispatchResult(_Record):
    """Outcome of a successful dispatch."""

    success: bool = True
    external_job_id: str
    printer_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def default_printers() -> list[PrinterRecord]:
    """Printers configured on a fresh installation."""
    return [
        PrinterRecord(
            id="printer1",
            name="DTF Printer 1",
            model="Epson L1800",
            capabilities=PrinterCapabilities(max_width=329, max_height=1200),
            connection={"type": "usb", "port": "auto"},
        ),
        PrinterRecord(
            id="printer2",
            name="DTF Printer 2",
            model="Epson L805",
            capabilities=PrinterCapabilities(max_width=210, max_height=1000),
            connection={"type": "network", "address": "192.168.1.100"},
        ),
    ]
