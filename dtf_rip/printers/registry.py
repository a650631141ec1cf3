"""Printer registry.

Keeps printer records and performs the transport side of a dispatch.  The
shipped registries drive *simulated* printers: a dispatch flips the printer
to ``printing`` for ``simulated_print_s`` seconds and back to ``online``.
A ``transport`` callable can be injected to hand files to real hardware;
whatever it raises is reported as ``DispatchFailure``.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol, Sequence

from dtf_rip.errors import DispatchFailure, PrinterNotFound, PrinterNotReady, RipError
from dtf_rip.printers.models import (
    DispatchResult,
    PrinterRecord,
    PrinterState,
    default_printers,
)
from dtf_rip.utils import fs

logger = logging.getLogger(__name__)

Transport = Callable[[PrinterRecord, str, Sequence[str]], None]
"""(printer, job_id, channel files) -> None; raises on failure."""

StatusListener = Callable[[str, PrinterState], None]


class PrinterRegistry(Protocol):
    """Printer lookup and dispatch."""

    def get(self, printer_id: str) -> PrinterRecord | None: ...

    def get_all(self) -> list[PrinterRecord]: ...

    def status(self, printer_id: str) -> dict[str, Any] | None: ...

    def set_status(self, printer_id: str, status: PrinterState) -> PrinterRecord: ...

    def dispatch(
        self, printer_id: str, job_id: str, files: Sequence[str],
    ) -> DispatchResult: ...


class InMemoryPrinterRegistry:
    """Printer registry kept in process memory.

    Parameters
    ----------
    printers : Iterable[PrinterRecord] | None
        Initial printers; ``None`` installs the shipped defaults.
    simulated_print_s : float
        Time a simulated printer stays ``printing`` per dispatch.
    transport : Transport | None
        Optional hook that actually sends the files.
    """

    def __init__(
        self,
        printers: Iterable[PrinterRecord] | None = None,
        *,
        simulated_print_s: float = 0.0,
        transport: Transport | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._printers: list[PrinterRecord] = list(
            default_printers() if printers is None else printers
        )
        self._simulated_print_s = simulated_print_s
        self._transport = transport
        self._listeners: list[StatusListener] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, printer_id: str) -> PrinterRecord | None:
        with self._lock:
            found = next((p for p in self._printers if p.id == printer_id), None)
            return found.model_copy(deep=True) if found is not None else None

    def get_all(self) -> list[PrinterRecord]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._printers]

    def status(self, printer_id: str) -> dict[str, Any] | None:
        """Status summary with ink levels, or None for unknown printers."""
        printer = self.get(printer_id)
        if printer is None:
            return None
        return {
            "id": printer.id,
            "name": printer.name,
            "status": printer.status,
            "inkLevels": dict(printer.ink_levels),
        }

    def on_status(self, listener: StatusListener) -> None:
        """Register a callback for printer status changes."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, printer: PrinterRecord) -> PrinterRecord:
        with self._lock:
            if any(p.id == printer.id for p in self._printers):
                raise RipError(f"Printer already exists: {printer.id}")
            self._printers.append(printer)
            self._save()
        logger.info("Added printer %s (%s)", printer.id, printer.model)
        return printer

    def update(self, printer_id: str, **updates: Any) -> PrinterRecord | None:
        """Merge *updates* into a printer; the id never changes."""
        with self._lock:
            for idx, current in enumerate(self._printers):
                if current.id != printer_id:
                    continue
                merged = {**current.model_dump(), **updates, "id": printer_id}
                updated = PrinterRecord.model_validate(merged)
                self._printers[idx] = updated
                self._save()
                break
            else:
                return None
        if "status" in updates and updates["status"] != current.status:
            self._notify(printer_id, updated.status)
        return updated

    def set_status(self, printer_id: str, status: PrinterState) -> PrinterRecord:
        updated = self.update(printer_id, status=status)
        if updated is None:
            raise PrinterNotFound(f"Printer not found: {printer_id}")
        return updated

    def remove(self, printer_id: str) -> bool:
        with self._lock:
            before = len(self._printers)
            self._printers = [p for p in self._printers if p.id != printer_id]
            removed = len(self._printers) != before
            if removed:
                self._save()
        return removed

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(
        self, printer_id: str, job_id: str, files: Sequence[str],
    ) -> DispatchResult:
        """Send a job's channel files to a printer (blocking).

        Raises
        ------
        PrinterNotFound
            Unknown printer.
        PrinterNotReady
            Printer not ``online``; its record is left untouched.
        DispatchFailure
            The transport raised; the printer is marked ``error``.
        """
        with self._lock:
            printer = self.get(printer_id)
            if printer is None:
                raise PrinterNotFound(f"Printer not found: {printer_id}")
            if printer.status != "online":
                raise PrinterNotReady(
                    f"Printer {printer_id} is not online (status: {printer.status})"
                )
            self.set_status(printer_id, "printing")

        logger.info("Dispatching job %s to %s (%d files)", job_id, printer_id, len(files))
        try:
            if self._transport is not None:
                self._transport(printer, job_id, files)
            if self._simulated_print_s > 0:
                time.sleep(self._simulated_print_s)
        except Exception as exc:  # noqa: BLE001
            self.set_status(printer_id, "error")
            raise DispatchFailure(
                f"Failed to send job {job_id} to printer {printer_id}: {exc}"
            ) from exc

        self.set_status(printer_id, "online")
        return DispatchResult(
            external_job_id=f"print-{uuid.uuid4().hex[:12]}",
            printer_id=printer_id,
        )

    def _notify(self, printer_id: str, status: PrinterState) -> None:
        for listener in list(self._listeners):
            try:
                listener(printer_id, status)
            except Exception as exc:  # noqa: BLE001
                logger.error("Printer status listener error: %s", exc)

    def _save(self) -> None:
        pass


class JsonPrinterRegistry(InMemoryPrinterRegistry):
    """Printer registry persisted to a JSON file (defaults written if missing)."""

    def __init__(
        self,
        path: str | Path,
        *,
        simulated_print_s: float = 5.0,
        transport: Transport | None = None,
    ) -> None:
        self._path = Path(path)
        try:
            records = fs.load_json(self._path)
            printers = (
                None if records is None
                else [PrinterRecord.model_validate(r) for r in records]
            )
        except ValueError as exc:
            raise RipError(f"Invalid printer file {path}: {exc}") from exc
        super().__init__(printers, simulated_print_s=simulated_print_s, transport=transport)
        if records is None:
            self._save()

    def _save(self) -> None:
        fs.atomic_json_dump([p.to_record() for p in self._printers], self._path)
