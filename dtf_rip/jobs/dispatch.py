"""Printer dispatch bridge -- processed jobs to the printer registry.

Checks dispatch preconditions, then hands the job's channel files to the
printer registry in ink order.  The bridge never mutates the job; the
controller folds the returned ``DispatchResult`` (or the raised error)
into the job record.
"""

from __future__ import annotations

import logging
from typing import Mapping

from dtf_rip.errors import DispatchFailure, PrinterNotFound, PrinterNotReady, RipError
from dtf_rip.imaging.buffers import ALL_CHANNELS
from dtf_rip.jobs.models import Job, JobStatus
from dtf_rip.printers.models import DispatchResult
from dtf_rip.printers.registry import PrinterRegistry

logger = logging.getLogger(__name__)


def ordered_channel_files(manifest: Mapping[str, str]) -> list[str]:
    """Channel files in ink order; the preview is not sent."""
    missing = [name for name in ALL_CHANNELS if name not in manifest]
    if missing:
        raise DispatchFailure(f"Output manifest is missing: {', '.join(missing)}")
    return [manifest[name] for name in ALL_CHANNELS]


class DispatchBridge:
    """Sends processed jobs to printers.

    Parameters
    ----------
    registry : PrinterRegistry
        Printer lookup and transport.
    """

    def __init__(self, registry: PrinterRegistry) -> None:
        self._registry = registry

    def check_ready(self, job: Job) -> None:
        """Fail fast unless *job* is processed and its printer is online.

        Raises
        ------
        PrinterNotFound
            Unknown printer id.
        PrinterNotReady
            Job not ``processed`` or printer not ``online``.
        """
        if job.status is not JobStatus.PROCESSED:
            raise PrinterNotReady(
                f"Job {job.id} is not ready for printing (status: {job.status.value})"
            )
        printer = self._registry.get(job.printer_id)
        if printer is None:
            raise PrinterNotFound(f"Printer not found: {job.printer_id}")
        if printer.status != "online":
            raise PrinterNotReady(
                f"Printer {printer.id} is not online (status: {printer.status})"
            )

    def dispatch(self, job: Job) -> DispatchResult:
        """Send *job* (a ``processed`` snapshot) to its printer.

        Raises
        ------
        PrinterNotFound, PrinterNotReady
            Preconditions failed; nothing was sent.
        DispatchFailure
            Transport failed.
        """
        self.check_ready(job)
        files = ordered_channel_files(job.output_manifest or {})
        try:
            result = self._registry.dispatch(job.printer_id, job.id, files)
        except RipError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DispatchFailure(f"Dispatch of job {job.id} failed: {exc}") from exc

        logger.info(
            "Job %s printed on %s (external id %s)",
            job.id, job.printer_id, result.external_job_id,
        )
        return result
