"""Job lifecycle controller.

Owns every status change of every job.  A submitted job is stored as
``pending`` and its pipeline is scheduled on a worker pool::

    processing  0   started
                10  ingest       (decode / rasterize)
                30  separation   (C, M, Y, K)
                60  underbase    (white)
                80  assembly     (write layers + preview)
    processed   100              manifest attached
    printing    0                dispatch claimed        (auto or manual)
    printed     100              dispatch result attached

Any stage error moves the job to ``error`` with the message attached; no
further stage runs and nothing is retried.

Ordering guarantees:
    - Write-then-notify: the repository is updated before the matching
      event is published, so a subscriber that re-reads the repository on
      an event sees at least that update.
    - Events of one job are published under that job's lock, in the order
      the transitions happened.

Concurrency:
    - Jobs run in parallel; they share no buffers.
    - Separation and underbase of one job may run side by side
      (``parallel_stages``); both only read the canonical buffer.
    - Deleting a job sets its cancel token.  The pipeline checks the token
      before every transition, stops at the next one, and removes any
      output it wrote.
    - ``processed -> printing`` is a compare-and-set under the job lock,
      so of two concurrent print triggers exactly one wins; the other gets
      ``JobNotReady`` and the job is left untouched.
    - Per-job locks, cancel tokens and futures are released once the
      job's scheduled work settles; a long-running controller keeps no
      bookkeeping for finished jobs.
"""

from __future__ import annotations

import logging
import threading
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any

from dtf_rip.configs.loader import ProcessingConfig, RipConfig, SeparationConfig
from dtf_rip.errors import (
    InvalidTransition,
    JobCancelled,
    JobNotFound,
    JobNotReady,
    PrinterNotFound,
    ProfileNotFound,
    RipError,
)
from dtf_rip.imaging.assembler import LayerAssembler
from dtf_rip.imaging.buffers import WHITE_CHANNEL, ChannelBuffer, PixelBuffer
from dtf_rip.imaging.ingest import load_canonical
from dtf_rip.imaging.separation import separate
from dtf_rip.imaging.underbase import generate_underbase, resolve_expansion
from dtf_rip.jobs.events import EventBus
from dtf_rip.jobs.models import Job, JobEvent, JobStatus
from dtf_rip.jobs.repository import JobRepository, JsonJobRepository
from dtf_rip.jobs.dispatch import DispatchBridge
from dtf_rip.printers.registry import JsonPrinterRegistry, PrinterRegistry
from dtf_rip.profiles.models import STANDARD_PROFILE_ID, ColorProfile
from dtf_rip.profiles.store import ColorProfileStore, JsonProfileStore
from dtf_rip.utils.logging_config import job_context

logger = logging.getLogger(__name__)


class JobController:
    """Sequences pipeline stages and dispatch for every job.

    Parameters
    ----------
    repository : JobRepository
        Job records (shared, persisted).
    profiles : ColorProfileStore
        Color profile lookup.
    printers : PrinterRegistry
        Printer lookup and transport.
    assembler : LayerAssembler
        Writes and removes job output directories.
    bus : EventBus | None
        Progress event channel; a private bus is created if omitted.
    processing : ProcessingConfig | None
        Worker counts, band height, PDF scale.
    separation : SeparationConfig | None
        C/M/Y multipliers by profile id.
    """

    def __init__(
        self,
        repository: JobRepository,
        profiles: ColorProfileStore,
        printers: PrinterRegistry,
        assembler: LayerAssembler,
        bus: EventBus | None = None,
        *,
        processing: ProcessingConfig | None = None,
        separation: SeparationConfig | None = None,
    ) -> None:
        self._repo = repository
        self._profiles = profiles
        self._printers = printers
        self._assembler = assembler
        self._bridge = DispatchBridge(printers)
        self.bus = bus if bus is not None else EventBus()
        self._proc = processing or ProcessingConfig()
        self._sep = separation or SeparationConfig()

        self._executor = ThreadPoolExecutor(
            max_workers=self._proc.max_workers, thread_name_prefix="rip-job",
        )
        self._stage_pool = (
            ThreadPoolExecutor(
                max_workers=self._proc.max_workers, thread_name_prefix="rip-stage",
            )
            if self._proc.parallel_stages else None
        )

        self._registry_lock = threading.Lock()
        # Locks live only while some thread holds one; tokens and futures are
        # dropped once the job settles.
        self._job_locks: weakref.WeakValueDictionary[str, Any] = weakref.WeakValueDictionary()
        self._cancel_tokens: dict[str, threading.Event] = {}
        self._futures: dict[str, Future] = {}
        self._closed = False

    @classmethod
    def from_config(cls, cfg: RipConfig, bus: EventBus | None = None) -> "JobController":
        """Controller backed by the JSON stores named in *cfg*."""
        st = cfg.storage
        return cls(
            repository=JsonJobRepository(st.jobs_file),
            profiles=JsonProfileStore(st.profiles_file, st.profiles_dir),
            printers=JsonPrinterRegistry(
                st.printers_file, simulated_print_s=cfg.dispatch.simulated_print_s,
            ),
            assembler=LayerAssembler(st.output_dir, cfg.processing.preview_max_px),
            bus=bus,
            processing=cfg.processing,
            separation=cfg.separation,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def repository(self) -> JobRepository:
        return self._repo

    @property
    def printers(self) -> PrinterRegistry:
        return self._printers

    @property
    def profiles(self) -> ColorProfileStore:
        return self._profiles

    def get(self, job_id: str) -> Job | None:
        return self._repo.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self._repo.get_all()

    # ------------------------------------------------------------------
    # Submission and processing
    # ------------------------------------------------------------------

    def submit(
        self,
        source_file: str | Path,
        *,
        printer_id: str,
        file_name: str | None = None,
        name: str | None = None,
        color_profile_id: str | None = None,
        auto_print: bool = False,
        white_expansion: int = 0,
    ) -> Job:
        """Create a ``pending`` job and schedule its pipeline.

        Raises
        ------
        ProfileNotFound
            Unknown color profile; nothing is stored.
        PrinterNotFound
            Unknown printer; nothing is stored.
        """
        if self._closed:
            raise RipError("Job controller is shut down")

        profile_id = color_profile_id or STANDARD_PROFILE_ID
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFound(f"Color profile not found: {profile_id}")
        # The job keeps the settings it was submitted with
        profile = profile.model_copy(deep=True)
        if self._printers.get(printer_id) is None:
            raise PrinterNotFound(f"Printer not found: {printer_id}")

        job = Job(
            name=name or "",
            source_file=str(source_file),
            file_name=file_name or "",
            printer_id=printer_id,
            color_profile_id=profile_id,
            auto_print=auto_print,
            white_expansion=white_expansion,
        )
        cancel = self._cancel_token(job.id)
        with self._job_lock(job.id):
            self._repo.append(job)
            self.bus.publish(JobEvent.from_job(job, "Job queued"))
        logger.info("Queued job %s (%s) for %s", job.id, job.file_name, printer_id)

        self._track(
            job.id, self._executor.submit(self._run_pipeline, job.id, profile, cancel),
        )
        return job

    def _run_pipeline(
        self, job_id: str, profile: ColorProfile, cancel: threading.Event,
    ) -> Job | None:
        with job_context(job_id):
            try:
                return self._run_stages(job_id, profile, cancel)
            finally:
                self._settle(job_id, cancel)

    def _run_stages(
        self, job_id: str, profile: ColorProfile, cancel: threading.Event,
    ) -> Job | None:
        try:
            job = self._process(job_id, profile, cancel)
        except JobCancelled:
            logger.info("Job %s was deleted during processing; output discarded", job_id)
            self._assembler.remove(job_id)
            return None
        except RipError as exc:
            logger.error("Job processing failed: %s", exc)
            return self._fail(job_id, cancel, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while processing job %s", job_id)
            return self._fail(job_id, cancel, exc)

        if job.auto_print:
            try:
                return self.print_job(job_id)
            except JobNotReady as exc:
                logger.info("Auto-print skipped: %s", exc)
            except RipError as exc:
                logger.debug("Auto-print ended in error: %s", exc)
        return self._repo.get(job_id)

    def _process(self, job_id: str, profile: ColorProfile, cancel: threading.Event) -> Job:
        job = self._transition(
            job_id, cancel, "Processing started",
            status=JobStatus.PROCESSING, progress=0,
        )

        self._transition(job_id, cancel, "Analyzing input file", progress=10)
        canonical = load_canonical(
            job.source_file, job.file_name, pdf_scale=self._proc.pdf_scale,
        )

        channels = self._separate_layers(job, profile, canonical, cancel)

        self._transition(job_id, cancel, "Saving processed files", progress=80)
        manifest = self._assembler.assemble(job_id, channels, canonical)

        return self._transition(
            job_id, cancel, "Processing complete",
            status=JobStatus.PROCESSED,
            progress=100,
            output_manifest=manifest.files,
            output_dir=str(manifest.output_dir),
        )

    def _separate_layers(
        self,
        job: Job,
        profile: ColorProfile,
        canonical: PixelBuffer,
        cancel: threading.Event,
    ) -> dict[str, ChannelBuffer]:
        """Run separation and underbase, side by side when configured."""
        sep_kwargs: dict[str, Any] = {
            "cmy_scale_by_profile": self._sep.cmy_scale_by_profile,
            "rows_per_band": self._proc.rows_per_band,
            "workers": self._proc.separation_workers,
        }
        expansion = resolve_expansion(profile, job.white_expansion)

        self._transition(job.id, cancel, "Applying color separation", progress=30)
        if self._stage_pool is not None:
            pending = self._stage_pool.submit(separate, canonical, profile, **sep_kwargs)
            try:
                self._transition(job.id, cancel, "Generating white underbase", progress=60)
                white = generate_underbase(canonical, expansion=expansion)
            except RipError:
                pending.cancel()
                raise
            channels = pending.result()
        else:
            channels = separate(canonical, profile, **sep_kwargs)
            self._transition(job.id, cancel, "Generating white underbase", progress=60)
            white = generate_underbase(canonical, expansion=expansion)

        channels[WHITE_CHANNEL] = white
        return channels

    # ------------------------------------------------------------------
    # Printing
    # ------------------------------------------------------------------

    def print_job(self, job_id: str, *, wait: bool = True) -> Any:
        """Dispatch a ``processed`` job to its printer.

        Parameters
        ----------
        job_id : str
            Job to print.
        wait : bool
            Block until the printer reports back and return the final job;
            otherwise return a ``Future`` of it.

        Raises
        ------
        JobNotFound
            Unknown job.
        JobNotReady
            Job is not ``processed`` (including: another trigger already
            claimed it).  The job is not modified.
        PrinterNotFound, PrinterNotReady, DispatchFailure
            When waiting; the job has been moved to ``error``.
        """
        snapshot = self._claim_for_printing(job_id)
        if wait:
            return self._dispatch_claimed(snapshot)
        future = self._executor.submit(self._dispatch_claimed, snapshot)
        self._track(job_id, future)
        return future

    def _claim_for_printing(self, job_id: str) -> Job:
        with self._job_lock(job_id):
            current = self._repo.get(job_id)
            if current is None:
                raise JobNotFound(f"Job not found: {job_id}")
            if current.status is not JobStatus.PROCESSED:
                raise JobNotReady(
                    f"Job {job_id} is not ready for printing (status: {current.status.value})"
                )
            # A delete removes the record under this lock, so the repository
            # read above already rules out a deleted job.
            self._transition(
                job_id, None, "Sending to printer",
                status=JobStatus.PRINTING, progress=0,
            )
        return current

    def _dispatch_claimed(self, snapshot: Job) -> Job | None:
        job_id = snapshot.id
        cancel = self._cancel_token(job_id)
        with job_context(job_id):
            try:
                result = self._bridge.dispatch(snapshot)
            except RipError as exc:
                logger.error("Job printing failed: %s", exc)
                self._fail(job_id, cancel, exc)
                raise
            else:
                try:
                    return self._transition(
                        job_id, cancel, "Printing complete",
                        status=JobStatus.PRINTED, progress=100, dispatch_result=result,
                    )
                except JobCancelled:
                    logger.info("Job %s was deleted while printing", job_id)
                    return None
            finally:
                self._settle(job_id, cancel)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, job_id: str) -> bool:
        """Remove a job and its output directory.

        An in-flight pipeline is cancelled at its next transition.  Deleting
        an unknown (or already deleted) id returns False.
        """
        token = self._cancel_token(job_id)
        with self._job_lock(job_id):
            token.set()
            removed = self._repo.remove(job_id)
        if removed is None:
            self._forget(job_id)
            return False

        self._assembler.remove(job_id)
        self._forget(job_id)
        logger.info("Deleted job %s", job_id)
        return True

    def clear(
        self,
        status: JobStatus | None = None,
        older_than: datetime | None = None,
    ) -> int:
        """Delete every job matching *status* and created before *older_than*."""
        doomed = [
            job.id for job in self._repo.get_all()
            if (status is None or job.status is status)
            and (older_than is None or job.created_at < older_than)
        ]
        return sum(1 for job_id in doomed if self.delete(job_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wait(self, job_id: str, timeout: float | None = None) -> Job | None:
        """Block until the job's scheduled work finishes; return its record.

        Work that already settled is no longer tracked, so the repository
        record is returned straight away.
        """
        with self._registry_lock:
            future = self._futures.get(job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except RipError:
                pass
        return self._repo.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)
        if self._stage_pool is not None:
            self._stage_pool.shutdown(wait=wait)

    def __enter__(self) -> "JobController":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        job_id: str,
        cancel: threading.Event | None,
        message: str | None = None,
        **fields: Any,
    ) -> Job:
        """Validate, persist, then publish one change of a job.

        Raises
        ------
        JobCancelled
            The job was deleted (token set or record gone).
        InvalidTransition
            The status change or progress decrease is not allowed.
        """
        with self._job_lock(job_id):
            if cancel is not None and cancel.is_set():
                raise JobCancelled(f"Job {job_id} was deleted")
            current = self._repo.get(job_id)
            if current is None:
                raise JobCancelled(f"Job {job_id} no longer exists")

            target = fields.get("status", current.status)
            if target is not current.status:
                current.status.check_transition(target)
            elif fields.get("progress", current.progress) < current.progress:
                raise InvalidTransition(
                    f"Progress of job {job_id} cannot go from "
                    f"{current.progress} to {fields['progress']}"
                )

            updated = self._repo.update(job_id, **fields)
            if updated is None:
                raise JobCancelled(f"Job {job_id} no longer exists")
            self.bus.publish(JobEvent.from_job(updated, message))

        logger.debug("Job %s -> %s %d%%", job_id, updated.status.value, updated.progress)
        return updated

    def _fail(self, job_id: str, cancel: threading.Event, exc: BaseException) -> Job | None:
        """Record *exc* on the job and move it to ``error``."""
        message = str(exc) or type(exc).__name__
        try:
            return self._transition(
                job_id, cancel, "Job failed", status=JobStatus.ERROR, error=message,
            )
        except JobCancelled:
            return None
        except Exception:  # noqa: BLE001
            logger.exception("Could not record failure of job %s", job_id)
            return None

    def _job_lock(self, job_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._job_locks.get(job_id)
            if lock is None:
                lock = self._job_locks[job_id] = threading.RLock()
            return lock

    def _cancel_token(self, job_id: str) -> threading.Event:
        with self._registry_lock:
            token = self._cancel_tokens.get(job_id)
            if token is None:
                token = self._cancel_tokens[job_id] = threading.Event()
            return token

    def _track(self, job_id: str, future: Future) -> None:
        with self._registry_lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda done: self._untrack(job_id, done))

    def _untrack(self, job_id: str, future: Future) -> None:
        with self._registry_lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]

    def _settle(self, job_id: str, token: threading.Event) -> None:
        """Drop the cancel token of a job whose scheduled work has ended."""
        with self._registry_lock:
            if self._cancel_tokens.get(job_id) is token:
                del self._cancel_tokens[job_id]

    def _forget(self, job_id: str) -> None:
        with self._registry_lock:
            self._cancel_tokens.pop(job_id, None)
