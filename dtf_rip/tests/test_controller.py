"""End-to-end tests for the job controller.

Covers:
    - Processing checkpoints 0 -> 10 -> 30 -> 60 -> 80 -> 100 and the manifest
    - Write-then-notify ordering
    - Stage failures, submit-time validation
    - Deletion (idempotent, cancels an in-flight pipeline)
    - Manual and automatic printing, the single-winner dispatch claim,
      offline printers and transport failures
"""

from __future__ import annotations

import gc
import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from dtf_rip.configs.loader import ProcessingConfig, load_config
from dtf_rip.errors import (
    DispatchFailure,
    JobNotFound,
    JobNotReady,
    PrinterNotFound,
    PrinterNotReady,
    ProfileNotFound,
)
from dtf_rip.imaging.assembler import LayerAssembler
from dtf_rip.imaging.ingest import load_canonical
from dtf_rip.jobs import controller as controller_module
from dtf_rip.jobs.controller import JobController
from dtf_rip.jobs.events import EventBus
from dtf_rip.jobs.models import JobStatus
from dtf_rip.jobs.repository import InMemoryJobRepository
from dtf_rip.printers.registry import InMemoryPrinterRegistry
from dtf_rip.profiles.store import InMemoryProfileStore

MANIFEST_KEYS = {"cyan", "magenta", "yellow", "black", "white", "preview"}

RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.PROCESSED: 2,
    JobStatus.PRINTING: 3,
    JobStatus.PRINTED: 4,
}


def _make_controller(tmp_path: Path, printers=None, profiles=None, **proc) -> JobController:
    if printers is None:
        printers = InMemoryPrinterRegistry()
        printers.set_status("printer1", "online")
    return JobController(
        repository=InMemoryJobRepository(),
        profiles=profiles or InMemoryProfileStore(),
        printers=printers,
        assembler=LayerAssembler(tmp_path / "jobs"),
        bus=EventBus(),
        processing=ProcessingConfig(max_workers=2, **proc),
    )


@pytest.fixture()
def controller(tmp_path: Path):
    ctl = _make_controller(tmp_path)
    yield ctl
    ctl.shutdown()


def _layer(path: str) -> np.ndarray:
    with Image.open(path) as img:
        return np.array(img)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class TestProcessing:
    def test_end_to_end(self, controller, red_white_png: Path) -> None:
        sub = controller.bus.subscribe()
        job = controller.submit(red_white_png, printer_id="printer1")
        final = controller.wait(job.id, timeout=30)

        assert final.status is JobStatus.PROCESSED
        assert final.progress == 100
        assert set(final.output_manifest) == MANIFEST_KEYS
        assert final.error is None

        events = [e for e in sub.drain() if e.job_id == job.id]
        assert [(e.status.value, e.progress) for e in events] == [
            ("pending", 0),
            ("processing", 0),
            ("processing", 10),
            ("processing", 30),
            ("processing", 60),
            ("processing", 80),
            ("processed", 100),
        ]
        assert events[-1].output_manifest == final.output_manifest

        files = final.output_manifest
        assert _layer(files["cyan"]).max() == 0
        assert _layer(files["magenta"]).tolist() == [[255, 0], [0, 0]]
        assert _layer(files["yellow"]).tolist() == [[255, 0], [0, 0]]
        assert _layer(files["black"]).max() == 0
        assert _layer(files["white"]).min() == 255
        assert Path(final.output_dir) == controller._assembler.job_dir(job.id)

    @pytest.mark.parametrize("parallel_stages", [True, False])
    def test_stage_modes_agree(self, tmp_path: Path, logo_png: Path, parallel_stages: bool) -> None:
        ctl = _make_controller(tmp_path, parallel_stages=parallel_stages, rows_per_band=7)
        try:
            job = ctl.submit(logo_png, printer_id="printer1", white_expansion=1)
            final = ctl.wait(job.id, timeout=30)
        finally:
            ctl.shutdown()
        assert final.status is JobStatus.PROCESSED
        white = _layer(final.output_manifest["white"])
        # 10x16 opaque square grown by one pixel on every side
        assert np.count_nonzero(white) == 12 * 18

    def test_write_then_notify(self, controller, red_white_png: Path) -> None:
        violations: list[str] = []

        def check(event) -> None:
            record = controller.get(event.job_id)
            if record is None:
                violations.append(f"missing record at {event.status.value}")
            elif record.status is event.status:
                if record.progress < event.progress:
                    violations.append(f"stale progress at {event.progress}")
            elif RANK[record.status] < RANK[event.status]:
                violations.append(f"stale status at {event.status.value}")

        sub = controller.bus.subscribe(check)
        job = controller.submit(red_white_png, printer_id="printer1", auto_print=True)
        controller.wait(job.id, timeout=30)
        sub.join()
        sub.close()
        assert violations == []

    def test_named_job(self, controller, red_white_png: Path) -> None:
        job = controller.submit(
            red_white_png, printer_id="printer1", name="Club logo",
            file_name="logo.png", color_profile_id="vivid",
        )
        stored = controller.get(job.id)
        assert (stored.name, stored.file_name, stored.color_profile_id) == (
            "Club logo", "logo.png", "vivid",
        )
        controller.wait(job.id, timeout=30)

    def test_newest_first(self, controller, red_white_png: Path) -> None:
        first = controller.submit(red_white_png, printer_id="printer1")
        second = controller.submit(red_white_png, printer_id="printer1")
        controller.wait(first.id, timeout=30)
        controller.wait(second.id, timeout=30)
        assert [j.id for j in controller.list_jobs()] == [second.id, first.id]


class TestProcessingFailures:
    def test_unsupported_format(self, controller, tmp_path: Path) -> None:
        path = tmp_path / "art.gif"
        path.write_bytes(b"GIF89a")
        sub = controller.bus.subscribe()
        job = controller.submit(path, printer_id="printer1")
        final = controller.wait(job.id, timeout=30)

        assert final.status is JobStatus.ERROR
        assert "Unsupported file type" in final.error
        assert final.output_manifest is None
        assert not controller._assembler.job_dir(job.id).exists()
        statuses = [e.status for e in sub.drain()]
        assert statuses[-1] is JobStatus.ERROR
        assert JobStatus.PROCESSED not in statuses

    def test_corrupt_image(self, controller, tmp_path: Path) -> None:
        path = tmp_path / "art.png"
        path.write_bytes(b"\x89PNG broken")
        final = controller.wait(controller.submit(path, printer_id="printer1").id, timeout=30)
        assert final.status is JobStatus.ERROR
        assert final.error

    def test_unknown_profile(self, controller, red_white_png: Path) -> None:
        with pytest.raises(ProfileNotFound):
            controller.submit(red_white_png, printer_id="printer1", color_profile_id="neon")
        assert controller.list_jobs() == []

    def test_unknown_printer(self, controller, red_white_png: Path) -> None:
        with pytest.raises(PrinterNotFound):
            controller.submit(red_white_png, printer_id="printer9")
        assert controller.list_jobs() == []


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


@pytest.fixture()
def gated_ingest(monkeypatch):
    """Hold every pipeline at its ingest stage until ``release`` is set."""
    reached = threading.Event()
    release = threading.Event()

    def load(*args, **kwargs):
        reached.set()
        release.wait(10)
        return load_canonical(*args, **kwargs)

    monkeypatch.setattr(controller_module, "load_canonical", load)
    yield reached, release
    release.set()


class TestDeletion:
    def test_delete_processed_job(self, controller, red_white_png: Path) -> None:
        job = controller.submit(red_white_png, printer_id="printer1")
        controller.wait(job.id, timeout=30)
        out_dir = controller._assembler.job_dir(job.id)
        assert out_dir.exists()

        assert controller.delete(job.id) is True
        assert controller.get(job.id) is None
        assert not out_dir.exists()
        assert controller.delete(job.id) is False

    def test_delete_unknown(self, controller) -> None:
        assert controller.delete("does-not-exist") is False

    def test_delete_cancels_running_pipeline(
        self, controller, red_white_png: Path, gated_ingest,
    ) -> None:
        reached, release = gated_ingest
        sub = controller.bus.subscribe()
        job = controller.submit(red_white_png, printer_id="printer1")
        assert reached.wait(10)

        assert controller.delete(job.id) is True
        release.set()
        assert controller.wait(job.id, timeout=30) is None

        assert controller.get(job.id) is None
        assert not controller._assembler.job_dir(job.id).exists()
        events = [(e.status, e.progress) for e in sub.drain()]
        assert events == [
            (JobStatus.PENDING, 0),
            (JobStatus.PROCESSING, 0),
            (JobStatus.PROCESSING, 10),
        ]

    def test_clear_by_status(self, controller, red_white_png: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad.gif"
        bad.write_bytes(b"GIF89a")
        ok = controller.submit(red_white_png, printer_id="printer1")
        failed = controller.submit(bad, printer_id="printer1")
        controller.wait(ok.id, timeout=30)
        controller.wait(failed.id, timeout=30)

        assert controller.clear(status=JobStatus.ERROR) == 1
        assert [j.id for j in controller.list_jobs()] == [ok.id]
        assert controller.clear() == 1
        assert controller.list_jobs() == []


# ---------------------------------------------------------------------------
# Printing
# ---------------------------------------------------------------------------


class TestPrinting:
    def _processed(self, controller, path: Path, printer_id: str = "printer1"):
        job = controller.submit(path, printer_id=printer_id)
        final = controller.wait(job.id, timeout=30)
        assert final.status is JobStatus.PROCESSED
        return final

    def test_manual_print(self, controller, red_white_png: Path) -> None:
        job = self._processed(controller, red_white_png)
        sub = controller.bus.subscribe(job_id=job.id)
        printed = controller.print_job(job.id)

        assert printed.status is JobStatus.PRINTED
        assert printed.progress == 100
        assert printed.dispatch_result.success is True
        assert printed.dispatch_result.printer_id == "printer1"
        assert [(e.status, e.progress) for e in sub.drain()] == [
            (JobStatus.PRINTING, 0),
            (JobStatus.PRINTED, 100),
        ]
        assert controller.printers.get("printer1").status == "online"

    def test_auto_print(self, controller, red_white_png: Path) -> None:
        job = controller.submit(red_white_png, printer_id="printer1", auto_print=True)
        final = controller.wait(job.id, timeout=30)
        assert final.status is JobStatus.PRINTED
        assert final.dispatch_result.external_job_id.startswith("print-")

    def test_print_twice(self, controller, red_white_png: Path) -> None:
        job = self._processed(controller, red_white_png)
        controller.print_job(job.id)
        with pytest.raises(JobNotReady):
            controller.print_job(job.id)
        assert controller.get(job.id).status is JobStatus.PRINTED

    def test_single_winner_claim(self, controller, red_white_png: Path) -> None:
        job = self._processed(controller, red_white_png)
        future = controller.print_job(job.id, wait=False)
        with pytest.raises(JobNotReady):
            controller.print_job(job.id)
        assert future.result(timeout=30).status is JobStatus.PRINTED

    def test_print_failed_job(self, controller, tmp_path: Path) -> None:
        bad = tmp_path / "art.gif"
        bad.write_bytes(b"GIF89a")
        job = controller.submit(bad, printer_id="printer1")
        controller.wait(job.id, timeout=30)
        with pytest.raises(JobNotReady):
            controller.print_job(job.id)
        assert controller.get(job.id).status is JobStatus.ERROR

    def test_print_unknown_job(self, controller) -> None:
        with pytest.raises(JobNotFound):
            controller.print_job("missing")

    def test_offline_printer(self, controller, red_white_png: Path) -> None:
        job = self._processed(controller, red_white_png, printer_id="printer2")
        with pytest.raises(PrinterNotReady):
            controller.print_job(job.id)
        failed = controller.get(job.id)
        assert failed.status is JobStatus.ERROR
        assert "not online" in failed.error
        assert controller.printers.get("printer2").status == "offline"

    def test_auto_print_offline_ends_in_error(self, controller, red_white_png: Path) -> None:
        job = controller.submit(red_white_png, printer_id="printer2", auto_print=True)
        final = controller.wait(job.id, timeout=30)
        assert final.status is JobStatus.ERROR
        assert final.output_manifest is not None

    def test_transport_failure(self, tmp_path: Path, red_white_png: Path) -> None:
        def unplugged(printer, job_id, files):
            raise ConnectionError("usb unplugged")

        printers = InMemoryPrinterRegistry(transport=unplugged)
        printers.set_status("printer1", "online")
        ctl = _make_controller(tmp_path, printers=printers)
        try:
            job = self._processed(ctl, red_white_png)
            with pytest.raises(DispatchFailure):
                ctl.print_job(job.id)
            failed = ctl.get(job.id)
        finally:
            ctl.shutdown()
        assert failed.status is JobStatus.ERROR
        assert "usb unplugged" in failed.error
        assert printers.get("printer1").status == "error"


# ---------------------------------------------------------------------------
# Profile snapshot and bookkeeping
# ---------------------------------------------------------------------------


class TestProfileSnapshot:
    def test_profile_removed_after_submit(
        self, tmp_path: Path, red_white_png: Path, gated_ingest,
    ) -> None:
        reached, release = gated_ingest
        profiles = InMemoryProfileStore()
        ctl = _make_controller(tmp_path, profiles=profiles)
        try:
            job = ctl.submit(red_white_png, printer_id="printer1", color_profile_id="vivid")
            assert reached.wait(10)
            assert profiles.remove("vivid") is True
            release.set()
            final = ctl.wait(job.id, timeout=30)
        finally:
            ctl.shutdown()

        assert final.status is JobStatus.PROCESSED
        assert final.color_profile_id == "vivid"

    def test_profile_updated_after_submit(
        self, tmp_path: Path, logo_png: Path, gated_ingest,
    ) -> None:
        reached, release = gated_ingest
        profiles = InMemoryProfileStore()
        ctl = _make_controller(tmp_path, profiles=profiles)
        try:
            before = ctl.submit(logo_png, printer_id="printer1", color_profile_id="vivid")
            assert reached.wait(10)
            profiles.update("vivid", settings={"white_expansion": 3})
            release.set()
            first = ctl.wait(before.id, timeout=30)
            after = ctl.submit(logo_png, printer_id="printer1", color_profile_id="vivid")
            second = ctl.wait(after.id, timeout=30)
        finally:
            ctl.shutdown()

        # Only the job submitted after the update grows its underbase
        white_before = _layer(first.output_manifest["white"])
        white_after = _layer(second.output_manifest["white"])
        assert np.count_nonzero(white_after) > np.count_nonzero(white_before)


class TestBookkeeping:
    def test_settled_jobs_release_tracking(self, tmp_path: Path, red_white_png: Path) -> None:
        ctl = _make_controller(tmp_path)
        jobs = [ctl.submit(red_white_png, printer_id="printer1") for _ in range(20)]
        for job in jobs:
            assert ctl.wait(job.id, timeout=30).status is JobStatus.PROCESSED
        ctl.shutdown()
        gc.collect()

        assert len(ctl._futures) == 0
        assert len(ctl._cancel_tokens) == 0
        assert len(ctl._job_locks) == 0

    def test_printed_and_failed_jobs_release_tracking(
        self, tmp_path: Path, red_white_png: Path,
    ) -> None:
        bad = tmp_path / "bad.gif"
        bad.write_bytes(b"GIF89a")
        ctl = _make_controller(tmp_path)
        printed = ctl.submit(red_white_png, printer_id="printer1", auto_print=True)
        failed = ctl.submit(bad, printer_id="printer1")
        ctl.wait(printed.id, timeout=30)
        ctl.wait(failed.id, timeout=30)
        ctl.shutdown()
        gc.collect()

        assert ctl.get(printed.id).status is JobStatus.PRINTED
        assert ctl.get(failed.id).status is JobStatus.ERROR
        assert len(ctl._futures) == 0
        assert len(ctl._cancel_tokens) == 0
        assert len(ctl._job_locks) == 0

    def test_wait_after_settle_reads_repository(self, controller, red_white_png: Path) -> None:
        job = controller.submit(red_white_png, printer_id="printer1")
        first = controller.wait(job.id, timeout=30)
        assert controller.wait(job.id, timeout=1) == first


# ---------------------------------------------------------------------------
# Config wiring
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_json_backed_controller(self, tmp_path: Path, red_white_png: Path) -> None:
        cfg = load_config(root=tmp_path / "data")
        with JobController.from_config(cfg) as ctl:
            job = ctl.submit(red_white_png, printer_id="printer1")
            final = ctl.wait(job.id, timeout=30)
        assert final.status is JobStatus.PROCESSED
        assert cfg.storage.jobs_file.exists()
        assert cfg.storage.printers_file.exists()
        assert cfg.storage.profiles_file.exists()
        assert Path(final.output_dir).parent == cfg.storage.output_dir

        with JobController.from_config(cfg) as reopened:
            assert reopened.get(job.id).status is JobStatus.PROCESSED
