"""Tests for the dtf-rip command line."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from dtf_rip.scripts.cli import build_parser, main
from dtf_rip.utils.logging_config import pop_context, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(to_stderr=False, capture_warnings=False)
    logging.captureWarnings(False)
    pop_context()


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


def _run(data_dir: Path, *args: str) -> int:
    return main(["--data-dir", str(data_dir), "--log-level", "WARNING", *args])


class TestParser:
    def test_process_requires_printer(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["process", "art.png"])

    def test_status_choices(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["jobs", "--status", "lost"])


class TestCommands:
    def test_process_and_list(self, data_dir, red_white_png, capsys) -> None:
        assert _run(data_dir, "process", str(red_white_png), "--printer", "printer1") == 0
        out = capsys.readouterr().out
        assert "[100%] processed" in out
        assert ": processed" in out
        assert "white" in out

        assert _run(data_dir, "jobs", "--status", "processed") == 0
        assert "processed" in capsys.readouterr().out

    def test_process_unsupported(self, data_dir, tmp_path, capsys) -> None:
        path = tmp_path / "art.bmp"
        path.write_bytes(b"BM")
        assert _run(data_dir, "process", str(path), "--printer", "printer1") == 1
        assert "Unsupported file type" in capsys.readouterr().out

    def test_unknown_printer(self, data_dir, red_white_png) -> None:
        assert _run(data_dir, "process", str(red_white_png), "--printer", "ghost") == 1

    def test_delete_unknown(self, data_dir, capsys) -> None:
        assert _run(data_dir, "delete", "nope") == 1
        assert "Job not found" in capsys.readouterr().out

    def test_profiles(self, data_dir, capsys) -> None:
        assert _run(data_dir, "profiles") == 0
        out = capsys.readouterr().out
        assert "cotton-dark" in out and "underbase=heavy" in out

    def test_printer_status(self, data_dir, capsys) -> None:
        assert _run(data_dir, "printer-status", "printer1", "--set", "online") == 0
        assert "printer1  online  C=80%" in capsys.readouterr().out
        assert _run(data_dir, "printers") == 0
        assert "online" in capsys.readouterr().out
        assert _run(data_dir, "printer-status", "ghost") == 1

    def test_print_not_processed(self, data_dir, capsys) -> None:
        assert _run(data_dir, "print", "missing") == 1

    def test_missing_config(self, tmp_path, capsys) -> None:
        assert main(["--config", str(tmp_path / "nope.yaml"), "jobs"]) == 2
        assert "Configuration error" in capsys.readouterr().err
