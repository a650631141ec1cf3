#!/usr/bin/env python3
"""
DTF RIP command line.

Process artwork into ink separations, print processed jobs, and manage
job history, color profiles and printers.

Usage:
    dtf-rip process artwork.png --printer printer1 --profile vivid
    dtf-rip process logo.pdf --printer printer1 --auto-print --expansion 2
    dtf-rip print 3f2a9c...
    dtf-rip jobs --status error
    dtf-rip delete 3f2a9c...
    dtf-rip clear --status printed --older-than 2026-01-01
    dtf-rip profiles
    dtf-rip import-icc ~/Downloads/film.icc
    dtf-rip printers
    dtf-rip printer-status printer1 --set online
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Sequence

from dtf_rip.configs.loader import RipConfig, load_config
from dtf_rip.errors import RipError
from dtf_rip.jobs.controller import JobController
from dtf_rip.jobs.models import JobEvent, JobStatus
from dtf_rip.profiles.store import JsonProfileStore
from dtf_rip.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _print_event(event: JobEvent) -> None:
    line = f"[{event.progress:3d}%] {event.status.value:<10}"
    if event.message:
        line += f" {event.message}"
    if event.error:
        line += f" -- {event.error}"
    print(line, flush=True)


def _parse_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_process(args: argparse.Namespace, cfg: RipConfig) -> int:
    with JobController.from_config(cfg) as controller:
        # Subscribe first: a small job can finish before submit() returns
        sub = controller.bus.subscribe(_print_event)
        try:
            job = controller.submit(
                args.file,
                printer_id=args.printer,
                name=args.name,
                color_profile_id=args.profile,
                auto_print=args.auto_print,
                white_expansion=args.expansion,
            )
            final = controller.wait(job.id)
        finally:
            sub.join()
            sub.close()

    if final is None:
        return 1
    print(f"Job {final.id}: {final.status.value}")
    if final.error:
        print(f"  error    {final.error}")
    for name, path in (final.output_manifest or {}).items():
        print(f"  {name:<8} {path}")
    return 0 if final.status is not JobStatus.ERROR else 1


def cmd_print(args: argparse.Namespace, cfg: RipConfig) -> int:
    with JobController.from_config(cfg) as controller:
        sub = controller.bus.subscribe(_print_event, job_id=args.job_id)
        try:
            final = controller.print_job(args.job_id)
        finally:
            sub.join()
            sub.close()
    print(f"Job {args.job_id}: {final.status.value if final else 'deleted'}")
    return 0


def cmd_jobs(args: argparse.Namespace, cfg: RipConfig) -> int:
    with JobController.from_config(cfg) as controller:
        jobs = controller.list_jobs()
    status = JobStatus(args.status) if args.status else None
    for job in jobs:
        if status is not None and job.status is not status:
            continue
        suffix = f"  ({job.error})" if job.error else ""
        print(
            f"{job.id}  {job.status.value:<10} {job.progress:3d}%  "
            f"{job.created_at:%Y-%m-%d %H:%M}  {job.name}{suffix}"
        )
    return 0


def cmd_delete(args: argparse.Namespace, cfg: RipConfig) -> int:
    with JobController.from_config(cfg) as controller:
        removed = controller.delete(args.job_id)
    print("Deleted" if removed else f"Job not found: {args.job_id}")
    return 0 if removed else 1


def cmd_clear(args: argparse.Namespace, cfg: RipConfig) -> int:
    status = JobStatus(args.status) if args.status else None
    older_than = _parse_date(args.older_than) if args.older_than else None
    with JobController.from_config(cfg) as controller:
        count = controller.clear(status=status, older_than=older_than)
    print(f"Cleared {count} job(s)")
    return 0


def _profile_store(cfg: RipConfig) -> JsonProfileStore:
    return JsonProfileStore(cfg.storage.profiles_file, cfg.storage.profiles_dir)


def cmd_profiles(args: argparse.Namespace, cfg: RipConfig) -> int:
    for profile in _profile_store(cfg).get_all():
        s = profile.settings
        print(
            f"{profile.id:<16} {profile.type:<5} sat={s.saturation:g} "
            f"gamma={s.gamma:g} underbase={s.white_underbase or '-'}  {profile.name}"
        )
    return 0


def cmd_import_icc(args: argparse.Namespace, cfg: RipConfig) -> int:
    profile = _profile_store(cfg).import_icc(args.path, profile_id=args.id, name=args.name)
    print(f"Imported {profile.id}: {profile.name}")
    return 0


def cmd_printers(args: argparse.Namespace, cfg: RipConfig) -> int:
    with JobController.from_config(cfg) as controller:
        registry = controller.printers
        for printer in registry.get_all():
            caps = printer.capabilities
            print(
                f"{printer.id:<12} {printer.status:<9} {printer.model:<14} "
                f"{caps.max_width:g}x{caps.max_height:g}mm @ {caps.resolution_dpi}dpi "
                f"[{''.join(caps.color_channels)}]"
            )
    return 0


def cmd_printer_status(args: argparse.Namespace, cfg: RipConfig) -> int:
    with JobController.from_config(cfg) as controller:
        registry = controller.printers
        if args.set:
            registry.set_status(args.printer_id, args.set)
        status = registry.status(args.printer_id)
    if status is None:
        print(f"Printer not found: {args.printer_id}")
        return 1
    levels = " ".join(f"{k}={v}%" for k, v in status["inkLevels"].items())
    print(f"{status['id']}  {status['status']}  {levels}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dtf-rip",
        description="DTF raster image processor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Configuration file path")
    parser.add_argument("--data-dir", type=str, help="Override storage.data_dir")
    parser.add_argument("--log-level", type=str, help="Override logging.level")
    parser.add_argument("--json", action="store_true", help="JSON lines in the log file")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="Separate an artwork file")
    p.add_argument("file", help="PNG, JPEG or PDF artwork")
    p.add_argument("--printer", "-p", required=True, help="Target printer id")
    p.add_argument("--profile", type=str, default=None, help="Color profile id")
    p.add_argument("--name", type=str, default=None, help="Job name")
    p.add_argument("--auto-print", action="store_true", help="Print when processed")
    p.add_argument("--expansion", type=int, default=0, help="White underbase growth passes")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("print", help="Send a processed job to its printer")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_print)

    p = sub.add_parser("jobs", help="List job history")
    p.add_argument("--status", choices=[s.value for s in JobStatus])
    p.set_defaults(func=cmd_jobs)

    p = sub.add_parser("delete", help="Delete a job and its output")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("clear", help="Delete jobs in bulk")
    p.add_argument("--status", choices=[s.value for s in JobStatus])
    p.add_argument("--older-than", type=str, help="ISO date; only jobs created before")
    p.set_defaults(func=cmd_clear)

    p = sub.add_parser("profiles", help="List color profiles")
    p.set_defaults(func=cmd_profiles)

    p = sub.add_parser("import-icc", help="Import an ICC profile")
    p.add_argument("path")
    p.add_argument("--id", type=str, default=None)
    p.add_argument("--name", type=str, default=None)
    p.set_defaults(func=cmd_import_icc)

    p = sub.add_parser("printers", help="List printers")
    p.set_defaults(func=cmd_printers)

    p = sub.add_parser("printer-status", help="Show or set a printer's status")
    p.add_argument("printer_id")
    p.add_argument("--set", choices=["online", "offline", "printing", "error"])
    p.set_defaults(func=cmd_printer_status)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config, root=args.data_dir)
    except (RipError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    log_kwargs = cfg.logging.as_kwargs()
    if args.log_level:
        log_kwargs["level"] = args.log_level
    if args.json:
        log_kwargs["json"] = True
    setup_logging(**log_kwargs, context={"app": "dtf-rip"})

    try:
        return args.func(args, cfg)
    except RipError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
