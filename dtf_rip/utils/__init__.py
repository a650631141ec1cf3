"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Atomic I/O for layer files and JSON records (fs)
    - Unified logging (logging_config)

No module in utils/ may import from upper layers (imaging, jobs, printers, ...).

Convenience imports:
    from dtf_rip.utils import fs
    from dtf_rip.utils.logging_config import setup_logging, get_logger
"""

from . import fs
from . import logging_config

from .logging_config import get_logger, job_context, push_context, setup_logging

__all__ = [
    'fs',
    'logging_config',
    'setup_logging',
    'get_logger',
    'job_context',
    'push_context',
]
