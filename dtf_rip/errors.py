"""Exception taxonomy for the RIP pipeline.

Every error a pipeline stage or the dispatch path can raise derives from
``RipError``.  The job controller catches ``RipError`` at its boundary and
records ``str(exc)`` on the failing job; nothing here is retried.
"""

from __future__ import annotations


class RipError(Exception):
    """Base exception for all RIP errors."""

    pass


class ConfigError(RipError):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------


class UnsupportedFormat(RipError):
    """Source file extension is not a known raster or vector format."""

    pass


class DecodeFailure(RipError):
    """Raster data could not be decoded."""

    pass


class RenderFailure(RipError):
    """Vector document could not be rasterized."""

    pass


class SeparationFailure(RipError):
    """Canonical buffer could not be separated into ink channels."""

    pass


class UnderbaseFailure(SeparationFailure):
    """White underbase could not be derived from the canonical buffer."""

    pass


class PersistFailure(RipError):
    """Channel files or preview could not be written."""

    pass


# ---------------------------------------------------------------------------
# External references
# ---------------------------------------------------------------------------


class ProfileNotFound(RipError):
    """Unknown color profile id."""

    pass


class PrinterNotFound(RipError):
    """Unknown printer id."""

    pass


class PrinterNotReady(RipError):
    """Printer exists but is not ``online``."""

    pass


class DispatchFailure(RipError):
    """Printer transport failed while sending a job."""

    pass


# ---------------------------------------------------------------------------
# Job lifecycle
# ---------------------------------------------------------------------------


class JobNotFound(RipError):
    """Unknown job id."""

    pass


class JobNotReady(RipError):
    """Job is not in a state that allows the requested action."""

    pass


class InvalidTransition(RipError):
    """A status change is not allowed by the transition table."""

    pass


class JobCancelled(RipError):
    """The job was deleted while its pipeline was in flight."""

    pass
