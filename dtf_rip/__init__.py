"""
DTF RIP Package.

Raster image processing for direct-to-film garment printing: turns a
submitted artwork file into cyan, magenta, yellow, black and white ink
separations, tracks each submission through its job lifecycle, and hands
the finished layers to a printer.

Subpackages:
    imaging: Ingestion, color separation, white underbase, layer assembly
    jobs: Job records, repositories, event bus, controller, dispatch bridge
    printers: Printer records and registry (simulated transport)
    profiles: Color profile store
    configs: YAML configuration loading and validation
    utils: Atomic file I/O and logging setup
"""

__version__ = "0.3.0"

__all__ = ["imaging", "jobs", "printers", "profiles", "configs", "utils"]
