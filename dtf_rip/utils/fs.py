"""Atomic filesystem operations for layer files and JSON records.

Provides:
    - Atomic writes: sibling tmp file, fsync, rename over the target
    - Atomic PNG saves for channel layers and previews
    - JSON record load/dump for the file-backed stores
    - YAML loading for configuration
    - Directory creation and removal helpers

A reader of the job history or of a job output directory never observes a
half-written file.

Usage:
    from dtf_rip.utils import fs
    fs.atomic_save_image(channel_u8, job_dir / "cyan.png", mode="L")
    fs.atomic_json_dump(records, data_dir / "jobs.json")
"""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import yaml
from PIL import Image

PathLike = Union[str, Path]


def ensure_dir(p: PathLike) -> Path:
    """Create *p* (and parents) if missing; return it as a Path."""
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


def _tmp_sibling(path: Path) -> Path:
    # Real extension last so Pillow still infers the format from the name
    return path.with_name(f".{path.stem}.{os.getpid()}.tmp{path.suffix}")


def atomic_write_bytes(path: PathLike, data: bytes) -> None:
    """Write *data* to *path* atomically.

    Raises
    ------
    RuntimeError
        If writing or renaming fails; the temporary file is removed.
    """
    path = Path(path)
    ensure_dir(path.parent)
    tmp_path = _tmp_sibling(path)

    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise RuntimeError(f"Failed to write {path} atomically: {e}") from e


def atomic_save_image(
    img: Union[np.ndarray, Image.Image],
    path: PathLike,
    mode: Optional[str] = None,
) -> None:
    """Save an image atomically.

    Parameters
    ----------
    img : np.ndarray | PIL.Image.Image
        (H, W) uint8 grayscale, (H, W, 4) uint8 RGBA, or a PIL image
    path : str | Path
        Target file; its extension selects the format
    mode : str, optional
        PIL mode to convert to before saving (``"L"`` for ink channels)

    Raises
    ------
    RuntimeError
        If encoding or renaming fails; the temporary file is removed.
    """
    path = Path(path)
    if isinstance(img, np.ndarray):
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        img = Image.fromarray(img)
    if mode is not None and img.mode != mode:
        img = img.convert(mode)

    tmp_path = _tmp_sibling(path)
    try:
        img.save(tmp_path)
        tmp_path.replace(path)
    except (OSError, ValueError) as e:
        tmp_path.unlink(missing_ok=True)
        raise RuntimeError(f"Failed to save image {path} atomically: {e}") from e


def atomic_json_dump(obj: Any, path: PathLike, indent: int = 2) -> None:
    """Serialize *obj* as UTF-8 JSON and write it atomically."""
    text = json.dumps(obj, indent=indent, ensure_ascii=False)
    atomic_write_bytes(path, text.encode('utf-8'))


def load_json(path: PathLike, default: Any = None) -> Any:
    """Load a JSON file, returning *default* if it does not exist.

    Raises
    ------
    ValueError
        If the file exists but is not valid JSON
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON file {path}: {e}") from e


def load_yaml(path: PathLike) -> Optional[Dict[str, Any]]:
    """Parse a YAML file with ``yaml.safe_load``.

    Returns
    -------
    dict | None
        Parsed mapping; None for an empty file

    Raises
    ------
    FileNotFoundError
        If the file doesn't exist
    ValueError
        If the file is not valid YAML or its top level is not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse YAML file {path}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Top level of {path} must be a mapping, got {type(data).__name__}")
    return data


def remove_tree(p: PathLike) -> bool:
    """Remove a directory tree; False if there was nothing to remove."""
    p = Path(p)
    if not p.exists():
        return False
    shutil.rmtree(p)
    return True
