"""Color profile stores.

``ColorProfileStore`` is the read interface the job controller depends on.
``InMemoryProfileStore`` backs tests and embedding; ``JsonProfileStore``
persists the list to a JSON file and can import ICC profiles.
"""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import Any, Iterable, Protocol

from PIL import ImageCms

from dtf_rip.errors import ProfileNotFound, RipError
from dtf_rip.profiles.models import (
    STANDARD_PROFILE_ID,
    ColorProfile,
    ProfileSettings,
    default_profiles,
)
from dtf_rip.utils import fs

logger = logging.getLogger(__name__)


class ColorProfileStore(Protocol):
    """Read access to color profiles."""

    def get(self, profile_id: str) -> ColorProfile | None: ...

    def get_all(self) -> list[ColorProfile]: ...


class InMemoryProfileStore:
    """Profile store kept in process memory.

    Parameters
    ----------
    profiles : Iterable[ColorProfile] | None
        Initial profiles; ``None`` installs the shipped defaults.
    """

    def __init__(self, profiles: Iterable[ColorProfile] | None = None) -> None:
        self._lock = threading.RLock()
        self._profiles: list[ColorProfile] = list(
            default_profiles() if profiles is None else profiles
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, profile_id: str) -> ColorProfile | None:
        with self._lock:
            return next((p for p in self._profiles if p.id == profile_id), None)

    def get_all(self) -> list[ColorProfile]:
        with self._lock:
            return list(self._profiles)

    def require(self, profile_id: str) -> ColorProfile:
        """Return the profile or raise ``ProfileNotFound``."""
        profile = self.get(profile_id)
        if profile is None:
            raise ProfileNotFound(f"Color profile not found: {profile_id}")
        return profile

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, profile: ColorProfile) -> ColorProfile:
        with self._lock:
            if self.get(profile.id) is not None:
                raise RipError(f"Color profile already exists: {profile.id}")
            self._profiles.append(profile)
            self._save()
        logger.info("Added color profile %s", profile.id)
        return profile

    def update(self, profile_id: str, **updates: Any) -> ColorProfile | None:
        """Replace fields of a profile; the id never changes."""
        with self._lock:
            for idx, current in enumerate(self._profiles):
                if current.id != profile_id:
                    continue
                merged = current.model_dump()
                if "settings" in updates and isinstance(updates["settings"], dict):
                    settings = {**merged["settings"], **updates.pop("settings")}
                    merged["settings"] = ProfileSettings.model_validate(settings)
                merged.update(updates)
                merged["id"] = profile_id
                updated = ColorProfile.model_validate(merged)
                self._profiles[idx] = updated
                self._save()
                return updated
        return None

    def remove(self, profile_id: str) -> bool:
        """Remove a profile; the standard profile cannot be removed."""
        if profile_id == STANDARD_PROFILE_ID:
            return False
        with self._lock:
            before = len(self._profiles)
            self._profiles = [p for p in self._profiles if p.id != profile_id]
            removed = len(self._profiles) != before
            if removed:
                self._save()
        return removed

    def _save(self) -> None:
        pass


class JsonProfileStore(InMemoryProfileStore):
    """Profile store persisted to a JSON file.

    Parameters
    ----------
    path : str | Path
        JSON file holding the profile list.  Created with the defaults if
        missing.
    profiles_dir : str | Path
        Directory that receives imported ICC files.
    """

    def __init__(self, path: str | Path, profiles_dir: str | Path) -> None:
        self._path = Path(path)
        self._profiles_dir = fs.ensure_dir(profiles_dir)
        try:
            records = fs.load_json(self._path)
            profiles = (
                None if records is None
                else [ColorProfile.model_validate(r) for r in records]
            )
        except ValueError as exc:
            raise RipError(f"Invalid color profile file {self._path}: {exc}") from exc
        super().__init__(profiles)
        if records is None:
            self._save()

    def _save(self) -> None:
        fs.atomic_json_dump([p.to_record() for p in self._profiles], self._path)

    def import_icc(
        self,
        icc_path: str | Path,
        *,
        profile_id: str | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> ColorProfile:
        """Register an ICC profile file.

        The file is parsed with Pillow's ``ImageCms`` for its description,
        copied into ``profiles_dir`` and recorded as a ``type: icc`` profile
        with perceptual intent and black point compensation.

        Raises
        ------
        RipError
            If the file is not a readable ICC profile.
        """
        icc_path = Path(icc_path)
        try:
            parsed = ImageCms.getOpenProfile(str(icc_path))
            icc_description = ImageCms.getProfileDescription(parsed).strip()
        except (OSError, ImageCms.PyCMSError) as exc:
            raise RipError(f"Failed to import ICC profile {icc_path}: {exc}") from exc

        profile = ColorProfile(
            id=profile_id or f"icc-{icc_path.stem.lower()}",
            name=name or icc_description or icc_path.stem,
            description=description or f"Imported ICC profile: {icc_path.name}",
            type="icc",
            icc_file=icc_path.name,
            settings=ProfileSettings(intent="perceptual", black_point_compensation=True),
        )
        shutil.copy2(icc_path, self._profiles_dir / icc_path.name)
        return self.add(profile)
