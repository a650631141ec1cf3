"""Color profiles: schema and stores."""

from dtf_rip.profiles.models import (
    STANDARD_PROFILE_ID,
    ColorProfile,
    ProfileSettings,
    default_profiles,
)
from dtf_rip.profiles.store import ColorProfileStore, InMemoryProfileStore, JsonProfileStore

__all__ = [
    "STANDARD_PROFILE_ID",
    "ColorProfile",
    "ColorProfileStore",
    "InMemoryProfileStore",
    "JsonProfileStore",
    "ProfileSettings",
    "default_profiles",
]
