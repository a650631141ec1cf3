"""Color profile schema.

Profiles are persisted as JSON with camelCase keys (``blackPoint``,
``whiteUnderbase``) and validated with pydantic on load.  Once a job
references a profile the pipeline only ever reads it; models are frozen.

Units:
    - black_point / white_point: percent of tonal range [0, 100]
    - saturation / contrast / brightness: percent multiplier, 100 = neutral
    - gamma: float exponent
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

STANDARD_PROFILE_ID = "standard"


class ProfileSettings(BaseModel):
    """Tonal and underbase parameters of a profile."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    black_point: float = Field(5.0, ge=0.0, le=100.0)
    white_point: float = Field(95.0, ge=0.0, le=100.0)
    saturation: float = Field(100.0, ge=0.0)
    contrast: float = Field(100.0, ge=0.0)
    brightness: float = Field(100.0, ge=0.0)
    gamma: float = Field(2.2, gt=0.0)
    white_underbase: Optional[Literal["light", "heavy"]] = None
    white_expansion: int = Field(0, ge=0, description="Underbase growth passes")

    # ICC-imported profiles only; recorded, not applied per pixel
    intent: Optional[str] = None
    black_point_compensation: Optional[bool] = None

    @model_validator(mode='after')
    def validate_tonal_range(self) -> 'ProfileSettings':
        if self.black_point >= self.white_point:
            raise ValueError(
                f"blackPoint ({self.black_point}) must be below whitePoint ({self.white_point})"
            )
        return self


class ColorProfile(BaseModel):
    """Named color profile."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str = "New Profile"
    description: str = ""
    type: Literal["cmyk", "icc"] = "cmyk"
    icc_file: Optional[str] = None
    settings: ProfileSettings = Field(default_factory=ProfileSettings)

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Profile id must be non-empty")
        return v

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def default_profiles() -> list[ColorProfile]:
    """Profiles shipped with a fresh installation."""
    return [
        ColorProfile(
            id=STANDARD_PROFILE_ID,
            name="Standard DTF",
            description="Standard color profile for DTF printing",
            settings=ProfileSettings(),
        ),
        ColorProfile(
            id="vivid",
            name="Vivid Colors",
            description="Enhanced saturation for vibrant prints",
            settings=ProfileSettings(saturation=120, contrast=110, brightness=105),
        ),
        ColorProfile(
            id="muted",
            name="Muted Colors",
            description="Reduced saturation for subtle prints",
            settings=ProfileSettings(
                black_point=10, white_point=90, saturation=80,
                contrast=90, brightness=95, gamma=2.0,
            ),
        ),
        ColorProfile(
            id="cotton-light",
            name="Light Cotton",
            description="Optimized for light colored cotton garments",
            settings=ProfileSettings(
                saturation=110, contrast=105, white_underbase="light",
            ),
        ),
        ColorProfile(
            id="cotton-dark",
            name="Dark Cotton",
            description="Optimized for dark colored cotton garments",
            settings=ProfileSettings(
                saturation=110, contrast=110, brightness=105, white_underbase="heavy",
            ),
        ),
    ]
