"""Pydantic schemas for conversion settings and API responses."""
from datetime import datetime
from typing import Any, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class ConversionSettings(BaseModel):
    """User-editable description of a desired conversion."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        coerce_numbers_to_str=True,
    )

    video_codec: str = Field(default="auto", description="Video codec, 'auto' or 'copy'")
    audio_codec: str = Field(default="auto", description="Audio codec, 'auto', 'copy' or 'none'")
    resolution: str = Field(default="no_change", description="WxH, 'no_change' or 'custom'")
    custom_width: str = ""
    custom_height: str = ""
    frame_rate: str = Field(default="no_change", description="Output frame rate")
    rotate: str = Field(default="none", description="none, 90, 180 or 270")
    flip: str = Field(default="none", description="none, horizontal or vertical")
    trim_start: str = Field(default="", description="Start offset (HH:MM:SS or seconds)")
    trim_end: str = Field(default="", description="End time, not a duration")
    crop_width: str = ""
    crop_height: str = ""
    crop_x: str = ""
    crop_y: str = ""
    video_bitrate: str = Field(default="", description="Video bitrate in kbps")
    audio_bitrate: str = Field(default="", description="Audio bitrate in kbps")
    volume: int = Field(default=100, ge=0, le=400, description="Volume percent")
    remove_audio: bool = False
    fade_in_audio: bool = False
    fade_out_audio: bool = False

    @classmethod
    def from_raw(cls, raw: Optional[Any]) -> "ConversionSettings":
        """
        Build settings leniently from an untrusted mapping.

        Fields that fail validation fall back to their defaults individually
        instead of rejecting the whole object.

        Args:
            raw: Mapping of camelCase or snake_case keys, an existing
                instance, or None

        Returns:
            ConversionSettings instance
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, Mapping):
            return cls()

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            bad_keys = {err["loc"][0] for err in e.errors() if err["loc"]}

        # Errors may be reported under the alias or the field name
        for name, info in cls.model_fields.items():
            if name in bad_keys or info.alias in bad_keys:
                bad_keys.update({name, info.alias})

        cleaned = {key: value for key, value in raw.items() if key not in bad_keys}
        try:
            return cls.model_validate(cleaned)
        except ValidationError:
            return cls()


class JobCreateResponse(BaseModel):
    """Schema for job creation response."""
    job_id: str
    status: str


class JobResponse(BaseModel):
    """Schema for job response."""
    id: str
    input_filename: str
    input_format: str
    output_format: str
    settings: str
    status: str
    progress: float
    output_path: Optional[str]
    error_message: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class JobStatusResponse(BaseModel):
    """Read-only status surface consumed by polling clients."""
    status: str
    progress: float = 0.0
    output_path: Optional[str] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class JobListResponse(BaseModel):
    """Schema for job list response."""
    jobs: list[JobResponse]
    total: int
