"""
Pydantic models and enums for the tour pipeline.

Wire format is camelCase (`jobId`, `propertyInfo`, `agentName`); Python code
uses snake_case attributes. Both spellings are accepted on input.
"""

import os
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..errors import ValidationError

MAX_CLIPS = int(os.environ.get("MAX_CLIPS", "15"))


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Job State ────────────────────────────────────────────────────────────────

class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


# ── Tour inputs ──────────────────────────────────────────────────────────────

class VideoClip(_CamelModel):
    url: str
    order: int
    duration: float = 0.0


class PropertyInfo(_CamelModel):
    address: str
    price: str = ""
    agent_name: str = ""
    agent_company: str = ""
    agent_phone: str = ""

    @property
    def street_line(self) -> str:
        return self.address.split(",", 1)[0].strip()

    @property
    def city_line(self) -> str:
        parts = self.address.split(",", 1)
        return parts[1].strip() if len(parts) > 1 else ""

    @property
    def has_overlay(self) -> bool:
        return bool(self.address.strip() or self.price.strip())

    @property
    def has_agent(self) -> bool:
        return any(v.strip() for v in (self.agent_name, self.agent_company, self.agent_phone))


class TourResult(BaseModel):
    horizontal: str
    compressed: str
    vertical: str


class TourJobData(_CamelModel):
    """What a queued tour job stores and the worker reads back."""
    clips: list[VideoClip]
    property_info: Optional[PropertyInfo] = None


# ── API Request / Response Models ────────────────────────────────────────────

class FullTourRequest(_CamelModel):
    clips: list[VideoClip]
    property_info: PropertyInfo
    delay_seconds: int = Field(0, ge=0)


class FullTourResponse(_CamelModel):
    success: bool = True
    job_id: str


class JobStatusResponse(_CamelModel):
    success: bool = True
    job_id: str
    state: JobState
    progress: int = 0
    result: Optional[TourResult] = None
    failed_reason: Optional[str] = None


class RoomVideoRequest(_CamelModel):
    image_url: str
    order: int = 0
    prompt: Optional[str] = None
    room_description: Optional[str] = None
    filename: Optional[str] = None


class RoomVideoResponse(_CamelModel):
    success: bool = True
    video_url: str
    duration: float
    order: int


# ── Validation ───────────────────────────────────────────────────────────────

def validate_url(url: str) -> None:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL: {url}")


def validate_clips(clips: list[VideoClip]) -> None:
    """Reject malformed clip lists before any work is scheduled."""
    if not clips:
        raise ValidationError("At least one clip is required")
    if len(clips) > MAX_CLIPS:
        raise ValidationError(f"Maximum {MAX_CLIPS} clips allowed")

    seen = set()
    for index, clip in enumerate(clips, start=1):
        if not clip.url:
            raise ValidationError(f"Clip {index} is missing URL")
        validate_url(clip.url)
        if clip.order in seen:
            raise ValidationError(f"Clip {index} repeats order {clip.order}")
        seen.add(clip.order)


def validate_property_info(info: Optional[PropertyInfo]) -> None:
    if info is None or not info.address.strip():
        raise ValidationError("propertyInfo.address is required")
