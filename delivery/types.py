"""
Value objects passed in and out of the delivery layer.

These are plain dataclasses, not ORM models: an upload request is never
persisted on its own, only its outcome is recorded on the Job.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from models.enums import UploadStep


@dataclass
class ImageValidation:
    valid: bool
    mime_type: Optional[str] = None
    size: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class UploadRequest:
    destination_id: str                     # product the image is attached to
    source_url: str                         # where the bytes come from
    alt_text: Optional[str] = None
    replace_media_id: Optional[str] = None  # existing media to detach after attach
    set_primary: bool = False               # move the new media to position 0
    position: Optional[int] = None          # explicit gallery position


@dataclass
class UploadProgress:
    step: UploadStep
    percent: int
    message: str


@dataclass
class UploadResult:
    success: bool
    media_id: Optional[str] = None
    media_url: Optional[str] = None
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def warnings(self) -> list[str]:
        return self.details.get("warnings", [])


@dataclass
class BatchUploadResult:
    success: bool
    results: list[UploadResult] = field(default_factory=list)
