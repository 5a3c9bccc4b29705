from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .clip import ClipReference


class ProcessingStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class VideoRecord:
    id: str
    blob_id: str
    filename: str
    content_type: str
    size: int = 0
    processing_status: ProcessingStatus = ProcessingStatus.PROCESSING
    transcription: str = ""
    tags: list[str] = field(default_factory=list)
    duration: float | None = None          # seconds, None until probed
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_clip_reference(self) -> ClipReference:
        return ClipReference(id=self.id, blob_id=self.blob_id, duration_hint=self.duration)
