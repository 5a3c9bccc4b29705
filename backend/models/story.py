from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class Story:
    id: str
    title: str
    clips: list[str]                       # video ids in narrative order
    narrative: str
    prompt: str | None = None
    target_duration_seconds: float | None = None
    rendered_video_id: str | None = None   # None when assembly failed or was skipped
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
