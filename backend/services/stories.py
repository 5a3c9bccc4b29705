"""Story creation: narrative text plus an assembled video of the chosen clips."""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Awaitable, Callable, Sequence

from models import AssemblyRequest, Story, VideoRecord
from services import store
from services.assembly import ClipAssemblyEngine
from services.errors import AssemblyError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Memory story"
NARRATIVE_FALLBACK = "Story generation failed. Please try again later."
MAX_PROMPT_TITLE_CHARS = 100

Narrator = Callable[[Sequence[VideoRecord], str | None], Awaitable[str]]


async def transcript_narrative(videos: Sequence[VideoRecord], prompt: str | None) -> str:
    """Plain narrative stitched from the clips' transcripts, used when no narrator is configured."""
    lines = [v.transcription.strip() for v in videos if v.transcription.strip()]
    if not lines:
        return f"A story told through {len(videos)} memories."
    return " ".join(lines)


def derive_title(title: str | None, prompt: str | None) -> str:
    if title and title.strip():
        return title.strip()
    if prompt:
        first_sentence = re.split(r"[.!?]", prompt, maxsplit=1)[0].strip()
        if 0 < len(first_sentence) < MAX_PROMPT_TITLE_CHARS:
            return first_sentence
    return DEFAULT_TITLE


class StoryService:
    def __init__(
        self,
        engine: ClipAssemblyEngine,
        *,
        narrator: Narrator | None = None,
        videos: dict[str, VideoRecord] | None = None,
        stories: dict[str, Story] | None = None,
    ) -> None:
        self._engine = engine
        self._narrator = narrator or transcript_narrative
        self._videos = videos if videos is not None else store.videos
        self._stories = stories if stories is not None else store.stories

    async def create_story(
        self,
        video_ids: Sequence[str],
        *,
        title: str | None = None,
        prompt: str | None = None,
        clip_duration: float | None = None,
    ) -> Story:
        """
        Build and save a story.

        Request errors (no clips, bad duration, unknown ids) raise. A failed
        video assembly does not: the story is saved without a rendered video.
        """
        missing = [vid for vid in video_ids if vid not in self._videos]
        if missing:
            raise LookupError(f"Unknown video ids: {', '.join(missing)}")
        videos = [self._videos[vid] for vid in video_ids]
        request = AssemblyRequest.build(
            (v.to_clip_reference() for v in videos),
            clip_duration,
        )

        try:
            narrative = await self._narrator(videos, prompt)
        except Exception as exc:  # noqa: BLE001
            logger.error("[stories] Narrative generation failed: %s", exc, exc_info=True)
            narrative = NARRATIVE_FALLBACK

        rendered_video_id: str | None = None
        try:
            result = await self._engine.assemble(request)
            rendered_video_id = result.output_blob_id
        except AssemblyError as exc:
            logger.warning("[stories] Video assembly failed; saving story without video: %s", exc, exc_info=True)

        story = Story(
            id=secrets.token_hex(12),
            title=derive_title(title, prompt),
            clips=list(video_ids),
            narrative=narrative,
            prompt=prompt,
            target_duration_seconds=clip_duration,
            rendered_video_id=rendered_video_id,
        )
        self._stories[story.id] = story
        logger.info("[stories] Created story %s (%d clips, video=%s)", story.id, len(videos), rendered_video_id)
        return story
