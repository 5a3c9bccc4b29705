"""Story creation and rendered-video playback."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from models import Story
from services.blob_store import BlobStore
from services.errors import BlobNotFoundError, InvalidRequestError
from services.stories import StoryService
from services.store import stories

from routes.deps import get_blob_store, get_story_service
from routes.videos import content_disposition

router = APIRouter(tags=["stories"])
logger = logging.getLogger(__name__)


class StoryCreateRequest(BaseModel):
    video_ids: list[str] = Field(..., min_length=1)
    title: str | None = None
    prompt: str | None = None
    clip_duration: float | None = Field(None, description="Target story length in seconds")


class StoryResponse(BaseModel):
    id: str
    title: str
    narrative: str
    clips: list[str]
    prompt: str | None = None
    target_duration_seconds: float | None = None
    rendered_video_id: str | None = None
    created_at: datetime

    @classmethod
    def from_story(cls, story: Story) -> "StoryResponse":
        return cls(
            id=story.id,
            title=story.title,
            narrative=story.narrative,
            clips=list(story.clips),
            prompt=story.prompt,
            target_duration_seconds=story.target_duration_seconds,
            rendered_video_id=story.rendered_video_id,
            created_at=story.created_at,
        )


def _get_story(story_id: str) -> Story:
    story = stories.get(story_id)
    if story is None:
        raise HTTPException(status_code=404, detail="Story not found")
    return story


@router.post("/stories", response_model=StoryResponse, status_code=201)
async def create_story(
    body: StoryCreateRequest,
    service: StoryService = Depends(get_story_service),
) -> StoryResponse:
    """Create a story from uploaded videos. Assembly failure still returns 201, without a video."""
    logger.info("[stories] POST /api/stories clips=%d clip_duration=%s", len(body.video_ids), body.clip_duration)
    try:
        story = await service.create_story(
            body.video_ids,
            title=body.title,
            prompt=body.prompt,
            clip_duration=body.clip_duration,
        )
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return StoryResponse.from_story(story)


@router.get("/stories", response_model=list[StoryResponse])
def list_stories() -> list[StoryResponse]:
    ordered = sorted(stories.values(), key=lambda s: s.created_at, reverse=True)
    return [StoryResponse.from_story(s) for s in ordered]


@router.get("/stories/{story_id}", response_model=StoryResponse)
def get_story(story_id: str) -> StoryResponse:
    return StoryResponse.from_story(_get_story(story_id))


@router.get("/stories/{story_id}/video")
async def stream_story_video(
    story_id: str,
    blob_store: BlobStore = Depends(get_blob_store),
) -> StreamingResponse:
    story = _get_story(story_id)
    if not story.rendered_video_id:
        raise HTTPException(status_code=404, detail="Rendered video not found")
    try:
        stream = await blob_store.open_download_stream(story.rendered_video_id)
    except BlobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Rendered video file not found") from exc
    return StreamingResponse(
        stream,
        media_type="video/mp4",
        headers={"Content-Disposition": content_disposition(f"story-{story.id}.mp4")},
    )
