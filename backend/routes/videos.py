"""Video upload, listing, search and playback."""

import logging
import re
from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from models import ProcessingStatus, VideoRecord
from services.blob_store import BlobStore
from services.errors import BlobNotFoundError, InvalidRequestError, StorageError
from services.ingestion import VideoIngestionPipeline
from services.search import search_videos
from services.store import videos

from routes.deps import get_blob_store, get_ingestion

router = APIRouter(tags=["videos"])
logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_UNSAFE_HEADER_CHARS = re.compile(r'[^\x20-\x7e]|["\\]')


def content_disposition(filename: str) -> str:
    """Inline disposition: an ASCII fallback name plus the exact name as RFC 5987 UTF-8."""
    fallback = _UNSAFE_HEADER_CHARS.sub("_", filename) or "video"
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


class VideoUploadResponse(BaseModel):
    message: str
    video_id: str
    filename: str


class VideoResponse(BaseModel):
    id: str
    filename: str
    content_type: str
    size: int
    processing_status: ProcessingStatus
    transcription: str
    tags: list[str]
    duration: float | None = None
    uploaded_at: datetime

    @classmethod
    def from_record(cls, record: VideoRecord) -> "VideoResponse":
        return cls(
            id=record.id,
            filename=record.filename,
            content_type=record.content_type,
            size=record.size,
            processing_status=record.processing_status,
            transcription=record.transcription,
            tags=list(record.tags),
            duration=record.duration,
            uploaded_at=record.uploaded_at,
        )


def _get_record(video_id: str) -> VideoRecord:
    record = videos.get(video_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return record


@router.post("/videos", response_model=VideoUploadResponse, status_code=201)
async def upload_video(
    request: Request,
    filename: str = Query(..., min_length=1, description="Original file name"),
    ingestion: VideoIngestionPipeline = Depends(get_ingestion),
) -> VideoUploadResponse:
    """Store the raw request body as a video; processing continues in the background."""
    content_type = request.headers.get("content-type", "").strip() or DEFAULT_CONTENT_TYPE
    logger.info("[videos] POST /api/videos filename=%s content_type=%s", filename, content_type)
    try:
        record = await ingestion.store_upload(request.stream(), filename, content_type)
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("[videos] Upload failed: %s", exc)
        raise HTTPException(status_code=502, detail="Upload failed") from exc
    return VideoUploadResponse(
        message="Video uploaded successfully",
        video_id=record.id,
        filename=record.filename,
    )


@router.get("/videos", response_model=list[VideoResponse])
def list_videos() -> list[VideoResponse]:
    records = sorted(videos.values(), key=lambda r: r.uploaded_at, reverse=True)
    return [VideoResponse.from_record(r) for r in records]


@router.get("/videos/search", response_model=list[VideoResponse])
def search(q: str = Query("", description="Text to look for in transcripts, tags and file names")) -> list[VideoResponse]:
    try:
        hits = search_videos(videos.values(), q)
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [VideoResponse.from_record(r) for r in hits]


@router.get("/videos/{video_id}", response_model=VideoResponse)
def get_video(video_id: str) -> VideoResponse:
    return VideoResponse.from_record(_get_record(video_id))


@router.get("/videos/{video_id}/content")
async def stream_video(
    video_id: str,
    blob_store: BlobStore = Depends(get_blob_store),
) -> StreamingResponse:
    record = _get_record(video_id)
    try:
        stream = await blob_store.open_download_stream(record.blob_id)
    except BlobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Video file not found") from exc
    return StreamingResponse(
        stream,
        media_type=record.content_type,
        headers={"Content-Disposition": content_disposition(record.filename)},
    )
