"""Request-scoped access to the collaborators built at app start."""

from fastapi import Request

from services.blob_store import BlobStore
from services.ingestion import VideoIngestionPipeline
from services.stories import StoryService


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_ingestion(request: Request) -> VideoIngestionPipeline:
    return request.app.state.ingestion


def get_story_service(request: Request) -> StoryService:
    return request.app.state.story_service
