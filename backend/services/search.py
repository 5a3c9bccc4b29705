from __future__ import annotations

from typing import Iterable

from models import VideoRecord
from services.errors import InvalidRequestError


def _matches(record: VideoRecord, needle: str) -> bool:
    if needle in record.filename.lower():
        return True
    if needle in record.transcription.lower():
        return True
    return any(needle in tag.lower() for tag in record.tags)


def search_videos(records: Iterable[VideoRecord], query: str) -> list[VideoRecord]:
    """Case-insensitive match on filename, transcription and tags; newest first."""
    needle = (query or "").strip().lower()
    if not needle:
        raise InvalidRequestError("Search query required")
    hits = [record for record in records if _matches(record, needle)]
    hits.sort(key=lambda record: record.uploaded_at, reverse=True)
    return hits
