"""
Video ingestion: store the uploaded original, then transcribe and tag it in
the background.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Protocol

from models import FileRole, ProcessingStatus, VideoRecord
from services import store
from services.background import TaskRegistry
from services.blob_store import BlobStore, copy_stream_to_file, upload_chunks
from services.errors import InvalidRequestError
from services.tagging import FALLBACK_TAG, keyword_tags
from services.workdir import WorkingDirectoryManager

logger = logging.getLogger(__name__)

# Anything smaller cannot be a usable video.
MIN_UPLOAD_BYTES = 1000


class MediaProber(Protocol):
    async def extract_audio(self, input_path: Path, output_path: Path) -> Path | None: ...

    async def probe_duration(self, path: Path) -> float | None: ...


class Transcriber(Protocol):
    async def __call__(self, audio_path: Path) -> str: ...


Tagger = Callable[[str], list[str]]


class VideoIngestionPipeline:
    def __init__(
        self,
        blob_store: BlobStore,
        transcoder: MediaProber,
        tasks: TaskRegistry,
        *,
        workdirs: WorkingDirectoryManager | None = None,
        transcriber: Transcriber | None = None,
        tagger: Tagger = keyword_tags,
        records: dict[str, VideoRecord] | None = None,
    ) -> None:
        self._blob_store = blob_store
        self._transcoder = transcoder
        self._tasks = tasks
        self._workdirs = workdirs or WorkingDirectoryManager(prefix="ingest-")
        self._transcriber = transcriber
        self._tagger = tagger
        self._records = records if records is not None else store.videos

    async def store_upload(
        self,
        chunks: AsyncIterator[bytes],
        filename: str,
        content_type: str,
    ) -> VideoRecord:
        """
        Stream an upload into the blob store and register the video.

        Transcription and tagging are spawned as a background task; this call
        returns as soon as the original is stored.
        """
        blob_id, size = await upload_chunks(self._blob_store, chunks, filename, content_type)
        if size < MIN_UPLOAD_BYTES:
            await self._blob_store.delete(blob_id)
            raise InvalidRequestError(f"Upload too small or empty ({size} bytes)")

        record = VideoRecord(
            id=secrets.token_hex(12),
            blob_id=blob_id,
            filename=filename,
            content_type=content_type,
            size=size,
        )
        self._records[record.id] = record
        logger.info("[ingestion] Stored %s (%d bytes) as video %s", filename, size, record.id)
        self._tasks.spawn(self.process_video(record.id), name=f"process-video-{record.id}")
        return record

    async def process_video(self, video_id: str) -> VideoRecord:
        record = self._records.get(video_id)
        if record is None:
            raise LookupError(f"Video {video_id} not found")

        try:
            async with self._workdirs.scoped() as workdir:
                suffix = Path(record.filename).suffix or ".mp4"
                source = workdir.track(f"source{suffix}", FileRole.RAW)
                stream = await self._blob_store.open_download_stream(record.blob_id)
                await copy_stream_to_file(stream, source.path)

                record.duration = await self._transcoder.probe_duration(source.path)
                audio = workdir.track("audio.wav", FileRole.AUDIO)
                audio_path = await self._transcoder.extract_audio(source.path, audio.path)
                transcription = await self._transcribe(audio_path) if audio_path is not None else ""
            tags = self._tagger(transcription) or [FALLBACK_TAG]
        except Exception:
            record.processing_status = ProcessingStatus.ERROR
            logger.error("[ingestion] Processing failed for video %s", video_id, exc_info=True)
            raise

        record.transcription = transcription
        record.tags = tags
        record.processing_status = ProcessingStatus.COMPLETED
        logger.info("[ingestion] Video %s processed: tags=%s", video_id, record.tags)
        return record

    async def _transcribe(self, audio_path: Path) -> str:
        if self._transcriber is None:
            logger.warning("[ingestion] No transcriber configured; leaving transcription empty.")
            return ""
        text = await self._transcriber(audio_path)
        return (text or "").strip()
