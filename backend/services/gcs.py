"""Google Cloud Storage blob store: uploaded originals and rendered stories."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterator
from typing import Any, Callable

from google.api_core import exceptions as gcs_exceptions

from services.blob_store import BLOB_CHUNK_SIZE
from services.errors import BlobNotFoundError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "memory-lane-media"
DEFAULT_PREFIX = "blobs"


def get_bucket_name() -> str:
    """Bucket name from env or default."""
    return os.environ.get("GCS_BUCKET", "").strip() or DEFAULT_BUCKET


def get_blob_prefix() -> str:
    return os.environ.get("GCS_BLOB_PREFIX", "").strip().strip("/") or DEFAULT_PREFIX


async def _call(fn: Callable[..., Any], *args: Any, blob_id: str | None = None, **kwargs: Any) -> Any:
    """Run a blocking storage call off the event loop and map its errors."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except gcs_exceptions.NotFound as exc:
        if blob_id is not None:
            raise BlobNotFoundError(blob_id) from exc
        raise StorageError(str(exc)) from exc
    except (gcs_exceptions.GoogleAPIError, OSError) as exc:
        raise StorageError(f"GCS request failed: {exc}") from exc


class GcsUpload:
    """
    Streamed upload into one new object.

    Chunks go through a resumable-upload writer; the object only exists for
    readers after finalize() closes the writer.
    """

    def __init__(self, blob_id: str, blob: Any, writer: Any) -> None:
        self._id = blob_id
        self._blob = blob
        self._writer = writer
        self._done = False

    @property
    def id(self) -> str:
        return self._id

    async def write(self, chunk: bytes) -> None:
        if self._done:
            raise StorageError(f"Upload {self._id} is already closed")
        await _call(self._writer.write, chunk)

    async def finalize(self) -> str:
        if self._done:
            raise StorageError(f"Upload {self._id} is already closed")
        self._done = True
        await _call(self._writer.close)
        logger.info("[gcs] Finalized %s", self._blob.name)
        return self._id

    async def abort(self) -> None:
        if self._done:
            return
        self._done = True
        # The writer commits on close, so whatever it flushed is deleted right after.
        try:
            await _call(self._writer.close)
        except StorageError as exc:
            logger.info("[gcs] Abandoned upload %s did not close cleanly: %s", self._blob.name, exc)
        try:
            await _call(self._blob.delete)
        except StorageError:
            pass
        logger.warning("[gcs] Aborted upload %s", self._blob.name)


class GcsBlobStore:
    """
    Blob store over one GCS bucket. Objects live at <prefix>/<blob id>.

    Construct with init() at app start and release with teardown(); pass the
    instance to whoever needs it.
    """

    def __init__(self, client: Any, bucket_name: str, *, prefix: str = DEFAULT_PREFIX) -> None:
        self._client = client
        self._bucket_name = bucket_name
        self._bucket = client.bucket(bucket_name)
        self._prefix = prefix

    @classmethod
    def init(
        cls,
        *,
        bucket_name: str | None = None,
        client: Any | None = None,
        prefix: str | None = None,
    ) -> GcsBlobStore:
        """
        Build a store for *bucket_name* (default from GCS_BUCKET env or "memory-lane-media").

        Uses default credentials (GOOGLE_APPLICATION_CREDENTIALS or ADC) when
        no client is given.
        """
        if client is None:
            from google.cloud import storage  # noqa: PLC0415

            client = storage.Client()
        store = cls(client, bucket_name or get_bucket_name(), prefix=prefix or get_blob_prefix())
        logger.info("[gcs] Blob store ready: gs://%s/%s", store.bucket_name, store._prefix)
        return store

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def object_name(self, blob_id: str) -> str:
        return f"{self._prefix}/{blob_id}"

    async def open_upload_stream(self, name: str, content_type: str) -> GcsUpload:
        blob_id = uuid.uuid4().hex
        blob = self._bucket.blob(self.object_name(blob_id))
        blob.content_type = content_type
        blob.metadata = {"filename": name}
        writer = await _call(
            blob.open,
            "wb",
            content_type=content_type,
            if_generation_match=0,
        )
        return GcsUpload(blob_id, blob, writer)

    async def open_download_stream(self, blob_id: str) -> AsyncIterator[bytes]:
        blob = await _call(self._bucket.get_blob, self.object_name(blob_id), blob_id=blob_id)
        if blob is None:
            raise BlobNotFoundError(blob_id)
        return self._iter_blob(blob, blob_id)

    async def _iter_blob(self, blob: Any, blob_id: str) -> AsyncIterator[bytes]:
        reader = await _call(blob.open, "rb", chunk_size=BLOB_CHUNK_SIZE, blob_id=blob_id)
        try:
            while True:
                chunk = await _call(reader.read, BLOB_CHUNK_SIZE, blob_id=blob_id)
                if not chunk:
                    return
                yield chunk
        finally:
            reader.close()

    async def delete(self, blob_id: str) -> None:
        await _call(self._bucket.blob(self.object_name(blob_id)).delete, blob_id=blob_id)

    async def teardown(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            await asyncio.to_thread(close)
        logger.info("[gcs] Blob store closed")
