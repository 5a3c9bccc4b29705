"""Blob store interface and the stream/file transfer helpers built on it."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, nullcontext
from pathlib import Path
from typing import Protocol

from services.errors import AssemblyError, StorageError

logger = logging.getLogger(__name__)

BLOB_CHUNK_SIZE = 1024 * 1024  # 1 MiB


class BlobUpload(Protocol):
    """
    A streamed write into the blob store.

    The blob becomes visible to readers only once finalize() returns its id;
    abort() discards whatever was written.
    """

    @property
    def id(self) -> str: ...

    async def write(self, chunk: bytes) -> None: ...

    async def finalize(self) -> str: ...

    async def abort(self) -> None: ...


class BlobStore(Protocol):
    async def open_upload_stream(self, name: str, content_type: str) -> BlobUpload: ...

    async def open_download_stream(self, blob_id: str) -> AsyncIterator[bytes]:
        """Resolve *blob_id* (BlobNotFoundError if missing) and return its byte chunks."""
        ...

    async def delete(self, blob_id: str) -> None: ...

    async def teardown(self) -> None: ...


async def copy_stream_to_file(stream: AsyncIterator[bytes], path: Path) -> int:
    """
    Write every chunk of *stream* to *path*; return the byte count.

    One awaitable per transfer: completes when the file is fully written,
    raises StorageError on a stream or disk failure.
    """
    written = 0
    # The source is closed on every exit, including a failed disk write.
    source = aclosing(stream) if hasattr(stream, "aclose") else nullcontext(stream)
    try:
        async with source:
            with path.open("wb") as fh:
                async for chunk in stream:
                    await asyncio.to_thread(fh.write, chunk)
                    written += len(chunk)
    except AssemblyError:
        raise
    except OSError as exc:
        raise StorageError(f"Could not write {path}: {exc}") from exc
    return written


async def upload_chunks(
    store: BlobStore,
    chunks: AsyncIterator[bytes],
    name: str,
    content_type: str,
) -> tuple[str, int]:
    """Stream *chunks* into a new blob; return (blob id, byte count). Aborts on failure."""
    upload = await store.open_upload_stream(name, content_type)
    size = 0
    try:
        async for chunk in chunks:
            if not chunk:
                continue
            await upload.write(chunk)
            size += len(chunk)
        blob_id = await upload.finalize()
    except BaseException:
        await _abort_quietly(upload)
        raise
    return blob_id, size


async def _iter_file(path: Path, chunk_size: int = BLOB_CHUNK_SIZE) -> AsyncIterator[bytes]:
    try:
        with path.open("rb") as fh:
            while True:
                chunk = await asyncio.to_thread(fh.read, chunk_size)
                if not chunk:
                    return
                yield chunk
    except OSError as exc:
        raise StorageError(f"Could not read {path}: {exc}") from exc


async def upload_file(store: BlobStore, path: Path, name: str, content_type: str) -> str:
    """Stream a finished local file into the blob store and return the new blob id."""
    blob_id, size = await upload_chunks(store, _iter_file(path), name, content_type)
    logger.info("[blob_store] Uploaded %s (%d bytes) as %s", name, size, blob_id)
    return blob_id


async def _abort_quietly(upload: BlobUpload) -> None:
    try:
        await upload.abort()
    except Exception as exc:  # noqa: BLE001
        logger.warning("[blob_store] Abort of upload %s failed: %s", upload.id, exc, exc_info=True)
