"""
Clip assembly: download stored clips, optionally trim them to fit a target
duration, concatenate them in request order and store the rendered video.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import re
import time
from pathlib import Path
from typing import Iterable, Protocol

from models import AssemblyRequest, AssemblyResult, ClipReference, FileRole, WorkingFile
from services.blob_store import BlobStore, copy_stream_to_file, upload_file
from services.errors import AssemblyError, BlobNotFoundError, ClipNotFoundError, StorageError
from services.transcode import ConcatOptions, write_concat_manifest
from services.workdir import WorkingDirectory, WorkingDirectoryManager

logger = logging.getLogger(__name__)

MIN_CLIP_SECONDS = 2
DEFAULT_MAX_PARALLEL = 3
OUTPUT_CONTENT_TYPE = "video/mp4"
MANIFEST_NAME = "inputs.txt"
OUTPUT_NAME = "story.mp4"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class Transcoder(Protocol):
    async def trim(self, input_path: Path, output_path: Path, start_seconds: float, duration_seconds: float) -> Path: ...

    async def concatenate(self, manifest_path: Path, output_path: Path, options: ConcatOptions | None = None) -> Path: ...


def get_max_parallel() -> int:
    value = os.environ.get("ASSEMBLY_MAX_PARALLEL", "").strip()
    try:
        parsed = int(value) if value else DEFAULT_MAX_PARALLEL
    except ValueError:
        logger.warning("[assembly] Ignoring non-integer ASSEMBLY_MAX_PARALLEL=%r", value)
        parsed = DEFAULT_MAX_PARALLEL
    return max(1, parsed)


def per_clip_seconds(target_duration_seconds: float, clip_count: int) -> int:
    """Even share of the target per clip, never below MIN_CLIP_SECONDS."""
    return max(MIN_CLIP_SECONDS, math.floor(target_duration_seconds / max(1, clip_count)))


def story_blob_name(now: float | None = None) -> str:
    millis = int((now if now is not None else time.time()) * 1000)
    return f"story-{millis}.mp4"


def _working_name(index: int, clip: ClipReference, role: FileRole) -> str:
    safe_id = _UNSAFE_NAME_CHARS.sub("_", clip.id) or "clip"
    # Index prefix keeps names unique when the same clip appears twice.
    return f"{index:03d}-{safe_id}-{role.value}.mp4"


def _first_error(group: BaseExceptionGroup) -> BaseException:
    leaves: list[BaseException] = []

    def _collect(exc: BaseException) -> None:
        if isinstance(exc, BaseExceptionGroup):
            for inner in exc.exceptions:
                _collect(inner)
        else:
            leaves.append(exc)

    _collect(group)
    for exc in leaves:
        if isinstance(exc, AssemblyError):
            return exc
    for exc in leaves:
        if isinstance(exc, OSError):
            return StorageError(str(exc))
    for exc in leaves:
        if isinstance(exc, Exception):
            return StorageError(f"Clip preparation failed: {exc!r}")
    return leaves[0]


class ClipAssemblyEngine:
    """
    Turns an AssemblyRequest into exactly one new blob, or raises one of the
    AssemblyError kinds.

    Every job runs inside its own working directory, which is removed on every
    exit path. The final upload only starts once ffmpeg has produced the whole
    output file, so a failed job never leaves a blob behind.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        transcoder: Transcoder,
        workdirs: WorkingDirectoryManager | None = None,
        *,
        max_parallel: int | None = None,
    ) -> None:
        self._blob_store = blob_store
        self._transcoder = transcoder
        self._workdirs = workdirs or WorkingDirectoryManager()
        self._max_parallel = max(1, max_parallel) if max_parallel is not None else get_max_parallel()

    async def assemble(self, request: AssemblyRequest) -> AssemblyResult:
        request.validate()
        mode = "trimmed" if request.trimmed else "untrimmed"
        started = time.monotonic()
        logger.info(
            "[assembly] Starting %s assembly of %d clip(s) target=%s",
            mode,
            len(request.clips),
            request.target_duration_seconds,
        )
        try:
            async with self._workdirs.scoped() as workdir:
                result = await self._assemble_in(workdir, request)
        except AssemblyError as exc:
            logger.error("[assembly] %s assembly failed: %s", mode, exc)
            raise
        except OSError as exc:
            logger.error("[assembly] %s assembly failed on local I/O: %s", mode, exc)
            raise StorageError(f"Local I/O failed during assembly: {exc}") from exc
        except Exception as exc:
            logger.error("[assembly] %s assembly failed unexpectedly: %r", mode, exc, exc_info=True)
            raise StorageError(f"Assembly failed: {exc!r}") from exc

        logger.info(
            "[assembly] Stored %s story as %s in %.1fs",
            mode,
            result.output_blob_id,
            time.monotonic() - started,
        )
        return result

    async def _assemble_in(self, workdir: WorkingDirectory, request: AssemblyRequest) -> AssemblyResult:
        inputs = await self._prepare_clips(workdir, request)

        manifest = workdir.track(MANIFEST_NAME, FileRole.MANIFEST)
        await asyncio.to_thread(write_concat_manifest, [f.path for f in inputs], manifest.path)

        if request.trimmed:
            options = ConcatOptions(reencode=True, max_duration_seconds=request.target_duration_seconds)
        else:
            # Untrimmed joins everything as-is: no re-encode and no duration cap.
            options = ConcatOptions(reencode=False)

        output = workdir.track(OUTPUT_NAME, FileRole.OUTPUT)
        await self._transcoder.concatenate(manifest.path, output.path, options)

        blob_id = await upload_file(self._blob_store, output.path, story_blob_name(), OUTPUT_CONTENT_TYPE)
        return AssemblyResult(output_blob_id=blob_id)

    async def _prepare_clips(self, workdir: WorkingDirectory, request: AssemblyRequest) -> list[WorkingFile]:
        """Download (and trim) every clip; result is indexed in request order."""
        seconds = (
            per_clip_seconds(request.target_duration_seconds, len(request.clips))
            if request.target_duration_seconds is not None
            else None
        )
        slots: list[WorkingFile | None] = [None] * len(request.clips)
        semaphore = asyncio.Semaphore(self._max_parallel)

        async def _prepare(index: int, clip: ClipReference) -> None:
            async with semaphore:
                slots[index] = await self._prepare_clip(workdir, index, clip, seconds)

        try:
            async with asyncio.TaskGroup() as group:
                for index, clip in enumerate(request.clips):
                    group.create_task(_prepare(index, clip))
        except BaseExceptionGroup as errors:
            raise _first_error(errors) from None

        return [slot for slot in slots if slot is not None]

    async def _prepare_clip(
        self,
        workdir: WorkingDirectory,
        index: int,
        clip: ClipReference,
        seconds: int | None,
    ) -> WorkingFile:
        raw = workdir.track(_working_name(index, clip, FileRole.RAW), FileRole.RAW)
        await self._download(clip, raw.path)
        if seconds is None:
            return raw

        trimmed = workdir.track(_working_name(index, clip, FileRole.TRIMMED), FileRole.TRIMMED)
        await self._transcoder.trim(raw.path, trimmed.path, 0, seconds)
        return trimmed

    async def _download(self, clip: ClipReference, path: Path) -> None:
        try:
            stream = await self._blob_store.open_download_stream(clip.blob_id)
            size = await copy_stream_to_file(stream, path)
        except BlobNotFoundError as exc:
            raise ClipNotFoundError(clip.id, clip.blob_id) from exc
        logger.debug("[assembly] Downloaded clip %s (%d bytes)", clip.id, size)


async def assemble_story(
    clips: Iterable[ClipReference],
    target_duration_seconds: float | None = None,
    *,
    engine: ClipAssemblyEngine,
) -> AssemblyResult:
    """Caller entry point: validate, assemble, return the rendered video's blob id."""
    request = AssemblyRequest.build(clips, target_duration_seconds)
    return await engine.assemble(request)
