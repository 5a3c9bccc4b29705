"""Shared fakes: an in-memory blob store and a transcoder that only moves bytes around."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from services.assembly import ClipAssemblyEngine
from services.errors import BlobNotFoundError, StorageError, TranscodeError
from services.store import stories, videos
from services.transcode import ConcatOptions
from services.workdir import WorkingDirectory, WorkingDirectoryManager


class FakeUpload:
    def __init__(self, store: FakeBlobStore, blob_id: str, name: str, content_type: str) -> None:
        self._store = store
        self._id = blob_id
        self.name = name
        self.content_type = content_type
        self.buffer = bytearray()

    @property
    def id(self) -> str:
        return self._id

    async def write(self, chunk: bytes) -> None:
        if self._store.fail_writes:
            raise StorageError("quota exceeded")
        self.buffer += chunk

    async def finalize(self) -> str:
        self._store.blobs[self._id] = bytes(self.buffer)
        self._store.names[self._id] = self.name
        self._store.content_types[self._id] = self.content_type
        return self._id

    async def abort(self) -> None:
        self._store.aborted.append(self._id)


class FakeBlobStore:
    """Blobs live in a dict; only finalized uploads become readable."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.blobs: dict[str, bytes] = {}
        self.names: dict[str, str] = {}
        self.content_types: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.aborted: list[str] = []
        self.deleted: list[str] = []
        self.broken: set[str] = set()            # downloads fail after the last chunk
        self.delays: dict[str, float] = {}       # per-blob download delay
        self.fail_writes = False
        self.torn_down = False

    def put(self, data: bytes, blob_id: str | None = None) -> str:
        blob_id = blob_id or f"seed-{next(self._ids)}"
        self.blobs[blob_id] = data
        return blob_id

    async def open_upload_stream(self, name: str, content_type: str) -> FakeUpload:
        blob_id = f"blob-{next(self._ids)}"
        self.calls.append(("upload", name))
        return FakeUpload(self, blob_id, name, content_type)

    async def open_download_stream(self, blob_id: str) -> AsyncIterator[bytes]:
        self.calls.append(("download", blob_id))
        if blob_id not in self.blobs:
            raise BlobNotFoundError(blob_id)
        return self._iter(blob_id, self.blobs[blob_id])

    async def _iter(self, blob_id: str, data: bytes) -> AsyncIterator[bytes]:
        delay = self.delays.get(blob_id, 0)
        if delay:
            await asyncio.sleep(delay)
        for start in range(0, len(data), 4):
            yield data[start:start + 4]
        if blob_id in self.broken:
            raise StorageError(f"connection reset while reading {blob_id}")

    async def delete(self, blob_id: str) -> None:
        self.deleted.append(blob_id)
        if self.blobs.pop(blob_id, None) is None:
            raise BlobNotFoundError(blob_id)

    async def teardown(self) -> None:
        self.torn_down = True


class GarbledBlobStore(FakeBlobStore):
    """Streams the start of one blob, then fails with a non-storage exception."""

    def __init__(self, garbled: str) -> None:
        super().__init__()
        self.garbled = garbled

    async def _iter(self, blob_id: str, data: bytes) -> AsyncIterator[bytes]:
        if blob_id != self.garbled:
            async for chunk in super()._iter(blob_id, data):
                yield chunk
            return
        yield data[:2]
        raise ValueError("checksum mismatch from transport")


@dataclass
class ConcatCall:
    inputs: list[Path]
    options: ConcatOptions


def read_manifest(manifest_path: Path) -> list[Path]:
    paths = []
    for line in manifest_path.read_text(encoding="utf-8").splitlines():
        assert line.startswith("file '") and line.endswith("'")
        paths.append(Path(line[len("file '"):-1].replace("'\\''", "'")))
    return paths


class FakeTranscoder:
    """Trim copies bytes; concatenate joins the manifest's files byte for byte."""

    def __init__(self) -> None:
        self.trims: list[tuple[Path, Path, float, float]] = []
        self.concats: list[ConcatCall] = []
        self.fail_trim_containing: str | None = None
        self.fail_concat = False
        self.has_audio = True
        self.duration: float | None = 12.5

    async def trim(self, input_path: Path, output_path: Path, start_seconds: float, duration_seconds: float) -> Path:
        self.trims.append((input_path, output_path, start_seconds, duration_seconds))
        if self.fail_trim_containing and self.fail_trim_containing in input_path.name:
            raise TranscodeError("ffmpeg failed", cmd=["ffmpeg"], returncode=1, stderr="corrupt input")
        output_path.write_bytes(input_path.read_bytes())
        return output_path

    async def concatenate(self, manifest_path: Path, output_path: Path, options: ConcatOptions | None = None) -> Path:
        inputs = read_manifest(manifest_path)
        self.concats.append(ConcatCall(inputs=inputs, options=options or ConcatOptions()))
        if self.fail_concat:
            raise TranscodeError("ffmpeg failed", cmd=["ffmpeg"], returncode=1, stderr="no space left on device")
        output_path.write_bytes(b"".join(p.read_bytes() for p in inputs))
        return output_path

    async def extract_audio(self, input_path: Path, output_path: Path) -> Path | None:
        if not self.has_audio:
            return None
        output_path.write_bytes(b"RIFF" + input_path.read_bytes()[:16])
        return output_path

    async def probe_duration(self, path: Path) -> float | None:
        return self.duration


class RecordingWorkdirs(WorkingDirectoryManager):
    """Keeps every WorkingDirectory it hands out so tests can inspect them afterwards."""

    def __init__(self, root: Path, **kwargs) -> None:
        super().__init__(root, **kwargs)
        self.opened: list[WorkingDirectory] = []

    def open(self) -> WorkingDirectory:
        workdir = super().open()
        self.opened.append(workdir)
        return workdir


@pytest.fixture(autouse=True)
def clear_records() -> None:
    """Isolate tests by clearing the in-memory record store."""
    videos.clear()
    stories.clear()
    yield
    videos.clear()
    stories.clear()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def workdirs(scratch_root: Path) -> RecordingWorkdirs:
    return RecordingWorkdirs(scratch_root)


@pytest.fixture
def engine(blob_store: FakeBlobStore, transcoder: FakeTranscoder, workdirs: RecordingWorkdirs) -> ClipAssemblyEngine:
    return ClipAssemblyEngine(blob_store, transcoder, workdirs, max_parallel=3)


@pytest.fixture
def anyio_backend() -> str:
    """The services are built on asyncio (subprocesses, to_thread, tasks); run anyio tests on it."""
    return "asyncio"
