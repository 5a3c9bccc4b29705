"""Error kinds raised by the clip assembly pipeline and its adapters."""

from __future__ import annotations

from typing import Sequence


class AssemblyError(Exception):
    """Base class for every failure a caller of the assembly engine can see."""


class InvalidRequestError(AssemblyError):
    pass


class ClipNotFoundError(AssemblyError):
    def __init__(self, clip_id: str, blob_id: str) -> None:
        self.clip_id = clip_id
        self.blob_id = blob_id
        super().__init__(f"Clip {clip_id} references missing blob {blob_id}")


class TranscodeError(AssemblyError):
    """ffmpeg failed, timed out, or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.cmd = list(cmd) if cmd is not None else []
        self.returncode = returncode
        self.stderr = stderr
        detail = f"{message} (exit {returncode})" if returncode is not None else message
        if stderr:
            detail = f"{detail}\nStderr: {stderr}"
        super().__init__(detail)


class StorageError(AssemblyError):
    pass


class BlobNotFoundError(StorageError):
    def __init__(self, blob_id: str) -> None:
        self.blob_id = blob_id
        super().__init__(f"Blob {blob_id} not found")


class CleanupWarning(UserWarning):
    """Scratch cleanup failed; logged only, the job outcome stands."""
