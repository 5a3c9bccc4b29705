from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable


class FileRole(str, Enum):
    RAW = "raw"
    TRIMMED = "trimmed"
    MANIFEST = "manifest"
    OUTPUT = "output"
    AUDIO = "audio"


@dataclass(frozen=True)
class ClipReference:
    id: str
    blob_id: str                            # id in the blob store
    duration_hint: float | None = None      # seconds, probed at ingestion


@dataclass(frozen=True)
class WorkingFile:
    path: Path
    role: FileRole


@dataclass(frozen=True)
class AssemblyResult:
    output_blob_id: str


@dataclass(frozen=True)
class AssemblyRequest:
    """Ordered clips to join, optionally squeezed into a target duration."""

    clips: tuple[ClipReference, ...]
    target_duration_seconds: float | None = None

    @classmethod
    def build(
        cls,
        clips: Iterable[ClipReference],
        target_duration_seconds: float | None = None,
    ) -> AssemblyRequest:
        request = cls(clips=tuple(clips), target_duration_seconds=target_duration_seconds)
        request.validate()
        return request

    @property
    def trimmed(self) -> bool:
        return self.target_duration_seconds is not None

    def validate(self) -> None:
        from services.errors import InvalidRequestError  # noqa: PLC0415

        if not self.clips:
            raise InvalidRequestError("At least one clip is required")
        target = self.target_duration_seconds
        if target is not None and (not math.isfinite(target) or target <= 0):
            raise InvalidRequestError(f"target_duration_seconds must be positive, got {target!r}")
