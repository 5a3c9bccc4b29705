"""ffmpeg-backed trim / audio extraction / concatenation, plus PyAV probing."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import av
import av.error

from services.errors import TranscodeError

logger = logging.getLogger(__name__)

DEFAULT_FFMPEG_BIN = "ffmpeg"

# Fixed re-encode policy for concatenating trimmed segments.
REENCODE_VIDEO_CODEC = "libx264"
REENCODE_AUDIO_CODEC = "aac"
REENCODE_PRESET = "ultrafast"
REENCODE_CRF = 23

# Speech-to-text input format.
AUDIO_SAMPLE_RATE = 16000
AUDIO_CHANNELS = 1

_STDERR_TAIL_CHARS = 2000


def get_ffmpeg_bin() -> str:
    return os.environ.get("FFMPEG_BIN", "").strip() or DEFAULT_FFMPEG_BIN


def get_ffmpeg_timeout() -> float | None:
    """Timeout in seconds from FFMPEG_TIMEOUT_SECONDS; unset or blank means none."""
    value = os.environ.get("FFMPEG_TIMEOUT_SECONDS", "").strip()
    if not value:
        return None
    try:
        timeout = float(value)
    except ValueError:
        logger.warning("[transcode] Ignoring non-numeric FFMPEG_TIMEOUT_SECONDS=%r", value)
        return None
    return timeout if timeout > 0 else None


@dataclass(frozen=True)
class ConcatOptions:
    reencode: bool = False
    max_duration_seconds: float | None = None   # output-side cap, re-encode path only in practice


def _format_seconds(value: float) -> str:
    return f"{value:g}"


def _escape_manifest_path(path: Path) -> str:
    # concat demuxer quoting: close the quote, emit an escaped quote, reopen.
    return str(path.resolve()).replace("'", "'\\''")


def write_concat_manifest(paths: Iterable[Path], manifest_path: Path) -> Path:
    """Write an ffmpeg concat demuxer list; line order is concatenation order."""
    lines = [f"file '{_escape_manifest_path(Path(p))}'" for p in paths]
    if not lines:
        raise ValueError("Concat manifest needs at least one input")
    manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest_path


def has_audio_stream(path: Path) -> bool:
    """True when PyAV can open *path* and it carries at least one audio stream."""
    try:
        with av.open(str(path)) as container:
            return len(container.streams.audio) > 0
    except (av.error.FFmpegError, OSError) as exc:
        logger.info("[transcode] Could not probe %s for audio: %s", path, exc)
        return False


def probe_duration(path: Path) -> float | None:
    """Container duration in seconds, or None if unknown."""
    try:
        with av.open(str(path)) as container:
            if container.duration is None:
                return None
            return container.duration / av.time_base
    except (av.error.FFmpegError, OSError) as exc:
        logger.info("[transcode] Could not probe duration of %s: %s", path, exc)
        return None


class FfmpegTranscoder:
    """
    The single transcoding capability used by assembly and ingestion.

    Each call runs one ffmpeg process and awaits it; the output path is
    returned on success and TranscodeError raised on any failure.
    """

    def __init__(self, ffmpeg_bin: str | None = None, *, timeout_seconds: float | None = None) -> None:
        self._ffmpeg_bin = ffmpeg_bin or get_ffmpeg_bin()
        self._timeout = timeout_seconds if timeout_seconds is not None else get_ffmpeg_timeout()

    @property
    def ffmpeg_bin(self) -> str:
        return self._ffmpeg_bin

    def _base_cmd(self) -> list[str]:
        return [self._ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-y"]

    @staticmethod
    def _require_input(path: Path) -> None:
        if not path.is_file():
            raise TranscodeError(f"Input file does not exist: {path}")

    async def trim(
        self,
        input_path: Path,
        output_path: Path,
        start_seconds: float,
        duration_seconds: float,
    ) -> Path:
        self._require_input(input_path)
        if duration_seconds <= 0:
            raise TranscodeError(f"Trim duration must be positive, got {duration_seconds!r}")
        cmd = self._base_cmd() + [
            "-ss", _format_seconds(start_seconds),
            "-i", str(input_path),
            "-t", _format_seconds(duration_seconds),
            "-c:v", REENCODE_VIDEO_CODEC,
            "-preset", REENCODE_PRESET,
            "-crf", str(REENCODE_CRF),
            "-c:a", REENCODE_AUDIO_CODEC,
            str(output_path),
        ]
        await self._run(cmd)
        logger.info("[transcode] Trimmed %s [%ss +%ss] -> %s", input_path.name, start_seconds, duration_seconds, output_path.name)
        return output_path

    async def extract_audio(self, input_path: Path, output_path: Path) -> Path | None:
        """
        Extract a mono 16 kHz PCM WAV track.

        Returns None, not an error, for stills and silent clips.
        """
        self._require_input(input_path)
        mime_type, _ = mimetypes.guess_type(input_path.name)
        if mime_type and mime_type.startswith("image/"):
            logger.info("[transcode] %s is an image; skipping audio extraction", input_path.name)
            return None
        if not await asyncio.to_thread(has_audio_stream, input_path):
            logger.info("[transcode] No audio stream in %s; skipping audio extraction", input_path.name)
            return None
        cmd = self._base_cmd() + [
            "-i", str(input_path),
            "-vn",
            "-acodec", "pcm_s16le",
            "-ar", str(AUDIO_SAMPLE_RATE),
            "-ac", str(AUDIO_CHANNELS),
            "-f", "wav",
            str(output_path),
        ]
        await self._run(cmd)
        return output_path

    async def concatenate(
        self,
        manifest_path: Path,
        output_path: Path,
        options: ConcatOptions | None = None,
    ) -> Path:
        """
        Join the files listed in *manifest_path*.

        Stream copy needs inputs with compatible codecs (the caller's job);
        re-encode normalizes to H.264/AAC.
        """
        options = options or ConcatOptions()
        self._require_input(manifest_path)
        cmd = self._base_cmd() + ["-f", "concat", "-safe", "0", "-i", str(manifest_path)]
        if options.reencode:
            cmd += [
                "-c:v", REENCODE_VIDEO_CODEC,
                "-preset", REENCODE_PRESET,
                "-crf", str(REENCODE_CRF),
                "-c:a", REENCODE_AUDIO_CODEC,
            ]
        else:
            cmd += ["-c", "copy"]
        if options.max_duration_seconds is not None:
            cmd += ["-t", _format_seconds(options.max_duration_seconds)]
        cmd.append(str(output_path))
        await self._run(cmd)
        logger.info(
            "[transcode] Concatenated %s -> %s (reencode=%s cap=%s)",
            manifest_path.name,
            output_path.name,
            options.reencode,
            options.max_duration_seconds,
        )
        return output_path

    async def probe_duration(self, path: Path) -> float | None:
        return await asyncio.to_thread(probe_duration, path)

    async def _run(self, cmd: Sequence[str]) -> None:
        cmd_str = " ".join(cmd)
        logger.debug("[transcode] Running: %s", cmd_str)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(f"Could not start {cmd[0]}: {exc}", cmd=cmd) from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("[transcode] Timed out after %ss: %s", self._timeout, cmd_str)
            raise TranscodeError(f"ffmpeg timed out after {self._timeout}s", cmd=cmd) from None
        except asyncio.CancelledError:
            # Sibling clip failed; do not leave ffmpeg writing into a directory being deleted.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL_CHARS:].strip()
            logger.error("[transcode] ffmpeg exited %s: %s", proc.returncode, cmd_str)
            raise TranscodeError("ffmpeg failed", cmd=cmd, returncode=proc.returncode, stderr=tail)
