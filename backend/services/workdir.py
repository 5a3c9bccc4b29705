"""Per-job scratch directories that are always removed when the job ends."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from models import FileRole, WorkingFile
from services.errors import CleanupWarning

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "story-"


def get_scratch_root() -> Path:
    """Scratch root from SCRATCH_DIR env, else the system temp dir."""
    value = os.environ.get("SCRATCH_DIR", "").strip()
    return Path(value) if value else Path(tempfile.gettempdir())


class WorkingDirectory:
    """
    A job-exclusive scratch directory.

    Every file a job writes is reserved through track(), so the directory can
    account for (and delete) all of them without the caller keeping a list.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._files: list[WorkingFile] = []
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def track(self, name: str, role: FileRole) -> WorkingFile:
        if self._closed:
            raise RuntimeError(f"Working directory {self._path} is already closed")
        if Path(name).name != name:
            raise ValueError(f"Working file name must be a bare file name, got {name!r}")
        working_file = WorkingFile(path=self._path / name, role=role)
        self._files.append(working_file)
        return working_file

    def files(self, role: FileRole | None = None) -> list[WorkingFile]:
        if role is None:
            return list(self._files)
        return [f for f in self._files if f.role is role]

    def _mark_closed(self) -> None:
        self._closed = True
        self._files.clear()


class WorkingDirectoryManager:
    def __init__(self, root: Path | str | None = None, *, prefix: str = DEFAULT_PREFIX) -> None:
        self._root = Path(root) if root is not None else None
        self._prefix = prefix

    @property
    def root(self) -> Path:
        return self._root if self._root is not None else get_scratch_root()

    def open(self) -> WorkingDirectory:
        root = self.root
        root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=self._prefix, dir=root))
        logger.debug("[workdir] Opened %s", path)
        return WorkingDirectory(path)

    def close(self, workdir: WorkingDirectory) -> list[CleanupWarning]:
        """
        Delete every tracked file and then the directory itself.

        Idempotent and never raises: problems are logged and returned as
        CleanupWarning instances so the job's own outcome is what propagates.
        """
        if workdir.closed:
            return []

        problems: list[CleanupWarning] = []
        for working_file in workdir.files():
            try:
                working_file.path.unlink(missing_ok=True)
            except OSError as exc:
                problems.append(CleanupWarning(f"Could not delete {working_file.path}: {exc}"))

        try:
            shutil.rmtree(workdir.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            problems.append(CleanupWarning(f"Could not delete {workdir.path}: {exc}"))

        workdir._mark_closed()
        for problem in problems:
            logger.warning("[workdir] %s", problem)
        logger.debug("[workdir] Closed %s", workdir.path)
        return problems

    @asynccontextmanager
    async def scoped(self) -> AsyncIterator[WorkingDirectory]:
        workdir = self.open()
        try:
            yield workdir
        finally:
            self.close(workdir)
