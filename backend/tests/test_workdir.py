from __future__ import annotations

from pathlib import Path

import pytest

import services.workdir as workdir_module
from models import FileRole
from services.errors import CleanupWarning
from services.workdir import WorkingDirectoryManager, get_scratch_root


def test_open_creates_isolated_directory_under_root(scratch_root: Path) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    first = manager.open()
    second = manager.open()

    assert first.path.parent == scratch_root
    assert first.path.is_dir()
    assert first.path != second.path
    assert first.path.name.startswith("story-")


def test_track_reserves_paths_inside_directory(scratch_root: Path) -> None:
    workdir = WorkingDirectoryManager(scratch_root).open()

    raw = workdir.track("000-a-raw.mp4", FileRole.RAW)
    manifest = workdir.track("inputs.txt", FileRole.MANIFEST)

    assert raw.path == workdir.path / "000-a-raw.mp4"
    assert raw.role is FileRole.RAW
    assert workdir.files() == [raw, manifest]
    assert workdir.files(FileRole.MANIFEST) == [manifest]
    assert workdir.files(FileRole.OUTPUT) == []


@pytest.mark.parametrize("name", ["../escape.mp4", "nested/clip.mp4"])
def test_track_rejects_names_outside_directory(scratch_root: Path, name: str) -> None:
    workdir = WorkingDirectoryManager(scratch_root).open()
    with pytest.raises(ValueError):
        workdir.track(name, FileRole.RAW)


def test_close_removes_everything_and_is_idempotent(scratch_root: Path) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    workdir = manager.open()
    for name, role in [("a.mp4", FileRole.RAW), ("b.mp4", FileRole.TRIMMED), ("story.mp4", FileRole.OUTPUT)]:
        workdir.track(name, role).path.write_bytes(b"data")
    (workdir.path / "untracked.log").write_text("ffmpeg2pass")

    assert manager.close(workdir) == []
    assert not workdir.path.exists()
    assert workdir.closed is True
    assert workdir.files() == []
    assert list(scratch_root.iterdir()) == []

    assert manager.close(workdir) == []


def test_close_tolerates_files_never_written(scratch_root: Path) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    workdir = manager.open()
    workdir.track("never-written.mp4", FileRole.TRIMMED)

    assert manager.close(workdir) == []
    assert not workdir.path.exists()


def test_track_after_close_raises(scratch_root: Path) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    workdir = manager.open()
    manager.close(workdir)
    with pytest.raises(RuntimeError):
        workdir.track("late.mp4", FileRole.RAW)


def test_close_logs_cleanup_failure_without_raising(
    scratch_root: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    workdir = manager.open()

    def _refuse(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(workdir_module.shutil, "rmtree", _refuse)

    with caplog.at_level("WARNING", logger="services.workdir"):
        problems = manager.close(workdir)

    assert len(problems) == 1
    assert isinstance(problems[0], CleanupWarning)
    assert "Permission denied" in str(problems[0])
    assert "[workdir]" in caplog.text
    assert workdir.closed is True


@pytest.mark.anyio
async def test_scoped_releases_on_error(scratch_root: Path) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    seen = []

    with pytest.raises(RuntimeError, match="boom"):
        async with manager.scoped() as workdir:
            seen.append(workdir)
            workdir.track("a.mp4", FileRole.RAW).path.write_bytes(b"x")
            raise RuntimeError("boom")

    assert seen[0].closed is True
    assert list(scratch_root.iterdir()) == []


@pytest.mark.anyio
async def test_scoped_releases_on_success(scratch_root: Path) -> None:
    manager = WorkingDirectoryManager(scratch_root)
    async with manager.scoped() as workdir:
        workdir.track("a.mp4", FileRole.RAW).path.write_bytes(b"x")
    assert not workdir.path.exists()


def test_root_defaults_to_scratch_dir_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "jobs"
    monkeypatch.setenv("SCRATCH_DIR", f"  {target}  ")
    assert get_scratch_root() == target

    workdir = WorkingDirectoryManager().open()
    assert workdir.path.parent == target


def test_root_falls_back_to_temp_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    import tempfile

    monkeypatch.setenv("SCRATCH_DIR", "")
    assert get_scratch_root() == Path(tempfile.gettempdir())
