from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from portal_export.downloads.watcher import DownloadWatcher
from portal_export.errors import DownloadTimeout
from portal_export.models import DownloadTask, ShortcutItem

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START):
        self.now = start
        self.sleeps: list[float] = []
        self.hooks: list[Callable[[], None]] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        for hook in list(self.hooks):
            hook()


def _write(path: Path, size: int, mtime: float) -> None:
    path.write_bytes(b"x" * size)
    os.utime(path, (mtime, mtime))


def _task(tmp_path: Path, *, extensions: tuple[str, ...] = (".docx", ".doc"), timeout: float = 15.0) -> DownloadTask:
    item = ShortcutItem(name="weekly-sync.url", url="https://portal.example.com/docs/weekly", source_path=tmp_path)
    return DownloadTask(item=item, extensions=extensions, started_at=START, timeout=timeout)


def _watcher(directory: Path, clock: FakeClock, *, threshold: int = 3) -> DownloadWatcher:
    return DownloadWatcher(
        directory,
        poll_interval=0.5,
        stability_threshold=threshold,
        partial_suffixes=(".crdownload", ".tmp"),
        clock=clock.time,
        sleep=clock.sleep,
    )


def test_watcher_ignores_files_older_than_the_task(tmp_path: Path) -> None:
    clock = FakeClock()
    _write(tmp_path / "weekly-sync.docx", 4096, START - 120)

    def new_file_arrives() -> None:
        target = tmp_path / "Weekly Sync.docx"
        if not target.exists():
            _write(target, 2048, clock.now)

    clock.hooks.append(new_file_arrives)

    result = _watcher(tmp_path, clock).wait_for_completion(_task(tmp_path))

    assert result == tmp_path / "Weekly Sync.docx"


def test_watcher_times_out_when_only_stale_file_matches(tmp_path: Path) -> None:
    clock = FakeClock()
    _write(tmp_path / "weekly-sync.docx", 4096, START - 1)

    with pytest.raises(DownloadTimeout) as excinfo:
        _watcher(tmp_path, clock).wait_for_completion(_task(tmp_path, timeout=5.0))

    assert excinfo.value.phase == "download"
    assert "no new file appeared" in str(excinfo.value)
    assert clock.now >= START + 5.0


def test_watcher_requires_consecutive_stable_samples(tmp_path: Path) -> None:
    clock = FakeClock()
    target = tmp_path / "report.docx"
    sizes = [200, 200, 300, 300, 300, 300]
    _write(target, 100, START)

    def grow() -> None:
        if sizes:
            _write(target, sizes.pop(0), clock.now)

    clock.hooks.append(grow)

    result = _watcher(tmp_path, clock, threshold=3).wait_for_completion(_task(tmp_path))

    # samples 100, 200, 200 (1), 300 (reset), 300 (1), 300 (2), 300 (3)
    assert result == target
    assert len(clock.sleeps) == 6


def test_watcher_never_accepts_empty_file(tmp_path: Path) -> None:
    clock = FakeClock()
    _write(tmp_path / "report.pdf", 0, START)

    with pytest.raises(DownloadTimeout) as excinfo:
        _watcher(tmp_path, clock).wait_for_completion(_task(tmp_path, extensions=(".pdf",), timeout=5.0))

    assert "report.pdf" in str(excinfo.value)


def test_watcher_skips_partial_hidden_and_foreign_files(tmp_path: Path) -> None:
    clock = FakeClock()
    partial = tmp_path / "report.docx.crdownload"
    _write(partial, 512, START)
    _write(tmp_path / ".~lock.report.docx", 64, START)
    _write(tmp_path / "report.pdf", 512, START)
    (tmp_path / "nested.docx").mkdir()

    def finish_after_two_polls() -> None:
        if len(clock.sleeps) == 2:
            final = tmp_path / "report.docx"
            partial.rename(final)
            os.utime(final, (clock.now, clock.now))

    clock.hooks.append(finish_after_two_polls)

    result = _watcher(tmp_path, clock).wait_for_completion(_task(tmp_path))

    assert result == tmp_path / "report.docx"


def test_watcher_rescans_when_candidate_disappears(tmp_path: Path) -> None:
    clock = FakeClock()
    first = tmp_path / "draft.docx"
    _write(first, 128, START)

    def replace_file() -> None:
        if len(clock.sleeps) == 1:
            first.unlink()
            _write(tmp_path / "final.docx", 256, clock.now)

    clock.hooks.append(replace_file)

    result = _watcher(tmp_path, clock, threshold=2).wait_for_completion(_task(tmp_path))

    assert result == tmp_path / "final.docx"


def test_watcher_rejects_non_positive_threshold(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        DownloadWatcher(tmp_path, stability_threshold=0)


def test_in_flight_names_strip_partial_suffixes(tmp_path: Path) -> None:
    _write(tmp_path / "budget.docx.crdownload", 64, START)
    _write(tmp_path / "Agenda.DOCX.TMP", 64, START)
    _write(tmp_path / "minutes.docx", 64, START)

    names = _watcher(tmp_path, FakeClock()).in_flight_names()

    assert names == frozenset({"budget.docx", "Agenda.DOCX"})


def test_watcher_skips_ignored_names(tmp_path: Path) -> None:
    clock = FakeClock()
    _write(tmp_path / "budget.docx", 4096, START)

    def own_file_arrives() -> None:
        target = tmp_path / "minutes.docx"
        if not target.exists():
            _write(target, 2048, clock.now)

    clock.hooks.append(own_file_arrives)
    item = ShortcutItem(name="minutes.url", url="https://portal.example.com/docs/minutes", source_path=tmp_path)
    task = DownloadTask(
        item=item,
        extensions=(".docx",),
        started_at=START,
        timeout=15.0,
        ignored_names=frozenset({"budget.docx"}),
    )

    assert _watcher(tmp_path, clock).wait_for_completion(task) == tmp_path / "minutes.docx"
