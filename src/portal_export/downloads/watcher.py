from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable

from portal_export.errors import DownloadTimeout, FileSystemError
from portal_export.models import DownloadCandidate, DownloadTask

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_STABILITY_THRESHOLD = 3
DEFAULT_PARTIAL_SUFFIXES = (".crdownload", ".tmp")
PHASE_DOWNLOAD = "download"


class DownloadWatcher:
    """Detects when a browser download in ``directory`` has finished writing.

    A file qualifies once it matches the task's extensions, is not a partial or
    hidden file and was modified at or after the moment the export was
    triggered. The first qualifying file is then sampled until its size stays
    the same, and above zero, for ``stability_threshold`` consecutive polls.
    """

    def __init__(
        self,
        directory: Path,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stability_threshold: int = DEFAULT_STABILITY_THRESHOLD,
        partial_suffixes: Iterable[str] = DEFAULT_PARTIAL_SUFFIXES,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if stability_threshold < 1:
            raise ValueError("stability_threshold must be positive")
        self._directory = directory
        self._poll_interval = poll_interval
        self._stability_threshold = stability_threshold
        self._partial_suffixes = tuple(suffix.lower() for suffix in partial_suffixes)
        self._clock = clock
        self._sleep = sleep

    def wait_for_completion(self, task: DownloadTask) -> Path:
        candidate: DownloadCandidate | None = None
        while self._clock() < task.deadline:
            if candidate is None:
                candidate = self._discover(task)
                if candidate is not None:
                    LOGGER.info("Detected new download %s", candidate.path)
            if candidate is not None:
                try:
                    size = candidate.path.stat().st_size
                except FileNotFoundError:
                    LOGGER.debug("%s disappeared before it settled; rescanning", candidate.path)
                    candidate = None
                    continue
                if size > 0 and size == candidate.last_size:
                    candidate.stable_samples += 1
                else:
                    candidate.stable_samples = 0
                candidate.last_size = size
                if candidate.stable_samples >= self._stability_threshold:
                    LOGGER.info("Download complete: %s (%s bytes)", candidate.path, size)
                    return candidate.path
            self._sleep(self._poll_interval)
        detail = f"last candidate {candidate.path.name}" if candidate else "no new file appeared"
        raise DownloadTimeout(
            f"{task.item.name}: download did not complete within {task.timeout:.0f}s ({detail})",
            phase=PHASE_DOWNLOAD,
        )

    def in_flight_names(self) -> frozenset[str]:
        """Final names of downloads that are still being written, e.g. ``a.docx`` for ``a.docx.crdownload``."""
        names: set[str] = set()
        for entry in self._scan():
            lowered = entry.name.lower()
            for suffix in self._partial_suffixes:
                if lowered.endswith(suffix):
                    names.add(entry.name[: -len(suffix)])
                    break
        return frozenset(names)

    def _scan(self) -> list[os.DirEntry[str]]:
        try:
            return list(os.scandir(self._directory))
        except OSError as exc:
            raise FileSystemError(f"Cannot list {self._directory}: {exc}", phase=PHASE_DOWNLOAD) from exc

    def _discover(self, task: DownloadTask) -> DownloadCandidate | None:
        extensions = tuple(ext.lower() for ext in task.extensions)
        for entry in self._scan():
            name = entry.name
            lowered = name.lower()
            if name.startswith(".") or lowered.endswith(self._partial_suffixes):
                continue
            # a download left over from an earlier item that finished after this one started
            if name in task.ignored_names:
                continue
            if not lowered.endswith(extensions):
                continue
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if mtime < task.started_at:
                continue
            return DownloadCandidate(path=Path(entry.path), mtime=mtime)
        return None
