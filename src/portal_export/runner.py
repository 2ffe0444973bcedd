from __future__ import annotations

import logging
import time
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol

from portal_export.browser.navigation import NavigationDriver
from portal_export.browser.page import BrowserSession, PortalPage
from portal_export.browser.ports import allocate_port
from portal_export.browser.session_gate import SessionGate
from portal_export.browser.supervisor import BrowserSupervisor
from portal_export.config import Settings, partial_suffixes_for
from portal_export.downloads.watcher import DownloadWatcher
from portal_export.errors import ConfigurationError, FatalRunError, FileSystemError, ItemError, SessionError
from portal_export.models import (
    EXPORT_EXTENSIONS,
    ControlEndpoint,
    DownloadTask,
    ItemResult,
    RunReport,
    RunState,
    ShortcutItem,
    ShortcutScan,
)
from portal_export.shortcuts.loader import ShortcutLoader

LOGGER = logging.getLogger(__name__)
PHASE_RENAME = "rename"


class ShortcutSource(Protocol):
    def load(self) -> ShortcutScan:  # pragma: no cover - protocol signature
        ...


class BrowserConnector(Protocol):
    def connect(
        self,
        endpoint: ControlEndpoint,
        download_dir: Path,
    ) -> AbstractContextManager[BrowserSession]:  # pragma: no cover - protocol signature
        ...


class ExportRunner:
    """Turns a folder of portal shortcuts into exported documents, one item at a time."""

    def __init__(
        self,
        settings: Settings,
        *,
        loader: ShortcutSource | None = None,
        port_allocator: Callable[[int], int] = allocate_port,
        supervisor: BrowserSupervisor | None = None,
        connector: BrowserConnector | None = None,
        navigator: NavigationDriver | None = None,
        gate: SessionGate | None = None,
        watcher: DownloadWatcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._loader = loader or ShortcutLoader(settings.desktop_path)
        self._allocate_port = port_allocator
        self._supervisor = supervisor or BrowserSupervisor(
            settings.chrome_path,
            profile_root=settings.profile_dir,
            headless=settings.headless,
            warmup_seconds=settings.browser_warmup,
            handshake=settings.handshake,
        )
        self._connector = connector
        self._navigator = navigator or NavigationDriver(
            settings.labels,
            navigation_timeout=settings.navigation_timeout,
            control_timeout=settings.control_timeout,
            snapshot_dir=settings.diagnostics_path,
        )
        self._gate = gate or SessionGate(settings.login)
        self._watcher = watcher or DownloadWatcher(
            settings.download_path,
            poll_interval=settings.download_poll_interval,
            stability_threshold=settings.stability_threshold,
            partial_suffixes=partial_suffixes_for(settings.platform),
        )
        self._clock = clock
        self._state = RunState.INIT

    @property
    def state(self) -> RunState:
        return self._state

    def run(self) -> RunReport:
        start = datetime.now(timezone.utc)
        results: list[ItemResult] = []
        fatal_error: str | None = None
        self._state = RunState.INIT
        try:
            scan = self._loader.load()
            for rejected in scan.rejected:
                results.append(
                    ItemResult(name=rejected.name, url=None, status="skipped", reason=rejected.reason, phase="shortcut")
                )
            if not scan.items:
                LOGGER.warning("No valid shortcuts found in %s", self._settings.desktop_path)
            else:
                _prepare_download_dir(self._settings.download_path)
                self._export_all(scan.items, results)
            self._transition(RunState.DONE)
            LOGGER.info("All shortcuts processed")
        except FatalRunError as exc:
            fatal_error = str(exc)
            LOGGER.error("Run aborted during %s: %s", self._state.value, exc)
            self._transition(RunState.FAILED)
        finished = datetime.now(timezone.utc)
        return RunReport(
            started_at=start,
            finished_at=finished,
            state=self._state,
            results=results,
            fatal_error=fatal_error,
        )

    def _export_all(self, items: list[ShortcutItem], results: list[ItemResult]) -> None:
        port = self._allocate_port(self._settings.remote_debugging_port)
        self._transition(RunState.PORT_ALLOCATED)
        with self._supervisor.running(port) as endpoint:
            self._transition(RunState.BROWSER_READY)
            with self._ensure_connector().connect(endpoint, self._settings.download_path) as session:
                self._transition(RunState.SESSION_PENDING)
                for item in items:
                    results.append(self._process_item(session, item))

    def _process_item(self, session: BrowserSession, item: ShortcutItem) -> ItemResult:
        LOGGER.info("Processing %s - %s", item.name, item.url)
        page = session.new_page()
        try:
            in_flight = self._watcher.in_flight_names()
            if in_flight:
                LOGGER.warning("Earlier downloads still in progress, ignoring: %s", ", ".join(sorted(in_flight)))
            triggered_at = self._navigator.export_item(
                page,
                item,
                self._settings.download_type,
                on_loaded=self._establish_session,
            )
            task = DownloadTask(
                item=item,
                extensions=EXPORT_EXTENSIONS[self._settings.download_type],
                started_at=triggered_at,
                timeout=self._settings.download_timeout,
                ignored_names=in_flight,
            )
            downloaded = self._watcher.wait_for_completion(task)
            final_path = self._rename(item, downloaded)
        except FatalRunError:
            raise
        except ItemError as exc:
            LOGGER.warning("Skipping %s (%s) during %s: %s", item.name, item.url, exc.phase, exc)
            return ItemResult(name=item.name, url=item.url, status="skipped", reason=str(exc), phase=exc.phase)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unexpected failure while processing %s (%s)", item.name, item.url)
            return ItemResult(name=item.name, url=item.url, status="skipped", reason=str(exc), phase="unexpected")
        finally:
            _close_page(page)
        return ItemResult(name=item.name, url=item.url, status="success", output_path=final_path)

    def _establish_session(self, page: PortalPage) -> bool:
        """Run the session gate once; True means the page waited for a sign-in and must be reopened."""
        if self._state is not RunState.SESSION_PENDING:
            return False
        required = self._settings.session_cookies
        if not required:
            LOGGER.warning("SESSION_COOKIES is empty; assuming the portal session is already signed in")
        if not self._gate.wait_for_session(page.cookie_names, required):
            raise SessionError(
                "Portal session was not established; required cookies never appeared: "
                + (", ".join(sorted(required)) or "(none)")
            )
        self._transition(RunState.SESSION_ESTABLISHED)
        self._transition(RunState.PROCESSING_ITEMS)
        return self._gate.last_attempts > 1

    def _rename(self, item: ShortcutItem, downloaded: Path) -> Path:
        millis = int(self._clock() * 1000)
        target = downloaded.with_name(f"{item.stem}_{millis}{downloaded.suffix}")
        try:
            downloaded.rename(target)
        except OSError as exc:
            raise FileSystemError(
                f"{item.name}: could not rename {downloaded} to {target}: {exc}",
                phase=PHASE_RENAME,
            ) from exc
        LOGGER.info("Saved %s as %s", item.name, target)
        return target

    def _ensure_connector(self) -> BrowserConnector:
        if self._connector is None:
            from portal_export.browser.playwright_driver import PlaywrightConnector

            self._connector = PlaywrightConnector()
        return self._connector

    def _transition(self, state: RunState) -> None:
        LOGGER.debug("Run state %s -> %s", self._state.value, state.value)
        self._state = state


def _prepare_download_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Cannot create download folder {path}: {exc}") from exc


def _close_page(page: PortalPage) -> None:
    try:
        page.close()
    except Exception:  # noqa: BLE001
        LOGGER.debug("Failed to close page", exc_info=True)
