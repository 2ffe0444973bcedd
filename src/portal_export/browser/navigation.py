from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Sequence

from slugify import slugify

from portal_export.browser.page import ROLE_BUTTON, ROLE_MENUITEM, Control, PortalPage
from portal_export.config import ControlLabels
from portal_export.errors import NavigationTimeout, UIElementNotFound
from portal_export.models import ExportFormat, ShortcutItem

LOGGER = logging.getLogger(__name__)

PHASE_NAVIGATE = "navigate"
PHASE_MORE_MENU = "more-menu"
PHASE_DOWNLOAD_AS = "download-as"
PHASE_FORMAT = "format"
PHASE_EXPORT = "export"

DEFAULT_NAVIGATION_TIMEOUT = 60.0
DEFAULT_CONTROL_TIMEOUT = 15.0
DEFAULT_CONFIRM_TIMEOUT = 2.0
DEFAULT_SETTLE_SECONDS = 0.5


class NavigationDriver:
    """Drives one portal page through the export menu using visible-text lookups."""

    def __init__(
        self,
        labels: ControlLabels,
        *,
        navigation_timeout: float = DEFAULT_NAVIGATION_TIMEOUT,
        control_timeout: float = DEFAULT_CONTROL_TIMEOUT,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        snapshot_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._labels = labels
        self._navigation_timeout = navigation_timeout
        self._control_timeout = control_timeout
        self._confirm_timeout = confirm_timeout
        self._settle_seconds = settle_seconds
        self._snapshot_dir = snapshot_dir
        self._clock = clock
        self._sleep = sleep

    def export_item(
        self,
        page: PortalPage,
        item: ShortcutItem,
        export_format: ExportFormat,
        *,
        on_loaded: Callable[[PortalPage], bool | None] | None = None,
    ) -> float:
        """Open ``item`` and trigger its export; returns the trigger timestamp.

        When ``on_loaded`` returns True the page may have left ``item.url`` (a login
        redirect, for instance), so the item is opened once more before exporting.
        """
        self.open(page, item)
        if on_loaded is not None and on_loaded(page):
            LOGGER.info("Reopening %s after sign-in", item.url)
            self.open(page, item)
        return self.trigger_export(page, item, export_format)

    def open(self, page: PortalPage, item: ShortcutItem) -> None:
        try:
            page.goto(item.url, timeout=self._navigation_timeout)
        except TimeoutError as exc:
            self._capture(page, item, PHASE_NAVIGATE)
            raise NavigationTimeout(
                f"{item.name}: {item.url} did not load within {self._navigation_timeout:.0f}s",
                phase=PHASE_NAVIGATE,
            ) from exc
        LOGGER.info("Loaded %s", item.url)

    def trigger_export(self, page: PortalPage, item: ShortcutItem, export_format: ExportFormat) -> float:
        more = self._require(page, item, PHASE_MORE_MENU, ROLE_BUTTON, self._labels.more)
        more.click()
        LOGGER.debug("Opened the more-options menu")
        self._settle()

        # the format submenu only renders while the pointer rests on "download as"
        download_as = self._require(page, item, PHASE_DOWNLOAD_AS, ROLE_MENUITEM, self._labels.download_as)
        download_as.hover()
        self._settle()

        fmt = self._require(page, item, PHASE_FORMAT, ROLE_MENUITEM, self._labels.format_tokens(export_format))
        fmt.hover()
        fmt.click()
        LOGGER.debug("Selected %s format", export_format)
        self._settle()

        export = self._require(page, item, PHASE_EXPORT, ROLE_BUTTON, self._labels.export)
        triggered_at = self._clock()
        export.click()
        LOGGER.info("Export triggered for %s", item.name)

        confirm = page.find_by_visible_text(ROLE_BUTTON, self._labels.confirm, timeout=self._confirm_timeout)
        if confirm is not None:
            confirm.click()
            LOGGER.debug("Dismissed export confirmation dialog")
        return triggered_at

    def _require(
        self,
        page: PortalPage,
        item: ShortcutItem,
        phase: str,
        role: str,
        tokens: Sequence[str],
    ) -> Control:
        control = page.find_by_visible_text(role, tokens, timeout=self._control_timeout)
        if control is None:
            self._capture(page, item, phase)
            raise UIElementNotFound(
                f"{item.name}: no visible {role} matching {' / '.join(tokens)} on {item.url}",
                phase=phase,
            )
        return control

    def _settle(self) -> None:
        if self._settle_seconds:
            self._sleep(self._settle_seconds)

    def _capture(self, page: PortalPage, item: ShortcutItem, phase: str) -> Path | None:
        if self._snapshot_dir is None:
            return None
        label = slugify(item.stem, lowercase=True, separator="-") or "item"
        path = self._snapshot_dir / f"{label}-{phase}-{int(self._clock() * 1000)}.png"
        try:
            page.screenshot(path)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not capture diagnostic snapshot for %s: %s", item.name, exc)
            return None
        LOGGER.info("Saved diagnostic snapshot %s", path)
        return path
