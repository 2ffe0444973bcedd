from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from portal_export.errors import ControlHandshakeFailed
from portal_export.models import ControlEndpoint

LOGGER = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}
MAX_MATCHES_PER_LOCATOR = 8


class PlaywrightControl:
    def __init__(self, page: Any, locator: Any, *, click_timeout_ms: int = 5000):
        self._page = page
        self._locator = locator
        self._click_timeout_ms = click_timeout_ms

    def click(self) -> None:
        self._locator.click(timeout=self._click_timeout_ms)

    def hover(self) -> None:
        box = self._locator.bounding_box()
        if box is None:
            self._locator.hover(timeout=self._click_timeout_ms)
            return
        self._page.mouse.move(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)


class PlaywrightPage:
    """Text- and role-based control lookup on top of a Playwright page."""

    def __init__(self, page: Any, *, poll_interval: float = 0.25, clock: Callable[[], float] = time.monotonic):
        self._page = page
        self._poll_ms = int(poll_interval * 1000)
        self._clock = clock

    def goto(self, url: str, *, timeout: float) -> None:
        try:
            self._page.goto(url, wait_until="networkidle", timeout=int(timeout * 1000))
        except PlaywrightTimeoutError as exc:
            raise TimeoutError(f"Timed out while waiting for {url} to finish loading") from exc

    def find_by_visible_text(self, role: str, tokens: Sequence[str], *, timeout: float) -> PlaywrightControl | None:
        patterns = [re.compile(re.escape(token), re.IGNORECASE) for token in tokens if token]
        deadline = self._clock() + timeout
        while True:
            for pattern in patterns:
                for locator in (self._page.get_by_role(role, name=pattern), self._page.get_by_text(pattern)):
                    match = _first_visible(locator)
                    if match is not None:
                        return PlaywrightControl(self._page, match)
            if self._clock() >= deadline:
                return None
            self._page.wait_for_timeout(self._poll_ms)

    def cookie_names(self) -> set[str]:
        cookies = self._page.context.cookies([self._page.url])
        return {cookie["name"] for cookie in cookies if cookie.get("name")}

    def screenshot(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._page.screenshot(path=str(path), full_page=True)

    def close(self) -> None:
        if not self._page.is_closed():
            self._page.close()


class PlaywrightSession:
    def __init__(self, context: Any, *, viewport: dict[str, int] | None = None):
        self._context = context
        self._viewport = viewport or DEFAULT_VIEWPORT

    def new_page(self) -> PlaywrightPage:
        page = self._context.new_page()
        page.set_viewport_size(self._viewport)
        return PlaywrightPage(page)


class PlaywrightConnector:
    """Attaches Playwright to an already running browser through its CDP endpoint."""

    def __init__(self, *, connect_timeout: float = 30.0, viewport: dict[str, int] | None = None):
        self._connect_timeout_ms = int(connect_timeout * 1000)
        self._viewport = viewport

    @contextmanager
    def connect(self, endpoint: ControlEndpoint, download_dir: Path) -> Iterator[PlaywrightSession]:
        try:
            playwright = sync_playwright().start()
        except (PlaywrightError, OSError) as exc:
            raise ControlHandshakeFailed(f"Could not start the Playwright driver: {exc}") from exc
        try:
            try:
                browser = playwright.chromium.connect_over_cdp(
                    endpoint.websocket_url,
                    timeout=self._connect_timeout_ms,
                )
            except (PlaywrightError, OSError) as exc:
                raise ControlHandshakeFailed(f"Could not attach to {endpoint.websocket_url}: {exc}") from exc
            try:
                context = self._prepare(browser, download_dir)
                yield PlaywrightSession(context, viewport=self._viewport)
            finally:
                try:
                    browser.close()
                except PlaywrightError:
                    LOGGER.debug("Failed to disconnect from browser", exc_info=True)
        finally:
            playwright.stop()

    def _prepare(self, browser: Any, download_dir: Path) -> Any:
        try:
            cdp = browser.new_browser_cdp_session()
            cdp.send(
                "Browser.setDownloadBehavior",
                {"behavior": "allow", "downloadPath": str(download_dir.resolve())},
            )
            context = browser.contexts[0] if browser.contexts else browser.new_context()
        except PlaywrightError as exc:
            raise ControlHandshakeFailed(f"Could not route downloads to {download_dir}: {exc}") from exc
        LOGGER.info("Downloads will be written to %s", download_dir)
        return context


def _first_visible(locator: Any) -> Any | None:
    try:
        count = locator.count()
    except PlaywrightError:
        return None
    for index in range(min(count, MAX_MATCHES_PER_LOCATOR)):
        candidate = locator.nth(index)
        try:
            if candidate.is_visible():
                return candidate
        except PlaywrightError:
            continue
    return None
