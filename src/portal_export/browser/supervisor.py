from __future__ import annotations

import logging
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
from pydantic import ValidationError

from portal_export.config import RetryPolicy
from portal_export.errors import ControlHandshakeFailed, ExecutableNotFound
from portal_export.models import BrowserVersion, ControlEndpoint

LOGGER = logging.getLogger(__name__)

DEFAULT_HANDSHAKE = RetryPolicy(interval=3.0, max_attempts=10, timeout=30.0)
DEFAULT_WARMUP_SECONDS = 3.0
TERMINATE_GRACE_SECONDS = 5.0


@dataclass
class BrowserProcess:
    port: int
    profile_dir: Path
    process: subprocess.Popen[bytes]
    terminated: bool = field(default=False)

    @property
    def pid(self) -> int:
        return self.process.pid


class BrowserSupervisor:
    """Launches the browser with a debugging port and guarantees it is stopped again."""

    def __init__(
        self,
        executable: Path,
        *,
        profile_root: Path,
        headless: bool = False,
        warmup_seconds: float = DEFAULT_WARMUP_SECONDS,
        handshake: RetryPolicy = DEFAULT_HANDSHAKE,
        http_get: Callable[..., Any] | None = None,
        popen: Callable[..., subprocess.Popen[bytes]] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._executable = executable
        self._profile_root = profile_root
        self._headless = headless
        self._warmup_seconds = warmup_seconds
        self._handshake = handshake
        self._http_get = http_get or httpx.get
        self._popen = popen or subprocess.Popen
        self._sleep = sleep

    def launch(self, port: int) -> BrowserProcess:
        if not self._executable.is_file():
            raise ExecutableNotFound(f"Browser executable not found: {self._executable}")
        profile_dir = (self._profile_root / f"profile-{port}").expanduser().resolve()
        profile_dir.mkdir(parents=True, exist_ok=True)
        args = [
            str(self._executable),
            f"--remote-debugging-port={port}",
            f"--user-data-dir={profile_dir}",
            "--no-first-run",
            "--no-default-browser-check",
        ]
        if self._headless:
            args.append("--headless=new")
        try:
            process = self._popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            raise ExecutableNotFound(f"Cannot start browser {self._executable}: {exc}") from exc
        LOGGER.info("Launched browser pid=%s on port %s (profile %s)", process.pid, port, profile_dir)
        return BrowserProcess(port=port, profile_dir=profile_dir, process=process)

    def handshake(self, browser: BrowserProcess) -> ControlEndpoint:
        """Wait for ``/json/version`` to answer and return the control endpoint it describes."""
        if self._warmup_seconds:
            self._sleep(self._warmup_seconds)
        url = f"http://127.0.0.1:{browser.port}/json/version"
        last_error = "no response"
        for attempt in range(1, self._handshake.max_attempts + 1):
            exit_code = browser.process.poll()
            if exit_code is not None:
                raise ControlHandshakeFailed(f"Browser exited with code {exit_code} before the handshake completed")
            try:
                response = self._http_get(url, timeout=self._handshake.interval)
                response.raise_for_status()
                version = BrowserVersion.model_validate(response.json())
            except (httpx.HTTPError, ValueError, ValidationError) as exc:
                last_error = str(exc) or exc.__class__.__name__
                LOGGER.debug("Handshake attempt %s/%s failed: %s", attempt, self._handshake.max_attempts, last_error)
            else:
                endpoint = ControlEndpoint(
                    port=browser.port,
                    pid=browser.pid,
                    session_id=_session_id(version.websocket_debugger_url),
                    websocket_url=version.websocket_debugger_url,
                    browser=version.browser,
                )
                LOGGER.info("Connected to %s control endpoint (session %s)", endpoint.browser or "browser", endpoint.session_id)
                return endpoint
            if attempt < self._handshake.max_attempts:
                self._sleep(self._handshake.interval)
        raise ControlHandshakeFailed(
            f"Control endpoint on port {browser.port} did not answer after "
            f"{self._handshake.max_attempts} attempts: {last_error}"
        )

    def terminate(self, browser: BrowserProcess) -> None:
        if browser.terminated:
            return
        browser.terminated = True
        process = browser.process
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                LOGGER.warning("Browser pid=%s ignored terminate; killing it", browser.pid)
                process.kill()
                process.wait()
        LOGGER.info("Browser process pid=%s cleaned up", browser.pid)

    @contextmanager
    def running(self, port: int) -> Iterator[ControlEndpoint]:
        browser = self.launch(port)
        try:
            yield self.handshake(browser)
        finally:
            self.terminate(browser)


def _session_id(websocket_url: str) -> str:
    return websocket_url.rstrip("/").rsplit("/", 1)[-1]
