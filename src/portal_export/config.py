from __future__ import annotations

import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

from portal_export.errors import ConfigurationError
from portal_export.models import ExportFormat


class SettingsError(ConfigurationError):
    """Raised when CLI or environment configuration is invalid."""


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval polling bounds shared by every wait loop."""

    interval: float
    max_attempts: int
    timeout: float


@dataclass(frozen=True)
class ControlLabels:
    """Visible text tokens used to find portal controls."""

    more: tuple[str, ...] = ("More", "更多")
    download_as: tuple[str, ...] = ("Download as", "下載為", "下载为")
    word: tuple[str, ...] = ("Word",)
    pdf: tuple[str, ...] = ("PDF",)
    export: tuple[str, ...] = ("Export", "匯出", "导出")
    confirm: tuple[str, ...] = ("Confirm", "確定", "确定")

    def format_tokens(self, export_format: ExportFormat) -> tuple[str, ...]:
        return self.pdf if export_format == "PDF" else self.word


@dataclass(frozen=True)
class Settings:
    platform: str
    desktop_path: Path
    download_path: Path
    log_file_path: Path
    chrome_path: Path
    remote_debugging_port: int
    download_type: ExportFormat
    download_timeout: float
    headless: bool
    session_cookies: frozenset[str]
    login: RetryPolicy
    handshake: RetryPolicy
    browser_warmup: float
    download_poll_interval: float
    stability_threshold: int
    navigation_timeout: float
    control_timeout: float
    profile_dir: Path
    diagnostics_path: Path
    labels: ControlLabels = ControlLabels()
    env_file: Path | None = None


PLATFORMS = frozenset({"win", "mac"})
DOWNLOAD_TYPES = frozenset({"WORD", "PDF"})
DEFAULT_CHROME_PATHS = {
    "win": Path("C:/Program Files/Google/Chrome/Application/chrome.exe"),
    "mac": Path("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"),
}
PARTIAL_SUFFIXES = {
    "win": (".crdownload", ".tmp"),
    "mac": (".crdownload", ".download"),
}


def default_platform() -> str:
    return "mac" if sys.platform == "darwin" else "win"


def build_settings(
    *,
    platform: str | None = None,
    headless: bool | None = None,
    env_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Validate CLI overrides and environment values and construct runtime settings."""
    env = os.environ if environ is None else environ

    platform_value = (platform or env.get("PLATFORM") or default_platform()).strip().lower()
    if platform_value not in PLATFORMS:
        raise SettingsError(f"Unsupported PLATFORM '{platform_value}'. Use 'win' or 'mac'.")

    home = Path.home()
    desktop_path = _path_option(env, "DESKTOP_PATH", home / "Desktop" / "Meeting")
    if not desktop_path.is_dir():
        raise SettingsError(f"Shortcut folder not found: {desktop_path}")
    download_path = _path_option(env, "DOWNLOAD_PATH", home / "Desktop" / "Downloads")
    log_file_path = _path_option(env, "LOG_FILE_PATH", Path("crawler_log.txt"))
    chrome_path = _path_option(env, "CHROME_PATH", DEFAULT_CHROME_PATHS[platform_value])

    download_type = (env.get("DOWNLOAD_TYPE") or "WORD").strip().upper()
    if download_type not in DOWNLOAD_TYPES:
        raise SettingsError(f"Unsupported DOWNLOAD_TYPE '{download_type}'. Use WORD or PDF.")

    if headless is None:
        headless = _bool_option(env, "HEADLESS", False)

    login = RetryPolicy(
        interval=_ms_option(env, "LOGIN_WAIT_TIME", 2000),
        max_attempts=_int_option(env, "LOGIN_MAX_ATTEMPTS", 150, minimum=1),
        timeout=_ms_option(env, "LOGIN_TIMEOUT", 300_000),
    )
    handshake_interval = _ms_option(env, "HANDSHAKE_INTERVAL", 3000)
    handshake_attempts = _int_option(env, "HANDSHAKE_ATTEMPTS", 10, minimum=1)
    handshake = RetryPolicy(
        interval=handshake_interval,
        max_attempts=handshake_attempts,
        timeout=handshake_interval * handshake_attempts,
    )

    port = _int_option(env, "REMOTE_DEBUGGING_PORT", 9222, minimum=1)
    if port > 65535:
        raise SettingsError(f"REMOTE_DEBUGGING_PORT must be at most 65535, got {port}")

    return Settings(
        platform=platform_value,
        desktop_path=desktop_path,
        download_path=download_path,
        log_file_path=log_file_path,
        chrome_path=chrome_path,
        remote_debugging_port=port,
        download_type="PDF" if download_type == "PDF" else "WORD",
        download_timeout=_ms_option(env, "DOWNLOAD_TIMEOUT", 15000),
        headless=headless,
        session_cookies=frozenset(_list_option(env, "SESSION_COOKIES")),
        login=login,
        handshake=handshake,
        browser_warmup=_ms_option(env, "BROWSER_WARMUP", 3000, allow_zero=True),
        download_poll_interval=_ms_option(env, "DOWNLOAD_POLL_INTERVAL", 500),
        stability_threshold=_int_option(env, "STABILITY_THRESHOLD", 3, minimum=1),
        navigation_timeout=_ms_option(env, "NAVIGATION_TIMEOUT", 60000),
        control_timeout=_ms_option(env, "CONTROL_TIMEOUT", 15000),
        profile_dir=_path_option(env, "PROFILE_DIR", Path(".cache/portal-export")),
        diagnostics_path=_path_option(env, "DIAGNOSTICS_PATH", download_path / "_diagnostics"),
        labels=_labels_from_env(env),
        env_file=env_file,
    )


def partial_suffixes_for(platform: str) -> tuple[str, ...]:
    return PARTIAL_SUFFIXES.get(platform, PARTIAL_SUFFIXES["win"])


def _path_option(env: Mapping[str, str], key: str, default: Path) -> Path:
    raw = env.get(key)
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return default.expanduser()


def _int_option(env: Mapping[str, str], key: str, default: int, *, minimum: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise SettingsError(f"{key} must be an integer, got '{raw}'") from exc
    if value < minimum:
        raise SettingsError(f"{key} must be at least {minimum}, got {value}")
    return value


def _ms_option(env: Mapping[str, str], key: str, default_ms: int, *, allow_zero: bool = False) -> float:
    """Read a millisecond value and return it in seconds."""
    value = _int_option(env, key, default_ms, minimum=0 if allow_zero else 1)
    return value / 1000.0


def _bool_option(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _list_option(env: Mapping[str, str], key: str) -> list[str]:
    raw = env.get(key) or ""
    return [value.strip() for value in raw.split(",") if value.strip()]


def _labels_from_env(env: Mapping[str, str]) -> ControlLabels:
    defaults = ControlLabels()
    overrides: dict[str, tuple[str, ...]] = {}
    for attr in ("more", "download_as", "word", "pdf", "export", "confirm"):
        values = _list_option(env, f"LABEL_{attr.upper()}")
        if values:
            overrides[attr] = tuple(values)
    if not overrides:
        return defaults
    return replace(defaults, **overrides)
