from __future__ import annotations

import configparser
import logging
from pathlib import Path
from urllib.parse import urlparse

from portal_export.models import RejectedShortcut, ShortcutItem, ShortcutScan

LOGGER = logging.getLogger(__name__)

SHORTCUT_SUFFIX = ".url"
SECTION_KEYS = ("InternetShortcut", "internetshortcut")
ALLOWED_SCHEMES = frozenset({"http", "https"})


class ShortcutLoader:
    """Loads portal shortcut items from a folder of ``.url`` files."""

    def __init__(self, folder: Path):
        self._folder = folder

    def load(self) -> ShortcutScan:
        items: list[ShortcutItem] = []
        rejected: list[RejectedShortcut] = []
        paths = sorted(
            (path for path in self._folder.iterdir() if path.is_file() and path.suffix.lower() == SHORTCUT_SUFFIX),
            key=lambda path: path.name,
        )
        for path in paths:
            try:
                url = read_shortcut_url(path)
            except (OSError, UnicodeDecodeError, configparser.Error) as exc:
                LOGGER.warning("Skipping %s: unreadable shortcut (%s)", path.name, exc)
                rejected.append(RejectedShortcut(name=path.name, source_path=path, reason=f"unreadable: {exc}"))
                continue
            reason = _validate_url(url)
            if reason:
                LOGGER.warning("Skipping %s: %s", path.name, reason)
                rejected.append(RejectedShortcut(name=path.name, source_path=path, reason=reason))
                continue
            assert url is not None
            items.append(ShortcutItem(name=path.name, url=url, source_path=path))
        LOGGER.info("Found %s shortcut(s) in %s (%s rejected)", len(items), self._folder, len(rejected))
        return ShortcutScan(items=items, rejected=rejected)


def read_shortcut_url(path: Path) -> str | None:
    """Return the ``URL`` value of an Internet shortcut file, or None when absent."""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.read_string(path.read_text(encoding="utf-8-sig"), source=str(path))
    for section in SECTION_KEYS:
        if parser.has_section(section):
            value = parser.get(section, "URL", fallback="").strip()
            return value or None
    return None


def _validate_url(url: str | None) -> str | None:
    if not url:
        return "missing URL entry"
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
        return f"not an HTTP(S) URL: {url}"
    return None
