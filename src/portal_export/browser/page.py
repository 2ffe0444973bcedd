from __future__ import annotations

from pathlib import Path
from typing import Protocol, Sequence

ROLE_BUTTON = "button"
ROLE_MENUITEM = "menuitem"


class Control(Protocol):
    """A located, visible portal control."""

    def click(self) -> None:  # pragma: no cover - protocol signature
        ...

    def hover(self) -> None:  # pragma: no cover - protocol signature
        """Move the pointer to the centre of the control's on-screen box."""
        ...


class PortalPage(Protocol):
    """One browser tab as seen by the navigation driver and the session gate."""

    def goto(self, url: str, *, timeout: float) -> None:  # pragma: no cover - protocol signature
        """Navigate and wait for network idle; raise ``TimeoutError`` when it takes too long."""
        ...

    def find_by_visible_text(
        self,
        role: str,
        tokens: Sequence[str],
        *,
        timeout: float,
    ) -> Control | None:  # pragma: no cover - protocol signature
        """Return the first visible control whose rendered text includes one of ``tokens``."""
        ...

    def cookie_names(self) -> set[str]:  # pragma: no cover - protocol signature
        ...

    def screenshot(self, path: Path) -> None:  # pragma: no cover - protocol signature
        ...

    def close(self) -> None:  # pragma: no cover - protocol signature
        ...


class BrowserSession(Protocol):
    def new_page(self) -> PortalPage:  # pragma: no cover - protocol signature
        ...
