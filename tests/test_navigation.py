from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pytest

from portal_export.browser.navigation import NavigationDriver
from portal_export.browser.page import ROLE_BUTTON, ROLE_MENUITEM
from portal_export.config import ControlLabels
from portal_export.errors import NavigationTimeout, UIElementNotFound
from portal_export.models import ShortcutItem

DEFAULT_VISIBLE = {"More", "Download as", "Word", "PDF", "Export"}


class ScriptedControl:
    def __init__(self, page: "ScriptedPage", label: str):
        self._page = page
        self._label = label

    def click(self) -> None:
        self._page.events.append(f"click:{self._label}")

    def hover(self) -> None:
        self._page.events.append(f"hover:{self._label}")


class ScriptedPage:
    def __init__(self, *, visible: set[str] | None = None, goto_times_out: bool = False):
        self.visible = DEFAULT_VISIBLE if visible is None else visible
        self.goto_times_out = goto_times_out
        self.events: list[str] = []
        self.lookups: list[tuple[str, tuple[str, ...], float]] = []
        self.screenshots: list[Path] = []

    def goto(self, url: str, *, timeout: float) -> None:
        self.events.append(f"goto:{url}")
        if self.goto_times_out:
            raise TimeoutError(f"Timed out while waiting for {url} to finish loading")

    def find_by_visible_text(self, role: str, tokens: Sequence[str], *, timeout: float) -> ScriptedControl | None:
        self.lookups.append((role, tuple(tokens), timeout))
        for token in tokens:
            if token in self.visible:
                return ScriptedControl(self, token)
        return None

    def cookie_names(self) -> set[str]:
        return set()

    def screenshot(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG")
        self.screenshots.append(path)

    def close(self) -> None:
        self.events.append("close")


ITEM = ShortcutItem(
    name="Weekly Sync.url",
    url="https://portal.example.com/docs/weekly-sync",
    source_path=Path("Weekly Sync.url"),
)


def _driver(tmp_path: Path, sleeps: list[float] | None = None) -> NavigationDriver:
    return NavigationDriver(
        ControlLabels(),
        navigation_timeout=60.0,
        control_timeout=15.0,
        confirm_timeout=2.0,
        settle_seconds=0.5,
        snapshot_dir=tmp_path / "diagnostics",
        clock=lambda: 1_700_000_000.25,
        sleep=(sleeps if sleeps is not None else []).append,
    )


def test_export_item_walks_the_export_menu(tmp_path: Path) -> None:
    page = ScriptedPage()
    sleeps: list[float] = []

    triggered_at = _driver(tmp_path, sleeps).export_item(page, ITEM, "WORD")

    assert triggered_at == 1_700_000_000.25
    assert page.events == [
        "goto:https://portal.example.com/docs/weekly-sync",
        "click:More",
        "hover:Download as",
        "hover:Word",
        "click:Word",
        "click:Export",
    ]
    assert sleeps == [0.5, 0.5, 0.5]
    roles = [role for role, _, _ in page.lookups]
    assert roles == [ROLE_BUTTON, ROLE_MENUITEM, ROLE_MENUITEM, ROLE_BUTTON, ROLE_BUTTON]
    assert page.lookups[-1][2] == 2.0
    assert page.screenshots == []


def test_export_item_selects_pdf_format(tmp_path: Path) -> None:
    page = ScriptedPage()

    _driver(tmp_path).export_item(page, ITEM, "PDF")

    assert "click:PDF" in page.events
    assert "click:Word" not in page.events


def test_export_item_dismisses_confirmation_dialog(tmp_path: Path) -> None:
    page = ScriptedPage(visible=DEFAULT_VISIBLE | {"確定"})

    _driver(tmp_path).export_item(page, ITEM, "WORD")

    assert page.events[-2:] == ["click:Export", "click:確定"]


def test_export_item_uses_alternative_labels(tmp_path: Path) -> None:
    page = ScriptedPage(visible={"更多", "下載為", "Word", "匯出"})

    _driver(tmp_path).export_item(page, ITEM, "WORD")

    assert page.events[1:] == ["click:更多", "hover:下載為", "hover:Word", "click:Word", "click:匯出"]


def test_missing_control_raises_and_captures_snapshot(tmp_path: Path) -> None:
    page = ScriptedPage(visible={"More"})

    with pytest.raises(UIElementNotFound) as excinfo:
        _driver(tmp_path).export_item(page, ITEM, "WORD")

    assert excinfo.value.phase == "download-as"
    assert "Weekly Sync.url" in str(excinfo.value)
    assert "click:Export" not in page.events
    assert len(page.screenshots) == 1
    snapshot = page.screenshots[0]
    assert snapshot.parent == tmp_path / "diagnostics"
    assert snapshot.name == "weekly-sync-download-as-1700000000250.png"


def test_navigation_timeout_is_reported_with_phase(tmp_path: Path) -> None:
    page = ScriptedPage(goto_times_out=True)
    loaded: list[str] = []

    with pytest.raises(NavigationTimeout) as excinfo:
        _driver(tmp_path).export_item(page, ITEM, "WORD", on_loaded=lambda _: loaded.append("loaded"))

    assert excinfo.value.phase == "navigate"
    assert loaded == []
    assert len(page.screenshots) == 1


def test_on_loaded_runs_between_navigation_and_menu(tmp_path: Path) -> None:
    page = ScriptedPage()

    def on_loaded(current: ScriptedPage) -> None:
        current.events.append("gate")

    _driver(tmp_path).export_item(page, ITEM, "WORD", on_loaded=on_loaded)

    assert page.events[:3] == ["goto:https://portal.example.com/docs/weekly-sync", "gate", "click:More"]


def test_on_loaded_failure_stops_before_export(tmp_path: Path) -> None:
    page = ScriptedPage()

    def failing_gate(_: ScriptedPage) -> None:
        raise RuntimeError("no session")

    with pytest.raises(RuntimeError, match="no session"):
        _driver(tmp_path).export_item(page, ITEM, "WORD", on_loaded=failing_gate)

    assert page.events == ["goto:https://portal.example.com/docs/weekly-sync"]


def test_item_is_reopened_when_on_loaded_asks_for_it(tmp_path: Path) -> None:
    page = ScriptedPage()

    _driver(tmp_path).export_item(page, ITEM, "WORD", on_loaded=lambda _: True)

    assert page.events[:3] == [
        "goto:https://portal.example.com/docs/weekly-sync",
        "goto:https://portal.example.com/docs/weekly-sync",
        "click:More",
    ]
