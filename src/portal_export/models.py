from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ItemStatus = Literal["success", "skipped"]
ExportFormat = Literal["WORD", "PDF"]

EXPORT_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "WORD": (".docx", ".doc"),
    "PDF": (".pdf",),
}


@dataclass(frozen=True)
class ShortcutItem:
    name: str
    url: str
    source_path: Path

    @property
    def stem(self) -> str:
        return Path(self.name).stem


@dataclass(frozen=True)
class RejectedShortcut:
    name: str
    source_path: Path
    reason: str


@dataclass(frozen=True)
class ShortcutScan:
    items: list[ShortcutItem]
    rejected: list[RejectedShortcut]


class BrowserVersion(BaseModel):
    """Descriptor served by the browser at ``/json/version``."""

    browser: str = Field(default="", alias="Browser")
    protocol_version: str = Field(default="", alias="Protocol-Version")
    user_agent: str = Field(default="", alias="User-Agent")
    websocket_debugger_url: str = Field(alias="webSocketDebuggerUrl", min_length=1)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


@dataclass(frozen=True)
class ControlEndpoint:
    port: int
    pid: int
    session_id: str
    websocket_url: str
    browser: str = ""


@dataclass(frozen=True)
class DownloadTask:
    item: ShortcutItem
    extensions: tuple[str, ...]
    started_at: float
    timeout: float
    ignored_names: frozenset[str] = frozenset()

    @property
    def deadline(self) -> float:
        return self.started_at + self.timeout


@dataclass
class DownloadCandidate:
    path: Path
    mtime: float
    last_size: int | None = None
    stable_samples: int = 0


@dataclass(frozen=True)
class ItemResult:
    name: str
    url: str | None
    status: ItemStatus
    output_path: Path | None = None
    reason: str | None = None
    phase: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class RunState(str, Enum):
    INIT = "init"
    PORT_ALLOCATED = "port_allocated"
    BROWSER_READY = "browser_ready"
    SESSION_PENDING = "session_pending"
    SESSION_ESTABLISHED = "session_established"
    PROCESSING_ITEMS = "processing_items"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunReport:
    started_at: datetime
    finished_at: datetime
    state: RunState
    results: list[ItemResult] = field(default_factory=list)
    fatal_error: str | None = None

    @property
    def succeeded(self) -> list[ItemResult]:
        return [result for result in self.results if result.succeeded]

    @property
    def skipped(self) -> list[ItemResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def had_fatal_error(self) -> bool:
        return self.state is RunState.FAILED
