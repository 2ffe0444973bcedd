from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from portal_export.config import SettingsError, build_settings
from portal_export.models import RunReport
from portal_export.runner import ExportRunner
from portal_export.shortcuts.loader import ShortcutLoader

app = typer.Typer(help="portal-export CLI")
LOGGER = logging.getLogger(__name__)

CONSOLE_FORMAT = "[%(levelname)s] %(message)s"
FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


def main() -> None:
    """Allow `python -m portal_export` execution."""
    app()


@app.command("run")
def run_export(
    env_file: Path = typer.Option(Path(".env"), "--env-file", help="Path to the .env file with run settings."),
    platform: Optional[str] = typer.Option(None, "--platform", help="Override PLATFORM (win or mac)."),
    headless: Optional[bool] = typer.Option(
        None,
        "--headless/--no-headless",
        help="Run the browser without a window (defaults to HEADLESS or off).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Export every portal shortcut in DESKTOP_PATH into DOWNLOAD_PATH."""
    _load_env_file(env_file)
    try:
        settings = build_settings(platform=platform, headless=headless, env_file=env_file)
    except SettingsError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    _configure_logging(verbose, settings.log_file_path)
    LOGGER.info("Program started")
    LOGGER.info("Using env file %s", env_file)

    report = ExportRunner(settings).run()
    _print_report(report)
    raise typer.Exit(code=1 if report.had_fatal_error else 0)


@app.command("shortcuts")
def list_shortcuts(
    env_file: Path = typer.Option(Path(".env"), "--env-file", help="Path to the .env file with run settings."),
    folder: Optional[Path] = typer.Option(
        None,
        "--folder",
        help="Shortcut folder to scan (defaults to DESKTOP_PATH).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """List the shortcuts a run would process, without launching a browser."""
    _configure_logging(verbose, None)
    if folder is None:
        _load_env_file(env_file)
        try:
            folder = build_settings(env_file=env_file).desktop_path
        except SettingsError as exc:
            typer.secho(str(exc), fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
    elif not folder.is_dir():
        typer.secho(f"Shortcut folder not found: {folder}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    scan = ShortcutLoader(folder.expanduser()).load()
    typer.echo(f"Shortcuts: {len(scan.items)} | Rejected: {len(scan.rejected)}")
    for item in scan.items:
        typer.echo(f"  - {item.name}: {item.url}")
    for rejected in scan.rejected:
        typer.secho(f"  * {rejected.name}: {rejected.reason}", fg=typer.colors.YELLOW)
    if not scan.items:
        raise typer.Exit(code=1)


def _load_env_file(env_file: Path) -> None:
    if env_file.exists():
        load_dotenv(dotenv_path=env_file)
    else:
        typer.secho(f"{env_file} not found; using environment and defaults.", fg=typer.colors.YELLOW, err=True)


def _print_report(report: RunReport) -> None:
    typer.echo(
        f"Run window {report.started_at.isoformat()} - {report.finished_at.isoformat()} [{report.state.value}]"
    )
    typer.echo(f" Items: {len(report.results)} | Exported: {len(report.succeeded)} | Skipped: {len(report.skipped)}")
    for result in report.results:
        if result.succeeded:
            typer.echo(f"  - {result.name}: {result.output_path}")
        else:
            typer.echo(f"  - {result.name}: skipped during {result.phase}: {result.reason}")
    if report.fatal_error:
        typer.secho(f"Run aborted: {report.fatal_error}", fg=typer.colors.RED, err=True)


class IsoTimestampFormatter(logging.Formatter):
    """Prefixes file log lines with an ISO-8601 UTC timestamp."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        return datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds")


def _configure_logging(verbose: bool, log_file: Path | None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(IsoTimestampFormatter(FILE_FORMAT))
        handlers.append(file_handler)
    logging.basicConfig(level=level, format=CONSOLE_FORMAT, handlers=handlers, force=True)
