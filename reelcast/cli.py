from __future__ import annotations

import argparse
import asyncio
import importlib.util
import subprocess
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .core.config import Settings, get_settings
from .core.db import lifespan
from .core.errors import ConfigurationError, DownloadError, ReconcilerBusyError
from .core.logging import configure_logging
from .db.models import RemoteState
from .ingest.downloader import DownloadResult, append_download_history, download_to_intake
from .providers import build_primary_provider, build_secondary_providers
from .services.catalog import CatalogRepository, export_from_session
from .services.orchestrator import IngestOrchestrator, RunSummary, preflight
from .services.reconciler import ReconcileReport, StatusReconciler

console = Console()

DEFAULT_EXPORT_PATH = Path("videos.json")


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings.log_level, log_format=settings.log_format)
    try:
        args.func(args, settings)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        sys.exit(1)
    except ReconcilerBusyError as exc:
        console.print(f"[yellow]Reconciler already running:[/] {exc}")
        sys.exit(2)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="reelcast video ingestion pipeline")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe/yt-dlp dependencies")

    subparsers = parser.add_subparsers(dest="command")

    process_parser = subparsers.add_parser("process", help="Ingest and publish every pending intake file")
    process_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fingerprint, dedup and probe only; no uploads, catalog writes or file moves.",
    )
    process_parser.set_defaults(func=_cmd_process)

    reconcile_parser = subparsers.add_parser("reconcile", help="Poll providers and advance remote states")
    reconcile_parser.add_argument("--watch", action="store_true", help="Keep polling until nothing is pending")
    reconcile_parser.add_argument("--attempts", type=int, default=None, help="Maximum passes in --watch mode")
    reconcile_parser.add_argument("--delay", type=float, default=None, help="Seconds between passes in --watch mode")
    reconcile_parser.set_defaults(func=_cmd_reconcile)

    fetch_parser = subparsers.add_parser("fetch", help="Download YouTube or Twitter/X URLs into the intake directory")
    fetch_parser.add_argument("urls", nargs="+", help="One or more video URLs")
    fetch_parser.add_argument("--no-process", action="store_true", help="Skip the ingest run after downloading")
    fetch_parser.set_defaults(func=_cmd_fetch)

    export_parser = subparsers.add_parser("export", help="Write the catalog document read by the site")
    export_parser.add_argument("--output", default=None, help="Target path (defaults to REELCAST_CATALOG_EXPORT_PATH)")
    export_parser.set_defaults(func=_cmd_export)

    status_parser = subparsers.add_parser("status", help="Show catalog records and their remote state")
    status_parser.add_argument("--state", choices=[state.value for state in RemoteState], default=None)
    status_parser.set_defaults(func=_cmd_status)
    return parser


def _cmd_process(args: argparse.Namespace, settings: Settings) -> None:
    """Run one orchestration pass and print the per-run summary."""
    preflight(settings, dry_run=args.dry_run)
    console.print(f"Mode: [bold]{'DRY RUN' if args.dry_run else 'LIVE'}[/]")
    summary = asyncio.run(_process(settings, dry_run=args.dry_run))
    _print_run_summary(summary)
    if summary.processed and not args.dry_run:
        console.print("[dim]Providers are still transcoding; run `reelcast reconcile` to fetch playback ids.[/]")


async def _process(settings: Settings, *, dry_run: bool) -> RunSummary:
    primary = None if dry_run else build_primary_provider(settings)
    secondaries = []
    try:
        if not dry_run:
            secondaries = build_secondary_providers(settings)
        async with lifespan(settings) as state:
            orchestrator = IngestOrchestrator(settings, state["session_factory"], primary, secondaries)  # type: ignore[arg-type]
            return await orchestrator.run(dry_run=dry_run)
    finally:
        for provider in [primary, *secondaries]:
            if provider is not None:
                await provider.aclose()


def _cmd_reconcile(args: argparse.Namespace, settings: Settings) -> None:
    """Advance remote states, once or in bounded continuous mode."""
    report = asyncio.run(
        _reconcile(settings, continuous=args.watch, max_attempts=args.attempts, delay_s=args.delay)
    )
    last = report.passes[-1] if report.passes else None
    table = Table(title="Reconciliation")
    for column in ("passes", "checked", "ready", "preparing", "uploading", "errored", "unchanged"):
        table.add_column(column, justify="right")
    if last is not None:
        table.add_row(
            str(report.attempts),
            str(last.checked),
            str(last.ready),
            str(last.preparing),
            str(last.uploading),
            str(last.errored),
            str(last.unchanged),
        )
    console.print(table)
    if report.pending:
        console.print(f"[yellow]{report.pending} record(s) still pending; run reconcile again later.[/]")
    else:
        console.print("[green]No records pending.[/]")


async def _reconcile(
    settings: Settings,
    *,
    continuous: bool,
    max_attempts: Optional[int],
    delay_s: Optional[float],
) -> ReconcileReport:
    provider = build_primary_provider(settings)
    try:
        async with lifespan(settings) as state:
            reconciler = StatusReconciler(settings, state["session_factory"], provider)  # type: ignore[arg-type]
            return await reconciler.run(continuous=continuous, max_attempts=max_attempts, delay_s=delay_s)
    finally:
        await provider.aclose()


def _cmd_fetch(args: argparse.Namespace, settings: Settings) -> None:
    """Download URLs into intake, record history, then process unless told not to."""
    if importlib.util.find_spec("yt_dlp") is None:
        raise ConfigurationError("yt-dlp is not installed")

    results: list[DownloadResult] = []
    for url in args.urls:
        console.print(f"[bold]Fetching[/] {url}")
        try:
            result = download_to_intake(url, settings)
        except DownloadError as exc:
            console.print(f"  [red]Failed:[/] {exc}")
            continue
        console.print(f"  [green]Downloaded[/] {result.filename} ({result.platform})")
        results.append(result)

    console.print(f"Downloaded: {len(results)}  Failed: {len(args.urls) - len(results)}")
    append_download_history(settings.download_history_path, results)

    if results and not args.no_process:
        _cmd_process(argparse.Namespace(dry_run=False), settings)
    elif results:
        console.print("[dim]Next step: run `reelcast process` to publish.[/]")


def _cmd_export(args: argparse.Namespace, settings: Settings) -> None:
    target = Path(args.output) if args.output else (settings.catalog_export_path or DEFAULT_EXPORT_PATH)

    async def _export() -> Path:
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:  # type: ignore[operator]
                return await export_from_session(session, target)

    written = asyncio.run(_export())
    console.print(f"[green]Catalog written to {written}[/]")


def _cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    state_filter = RemoteState(args.state) if args.state else None

    async def _load():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:  # type: ignore[operator]
                return await CatalogRepository(session).list(state=state_filter)

    records = asyncio.run(_load())
    table = Table(title=f"Catalog ({len(records)} records)")
    for column in ("id", "title", "state", "playback", "providers", "created"):
        table.add_column(column)
    for record in records:
        table.add_row(
            record.id,
            record.title,
            RemoteState(record.remote_state).value,
            record.playback_ref or "-",
            ", ".join(sorted(record.provider_refs or {})),
            record.created_at.isoformat() if record.created_at else "-",
        )
    console.print(table)


def _print_run_summary(summary: RunSummary) -> None:
    if not summary.outcomes:
        console.print("No videos found in the intake directory.")
        return

    table = Table(title=f"{summary.total} file(s)")
    for column in ("file", "disposition", "stage", "detail"):
        table.add_column(column)
    for outcome in summary.outcomes:
        disposition = outcome.disposition.value if outcome.disposition else "-"
        stage = outcome.stage.value
        if outcome.failed_at is not None:
            stage = f"{stage} after {outcome.failed_at.value}"
        table.add_row(outcome.path.name, disposition, stage, outcome.error or outcome.record_id or "")
    console.print(table)
    console.print(
        f"Processed: [green]{summary.processed}[/]  "
        f"Duplicate: [yellow]{summary.duplicate}[/]  "
        f"Failed: [red]{summary.failed}[/]"
    )


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    checks = {
        "ffmpeg": ["ffmpeg", "-version"],
        "ffprobe": ["ffprobe", "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True, timeout=10)
            results[label] = True
        except (OSError, subprocess.SubprocessError):
            results[label] = False
    results["yt-dlp"] = importlib.util.find_spec("yt_dlp") is not None

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Consult pyproject.toml.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
