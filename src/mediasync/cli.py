"""CLI entry point for mediasync.

Provides commands:
  - upload: Attach every media file in a directory to its catalog product
  - config set-token / show / remove-token: Manage the Admin API token
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import keyring
import typer
from keyring.errors import KeyringError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from mediasync.config import (
    DEFAULT_CONFIG_PATH,
    KEY_NAME,
    SERVICE_NAME,
    ScannerConfig,
    load_upload_config,
)
from mediasync.models import BatchReport, LocalFile, ResolutionPolicy, StatusTag, UploadConfig
from mediasync.scanner import MediaScanner

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="mediasync - Bulk-attach local images and videos to Shopify products by filename",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (access token, settings)")
app.add_typer(config_app, name="config")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def _run_batch(config: UploadConfig, files: list[LocalFile]) -> BatchReport:
    """Build the pipeline components and run one batch."""
    from mediasync.upload.circuit_breaker import RollingWindowCircuitBreaker
    from mediasync.upload.client import ShopifyAdminClient
    from mediasync.upload.orchestrator import BatchOrchestrator
    from mediasync.upload.progress import UploadProgressTracker
    from mediasync.upload.rate_limiter import AdaptiveRateLimiter, RateLimiterConfig

    circuit_breaker = RollingWindowCircuitBreaker()
    rate_limiter = AdaptiveRateLimiter(
        RateLimiterConfig(tier=config.rate_limit_tier), circuit_breaker
    )
    async with ShopifyAdminClient(config, circuit_breaker, rate_limiter) as client:
        with UploadProgressTracker(total_files=len(files)) as progress:
            orchestrator = BatchOrchestrator(client, config, progress=progress)
            orchestrator.setup_signal_handlers()
            try:
                return await orchestrator.run(files)
            finally:
                await orchestrator.close()


def _print_report(report: BatchReport) -> None:
    for result in report.results:
        target = f" -> {result.entity_id}" if result.entity_id else ""
        line = f"{result.status.value}: {result.filename}{target}"
        if result.detail and not result.status.succeeded:
            line += f" ({result.detail})"
        if result.status.succeeded:
            style = "green"
        elif result.status is StatusTag.SKIPPED:
            style = "yellow"
        else:
            style = "red"
        console.print(line, style=style, highlight=False, markup=False)
        for message in result.errors:
            console.print(f"    {message}", style="dim", highlight=False, markup=False)

    if report.reorders:
        table = Table(title="Media Order")
        table.add_column("Entity", style="cyan", no_wrap=True)
        table.add_column("Result")
        table.add_column("Moves", justify="right")
        table.add_column("Errors", style="red")
        for reorder in report.reorders:
            table.add_row(
                reorder.entity_id,
                reorder.status,
                str(reorder.moves),
                "; ".join(reorder.errors),
            )
        console.print(table)

    summary = f"Done. ok={report.ok}, failed={report.failed}"
    if report.skipped:
        summary += f", skipped={report.skipped}"
    console.print(f"[bold]{summary}[/bold]")


@app.command()
def upload(
    media_dir: Annotated[
        Path,
        typer.Option("--dir", help="Directory holding the media files to upload"),
    ],
    mode: Annotated[
        Optional[str],
        typer.Option(
            "--mode",
            "-m",
            help="Lookup policy: primary (custom-id), secondary (sku) or auto",
        ),
    ] = None,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-n", min=1, help="Max files in flight (default 3)"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", min=0, help="Max files to process (0 = no limit)"),
    ] = 0,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Resolve files to products without changing anything"),
    ] = False,
    poll_interval: Annotated[
        Optional[float],
        typer.Option("--poll-interval", help="Seconds between readiness checks (all media)"),
    ] = None,
    poll_timeout: Annotated[
        Optional[float],
        typer.Option("--poll-timeout", help="Seconds to wait for media to become ready"),
    ] = None,
    start_from: Annotated[
        Optional[str],
        typer.Option("--start-from", help="Skip files up to this file name (resume a run)"),
    ] = None,
    from_inclusive: Annotated[
        bool,
        typer.Option("--from-inclusive", help="Also process the --start-from file"),
    ] = False,
    retries: Annotated[
        Optional[int],
        typer.Option("--retries", min=0, help="Extra attempts per file on transient errors (default 2)"),
    ] = None,
    register_images: Annotated[
        bool,
        typer.Option("--register-images", help="Register images as files before attaching"),
    ] = False,
    abort_on_timeout: Annotated[
        bool,
        typer.Option("--abort-on-timeout", help="Fail a file whose media is not ready in time"),
    ] = False,
    run_timeout: Annotated[
        Optional[float],
        typer.Option("--run-timeout", help="Stop starting new files after this many seconds"),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to upload_config.json"),
    ] = None,
    shop: Annotated[
        Optional[str],
        typer.Option("--shop", help="Shop domain, e.g. my-store.myshopify.com"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log every pipeline step"),
    ] = False,
) -> None:
    """Upload media files and attach them to the products named by their filenames.

    [bold]SKU123.jpg[/bold] becomes the featured image of the matching product,
    [bold]SKU123_2.jpg[/bold] its third image. Re-running replaces media in place.
    """
    if not media_dir.is_dir():
        console.print(f"[red]Error:[/red] --dir must be an existing directory: {media_dir}")
        raise typer.Exit(code=1)

    _configure_logging(verbose)

    try:
        policy = ResolutionPolicy.parse(mode) if mode is not None else None
        config = load_upload_config(
            config_path or DEFAULT_CONFIG_PATH,
            shop=shop,
            resolution_policy=policy,
            max_concurrency=concurrency,
            file_retries=retries,
            dry_run=True if dry_run else None,
            register_images=True if register_images else None,
            optimistic_attach=False if abort_on_timeout else None,
            run_timeout_seconds=run_timeout,
        )
    except (RuntimeError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    config = config.with_poll_overrides(poll_interval, poll_timeout)

    scanner = MediaScanner(
        ScannerConfig(
            media_dir=media_dir,
            start_from=start_from,
            from_inclusive=from_inclusive,
            limit=limit,
        )
    )
    files = scanner.discover()
    if not files:
        console.print("[green]No media files to upload.[/green]")
        return

    console.print(
        Panel(
            f"Processing [bold]{len(files)}[/bold] files for [bold]{config.shop}[/bold]\n"
            f"Mode: {config.resolution_policy.value} | "
            f"Concurrency: {config.max_concurrency} | "
            f"Retries: {config.file_retries}"
            + (" | [yellow]DRY RUN[/yellow]" if config.dry_run else ""),
            title="Media Sync",
        )
    )

    report = asyncio.run(_run_batch(config, files))
    _print_report(report)


@config_app.command("set-token")
def set_token(
    token: Annotated[
        str,
        typer.Argument(help="Admin API access token to store in the system keyring"),
    ],
) -> None:
    """Store the Admin API access token in the system keyring (service: mediasync-shopify)."""
    if not token or token.strip() == "":
        console.print("[red]Error:[/red] Access token cannot be empty")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, token.strip())
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to store access token: {e}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]✓[/green] Access token stored in system keyring (service: {SERVICE_NAME})"
    )


@config_app.command("show")
def show_token() -> None:
    """Display the stored access token (masked)."""
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if not token:
        console.print(
            "[yellow]No access token found in keyring.[/yellow]\n"
            "Set it with: [bold]mediasync config set-token YOUR_TOKEN[/bold]"
        )
        raise typer.Exit(code=1)

    # Mask all but first 6 characters
    if len(token) > 6:
        masked = token[:6] + "*" * (len(token) - 6)
    else:
        masked = token[:2] + "*" * max(1, len(token) - 2)

    console.print(f"[green]Access token:[/green] {masked}")
    console.print(f"[dim](stored in service: {SERVICE_NAME})[/dim]")


@config_app.command("remove-token")
def remove_token() -> None:
    """Delete the stored access token from the system keyring."""
    if not keyring.get_password(SERVICE_NAME, KEY_NAME):
        console.print("[yellow]Warning:[/yellow] No access token found in keyring. Nothing to remove.")
        return
    keyring.delete_password(SERVICE_NAME, KEY_NAME)
    console.print(f"[green]✓[/green] Access token removed (service: {SERVICE_NAME})")


if __name__ == "__main__":
    app()
