#!/usr/bin/env python3
"""
PodFeed - Podcast Feed Aggregator
=================================

Main application entry point with CLI interface for builds and diagnostics.

Usage:
    python main.py --help                    # Show all commands
    python main.py build                     # Fetch all feeds and publish the snapshot
    python main.py build --no-social         # Same, without social enrichment
    python main.py check-config              # Validate configuration and sources
    python main.py fetch-feed KEY_OR_URL     # Fetch and summarise a single feed
"""

import sys
import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from podfeed.config.settings import get_settings
from podfeed.config.sources import load_sources
from podfeed.ingestion.conditional_fetcher import ConditionalFetcher
from podfeed.ingestion.feed_parser import parse_feed, require_rss_root
from podfeed.models import FeedSource
from podfeed.processing.aggregator import FeedAggregator
from podfeed.processing.pipeline import run_build
from podfeed.utils.logging import configure_application_logging
from podfeed.utils.exceptions import PodFeedError
from podfeed.utils.validators import URLValidator

console = Console()
logger = logging.getLogger(__name__)


def _configure_logging(settings, debug: bool) -> None:
    configure_application_logging(
        log_level="DEBUG" if debug else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, debug):
    """PodFeed - podcast feed ingestion and aggregation."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        # Show help if no subcommand provided
        click.echo(ctx.get_help())


@cli.command()
@click.option('--no-social', '--no-twitter', 'no_social', is_flag=True,
              help='Skip the social enrichment phase')
@click.pass_context
def build(ctx, no_social):
    """Fetch every configured feed and publish a new snapshot."""
    try:
        settings = get_settings()
    except PodFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)

    _configure_logging(settings, ctx.obj.get('debug', False))
    enable_social = settings.social.enabled and not no_social

    console.print("[bold blue]🎙  Building PodFeed snapshot[/bold blue]")

    try:
        result = asyncio.run(run_build(enable_social=enable_social, settings=settings))
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Build interrupted, previous output restored[/yellow]")
        sys.exit(130)
    except PodFeedError as e:
        console.print(f"[bold red]❌ Build failed: {e}[/bold red]")
        sys.exit(1)

    table = Table(title="Build Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Sources", str(result.sources_total))
    table.add_row("Channels published", f"{result.channels} ({result.success_rate:.1f}%)")
    table.add_row("Episodes", str(result.episode_count))
    table.add_row("Episodes in window", str(result.window_episodes))
    table.add_row("Covers stored", str(result.covers_stored))
    if enable_social:
        table.add_row("Social records", str(result.social_records))
    table.add_row("Retries", str(result.retry_stats.get('retries', 0)))
    table.add_row("Errors", str(result.errors))
    table.add_row("Snapshot", str(result.snapshot_path))
    table.add_row("Elapsed", f"{result.elapsed_seconds:.1f}s")
    console.print(table)

    if result.error_labels:
        breakdown = ", ".join(f"{label}: {count}" for label, count in sorted(result.error_labels.items()))
        console.print(f"[yellow]⚠️  Errors by phase: {breakdown}[/yellow]")

    console.print("[bold green]✅ Snapshot published[/bold green]")


@cli.command()
@click.pass_context
def check_config(ctx):
    """Validate configuration and the source catalogue."""
    console.print("[bold blue]🔧 Checking PodFeed Configuration[/bold blue]")

    try:
        settings = get_settings()

        table = Table(title="Configuration Status")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Details")

        checks = [
            ("Paths", _check_paths),
            ("Sources", _check_sources),
            ("Fetching", _check_fetch_config),
            ("Processing", _check_processing_config),
            ("Social", _check_social_config),
            ("Logging", _check_logging_config),
        ]

        all_passed = True
        for name, check_func in checks:
            status, details = check_func(settings)
            table.add_row(name, "✅ Valid" if status else "❌ Invalid", details)
            if not status:
                all_passed = False

        console.print(table)

        if all_passed:
            console.print("[bold green]✅ All configuration checks passed![/bold green]")
        else:
            console.print("[bold red]❌ Configuration validation failed[/bold red]")
            sys.exit(1)

    except PodFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)


@cli.command()
@click.argument('key_or_url')
@click.pass_context
def fetch_feed(ctx, key_or_url):
    """Fetch and summarise a single feed without touching the output."""
    settings = get_settings()
    _configure_logging(settings, ctx.obj.get('debug', False))

    try:
        source = _resolve_source(settings, key_or_url)
    except PodFeedError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        sys.exit(1)

    console.print(f"[bold blue]📡 Fetching feed: {source.feed}[/bold blue]")

    async def run_fetch():
        fetcher = ConditionalFetcher(settings.fetch)
        async with fetcher.open_session(limit=2):
            result = await fetcher.fetch_with_retry(source.feed)
        document = parse_feed(result.content, source.feed)
        require_rss_root(document, source.feed)
        aggregator = FeedAggregator(fetcher, settings=settings)
        return result, aggregator.build_record(source, document)

    try:
        result, (record, window, latest) = asyncio.run(run_fetch())
    except PodFeedError as e:
        console.print(f"[bold red]❌ Feed fetch error: {e}[/bold red]")
        sys.exit(1)

    console.print("[bold green]✅ Feed fetched successfully![/bold green]")

    info_table = Table(title="Feed Information")
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="green")

    info_table.add_row("Title", record.title or "Unknown")
    description = record.description or "None"
    if len(description) > 100:
        description = description[:97] + "..."
    info_table.add_row("Description", description)
    info_table.add_row("Final URL", result.final_url)
    info_table.add_row("Redirects", str(result.redirects))
    info_table.add_row("ETag", result.etag or "-")
    info_table.add_row("Last-Modified", result.last_modified or "-")
    info_table.add_row("Episodes", str(record.total))
    info_table.add_row("Latest", str(latest) if latest else "Unknown")
    info_table.add_row("Episodes in window", str(len(window)))
    info_table.add_row("Cover", record.cover_source or "None")
    info_table.add_row("Average duration", f"{record.duration_average}s" if record.duration_average else "-")
    info_table.add_row("File servers", ", ".join(record.file_server) or "-")
    console.print(info_table)

    if record.recent_episodes:
        console.print("\n[bold blue]🎧 Recent episodes:[/bold blue]")
        for i, episode in enumerate(record.recent_episodes, 1):
            console.print(f"\n{i}. [bold]{episode.title or 'Untitled'}[/bold]")
            console.print(f"   📅 Published: {episode.pub_date or 'No date'}")
            console.print(f"   🔗 Link: {episode.link or '-'}")


def _resolve_source(settings, key_or_url: str) -> FeedSource:
    """Look a key up in the catalogue, or treat the argument as a feed URL."""
    if "://" in key_or_url:
        return FeedSource(key="adhoc", feed=URLValidator.validate_feed_url(key_or_url))

    for source in load_sources(settings.sources.path):
        if source.key == key_or_url:
            return source
    raise PodFeedError(f"Unknown source key: {key_or_url}")


# Helper functions for configuration checks
def _check_paths(settings) -> tuple[bool, str]:
    """Check output and log paths."""
    try:
        settings.validate_configuration()
        return True, f"Downloads: {settings.downloads_path}, Snapshot: {settings.snapshot_path}"
    except PodFeedError as e:
        return False, str(e)


def _check_sources(settings) -> tuple[bool, str]:
    """Check the source catalogue."""
    try:
        sources = load_sources(settings.sources.path)
        social = sum(1 for s in sources if s.twitter or s.hashtag)
        return True, f"{len(sources)} feeds ({social} with social accounts)"
    except PodFeedError as e:
        return False, str(e)


def _check_fetch_config(settings) -> tuple[bool, str]:
    fetch = settings.fetch
    return True, (
        f"Timeout: {fetch.timeout_seconds}s, Redirects: {fetch.max_redirects}, "
        f"Attempts: {fetch.max_attempts}"
    )


def _check_processing_config(settings) -> tuple[bool, str]:
    processing = settings.processing
    return True, (
        f"Batch width: {processing.batch_width}, "
        f"Window: {processing.episode_window_days} days"
    )


def _check_social_config(settings) -> tuple[bool, str]:
    """Check social enrichment configuration."""
    if not settings.social.enabled:
        return True, "Disabled"
    if settings.social.data_path and not Path(settings.social.data_path).exists():
        return False, f"Data file not found: {settings.social.data_path}"
    return True, f"Data: {settings.social.data_path or 'none'}"


def _check_logging_config(settings) -> tuple[bool, str]:
    """Check logging configuration."""
    try:
        if settings.logging.file_path:
            log_path = Path(settings.logging.file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
        return True, f"Level: {settings.logging.level.value}, Console: {settings.logging.console_logging}"
    except OSError as e:
        return False, str(e)


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 PodFeed interrupted by user[/yellow]")
        sys.exit(130)
