"""
Command-line interface for media-syncer.

This module implements the CLI using Click, wiring the request source,
the acquisition backend, the ledger and the notifier together.
rich-click is used for the help colors, rich for the status tables.

Commands:
    media-syncer                        Run as a daemon (sync + tracker + report)
    media-syncer --once                 Run a single sync pass and exit
    media-syncer --dry-run              Never send subscriptions to MoviePilot
    media-syncer --config <path>        Use an explicit config.yaml
    media-syncer status                 Show ledger statistics

Usage:
    # Daemon mode (sync every SYNC_INTERVAL minutes, tracker, daily report)
    media-syncer

    # One pass, for cron jobs or a first test run
    media-syncer --once --dry-run

    # Inspect the ledger
    media-syncer status

Configuration:
    Settings come from config.yaml (optional) and the environment, which
    wins over the file. A .env file in the working directory is loaded
    first. Required: JELLY_URL, JELLY_API_KEY, MP_URL, MP_USERNAME,
    MP_PASSWORD.

Exit codes:
    0   success
    1   configuration error or unexpected error
    2   database error
    3   request source or backend error (including a failed login)
    4   other media-syncer error
    130 interrupted by user
"""

import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path

import rich_click as click
from rich.console import Console
from rich.table import Table

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "cli": [
        {
            "name": "Run Mode",
            "options": ["--once", "--dry-run"],
        },
        {
            "name": "Configuration",
            "options": ["--config"],
        },
        {
            "name": "Info",
            "options": ["--version", "--help"],
        },
    ],
}

from media_syncer import __version__
from media_syncer.core import (
    BackendError,
    Config,
    ConfigError,
    Database,
    DatabaseError,
    SourceError,
    SyncerError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from media_syncer.jellyseerr import JellyseerrClient, TMDBClient
from media_syncer.moviepilot import MoviePilotClient, RateLimiter, TokenManager
from media_syncer.notify import TelegramNotifier
from media_syncer.sync import DailyReporter, Syncer, SyncStats
from media_syncer.tracker import SSEClient, Tracker

logger = get_logger(__name__)


@click.group(invoke_without_command=True)
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Path to config.yaml (default: ./config.yaml if present)"
)
@click.option(
    "--once",
    is_flag=True,
    help="Run a single sync pass and exit"
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Simulate subscriptions, never send them to MoviePilot"
)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit."
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    once: bool,
    dry_run: bool,
    version: bool
) -> None:
    """
    media-syncer: Sync approved Jellyseerr requests to MoviePilot.

    Subscribes every approved request in MoviePilot exactly once, then
    follows each subscription until the media lands in the library,
    sending Telegram notifications along the way.

    \b
    BASIC USAGE:
        media-syncer                    # Daemon: sync, track, report
        media-syncer --once             # Single sync pass
        media-syncer --once --dry-run   # Preview without subscribing
        media-syncer status             # Ledger statistics
    """
    if version:
        click.echo(f"media-syncer {__version__}")
        ctx.exit(0)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    # Subcommands run on their own
    if ctx.invoked_subcommand is not None:
        return

    ctx.obj["once"] = once
    ctx.obj["dry_run"] = dry_run
    _run_sync(ctx.obj)


@cli.command()
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Number of recent requests to list"
)
@click.pass_context
def status(ctx: click.Context, limit: int) -> None:
    """Show ledger statistics, recent requests and daily reports."""
    try:
        config = load_config(ctx.obj.get("config_path"))
        database = Database(config.store.path)
        _print_status(database, limit)
        database.close()

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        sys.exit(2)


def _run_sync(options: dict) -> None:
    """
    Execute the sync workflow based on CLI options.

    This is the main orchestration function that:
    1. Loads configuration
    2. Sets up logging
    3. Opens the ledger and logs in to MoviePilot
    4. Runs one pass (--once) or the daemon loop
    5. Reports results

    Args:
        options: Dictionary with CLI options from click context.

    Raises:
        SystemExit: On fatal errors (with appropriate exit code).
    """
    database: Database | None = None

    try:
        config = _load_configuration(options["config_path"], options["dry_run"])

        setup_logging(config.log.directory, config.log.level)
        logger.info(f"media-syncer {__version__} starting")
        logger.debug(f"Settings: {config.masked()}")
        if config.moviepilot.dry_run:
            logger.warning("Dry-run mode: no subscription will be sent to MoviePilot")

        database = _initialize_database(config)
        stop_event = threading.Event()

        token_manager = TokenManager(
            config.moviepilot.url,
            config.moviepilot.username,
            config.moviepilot.password,
            refresh_hours=config.moviepilot.token_refresh_hours,
        )
        # A failed login at startup is fatal
        token_manager.get_token()
        logger.info("Logged in to MoviePilot")

        notifier = TelegramNotifier(
            config.telegram.bot_token,
            config.telegram.chat_ids,
            enabled=config.telegram.enabled,
            asynchronous=not options["once"],
        )
        client = MoviePilotClient(
            config.moviepilot,
            token_manager,
            RateLimiter(config.moviepilot.rate_limit_per_sec),
            stop_event,
        )
        syncer = Syncer(
            config,
            database,
            JellyseerrClient(config.jellyseerr.url, config.jellyseerr.api_key, config.jellyseerr.filter),
            client,
            notifier,
            TMDBClient(config.tmdb.api_key),
            stop_event,
        )

        if options["once"]:
            stats = syncer.sync_once()
            _print_sync_stats(stats)
            _print_ledger_stats(database)
        else:
            _run_daemon(config, database, token_manager, client, notifier, syncer, stop_event)

        logger.info("media-syncer completed successfully")

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e.message}", exc_info=True)
        sys.exit(2)

    except (SourceError, BackendError) as e:
        click.echo(f"Service error: {e.message}", err=True)
        if isinstance(e, BackendError) and e.is_auth_error:
            click.echo("Check MP_USERNAME / MP_PASSWORD and MP_AUTH_SCHEME", err=True)
        logger.error(f"Service error: {e.message}", exc_info=True)
        sys.exit(3)

    except SyncerError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        if database is not None:
            database.close()
        shutdown_logging()


def _run_daemon(
    config: Config,
    database: Database,
    token_manager: TokenManager,
    client: MoviePilotClient,
    notifier: TelegramNotifier,
    syncer: Syncer,
    stop_event: threading.Event
) -> None:
    """
    Start the background workers and run the sync loop until a signal.

    SIGINT and SIGTERM set the shared stop event; every worker observes
    it, and the sync loop returns after the current request.
    """
    def _handle_signal(signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("=" * 60)
    logger.info("DAEMON MODE")
    logger.info("=" * 60)

    tracker = Tracker(
        database,
        client,
        notifier,
        config.tracker,
        stop_event,
        sse_client=SSEClient(config.moviepilot.url, token_manager, stop_event)
        if config.tracker.sse_enabled else None,
    )
    tracker.start()

    reporter: DailyReporter | None = None
    if config.report.enabled and notifier.enabled:
        reporter = DailyReporter(database, notifier, config.report.time, stop_event)
        reporter.start()
    elif config.report.enabled:
        logger.info("Daily report enabled but Telegram is not configured, skipping")

    try:
        syncer.run_daemon(stop_event)
    finally:
        stop_event.set()
        tracker.stop()
        if reporter is not None:
            reporter.stop()

    _print_ledger_stats(database)


def _load_configuration(config_path: Path | None, dry_run: bool) -> Config:
    """
    Load configuration and apply the CLI overrides.

    Returns:
        Config object with validated settings.

    Raises:
        ConfigError: If configuration is invalid or missing.
    """
    config = load_config(config_path)
    if dry_run and not config.moviepilot.dry_run:
        config = replace(config, moviepilot=replace(config.moviepilot, dry_run=True))
    return config


def _initialize_database(config: Config) -> Database:
    """
    Open the SQLite ledger, creating its directory if needed.

    Raises:
        DatabaseError: If database cannot be initialized.
    """
    db_path = config.store.path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DatabaseError(
            f"Cannot create store directory: {db_path.parent}",
            details={"path": str(db_path.parent), "error": str(e)}
        ) from e
    return Database(db_path)


def _print_sync_stats(stats: SyncStats) -> None:
    """Print the counters of a single sync pass."""
    logger.info("=" * 60)
    logger.info("SYNC PASS")
    logger.info("=" * 60)
    logger.info(f"Fetched:           {stats.fetched}")
    logger.info(f"Skipped (synced):  {stats.skipped}")
    logger.info(f"Processed:         {stats.processed}")
    logger.info(f"Subscribed:        {stats.synced}")
    logger.info(f"Already in lib:    {stats.already_exists}")
    logger.info(f"Failed:            {stats.failed}")
    logger.info("=" * 60)


def _print_ledger_stats(database: Database) -> None:
    """
    Print ledger-wide statistics.

    Output:
        Request totals by sync status, then tracking records by
        lifecycle status.
    """
    stats = database.get_stats()

    logger.info("=" * 60)
    logger.info("LEDGER STATISTICS")
    logger.info("=" * 60)
    logger.info(f"Total requests:    {stats['total']}")
    logger.info(f"Synced:            {stats['synced']}")
    logger.info(f"Pending:           {stats['pending']}")
    logger.info(f"Failed:            {stats['failed']}")
    logger.info(f"Downloading:       {stats['tracking_downloading']}")
    logger.info(f"Transferred:       {stats['tracking_transferred']}")
    logger.info("=" * 60)


def _print_status(database: Database, limit: int) -> None:
    """Render the ledger as rich tables on stdout."""
    console = Console()
    stats = database.get_stats()

    summary = Table(title="Ledger", show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", justify="right")
    for key in ("total", "synced", "pending", "failed"):
        summary.add_row(key, str(stats[key]))
    for key, value in stats.items():
        if key.startswith("tracking_"):
            summary.add_row(key.replace("tracking_", "tracking: "), str(value))
    console.print(summary)

    requests_table = Table(title=f"Recent requests (max {limit})")
    requests_table.add_column("ID", style="dim")
    requests_table.add_column("Type")
    requests_table.add_column("Title")
    requests_table.add_column("Status")
    requests_table.add_column("Tracking")
    for request in database.list_requests(limit):
        tracking = database.get_tracking(request.source_request_id)
        requests_table.add_row(
            request.source_request_id,
            request.media_type.value,
            request.title,
            request.status.value,
            tracking.status.value if tracking else "-",
        )
    console.print(requests_table)

    reports = database.list_recent_reports()
    if reports:
        reports_table = Table(title="Daily reports")
        reports_table.add_column("Date")
        reports_table.add_column("Subscribed", justify="right")
        reports_table.add_column("Downloaded", justify="right")
        reports_table.add_column("Transferred", justify="right")
        reports_table.add_column("Failed", justify="right")
        for report in reports:
            reports_table.add_row(
                report.report_date,
                str(report.total_subscribed),
                str(report.total_downloaded),
                str(report.total_transferred),
                str(report.total_failed),
            )
        console.print(reports_table)


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `media-syncer` from the command
    line. It invokes the Click CLI group.
    """
    cli()


if __name__ == "__main__":
    main()
