"""
media-syncer: Sync approved Jellyseerr requests to MoviePilot.

This package keeps a media request portal (Jellyseerr / Overseerr) and a
media acquisition backend (MoviePilot) in step: every approved request
is subscribed exactly once, and every subscription is followed until the
media is in the library.

Architecture:
    Two cooperating engines share one SQLite ledger:

    SYNC PIPELINE (sync/): Requests -> subscriptions
        - Page through approved requests on the request source
        - Resolve title and poster (source details, TMDB fallback)
        - Upsert into the ledger; skip requests already synced
        - Subscribe each pending request in MoviePilot (per season for tv)
        - Record link, tracking record, audit event; notify

    TRACKING RECONCILER (tracker/): Subscriptions -> library
        - Poll MoviePilot download and transfer history
        - Advance records subscribed -> downloading -> transferred
          with compare-and-swap writes, so each transition happens once
        - Optionally relay the MoviePilot message stream as notifications

    DAILY REPORT (sync/report.py): Once a day, summarize the last 24 hours

Modules:
    core/        - Configuration, ledger database, logging, exceptions, models
    jellyseerr/  - Request source client and TMDB poster fallback
    moviepilot/  - Backend client, token manager, rate limiter
    notify/      - Telegram notifier
    sync/        - Sync pipeline, daemon loop, daily report
    tracker/     - Tracking reconciler and event-stream reader
    utils/       - Error sanitization
    cli.py       - Command-line interface

Usage:
    Command Line:
        media-syncer                   # daemon
        media-syncer --once            # single pass
        media-syncer --once --dry-run  # preview
        media-syncer status            # ledger statistics

    Python API:
        import threading

        from media_syncer.core import load_config, Database, setup_logging
        from media_syncer.jellyseerr import JellyseerrClient, TMDBClient
        from media_syncer.moviepilot import MoviePilotClient, RateLimiter, TokenManager
        from media_syncer.notify import TelegramNotifier
        from media_syncer.sync import Syncer

        config = load_config()
        setup_logging(config.log.directory, config.log.level)
        database = Database(config.store.path)
        cancel_event = threading.Event()

        tokens = TokenManager(config.moviepilot.url, config.moviepilot.username,
                              config.moviepilot.password)
        client = MoviePilotClient(config.moviepilot, tokens,
                                  RateLimiter(config.moviepilot.rate_limit_per_sec),
                                  cancel_event)
        syncer = Syncer(config, database,
                        JellyseerrClient(config.jellyseerr.url, config.jellyseerr.api_key),
                        client, TelegramNotifier(None, (), enabled=False),
                        TMDBClient(None), cancel_event)
        stats = syncer.sync_once()

Configuration:
    Environment variables (or a .env file) override config.yaml:

        JELLY_URL=http://jellyseerr:5055
        JELLY_API_KEY=...
        MP_URL=http://moviepilot:3000
        MP_USERNAME=admin
        MP_PASSWORD=...

Dependencies:
    - requests: HTTP clients (Jellyseerr, MoviePilot, TMDB, Telegram)
    - click: CLI framework
    - rich-click: CLI colors
    - rich: Status tables
    - tqdm: Progress bars
    - pyyaml: Configuration file parsing
    - python-dotenv: .env loading
"""

__version__ = "1.0.0"
__author__ = "media-syncer"
__license__ = "MIT"

# Convenience imports for common usage
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
)

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "Database",
    "setup_logging",
    "get_logger",
    # Exceptions
    "SyncerError",
    "ConfigError",
    "DatabaseError",
    "SourceError",
    "BackendError",
]
