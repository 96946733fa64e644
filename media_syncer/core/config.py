"""
Configuration management for media-syncer.

This module handles loading, validating, and providing access to the
application configuration. Values come from two sources:

    1. config.yaml (optional when not given explicitly)
    2. Environment variables, also read from a .env file in the CWD

Environment variables take precedence over file values, so secrets can be
kept out of config.yaml in container deployments.

Example config.yaml:
    jellyseerr:
      url: "http://jellyseerr:5055"
      api_key: "your_api_key"
      page_size: 50

    moviepilot:
      url: "http://moviepilot:3000"
      username: "admin"
      password: "secret"
      auth_scheme: bearer        # bearer | x-api-token | query-token
      rate_limit_per_sec: 3
      max_retries: 3
      dry_run: false
      tv_episode_mode: season    # season | episode
      token_refresh_hours: 24

    tmdb:
      api_key: null              # Optional poster fallback

    store:
      path: "./data/syncer.db"

    sync:
      interval: 5                # minutes

    telegram:
      enabled: false
      bot_token: null
      chat_ids: []

    tracker:
      enabled: true
      check_interval: 5          # minutes
      sse_enabled: true

    report:
      enabled: true
      time: "09:00"

    log:
      level: info
      directory: "./data"
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv

from media_syncer.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

AUTH_SCHEMES = ("bearer", "x-api-token", "query-token")
TV_EPISODE_MODES = ("season", "episode")
LOG_LEVELS = ("debug", "info", "warn", "warning", "error")

_REPORT_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# (section, key) -> environment variable
_ENV_OVERRIDES: dict[tuple[str, str], str] = {
    ("jellyseerr", "url"): "JELLY_URL",
    ("jellyseerr", "api_key"): "JELLY_API_KEY",
    ("jellyseerr", "filter"): "JELLY_FILTER",
    ("jellyseerr", "page_size"): "JELLY_PAGE_SIZE",
    ("moviepilot", "url"): "MP_URL",
    ("moviepilot", "username"): "MP_USERNAME",
    ("moviepilot", "password"): "MP_PASSWORD",
    ("moviepilot", "auth_scheme"): "MP_AUTH_SCHEME",
    ("moviepilot", "rate_limit_per_sec"): "MP_RATE_LIMIT_PER_SEC",
    ("moviepilot", "max_retries"): "MAX_RETRIES",
    ("moviepilot", "dry_run"): "MP_DRY_RUN",
    ("moviepilot", "tv_episode_mode"): "MP_TV_EPISODE_MODE",
    ("moviepilot", "token_refresh_hours"): "MP_TOKEN_REFRESH_HOURS",
    ("tmdb", "api_key"): "TMDB_API_KEY",
    ("store", "path"): "STORE_PATH",
    ("sync", "interval"): "SYNC_INTERVAL",
    ("telegram", "enabled"): "TELEGRAM_ENABLED",
    ("telegram", "bot_token"): "TELEGRAM_BOT_TOKEN",
    ("telegram", "chat_ids"): "TELEGRAM_CHAT_IDS",
    ("tracker", "enabled"): "TRACKER_ENABLED",
    ("tracker", "check_interval"): "TRACKER_CHECK_INTERVAL",
    ("tracker", "sse_enabled"): "TRACKER_SSE_ENABLED",
    ("report", "enabled"): "REPORT_ENABLED",
    ("report", "time"): "REPORT_TIME",
    ("log", "level"): "LOG_LEVEL",
    ("log", "directory"): "LOG_DIR",
}


@dataclass(frozen=True)
class JellyseerrConfig:
    """
    Request source (Jellyseerr / Overseerr) configuration.

    Attributes:
        url: Base URL without trailing slash, e.g. "http://jellyseerr:5055".
        api_key: Value for the X-Api-Key header.
        filter: Request list filter passed to the API. Default "approved".
        page_size: Requests fetched per page. Default 50.
    """
    url: str
    api_key: str
    filter: str
    page_size: int


@dataclass(frozen=True)
class MoviePilotConfig:
    """
    Acquisition backend (MoviePilot) configuration.

    Attributes:
        url: Base URL without trailing slash.
        username: Login user for /api/v1/login/access-token.
        password: Login password.
        auth_scheme: How the token is attached to requests:
                     "bearer", "x-api-token" or "query-token".
        rate_limit_per_sec: Requests per second (also the burst size).
        max_retries: Retries after the first subscribe attempt.
        dry_run: If True, subscriptions are simulated, never sent.
        tv_episode_mode: "season" (one subscription per season) or
                         "episode" (one per season with explicit episodes).
        token_refresh_hours: Age after which the cached token is refreshed.
    """
    url: str
    username: str
    password: str
    auth_scheme: str
    rate_limit_per_sec: int
    max_retries: int
    dry_run: bool
    tv_episode_mode: str
    token_refresh_hours: int


@dataclass(frozen=True)
class TMDBConfig:
    """Optional TMDB key used when the request source returns no poster."""
    api_key: str | None


@dataclass(frozen=True)
class StoreConfig:
    """Location of the SQLite ledger."""
    path: Path


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync pipeline scheduling.

    Attributes:
        interval: Minutes between two sync passes in daemon mode.
    """
    interval: int


@dataclass(frozen=True)
class TelegramConfig:
    """
    Telegram notification channel.

    Attributes:
        enabled: Master switch. When False no message is ever sent.
        bot_token: Bot API token from @BotFather.
        chat_ids: Numeric chat ids or @channel usernames.
    """
    enabled: bool
    bot_token: str | None
    chat_ids: tuple[str, ...]


@dataclass(frozen=True)
class TrackerConfig:
    """
    Tracking reconciler settings.

    Attributes:
        enabled: Whether the tracker threads are started in daemon mode.
        check_interval: Minutes between two history polls.
        sse_enabled: Whether to also listen to the backend message stream.
    """
    enabled: bool
    check_interval: int
    sse_enabled: bool


@dataclass(frozen=True)
class ReportConfig:
    """Daily report settings. `time` is local wall-clock "HH:MM"."""
    enabled: bool
    time: str


@dataclass(frozen=True)
class LogConfig:
    """Log level name and the directory that receives the logs/ folder."""
    level: str
    directory: Path


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Syncing {config.jellyseerr.url} -> {config.moviepilot.url}")
        print(f"Every {config.sync.interval} minutes")
    """
    jellyseerr: JellyseerrConfig
    moviepilot: MoviePilotConfig
    tmdb: TMDBConfig
    store: StoreConfig
    sync: SyncConfig
    telegram: TelegramConfig
    tracker: TrackerConfig
    report: ReportConfig
    log: LogConfig

    def masked(self) -> dict[str, Any]:
        """
        Return a flat dictionary of settings with secrets masked.

        Used for the startup log line. Passwords, API keys and tokens
        go through mask_string().
        """
        return {
            "jelly_url": self.jellyseerr.url,
            "jelly_api_key": mask_string(self.jellyseerr.api_key),
            "jelly_page_size": self.jellyseerr.page_size,
            "mp_url": self.moviepilot.url,
            "mp_username": self.moviepilot.username,
            "mp_password": mask_string(self.moviepilot.password),
            "mp_auth_scheme": self.moviepilot.auth_scheme,
            "mp_rate_limit_per_sec": self.moviepilot.rate_limit_per_sec,
            "mp_dry_run": self.moviepilot.dry_run,
            "mp_tv_episode_mode": self.moviepilot.tv_episode_mode,
            "max_retries": self.moviepilot.max_retries,
            "tmdb_api_key": mask_string(self.tmdb.api_key or ""),
            "store_path": str(self.store.path),
            "sync_interval": self.sync.interval,
            "telegram_enabled": self.telegram.enabled,
            "telegram_bot_token": mask_string(self.telegram.bot_token or ""),
            "tracker_enabled": self.tracker.enabled,
            "report_enabled": self.report.enabled,
            "log_level": self.log.level,
        }


def mask_string(value: str) -> str:
    """
    Mask a secret for display.

    Keeps the first and last four characters of values longer than
    eight characters; shorter values are fully hidden.

    Examples:
        mask_string("abcdefghijkl")  # "abcd****ijkl"
        mask_string("short")         # "****"
        mask_string("")              # ""
    """
    if not value:
        return ""
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}****{value[-4:]}"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working
                     directory; a missing default file is not an error.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If an explicit config file is not found, has invalid
                     YAML syntax, or the merged values are missing required
                     fields or contain invalid values.

    Behavior:
        1. Load .env into the process environment (existing vars win)
        2. Read the YAML file if present
        3. Apply environment variable overrides
        4. Parse and validate each section, applying defaults
        5. Return frozen Config object

    Thread Safety:
        This function is NOT thread-safe. It should be called once at
        application startup, before any threads are created.
    """
    load_dotenv(find_dotenv(usecwd=True))

    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    _apply_env_overrides(raw_config)

    return Config(
        jellyseerr=_parse_jellyseerr_config(raw_config.get("jellyseerr") or {}),
        moviepilot=_parse_moviepilot_config(raw_config.get("moviepilot") or {}),
        tmdb=TMDBConfig(api_key=_optional_str(raw_config.get("tmdb") or {}, "api_key")),
        store=_parse_store_config(raw_config.get("store") or {}),
        sync=SyncConfig(
            interval=_positive_int(raw_config.get("sync") or {}, "sync", "interval", 5)
        ),
        telegram=_parse_telegram_config(raw_config.get("telegram") or {}),
        tracker=_parse_tracker_config(raw_config.get("tracker") or {}),
        report=_parse_report_config(raw_config.get("report") or {}),
        log=_parse_log_config(raw_config.get("log") or {}),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """Read and parse the YAML file into a dictionary of sections."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    # Empty file
    if raw_config is None:
        return {}

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    for section, value in raw_config.items():
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    return raw_config


def _apply_env_overrides(raw_config: dict[str, Any]) -> None:
    """
    Overlay environment variables onto the raw configuration in place.

    Empty environment values are ignored. Values stay strings here and
    are coerced by the section parsers.
    """
    for (section, key), env_var in _ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is None or value.strip() == "":
            continue
        if raw_config.get(section) is None:
            raw_config[section] = {}
        raw_config[section][key] = value.strip()


def _required_str(section: dict[str, Any], section_name: str, key: str, env_var: str) -> str:
    value = section.get(key)
    if value is None or not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"'{section_name}.{key}' is required (or set {env_var})",
            details={"field": f"{section_name}.{key}", "env_var": env_var}
        )
    return value.strip()


def _optional_str(section: dict[str, Any], key: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _positive_int(section: dict[str, Any], section_name: str, key: str, default: int) -> int:
    raw = section.get(key)
    if raw is None:
        return default

    # bool is an int subclass; "true" is never a valid count
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = None

    if value is None or value < 1:
        raise ConfigError(
            f"'{section_name}.{key}' must be a positive integer",
            details={"field": f"{section_name}.{key}", "value": raw}
        )
    return value


def _non_negative_int(section: dict[str, Any], section_name: str, key: str, default: int) -> int:
    raw = section.get(key)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip()) if not isinstance(raw, bool) else -1
    except ValueError:
        value = -1
    if value < 0:
        raise ConfigError(
            f"'{section_name}.{key}' must be a non-negative integer",
            details={"field": f"{section_name}.{key}", "value": raw}
        )
    return value


def _bool(section: dict[str, Any], section_name: str, key: str, default: bool) -> bool:
    raw = section.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise ConfigError(
        f"'{section_name}.{key}' must be a boolean",
        details={"field": f"{section_name}.{key}", "value": raw}
    )


def _choice(
    section: dict[str, Any],
    section_name: str,
    key: str,
    choices: tuple[str, ...],
    default: str
) -> str:
    raw = section.get(key)
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value not in choices:
        raise ConfigError(
            f"'{section_name}.{key}' must be one of: {', '.join(choices)}",
            details={"field": f"{section_name}.{key}", "value": raw}
        )
    return value


def _parse_jellyseerr_config(section: dict[str, Any]) -> JellyseerrConfig:
    """
    Parse the request source section.

    Raises:
        ConfigError: If url or api_key is missing, or page_size invalid.
    """
    url = _required_str(section, "jellyseerr", "url", "JELLY_URL").rstrip("/")
    api_key = _required_str(section, "jellyseerr", "api_key", "JELLY_API_KEY")

    return JellyseerrConfig(
        url=url,
        api_key=api_key,
        filter=_optional_str(section, "filter") or "approved",
        page_size=_positive_int(section, "jellyseerr", "page_size", 50),
    )


def _parse_moviepilot_config(section: dict[str, Any]) -> MoviePilotConfig:
    """
    Parse the backend section.

    Raises:
        ConfigError: If url/username/password are missing, or auth_scheme,
                     tv_episode_mode or the numeric settings are invalid.
    """
    return MoviePilotConfig(
        url=_required_str(section, "moviepilot", "url", "MP_URL").rstrip("/"),
        username=_required_str(section, "moviepilot", "username", "MP_USERNAME"),
        password=_required_str(section, "moviepilot", "password", "MP_PASSWORD"),
        auth_scheme=_choice(section, "moviepilot", "auth_scheme", AUTH_SCHEMES, "bearer"),
        rate_limit_per_sec=_positive_int(section, "moviepilot", "rate_limit_per_sec", 3),
        max_retries=_non_negative_int(section, "moviepilot", "max_retries", 3),
        dry_run=_bool(section, "moviepilot", "dry_run", False),
        tv_episode_mode=_choice(
            section, "moviepilot", "tv_episode_mode", TV_EPISODE_MODES, "season"
        ),
        token_refresh_hours=_positive_int(section, "moviepilot", "token_refresh_hours", 24),
    )


def _parse_store_config(section: dict[str, Any]) -> StoreConfig:
    raw = _optional_str(section, "path") or "./data/syncer.db"
    return StoreConfig(path=Path(raw).expanduser().resolve())


def _parse_telegram_config(section: dict[str, Any]) -> TelegramConfig:
    """
    Parse the Telegram section.

    chat_ids may be a YAML list or a comma-separated string (environment).

    Raises:
        ConfigError: If enabled without bot_token or chat_ids.
    """
    enabled = _bool(section, "telegram", "enabled", False)
    bot_token = _optional_str(section, "bot_token")

    raw_ids = section.get("chat_ids") or []
    if isinstance(raw_ids, str):
        raw_ids = raw_ids.split(",")
    elif isinstance(raw_ids, (int, float)):
        raw_ids = [raw_ids]
    chat_ids = tuple(str(chat_id).strip() for chat_id in raw_ids if str(chat_id).strip())

    if enabled and not bot_token:
        raise ConfigError(
            "'telegram.bot_token' is required when Telegram is enabled",
            details={"field": "telegram.bot_token", "env_var": "TELEGRAM_BOT_TOKEN"}
        )
    if enabled and not chat_ids:
        raise ConfigError(
            "'telegram.chat_ids' is required when Telegram is enabled",
            details={"field": "telegram.chat_ids", "env_var": "TELEGRAM_CHAT_IDS"}
        )

    return TelegramConfig(enabled=enabled, bot_token=bot_token, chat_ids=chat_ids)


def _parse_tracker_config(section: dict[str, Any]) -> TrackerConfig:
    return TrackerConfig(
        enabled=_bool(section, "tracker", "enabled", True),
        check_interval=_positive_int(section, "tracker", "check_interval", 5),
        sse_enabled=_bool(section, "tracker", "sse_enabled", True),
    )


def _parse_report_config(section: dict[str, Any]) -> ReportConfig:
    """
    Parse the daily report section.

    Raises:
        ConfigError: If time is not a valid 24h "HH:MM" string.
    """
    report_time = _optional_str(section, "time") or "09:00"
    if not _REPORT_TIME_PATTERN.match(report_time):
        raise ConfigError(
            "'report.time' must use the HH:MM format",
            details={"field": "report.time", "value": report_time}
        )
    return ReportConfig(
        enabled=_bool(section, "report", "enabled", True),
        time=report_time,
    )


def _parse_log_config(section: dict[str, Any]) -> LogConfig:
    level = _choice(section, "log", "level", LOG_LEVELS, "info")
    directory = _optional_str(section, "directory") or "./data"
    return LogConfig(level=level, directory=Path(directory).expanduser().resolve())
