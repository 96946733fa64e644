"""Test configuration and fixtures"""

import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from media_syncer.core.config import (
    Config,
    JellyseerrConfig,
    LogConfig,
    MoviePilotConfig,
    ReportConfig,
    StoreConfig,
    SyncConfig,
    TelegramConfig,
    TMDBConfig,
    TrackerConfig,
)
from media_syncer.core.database import Database
from media_syncer.core.models import MediaType, Request, TrackingRecord, TrackingStatus


# Environment variables read by load_config(); cleared for config tests
CONFIG_ENV_VARS = (
    "JELLY_URL", "JELLY_API_KEY", "JELLY_FILTER", "JELLY_PAGE_SIZE",
    "MP_URL", "MP_USERNAME", "MP_PASSWORD", "MP_AUTH_SCHEME",
    "MP_RATE_LIMIT_PER_SEC", "MAX_RETRIES", "MP_DRY_RUN",
    "MP_TV_EPISODE_MODE", "MP_TOKEN_REFRESH_HOURS", "TMDB_API_KEY",
    "STORE_PATH", "SYNC_INTERVAL", "TELEGRAM_ENABLED", "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_IDS", "TRACKER_ENABLED", "TRACKER_CHECK_INTERVAL",
    "TRACKER_SSE_ENABLED", "REPORT_ENABLED", "REPORT_TIME", "LOG_LEVEL", "LOG_DIR",
)


def make_response(status_code=200, json_data=None, text=""):
    """Build a fake requests.Response"""
    response = Mock()
    response.status_code = status_code
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


def make_moviepilot_config(**overrides) -> MoviePilotConfig:
    values = {
        "url": "http://mp.local:3000",
        "username": "admin",
        "password": "secret-password",
        "auth_scheme": "bearer",
        "rate_limit_per_sec": 100,
        "max_retries": 3,
        "dry_run": False,
        "tv_episode_mode": "season",
        "token_refresh_hours": 24,
    }
    values.update(overrides)
    return MoviePilotConfig(**values)


def make_config(tmp_path: Path, **moviepilot_overrides) -> Config:
    return Config(
        jellyseerr=JellyseerrConfig(
            url="http://jelly.local:5055",
            api_key="jelly-api-key-123456",
            filter="approved",
            page_size=50,
        ),
        moviepilot=make_moviepilot_config(**moviepilot_overrides),
        tmdb=TMDBConfig(api_key=None),
        store=StoreConfig(path=tmp_path / "syncer.db"),
        sync=SyncConfig(interval=5),
        telegram=TelegramConfig(enabled=False, bot_token=None, chat_ids=()),
        tracker=TrackerConfig(enabled=True, check_interval=5, sse_enabled=False),
        report=ReportConfig(enabled=False, time="09:00"),
        log=LogConfig(level="info", directory=tmp_path),
    )


@pytest.fixture
def temp_dir(tmp_path):
    """Temporary directory for tests"""
    return tmp_path


@pytest.fixture
def database(tmp_path):
    """Fresh ledger in a temporary directory"""
    db = Database(tmp_path / "syncer.db")
    yield db
    db.close()


@pytest.fixture
def config(tmp_path):
    """Complete configuration with test values"""
    return make_config(tmp_path)


@pytest.fixture
def cancel_event():
    return threading.Event()


@pytest.fixture
def sample_movie():
    """A pending movie request"""
    return Request(
        source_request_id="1",
        media_type=MediaType.MOVIE,
        tmdb_id=438631,
        title="Dune",
        poster_path="/dune.jpg",
        requested_at="2024-05-01T10:00:00+00:00",
    )


@pytest.fixture
def sample_show():
    """A pending tv request for three seasons"""
    return Request(
        source_request_id="2",
        media_type=MediaType.TV,
        tmdb_id=1399,
        title="Game of Thrones",
        seasons=(1, 2, 3),
        requested_at="2024-05-02T10:00:00+00:00",
    )


@pytest.fixture
def subscribed_record(database, sample_movie):
    """Movie request with a tracking record in 'subscribed'"""
    database.save_request(sample_movie)
    record = TrackingRecord(
        source_request_id=sample_movie.source_request_id,
        tmdb_id=sample_movie.tmdb_id,
        title=sample_movie.title,
        media_type=sample_movie.media_type,
        status=TrackingStatus.SUBSCRIBED,
        subscribe_time="2024-05-01T10:05:00+00:00",
    )
    database.save_tracking(record)
    return record
