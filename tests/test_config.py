"""Tests for configuration loading"""

from pathlib import Path

import pytest

from conftest import CONFIG_ENV_VARS
from media_syncer.core.config import load_config, mask_string
from media_syncer.core.exceptions import ConfigError


REQUIRED_ENV = {
    "JELLY_URL": "http://jelly.local:5055/",
    "JELLY_API_KEY": "jelly-key",
    "MP_URL": "http://mp.local:3000",
    "MP_USERNAME": "admin",
    "MP_PASSWORD": "secret",
}


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Empty working directory and no configuration variables"""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def required_env(clean_env):
    for name, value in REQUIRED_ENV.items():
        clean_env.setenv(name, value)
    return clean_env


class TestLoadConfig:
    """load_config() from environment and YAML"""

    def test_defaults_from_environment(self, required_env):
        """Only the required variables are needed"""
        config = load_config()

        assert config.jellyseerr.url == "http://jelly.local:5055"
        assert config.jellyseerr.page_size == 50
        assert config.jellyseerr.filter == "approved"
        assert config.moviepilot.auth_scheme == "bearer"
        assert config.moviepilot.rate_limit_per_sec == 3
        assert config.moviepilot.max_retries == 3
        assert config.moviepilot.dry_run is False
        assert config.moviepilot.tv_episode_mode == "season"
        assert config.sync.interval == 5
        assert config.telegram.enabled is False
        assert config.tracker.enabled is True
        assert config.report.time == "09:00"
        assert config.store.path.name == "syncer.db"

    def test_missing_required_value(self, clean_env):
        """A missing URL names the environment variable"""
        with pytest.raises(ConfigError) as exc_info:
            load_config()
        assert "JELLY_URL" in exc_info.value.message

    def test_explicit_missing_file(self, required_env, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yaml")

    def test_yaml_file(self, clean_env, tmp_path):
        """Values are read from config.yaml in the working directory"""
        (tmp_path / "config.yaml").write_text(
            "jellyseerr:\n"
            "  url: http://j:5055\n"
            "  api_key: k\n"
            "moviepilot:\n"
            "  url: http://m:3000\n"
            "  username: u\n"
            "  password: p\n"
            "  tv_episode_mode: episode\n"
            "telegram:\n"
            "  enabled: true\n"
            "  bot_token: '123:abc'\n"
            "  chat_ids: [111, '@chan']\n",
            encoding="utf-8",
        )

        config = load_config()

        assert config.moviepilot.tv_episode_mode == "episode"
        assert config.telegram.enabled is True
        assert config.telegram.chat_ids == ("111", "@chan")

    def test_environment_overrides_yaml(self, required_env, tmp_path):
        (tmp_path / "config.yaml").write_text("sync:\n  interval: 30\n", encoding="utf-8")
        required_env.setenv("SYNC_INTERVAL", "10")
        required_env.setenv("MP_DRY_RUN", "true")
        required_env.setenv("TELEGRAM_CHAT_IDS", "1, 2")

        config = load_config()

        assert config.sync.interval == 10
        assert config.moviepilot.dry_run is True
        assert config.telegram.chat_ids == ("1", "2")

    def test_dotenv_file(self, clean_env, tmp_path):
        """A .env file in the working directory is loaded"""
        lines = [f"{name}={value}" for name, value in REQUIRED_ENV.items()]
        lines.append("MP_AUTH_SCHEME=x-api-token")
        (tmp_path / ".env").write_text("\n".join(lines) + "\n", encoding="utf-8")

        config = load_config()

        assert config.moviepilot.auth_scheme == "x-api-token"

    @pytest.mark.parametrize("name,value", [
        ("MP_AUTH_SCHEME", "basic"),
        ("MP_TV_EPISODE_MODE", "weekly"),
        ("SYNC_INTERVAL", "0"),
        ("JELLY_PAGE_SIZE", "many"),
        ("MAX_RETRIES", "-1"),
        ("MP_DRY_RUN", "maybe"),
        ("REPORT_TIME", "25:00"),
    ])
    def test_invalid_values(self, required_env, name, value):
        required_env.setenv(name, value)
        with pytest.raises(ConfigError):
            load_config()

    def test_telegram_enabled_without_token(self, required_env):
        required_env.setenv("TELEGRAM_ENABLED", "true")
        required_env.setenv("TELEGRAM_CHAT_IDS", "1")
        with pytest.raises(ConfigError):
            load_config()

    def test_invalid_yaml(self, required_env, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("jellyseerr: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_masked_hides_secrets(self, required_env):
        required_env.setenv("MP_PASSWORD", "a-very-long-password")

        masked = load_config().masked()

        assert masked["mp_password"] == "a-ve****word"
        assert "a-very-long-password" not in str(masked)


class TestMaskString:
    def test_mask_string(self):
        assert mask_string("abcdefghijkl") == "abcd****ijkl"
        assert mask_string("short") == "****"
        assert mask_string("") == ""
