"""Tests for the command-line interface"""

import pytest
from click.testing import CliRunner

from conftest import CONFIG_ENV_VARS
from media_syncer import __version__
from media_syncer.cli import cli
from media_syncer.core.database import Database


@pytest.fixture
def runner(tmp_path, monkeypatch):
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return CliRunner()


class TestCli:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_configuration_exits_1(self, runner):
        """Without the required settings the run stops before any network call"""
        result = runner.invoke(cli, ["--once"])

        assert result.exit_code == 1

    def test_status(self, runner, tmp_path, monkeypatch, sample_movie):
        store = tmp_path / "ledger.db"
        database = Database(store)
        database.save_request(sample_movie)
        database.close()
        monkeypatch.setenv("JELLY_URL", "http://jelly.local:5055")
        monkeypatch.setenv("JELLY_API_KEY", "key")
        monkeypatch.setenv("MP_URL", "http://mp.local:3000")
        monkeypatch.setenv("MP_USERNAME", "admin")
        monkeypatch.setenv("MP_PASSWORD", "secret")
        monkeypatch.setenv("STORE_PATH", str(store))

        result = runner.invoke(cli, ["status", "--limit", "5"])

        assert result.exit_code == 0
        assert "Dune" in result.output
