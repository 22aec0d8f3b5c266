"""Tests for the CLI module."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from flipmode_sync.cli import ConfigManager, apply_cli_overrides, main, prompt_answer, setup_logging
from flipmode_sync.config import DEFAULTS
from flipmode_sync.errors import DomainError, SubmissionFailed
from flipmode_sync.jobs import PollReport
from flipmode_sync.reconcile import SyncReport


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def mock_app():
    """FlipmodeApp replaced by a mock; config loading returns nothing."""
    with patch("flipmode_sync.cli.ConfigManager.load", return_value={}):
        with patch("flipmode_sync.cli.FlipmodeApp") as app_class:
            yield app_class.return_value


class TestConfigManager:
    """Test ConfigManager class."""

    def test_get_xdg_config_home_env_set(self):
        """Test XDG_CONFIG_HOME when environment variable is set."""
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": "/custom/config"}):
            assert ConfigManager.get_xdg_config_home() == Path("/custom/config")

    def test_get_xdg_config_home_default(self):
        """Test XDG_CONFIG_HOME default fallback."""
        with patch.dict(os.environ, {}, clear=True):
            assert ConfigManager.get_xdg_config_home() == Path.home() / ".config"

    def test_get_xdg_config_dirs(self):
        """Test XDG_CONFIG_DIRS when environment variable is set."""
        with patch.dict(os.environ, {"XDG_CONFIG_DIRS": "/etc/xdg:/usr/local/etc"}):
            assert ConfigManager.get_xdg_config_dirs() == [Path("/etc/xdg"), Path("/usr/local/etc")]

    def test_search_paths_use_app_directory(self):
        """Test config search order under the flipmode directory."""
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": "/cfg", "XDG_CONFIG_DIRS": "/etc/xdg"}):
            paths = ConfigManager.search_paths("config")

        assert paths[0] == Path("/cfg/flipmode/config.yaml")
        assert paths[1] == Path("/etc/xdg/flipmode/config.yaml")
        assert paths[-1] == Path.home() / ".flipmode" / "config.yaml"

    def test_find_config_explicit_path(self, tmp_path):
        """Test finding config with explicit path."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"athlete_token": "tok"}))

        assert ConfigManager.find_config("config", str(config_file)) == {"athlete_token": "tok"}

    def test_find_config_explicit_path_missing(self, tmp_path):
        """Test finding config with explicit path that doesn't exist."""
        assert ConfigManager.find_config("config", str(tmp_path / "missing.yaml")) is None

    def test_find_config_in_xdg_home(self, tmp_path):
        """Test config discovery in XDG_CONFIG_HOME."""
        config_dir = tmp_path / "flipmode"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(yaml.dump({"sync_folder": "BJJ"}))

        with patch.object(ConfigManager, "get_xdg_config_home", return_value=tmp_path):
            assert ConfigManager.find_config("config") == {"sync_folder": "BJJ"}

    def test_load_yaml_empty_file(self, tmp_path):
        """Test loading an empty YAML file."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert ConfigManager.load_yaml(config_file) == {}

    def test_load_yaml_invalid(self, tmp_path):
        """Test loading invalid YAML file."""
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("key: [unclosed")

        assert ConfigManager.load_yaml(config_file) is None

    def test_merge_configs_is_deep(self):
        """Test configuration merging leaves the base untouched."""
        base = {"a": 1, "nested": {"x": 1, "y": 2}}

        result = ConfigManager.merge_configs(base, {"nested": {"y": 3}})

        assert result == {"a": 1, "nested": {"x": 1, "y": 3}}
        assert base["nested"]["y"] == 2

    def test_load_layers_over_defaults(self, tmp_path):
        """Test loaded config is layered over the defaults."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"poll_interval": 30}))

        config = ConfigManager.load(str(config_file))

        assert config["poll_interval"] == 30
        assert config["sync_folder"] == DEFAULTS["sync_folder"]


class TestHelpers:
    """Test logging setup and CLI overrides."""

    def test_setup_logging_levels(self):
        """Test normal and verbose logging setup."""
        with patch("flipmode_sync.cli.logging.basicConfig") as basic_config:
            setup_logging(verbose=True)
            assert basic_config.call_args.kwargs["level"] == 10

            setup_logging(verbose=False)
            assert basic_config.call_args.kwargs["level"] == 20

    def test_apply_cli_overrides_ignores_none(self):
        """Test CLI overrides with None values are ignored."""
        config = apply_cli_overrides({"vault": "a", "sync_folder": "F"}, vault="b", sync_folder=None)

        assert config == {"vault": "b", "sync_folder": "F"}


class TestCommands:
    """Test CLI commands against a mocked app."""

    def test_help(self, runner):
        """Test the top-level help text."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Flipmode" in result.output

    def test_submit(self, runner, mock_app):
        """Test submitting a query to the coach."""
        mock_app.manager.submit = AsyncMock(return_value="job-1")

        result = runner.invoke(main, ["submit", "knee slice"])

        assert result.exit_code == 0
        assert "Job job-1" in result.output
        mock_app.manager.submit.assert_awaited_once_with("knee slice")

    def test_submit_failure_exits_nonzero(self, runner, mock_app):
        """Test a failed submission exits with code 1."""
        mock_app.manager.submit = AsyncMock(side_effect=SubmissionFailed("Failed to send query"))

        result = runner.invoke(main, ["submit", "knee slice"])

        assert result.exit_code == 1
        assert "Failed to send query" in result.output

    def test_submit_local(self, runner, mock_app):
        """--local researches without the coach and prints the saved path."""
        mock_app.local_research.research = AsyncMock(return_value="Flipmode/Research/2026-10-16 - knee slice.md")

        result = runner.invoke(main, ["submit", "--local", "knee slice"])

        assert result.exit_code == 0
        assert "Saved to Flipmode/Research/2026-10-16 - knee slice.md" in result.output
        mock_app.local_research.research.assert_awaited_once_with("knee slice")
        mock_app.manager.submit.assert_not_called()

    def test_voice(self, runner, mock_app, tmp_path):
        """The recording's bytes go to the capture flow."""
        audio = tmp_path / "note.webm"
        audio.write_bytes(b"webm audio")
        mock_app.capture.run_audio = AsyncMock(return_value="job-3")

        result = runner.invoke(main, ["voice", str(audio)])

        assert result.exit_code == 0
        assert "Job job-3" in result.output
        mock_app.capture.run_audio.assert_awaited_once_with(b"webm audio", prompt_answer)

    def test_voice_daily_limit(self, runner, mock_app, tmp_path):
        """A refused recording exits nonzero with the service message."""
        audio = tmp_path / "note.webm"
        audio.write_bytes(b"webm audio")
        mock_app.capture.run_audio = AsyncMock(side_effect=DomainError("You have used all your voice notes for today."))

        result = runner.invoke(main, ["voice", str(audio)])

        assert result.exit_code == 1
        assert "voice notes for today" in result.output

    def test_voice_missing_file(self, runner, mock_app, tmp_path):
        """A missing recording is a usage error."""
        result = runner.invoke(main, ["voice", str(tmp_path / "missing.webm")])

        assert result.exit_code == 2

    def test_voice_usage(self, runner, mock_app):
        """Remaining voice notes are shown against the daily limit."""
        mock_app.require_dialogue.return_value.voice_usage = AsyncMock(return_value={"remaining": 2, "limit": 5})

        result = runner.invoke(main, ["voice-usage"])

        assert result.exit_code == 0
        assert "2 of 5 voice notes left today" in result.output

    def test_health(self, runner, mock_app):
        """Test health command with a healthy service."""
        mock_app.health_client.return_value.check_health = AsyncMock(return_value=True)

        result = runner.invoke(main, ["health"])

        assert result.exit_code == 0
        assert "healthy" in result.output

    def test_health_unreachable(self, runner, mock_app):
        """Test health command with an unreachable service."""
        mock_app.health_client.return_value.check_health = AsyncMock(return_value=False)

        result = runner.invoke(main, ["health"])

        assert result.exit_code == 1

    def test_poll_once(self, runner, mock_app):
        """Test a single poll cycle and its summary."""
        mock_app.manager.restore = AsyncMock(return_value=1)
        mock_app.manager.poll = AsyncMock(
            return_value=PollReport(checked=2, materialized=["Flipmode/Research/a.md"], errors={"j2": "timeout"})
        )

        result = runner.invoke(main, ["poll", "--once"])

        assert result.exit_code == 0
        assert "Checked 2, saved 1, failed 0" in result.output
        assert "j2: timeout" in result.output
        mock_app.manager.restore.assert_awaited_once()

    def test_sync_without_token(self, runner, tmp_path):
        """Test athlete sync without a token configured."""
        with patch("flipmode_sync.cli.ConfigManager.load", return_value={}):
            result = runner.invoke(main, ["--vault", str(tmp_path / "vault"), "sync"])

        assert result.exit_code == 1
        assert "Remote mode not configured" in result.output

    def test_coach_sync_summary(self, runner, mock_app):
        """Test coach sync summary output."""
        mock_app.engine.coach_pull = AsyncMock(return_value=SyncReport(athletes=2, pending_created=3))

        result = runner.invoke(main, ["coach", "sync"])

        assert result.exit_code == 0
        assert "Synced 2 athletes, 3 new pending queries" in result.output

    def test_coach_stats(self, runner, mock_app):
        """Queue statistics are shown as a table."""
        mock_app.require_coach.return_value.get_stats = AsyncMock(return_value={"pending": 4, "complete": 9})

        result = runner.invoke(main, ["coach", "stats"])

        assert result.exit_code == 0
        assert "pending" in result.output
        assert "9" in result.output
