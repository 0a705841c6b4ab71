"""Tests for the YAML configuration loader."""

import os
import textwrap
from unittest.mock import patch

import pytest

from wp_sync.config_yaml import build_environment, display, load_settings
from wp_sync.exceptions import ConfigError
from wp_sync.models import DEVELOPMENT, PRODUCTION

CONFIG = textwrap.dedent(
    """
    sync:
      min_interval_minutes: 10
      timeout: 120
    environments:
      production:
        transport: remote
        ssh_host: example.com
        ssh_user: deploy
        ssh_port: "2222"
        path: /var/www/example
        site_url: https://example.com/
        db_host: localhost
        db_name: wp
        db_user: wp
        db_pass: from-yaml
        table_prefix: wp_
      development:
        transport: local
        site_url: http://example.test
        db_host: 127.0.0.1
        db_name: wordpress
        db_user: wordpress
        db_pass: 1234
        table_prefix: wp_
    """
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "wp-sync.yaml"
    path.write_text(CONFIG)
    return path


class TestLoadSettings:
    """Test loading settings from YAML."""

    def test_load(self, config_file):
        """Test environments and sync settings are read."""
        settings = load_settings(str(config_file))

        assert set(settings.environments) == {PRODUCTION, DEVELOPMENT}
        assert settings.min_interval_seconds == 600
        assert settings.timeout == 120
        assert settings.marker_file == ".wp_sync_last"
        assert settings.serialized_aware is True
        assert settings.config_file == str(config_file)

    def test_types_converted(self, config_file):
        """Test ports become ints, passwords strings and URLs lose trailing slashes."""
        settings = load_settings(str(config_file))
        production = settings.environments[PRODUCTION]

        assert production.ssh_port == 2222
        assert production.db_port == 3306
        assert production.site_url == "https://example.com"
        assert production.is_remote
        assert settings.environments[DEVELOPMENT].db_pass == "1234"

    def test_env_file_overrides(self, config_file):
        """Test WP_SYNC_<ENV>_<FIELD> from .env replaces YAML values."""
        (config_file.parent / ".env").write_text("WP_SYNC_PRODUCTION_DB_PASS=from-dotenv\n")

        with patch.dict(os.environ):
            os.environ.pop("WP_SYNC_PRODUCTION_DB_PASS", None)
            settings = load_settings(str(config_file))

        assert settings.environments[PRODUCTION].db_pass == "from-dotenv"
        assert settings.secrets() == ["from-dotenv", "1234"]

    def test_process_environment_overrides(self, config_file, monkeypatch):
        """Test variables already in the environment win."""
        monkeypatch.setenv("WP_SYNC_DEVELOPMENT_SITE_URL", "http://other.test/")
        settings = load_settings(str(config_file))
        assert settings.environments[DEVELOPMENT].site_url == "http://other.test"

    def test_missing_file(self, tmp_path):
        """Test a missing config file."""
        with pytest.raises(ConfigError, match="not found"):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        """Test unparsable YAML."""
        path = tmp_path / "wp-sync.yaml"
        path.write_text("environments: [unclosed\n")
        with pytest.raises(ConfigError):
            load_settings(str(path))

    def test_no_environments(self, tmp_path):
        """Test a config without environments."""
        path = tmp_path / "wp-sync.yaml"
        path.write_text("sync:\n  timeout: 5\n")
        with pytest.raises(ConfigError, match="No environments"):
            load_settings(str(path))

    def test_unknown_environment(self, tmp_path):
        """Test environment names outside the fixed set."""
        path = tmp_path / "wp-sync.yaml"
        path.write_text("environments:\n  qa:\n    transport: local\n")
        with pytest.raises(ConfigError, match="Unknown environment 'qa'"):
            load_settings(str(path))

    def test_timeout_zero_disables(self, tmp_path):
        """Test timeout 0 means no timeout."""
        path = tmp_path / "wp-sync.yaml"
        path.write_text("sync:\n  timeout: 0\nenvironments:\n  development:\n    transport: local\n")
        assert load_settings(str(path)).timeout is None


class TestBuildEnvironment:
    """Test conversion of a raw mapping."""

    def test_invalid_transport(self):
        """Test only local and remote are accepted."""
        with pytest.raises(ConfigError, match="Invalid transport"):
            build_environment(PRODUCTION, {"transport": "ftp"})

    def test_invalid_port(self):
        """Test a non-numeric port."""
        with pytest.raises(ConfigError):
            build_environment(PRODUCTION, {"transport": "remote", "ssh_port": "ssh"})

    def test_auto_discover_flag(self):
        """Test string booleans from .env are understood."""
        env = build_environment(PRODUCTION, {"transport": "REMOTE", "auto_discover": "yes"})
        assert env.auto_discover is True
        assert env.transport == "remote"

    def test_missing_fields_left_unset(self):
        """Test required fields are not checked here."""
        env = build_environment(DEVELOPMENT, {})
        assert env.transport is None
        assert env.db_name is None


class TestDisplay:
    """Test the configuration summary."""

    def test_passwords_hidden(self, config_file, capsys):
        """Test passwords are never printed."""
        display(load_settings(str(config_file)))
        out = capsys.readouterr().out

        assert "from-yaml" not in out
        assert "https://example.com" in out
        assert "********" in out
