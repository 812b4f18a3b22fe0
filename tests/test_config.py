"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from bacpac_imagegen.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.tmp_dir is None
        assert settings.log_level == "INFO"
        assert settings.log_format == "text"
        assert settings.build_engine == "docker"
        assert settings.mount_path == "/var/opt/mssql/scripts"
        assert settings.startup_grace_seconds == 15
        assert settings.artifact_extensions == [".bacpac"]
        assert settings.script_extensions == [".sql"]
        assert settings.allow_insecure_default_secret is False
        assert settings.publish_max_attempts == 3
        assert settings.publish_backoff_base == 2
        assert settings.publish_backoff_unit == 5.0
        assert settings.sas_expiry_minutes == 60
        assert settings.build_timeout == 3600

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "BACPAC_IMG_LOG_LEVEL": "DEBUG",
                "BACPAC_IMG_BUILD_ENGINE": "podman",
                "BACPAC_IMG_PUBLISH_MAX_ATTEMPTS": "5",
                "BACPAC_IMG_TMP_DIR": "/tmp/bacpac-test",
            },
        ):
            settings = Settings(_env_file=None)

        assert settings.log_level == "DEBUG"
        assert settings.build_engine == "podman"
        assert settings.publish_max_attempts == 5
        assert settings.tmp_dir == Path("/tmp/bacpac-test")

    def test_list_settings_from_env_json(self) -> None:
        """List settings should accept JSON arrays from the environment."""
        with patch.dict(
            os.environ,
            {"BACPAC_IMG_ARTIFACT_EXTENSIONS": '[".bacpac", ".bin"]'},
        ):
            settings = Settings(_env_file=None)

        assert settings.artifact_extensions == [".bacpac", ".bin"]

    def test_max_attempts_bounds(self) -> None:
        """Publish attempts outside 1..10 should be rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, publish_max_attempts=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, publish_max_attempts=11)

    def test_invalid_log_level(self) -> None:
        """Unknown log levels should be rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="CHATTY")

    def test_secret_is_not_a_setting(self) -> None:
        """The database secret should never be part of settings."""
        with patch.dict(os.environ, {"BACPAC_IMG_SECRET": "S3cret!"}):
            settings = Settings(_env_file=None)

        assert "S3cret!" not in settings.model_dump_json()


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings_instance(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_returns_valid_json(self) -> None:
        """print_settings_json should return valid JSON."""
        data = json.loads(print_settings_json(Settings(_env_file=None)))

        assert data["build_engine"] == "docker"
        assert data["publish_max_attempts"] == 3
        assert "mount_path" in data
