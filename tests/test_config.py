"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from stepflow.config import (
    AppConfig,
    LogLevel,
    get_config,
    get_testing_config,
    reset_config,
    validate_config,
)


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Test cases for AppConfig."""

    def test_defaults(self):
        config = AppConfig()

        assert config.max_iterations == 1000
        assert config.max_loop_iterations == 1000
        assert config.max_template_passes == 10
        assert config.record_history is True
        assert config.allow_back_edges is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STEPFLOW_PORT", "9100")
        monkeypatch.setenv("STEPFLOW_ALLOW_BACK_EDGES", "yes")
        monkeypatch.setenv("STEPFLOW_LOG_LEVEL", "debug")
        monkeypatch.setenv("STEPFLOW_HTTP_TIMEOUT", "2.5")

        config = get_config()

        assert config.port == 9100
        assert config.allow_back_edges is True
        assert config.log_level == LogLevel.DEBUG
        assert config.http_timeout == 2.5
        # the global instance is cached until reset
        assert get_config() is config

    def test_validators(self):
        with pytest.raises(ValidationError, match="Unsupported database scheme"):
            AppConfig(database_url="mongodb://localhost/db")
        with pytest.raises(ValidationError, match="Port must be between"):
            AppConfig(port=0)
        with pytest.raises(ValidationError, match="Limits must be at least 1"):
            AppConfig(max_loop_iterations=0)

    def test_uvicorn_config(self):
        config = get_testing_config()

        assert config.get_uvicorn_config()["log_level"] == "warning"

    def test_validate_creates_directories(self, tmp_path):
        config = AppConfig(
            database_url=f"sqlite:///{tmp_path}/data/history.db",
            log_file=str(tmp_path / "logs" / "stepflow.log"),
            workflows_dir=str(tmp_path)
        )

        validate_config(config)

        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "logs").is_dir()

    def test_validate_missing_workflows_dir(self, tmp_path):
        config = AppConfig(workflows_dir=str(tmp_path / "missing"))

        with pytest.raises(ValueError, match="Workflows directory does not exist"):
            validate_config(config)
