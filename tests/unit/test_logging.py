"""Unit tests for logging helpers."""

import pytest
import structlog

from hiliner.utils.logging import sanitize_command, setup_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    """Restore structlog defaults after each test."""
    yield
    structlog.reset_defaults()


class TestSanitizeCommand:
    """Test secret masking in logged commands."""

    @pytest.mark.parametrize(
        "command, expected",
        [
            ("curl --token abc123 https://x", "curl --token *** https://x"),
            ("deploy password=hunter2 now", "deploy password=*** now"),
            ("tool --api-key=k3y", "tool --api-key=***"),
            ("ls -la", "ls -la"),
        ],
    )
    def test_masking(self, command, expected):
        assert sanitize_command(command) == expected


class TestSetupLogging:
    """Test structlog configuration."""

    @pytest.mark.parametrize("log_format", ["json", "plain"])
    def test_returns_logger(self, log_format):
        logger = setup_logging("DEBUG", log_format)

        logger.info("Logging configured", log_format=log_format)

    def test_unknown_level_falls_back(self):
        assert setup_logging("LOUD") is not None
