"""
Configuration Tests
===================

Tests for environment-driven settings, credential placeholders, and the
logging bootstrap.
"""

import logging
import logging.handlers

import pytest

from sensai.config import Settings, is_configured
from sensai.controller import build_feed, build_store
from sensai.flow import FlowConfig
from sensai.logging_config import TRANSITIONS_LOGGER, configure_logging
from sensai.sensors.feed import RemoteSensorFeed, SimulatedSensorFeed
from sensai.state import FlowVariant, ViewName
from sensai.storage import FirestoreSessionStore, InMemorySessionStore


class TestPlaceholders:
    """Test detection of unconfigured credentials."""

    @pytest.mark.parametrize("value", [None, "", "   ", "your-gemini-api-key-here", "YOUR-KEY"])
    def test_unconfigured(self, value):
        assert is_configured(value) is False

    def test_real_value(self):
        assert is_configured("AIzaSyExample") is True

    def test_defaults_disable_every_remote_service(self):
        settings = Settings(_env_file=None)
        assert not settings.persistence_enabled
        assert not settings.hardware_enabled
        assert not settings.chat_enabled
        assert not settings.speech_enabled


class TestEnvironment:
    """Test nested environment variables."""

    def test_nested_delimiter(self, monkeypatch):
        monkeypatch.setenv("FLOW__VARIANT", "coached")
        monkeypatch.setenv("FLOW__COUNTDOWN_TICK_SECONDS", "0.5")
        monkeypatch.setenv("BOUNDS__NEWBIE_TEMPERATURE", "70")
        monkeypatch.setenv("LOG_LEVEL", " debug ")

        settings = Settings(_env_file=None)

        assert settings.flow.variant == "coached"
        assert settings.flow.countdown_tick_seconds == 0.5
        assert settings.log_level == "DEBUG"
        config = FlowConfig.from_settings(settings)
        assert config.variant is FlowVariant.COACHED
        assert config.newbie_temperature == 70
        assert config.initial_view is ViewName.START_POINT

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("FIREBASE__API_KEY=AIzaSyExample\nHARVIA__EMAIL=me@example.com\n")

        settings = Settings(_env_file=str(env_file))

        assert settings.persistence_enabled
        assert not settings.hardware_enabled


class TestWiring:
    """Test collaborator selection from settings."""

    def test_store_without_firebase_is_in_memory(self):
        assert isinstance(build_store(Settings(_env_file=None)), InMemorySessionStore)

    @pytest.mark.asyncio
    async def test_store_with_firebase_is_firestore(self, monkeypatch):
        monkeypatch.setenv("FIREBASE__API_KEY", "AIzaSyExample")
        store = build_store(Settings(_env_file=None))
        assert isinstance(store, FirestoreSessionStore)
        await store.stop()

    @pytest.mark.parametrize(
        "source,has_hardware,expected",
        [
            ("auto", False, SimulatedSensorFeed),
            ("auto", True, RemoteSensorFeed),
            ("remote", False, SimulatedSensorFeed),
            ("simulated", True, SimulatedSensorFeed),
        ],
    )
    def test_feed_selection(self, make_settings, source, has_hardware, expected):
        harvia = object() if has_hardware else None
        assert isinstance(build_feed(make_settings(sensor_source=source), harvia), expected)


class TestLogging:
    """Test the logging bootstrap."""

    @pytest.fixture
    def restore_logging(self):
        root = logging.getLogger()
        transitions = logging.getLogger(TRANSITIONS_LOGGER)
        previous = list(root.handlers)
        previous_level = root.level
        yield
        for logger in (root, transitions):
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        transitions.setLevel(logging.NOTSET)
        for handler in previous:
            root.addHandler(handler)
        root.setLevel(previous_level)

    def test_console_and_rotating_file(self, tmp_path, restore_logging):
        log_dir = configure_logging("warning", tmp_path / "logs", retention_days=3)

        root = logging.getLogger()
        rotating = [h for h in root.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].backupCount == 3
        assert rotating[0].baseFilename.endswith("sensai-runtime.log")
        assert log_dir == tmp_path / "logs"
        assert log_dir.is_dir()
        assert root.level == logging.WARNING

    def test_quiet_loggers_are_configurable(self, tmp_path, restore_logging):
        configure_logging("DEBUG", tmp_path, quiet_loggers=["noisy.vendor"])

        assert logging.getLogger("noisy.vendor").level == logging.WARNING

    def test_default_quiet_loggers(self, tmp_path, restore_logging):
        configure_logging("DEBUG", tmp_path)

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_transitions_recorded_below_runtime_level(self, tmp_path, restore_logging):
        configure_logging("WARNING", tmp_path, retention_days=5)

        transitions = logging.getLogger(TRANSITIONS_LOGGER)
        (handler,) = transitions.handlers
        assert isinstance(handler, logging.handlers.TimedRotatingFileHandler)
        assert handler.backupCount == 5

        transitions.info("welcome --choose_new_user--> new_user_onboarding (epoch 2)")
        logging.getLogger("sensai.controller").info("not an audit line")
        handler.flush()

        lines = (tmp_path / "sensai-transitions.log").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        assert lines[0].endswith("| welcome --choose_new_user--> new_user_onboarding (epoch 2)")
