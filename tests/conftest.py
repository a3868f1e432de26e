"""
Pytest Configuration and Fixtures
=================================

Shared fixtures for the SensAI controller tests.

Fixtures:
    - make_settings: Settings factory with fast timers and unconfigured credentials
    - synthesizer: Fake speech synthesizer
    - feed: Manually driven sensor feed
    - store: In-memory session store
    - make_controller: ViewController factory wired to the fakes
    - make_session: SessionData factory
"""

import pytest

from sensai.coach import Coach
from sensai.config import FlowSettings, Settings
from sensai.controller import ViewController
from sensai.models import FeedbackDraft, SaunaSettings, SessionData
from sensai.storage import InMemorySessionStore

from tests.mocks import FakeSynthesizer, ManualSensorFeed


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests for individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Controller tests with fake collaborators"
    )


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def make_settings():
    """
    Provide a Settings factory.

    Timers are shortened so controller tests finish quickly; every
    credential keeps its placeholder so nothing reaches the network.
    """
    def _make(variant="classic", **flow_overrides):
        flow = {
            "variant": variant,
            "reveal_delay_seconds": 0.0,
            "countdown_tick_seconds": 0.0005,
            "heating_seconds": 0.0,
            "sensor_source": "simulated",
        }
        flow.update(flow_overrides)
        return Settings(_env_file=None, flow=FlowSettings(**flow))

    return _make


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def feed():
    return ManualSensorFeed()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def make_controller(make_settings, synthesizer, feed, store):
    """
    Provide a ViewController factory wired to the fake collaborators.

    Returns:
        Callable accepting ``variant``, optional ``coach`` and ``store``
        overrides, and flow setting overrides.
    """
    def _make(variant="classic", coach=None, store_override=None, **flow_overrides):
        settings = make_settings(variant, **flow_overrides)
        return ViewController(
            settings=settings,
            store=store_override or store,
            feed=feed,
            coach=coach or Coach(),
            synthesizer=synthesizer,
            harvia=None,
        )

    return _make


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def make_session():
    """Provide a SessionData factory with sensible defaults."""
    counter = {"ts": 1_700_000_000_000}

    def _make(timer=15, temperature=75, music=False, rating=8, heat="Just right", oil="", **extra):
        counter["ts"] += 1
        settings = SaunaSettings(timer_minutes=timer, temperature_celsius=temperature, music_enabled=music)
        draft = FeedbackDraft(rating=rating, heat=heat, oil=oil, **extra)
        return SessionData.compose(settings, draft, [], timestamp=counter["ts"])

    return _make
