"""
Coach Tests
===========

Tests for the remote coach and its deterministic local fallbacks.
"""

import asyncio

import pytest

from sensai.coach import ONBOARDING_FALLBACK, Coach, local_intervention
from sensai.models import SaunaSettings, SensorRecord
from sensai.recommendation import build_recommendation

from tests.mocks import FakeChat


TARGET = SaunaSettings(timer_minutes=15, temperature_celsius=80)


class TestLocalIntervention:
    """Test the rule-based mid-session messages."""

    def test_overheating_speaks_up(self):
        text = local_intervention(TARGET, SensorRecord(temperature=86, humidity=30))
        assert "86°C" in text
        assert "80°C target" in text

    def test_within_margin_is_silent(self):
        assert local_intervention(TARGET, SensorRecord(temperature=85, humidity=30)) == ""

    def test_humid_air_speaks_up(self):
        assert "humid" in local_intervention(TARGET, SensorRecord(temperature=80, humidity=60))


class TestCoachFallbacks:
    """Test that every coroutine answers even without a working delegate."""

    @pytest.mark.asyncio
    async def test_no_delegate_uses_local_rules(self, make_session):
        coach = Coach()
        session = make_session(rating=8, oil="eucalyptus")

        assert coach.remote_enabled is False
        assert await coach.onboarding_advice() == ONBOARDING_FALLBACK
        assert await coach.session_recommendation(session) == build_recommendation(session)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chat", [FakeChat(error=RuntimeError("timeout")), FakeChat(reply=None)])
    async def test_broken_delegate_falls_back(self, make_session, chat):
        coach = Coach(chat)
        session = make_session(rating=5, heat="Too cold")

        assert await coach.session_recommendation(session) == build_recommendation(session)
        assert await coach.onboarding_advice() == ONBOARDING_FALLBACK

    @pytest.mark.asyncio
    async def test_slow_delegate_times_out_to_local_rules(self, make_session):
        chat = FakeChat(reply="Too late to matter.", delay=1.0)
        coach = Coach(chat, reply_timeout=0.05)
        session = make_session(rating=8)
        loop = asyncio.get_running_loop()

        started = loop.time()
        text = await coach.session_recommendation(session)

        assert text == build_recommendation(session)
        assert loop.time() - started < 0.5
        assert len(chat.prompts) == 1

    @pytest.mark.asyncio
    async def test_bounds_reach_local_rules(self, make_session):
        coach = Coach(min_temperature=70, max_temperature=90)
        session = make_session(temperature=74, heat="Too hot")

        # 74 is within 5 of the raised floor, so it stays
        assert "74°C seems good" in await coach.session_recommendation(session)


class TestRemoteCoach:
    """Test prompts and replies through the delegate."""

    @pytest.mark.asyncio
    async def test_recommendation_prompt_carries_session_and_snapshot(self, make_session):
        chat = FakeChat(reply="Try 77°C for 20 minutes.")
        coach = Coach(chat)
        session = make_session(rating=6, oil="pine")

        text = await coach.session_recommendation(session, SensorRecord(temperature=74.6, humidity=22))

        assert text == "Try 77°C for 20 minutes."
        system_prompt, prompt = chat.prompts[0]
        assert "SensAI" in system_prompt
        assert "15 minutes at 75°C" in prompt
        assert "rated it 6/10" in prompt
        assert "75°C, 22% humidity" in prompt
        assert "between 60 and 100°C" in prompt

    @pytest.mark.asyncio
    async def test_goal_is_forwarded(self):
        chat = FakeChat()
        await Coach(chat).onboarding_advice(goal="better sleep")
        assert "better sleep" in chat.prompts[0][1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["NONE", "none.", " NONE "])
    async def test_no_intervention_reply_is_silent(self, reply):
        coach = Coach(FakeChat(reply=reply))
        assert await coach.intervention(TARGET, SensorRecord(temperature=95, humidity=30), 300) == ""

    @pytest.mark.asyncio
    async def test_intervention_reply_is_spoken(self):
        chat = FakeChat(reply="Time for a sip of water.")
        text = await Coach(chat).intervention(TARGET, SensorRecord(temperature=81, humidity=30), 420)

        assert text == "Time for a sip of water."
        assert "7 minutes in" in chat.prompts[0][1]

    @pytest.mark.asyncio
    async def test_aclose_closes_delegate(self):
        chat = FakeChat()
        await Coach(chat).aclose()
        assert chat.closed
