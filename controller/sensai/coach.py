"""Remote wellness coach with deterministic local fallbacks.

Every public coroutine returns usable text: when the chat delegate is not
configured, fails, or answers with nothing, the local rules answer instead.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .backend.chat import ChatCompletionClient
from .models import SaunaSettings, SensorRecord, SessionData
from .recommendation import build_recommendation
from .sensors.feed import HUMIDITY_CEILING

logger = logging.getLogger(__name__)

COACH_PERSONA = (
    "You are SensAI, a warm, calm and concise sauna wellness coach. "
    "Your words are read aloud, so answer in at most three short sentences, "
    "without lists, markdown or emoji. Never give medical diagnoses."
)

ONBOARDING_FALLBACK = (
    "Welcome to the sauna. Start gently with 10 to 15 minutes at around 75°C, "
    "drink water before and after, and step out whenever you feel dizzy."
)

NO_INTERVENTION = "NONE"

# degrees above target before the local rules speak up
OVERHEAT_MARGIN = 5


def local_intervention(settings: SaunaSettings, sample: SensorRecord) -> str:
    if sample.temperature > settings.temperature_celsius + OVERHEAT_MARGIN:
        return (
            f"It is {sample.temperature:.0f}°C in there, warmer than your {settings.temperature_celsius}°C target. "
            "Take a few slow breaths and sit lower on the bench if you need to."
        )
    if sample.humidity > HUMIDITY_CEILING + OVERHEAT_MARGIN:
        return "The air is getting quite humid. Breathe slowly and listen to your body."
    return ""


class Coach:
    """Recommendation delegate used by the view controller."""

    def __init__(
        self,
        chat: Optional[ChatCompletionClient] = None,
        *,
        min_temperature: int = 60,
        max_temperature: int = 100,
        reply_timeout: Optional[float] = None,
    ) -> None:
        self._chat = chat
        self._reply_timeout = reply_timeout
        self._bounds = {"min_temperature": min_temperature, "max_temperature": max_temperature}

    @property
    def remote_enabled(self) -> bool:
        return self._chat is not None

    async def onboarding_advice(self, goal: str = "") -> str:
        prompt = "A first-time sauna user is about to start. Give them a short, encouraging welcome and two practical tips."
        if goal:
            prompt += f" Their goal: {goal}."
        return await self._ask(prompt, ONBOARDING_FALLBACK, label="onboarding")

    async def session_recommendation(self, session: SessionData, snapshot: Optional[SensorRecord] = None) -> str:
        fallback = build_recommendation(session, **self._bounds)
        prompt = (
            f"The user just finished a sauna session: {session.timer_minutes} minutes at "
            f"{session.temperature_celsius}°C, music {'on' if session.music_enabled else 'off'}. "
            f"They rated it {session.rating}/10 and found the heat '{session.heat.value}'. "
            f"Oil used: {session.oil or 'none'}. Their thoughts: {session.thoughts or 'none'}. "
        )
        if snapshot is not None:
            prompt += f"Last sensor reading: {snapshot.temperature:.0f}°C, {snapshot.humidity:.0f}% humidity. "
        prompt += (
            f"Suggest settings for next time; keep the temperature between {self._bounds['min_temperature']} "
            f"and {self._bounds['max_temperature']}°C."
        )
        return await self._ask(prompt, fallback, label="recommendation")

    async def intervention(self, settings: SaunaSettings, sample: SensorRecord, elapsed_seconds: int) -> str:
        """Mid-session coach message; empty when nothing needs saying."""

        fallback = local_intervention(settings, sample)
        if self._chat is None:
            return fallback
        prompt = (
            f"Session target: {settings.temperature_celsius}°C for {settings.timer_minutes} minutes. "
            f"{elapsed_seconds // 60} minutes in, the sauna reads {sample.temperature:.0f}°C and "
            f"{sample.humidity:.0f}% humidity. If the user needs a short check-in or safety nudge, "
            f"write it; otherwise answer exactly {NO_INTERVENTION}."
        )
        text = await self._ask(prompt, fallback, label="intervention")
        if text.strip().upper().rstrip(".") == NO_INTERVENTION:
            return ""
        return text

    async def aclose(self) -> None:
        if self._chat is not None:
            await self._chat.aclose()

    async def _ask(self, prompt: str, fallback: str, *, label: str) -> str:
        if self._chat is None:
            return fallback
        try:
            text = await asyncio.wait_for(self._chat.complete(COACH_PERSONA, prompt), timeout=self._reply_timeout)
        except asyncio.TimeoutError:
            logger.warning("coach.%s: no reply within %.1fs, using local fallback", label, self._reply_timeout)
            return fallback
        except Exception as exc:
            logger.exception("coach.%s: delegate failed - %s", label, exc)
            return fallback
        if not text:
            logger.info("coach.%s: using local fallback", label)
            return fallback
        return text


__all__ = ["COACH_PERSONA", "Coach", "ONBOARDING_FALLBACK", "local_intervention"]
