"""Local recommendation engine.

Pure functions that turn a finished session into next-session advice. The
remote coach falls back to :func:`build_recommendation` whenever the
chat-completion delegate is unavailable, so everything here must stay
deterministic.
"""
from __future__ import annotations

from typing import Optional

from .models import HeatLevel, SessionData

BLOCKED_OIL_TERMS = ("shoe", "frog", "machine", "motor")

RELATED_OILS = {
    "eucalyptus": "Birch or Pine",
    "birch": "Pine or Cedar",
    "pine": "Birch or Juniper",
    "peppermint": "Eucalyptus or Spearmint",
    "lavender": "Chamomile or Bergamot",
}
DEFAULT_RELATED_OILS = "Birch or Pine"

MIN_TEMPERATURE = 60
MAX_TEMPERATURE = 100


def normalize_oil(oil: Optional[str]) -> Optional[str]:
    """Return the lowercased oil name, or None when it is absent, 'none', or blocked."""

    text = (oil or "").strip().lower()
    if not text or text == "none":
        return None
    if any(term in text for term in BLOCKED_OIL_TERMS):
        return None
    return text


def is_valid_oil(oil: Optional[str]) -> bool:
    return normalize_oil(oil) is not None


def related_oils(oil: str) -> str:
    for name, suggestion in RELATED_OILS.items():
        if name in oil:
            return suggestion
    return DEFAULT_RELATED_OILS


def suggest_temperature(
    heat: HeatLevel,
    temperature: int,
    rating: int,
    *,
    min_temperature: int = MIN_TEMPERATURE,
    max_temperature: int = MAX_TEMPERATURE,
) -> int:
    """Temperature to try next time; equal to ``temperature`` when it should stay.

    The 5 degree margins keep a +/-2 step inside [min_temperature, max_temperature].
    """

    if heat is HeatLevel.TOO_HOT and temperature > min_temperature + 5:
        return temperature - 2
    if heat is HeatLevel.TOO_COLD and temperature < max_temperature - 5:
        return temperature + 2
    if rating < 7 and temperature < max_temperature:
        return temperature + 1
    return temperature


def temperature_advice(session: SessionData, **bounds: int) -> str:
    temperature = session.temperature_celsius
    suggested = suggest_temperature(session.heat, temperature, session.rating, **bounds)
    if suggested == temperature:
        return f"the temperature of {temperature}°C seems good for you. "
    if suggested == temperature - 2:
        return f"try lowering the temperature to {suggested}°C. "
    if suggested == temperature + 2:
        return f"try increasing the temperature to {suggested}°C. "
    return f"let's adjust the temperature to {suggested}°C. "


def duration_advice(session: SessionData) -> str:
    if session.rating > 7:
        music = "with music" if session.music_enabled else "without music"
        return f"Your duration of {session.timer_minutes} minutes {music} was a great combination. "
    if session.timer_minutes < 20:
        return f"You might enjoy a slightly longer session of {session.timer_minutes + 5} minutes. "
    return ""


def oil_advice(session: SessionData) -> str:
    oil = normalize_oil(session.oil)
    if oil is not None:
        return f"Since you enjoyed {session.oil.strip()}, you might also like {related_oils(oil)}."
    if session.rating < 8:
        return "Consider adding a few drops of Eucalyptus or Peppermint oil to the water for a more refreshing experience."
    return ""


def build_recommendation(session: SessionData, **bounds: int) -> str:
    """Narratable advice for the next session."""

    text = "For your next session, " + temperature_advice(session, **bounds)
    text += duration_advice(session)
    text += oil_advice(session)
    return text.strip()


__all__ = [
    "BLOCKED_OIL_TERMS",
    "build_recommendation",
    "duration_advice",
    "is_valid_oil",
    "normalize_oil",
    "oil_advice",
    "related_oils",
    "suggest_temperature",
    "temperature_advice",
]
