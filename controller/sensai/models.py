"""Data records shared by the state machine, storage, and the UI.

Field aliases are the keys used in the stored session documents
(``timer``, ``temperature``, ``music``, ``sensorHistory`` ...), so a record
round-trips through Firestore and the UI in the same shape. Python code
uses the snake_case names.
"""
from __future__ import annotations

import enum
import math
import time
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HeatLevel(str, enum.Enum):
    TOO_COLD = "Too cold"
    JUST_RIGHT = "Just right"
    TOO_HOT = "Too hot"


_HEAT_ALIASES = {
    "toocold": HeatLevel.TOO_COLD,
    "notenough": HeatLevel.TOO_COLD,
    "cold": HeatLevel.TOO_COLD,
    "justright": HeatLevel.JUST_RIGHT,
    "toohot": HeatLevel.TOO_HOT,
    "hot": HeatLevel.TOO_HOT,
}


def parse_heat(value: Any) -> HeatLevel:
    """Map free-form heat answers onto HeatLevel; unknown answers mean 'Just right'."""

    if isinstance(value, HeatLevel):
        return value
    key = "".join(ch for ch in str(value or "").lower() if ch.isalpha())
    return _HEAT_ALIASES.get(key, HeatLevel.JUST_RIGHT)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict using the stored (aliased) key names."""
        return self.model_dump(by_alias=True, mode="json")


class SaunaSettings(_Record):
    timer_minutes: int = Field(15, alias="timer", gt=0)
    temperature_celsius: int = Field(75, alias="temperature", ge=60, le=100)
    music_enabled: bool = Field(False, alias="music")


class SensorRecord(_Record):
    time: int = Field(default_factory=lambda: int(time.time()))
    temperature: float = Field(..., alias="temp")
    humidity: float


class SensorReading(_Record):
    """One telemetry snapshot from the hardware API."""

    temperature: float
    humidity: float
    presence: bool = False
    timestamp: Optional[float] = None

    def to_record(self) -> SensorRecord:
        when = int(self.timestamp) if self.timestamp else int(time.time())
        return SensorRecord(time=when, temperature=round(self.temperature), humidity=round(self.humidity))


class FeedbackDraft(_Record):
    rating: int = 5
    heat: HeatLevel = HeatLevel.JUST_RIGHT
    oil: str = ""
    thoughts: str = ""
    recommendations_requested: bool = Field(False, alias="recommendations")
    show_stats: bool = Field(True, alias="showStats")

    @field_validator("rating", mode="before")
    @classmethod
    def _clamp_rating(cls, value: object) -> int:
        try:
            rating = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 5
        if math.isnan(rating):
            return 5
        # clamp before int() so +/-inf lands on the bounds
        return int(min(10.0, max(1.0, rating)))

    @field_validator("heat", mode="before")
    @classmethod
    def _parse_heat(cls, value: object) -> HeatLevel:
        return parse_heat(value)

    @field_validator("oil", "thoughts", mode="before")
    @classmethod
    def _text(cls, value: object) -> str:
        return "" if value is None else str(value).strip()


class SessionData(FeedbackDraft, SaunaSettings):
    """One completed sauna session as persisted; never modified after creation."""

    sensor_history: List[SensorRecord] = Field(default_factory=list, alias="sensorHistory")
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def compose(
        cls,
        settings: SaunaSettings,
        draft: FeedbackDraft,
        sensor_history: List[SensorRecord],
        *,
        timestamp: Optional[int] = None,
    ) -> "SessionData":
        fields: dict[str, Any] = {**settings.model_dump(), **draft.model_dump()}
        fields["sensor_history"] = list(sensor_history)
        if timestamp is not None:
            fields["timestamp"] = timestamp
        return cls(**fields)

    @property
    def settings(self) -> SaunaSettings:
        return SaunaSettings(
            timer_minutes=self.timer_minutes,
            temperature_celsius=self.temperature_celsius,
            music_enabled=self.music_enabled,
        )


class Stats(_Record):
    total_sessions: int = Field(0, alias="totalSessions")
    avg_rating: float = Field(0.0, alias="avgRating")
    last_session: Optional[SessionData] = Field(None, alias="lastSession")
    last_recommendation: Optional[str] = Field(None, alias="lastRecommendation")


__all__ = [
    "FeedbackDraft",
    "HeatLevel",
    "SaunaSettings",
    "SensorReading",
    "SensorRecord",
    "SessionData",
    "Stats",
    "parse_heat",
]
