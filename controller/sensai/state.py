"""Shared controller state definitions for the SensAI companion."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Type, Union

from .models import FeedbackDraft, SaunaSettings, SensorRecord


class FlowVariant(str, enum.Enum):
    CLASSIC = "classic"
    COACHED = "coached"


class ViewName(str, enum.Enum):
    """
    Views of both flows.

    Classic (settings first):
        WELCOME -> NEW_USER_ONBOARDING | EXPERIMENT_SETTINGS | RECOMMENDED_SETTINGS
        -> SESSION_TIMER -> FEEDBACK_FORM -> STATS_DISPLAY | GOODBYE -> WELCOME

    Coached (conversational):
        START_POINT -> WELCOME_NARRATION -> TRANSITION -> FOLLOW_UP_QUESTION
        -> ONBOARDING_CHOICE -> NEWBIE_RECOMMENDATIONS | EXPERIENCED_GOAL_CAPTURE
        -> EXPERIENCED_SETTINGS -> SAUNA_READY -> GENERATING -> ACTIVE_SESSION
        -> POST_SESSION_PROMPT -> FEEDBACK_QUESTIONS -> ASK_SHOW_STATS
        -> ASK_RECOMMENDATIONS -> SHOW_STATS -> SHOW_RECOMMENDATIONS -> SUMMARY
        -> START_POINT
    """
    # classic
    WELCOME = "welcome"
    NEW_USER_ONBOARDING = "new_user_onboarding"
    EXPERIMENT_SETTINGS = "experiment_settings"
    RECOMMENDED_SETTINGS = "recommended_settings"
    SESSION_TIMER = "session_timer"
    FEEDBACK_FORM = "feedback_form"
    STATS_DISPLAY = "stats_display"
    GOODBYE = "goodbye"
    # coached
    START_POINT = "start_point"
    WELCOME_NARRATION = "welcome_narration"
    TRANSITION = "transition"
    FOLLOW_UP_QUESTION = "follow_up_question"
    ONBOARDING_CHOICE = "onboarding_choice"
    NEWBIE_RECOMMENDATIONS = "newbie_recommendations"
    EXPERIENCED_GOAL_CAPTURE = "experienced_goal_capture"
    EXPERIENCED_SETTINGS = "experienced_settings"
    SAUNA_READY = "sauna_ready"
    GENERATING = "generating"
    ACTIVE_SESSION = "active_session"
    POST_SESSION_PROMPT = "post_session_prompt"
    FEEDBACK_QUESTIONS = "feedback_questions"
    ASK_SHOW_STATS = "ask_show_stats"
    SHOW_STATS = "show_stats"
    ASK_RECOMMENDATIONS = "ask_recommendations"
    SHOW_RECOMMENDATIONS = "show_recommendations"
    SUMMARY = "summary"


class EventType(str, enum.Enum):
    # user actions
    BEGIN = "begin"
    CONTINUE = "continue"
    BACK = "back"
    CANCEL = "cancel"
    CHOOSE_NEW_USER = "choose_new_user"
    CHOOSE_EXPERIMENT = "choose_experiment"
    CHOOSE_RECOMMENDED = "choose_recommended"
    CHOOSE_EXPERIENCED = "choose_experienced"
    SUBMIT_SETTINGS = "submit_settings"
    SUBMIT_GOAL = "submit_goal"
    START = "start"
    END_EARLY = "end_early"
    SUBMIT_FEEDBACK = "submit_feedback"
    ANSWER = "answer"
    RESET_DATA = "reset_data"
    # controller-internal
    COUNTDOWN_EXPIRED = "countdown_expired"
    HEATING_DONE = "heating_done"
    ADVICE_READY = "advice_ready"


INTERNAL_EVENTS = frozenset({EventType.COUNTDOWN_EXPIRED, EventType.HEATING_DONE, EventType.ADVICE_READY})


# ============================================================
# Per-view payloads
# ============================================================

@dataclass(frozen=True)
class SessionPayload:
    """Settings the session screens run with."""

    settings: SaunaSettings


@dataclass(frozen=True)
class HistoryPayload:
    """Sensor history carried out of a finished (or abandoned) session."""

    settings: SaunaSettings
    sensor_history: Tuple[SensorRecord, ...] = ()


@dataclass(frozen=True)
class DraftPayload:
    """Feedback collected so far in the coached question sequence."""

    settings: SaunaSettings
    draft: FeedbackDraft
    sensor_history: Tuple[SensorRecord, ...] = ()


@dataclass(frozen=True)
class AdvicePayload:
    advice: Optional[str] = None


@dataclass(frozen=True)
class GoalPayload:
    goal: str = ""


@dataclass(frozen=True)
class SummaryPayload:
    """Whether the closing summary should read out the saved recommendation."""

    include_recommendation: bool = False


ViewPayload = Union[
    SessionPayload, HistoryPayload, DraftPayload, AdvicePayload, GoalPayload, SummaryPayload
]

PAYLOAD_TYPES: Dict[ViewName, Type[Any]] = {
    ViewName.SESSION_TIMER: SessionPayload,
    ViewName.SAUNA_READY: SessionPayload,
    ViewName.GENERATING: SessionPayload,
    ViewName.ACTIVE_SESSION: SessionPayload,
    ViewName.FEEDBACK_FORM: HistoryPayload,
    ViewName.POST_SESSION_PROMPT: HistoryPayload,
    ViewName.FEEDBACK_QUESTIONS: HistoryPayload,
    ViewName.ASK_SHOW_STATS: DraftPayload,
    ViewName.ASK_RECOMMENDATIONS: DraftPayload,
    ViewName.NEWBIE_RECOMMENDATIONS: AdvicePayload,
    ViewName.EXPERIENCED_SETTINGS: GoalPayload,
    ViewName.SUMMARY: SummaryPayload,
}

SESSION_VIEWS = frozenset({ViewName.SESSION_TIMER, ViewName.ACTIVE_SESSION})


@dataclass(frozen=True)
class ViewState:
    """Current screen plus the data it needs; replaced wholesale on every transition."""

    name: ViewName
    payload: Optional[ViewPayload] = None

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES.get(self.name)
        if expected is None:
            if self.payload is not None:
                raise ValueError(f"{self.name.value} takes no payload, got {type(self.payload).__name__}")
            return
        if not isinstance(self.payload, expected):
            raise ValueError(f"{self.name.value} requires {expected.__name__}, got {type(self.payload).__name__}")

    def describe(self) -> Dict[str, Any]:
        """JSON-ready view of the state for UI clients."""

        data: Dict[str, Any] = {"view": self.name.value}
        payload = self.payload
        if payload is None:
            return data
        settings = getattr(payload, "settings", None)
        if settings is not None:
            data["settings"] = settings.to_document()
        history = getattr(payload, "sensor_history", None)
        if history is not None:
            data["sensorHistory"] = [record.to_document() for record in history]
        if isinstance(payload, DraftPayload):
            data["draft"] = payload.draft.to_document()
        elif isinstance(payload, AdvicePayload):
            data["advice"] = payload.advice
        elif isinstance(payload, GoalPayload):
            data["goal"] = payload.goal
        elif isinstance(payload, SummaryPayload):
            data["include_recommendation"] = payload.include_recommendation
        return data


@dataclass(frozen=True)
class ViewEvent:
    """User action or controller-internal signal fed to the state machine."""

    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    epoch: Optional[int] = None


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    view: ViewName
    phase: int = 1
    error: Optional[str] = None


__all__ = [
    "AdvicePayload",
    "ControllerEvent",
    "DraftPayload",
    "EventType",
    "FlowVariant",
    "GoalPayload",
    "HistoryPayload",
    "INTERNAL_EVENTS",
    "SummaryPayload",
    "SESSION_VIEWS",
    "SessionPayload",
    "ViewEvent",
    "ViewName",
    "ViewPayload",
    "ViewState",
]
