"""Pure view transition table shared by the classic and coached flows.

``transition(state, event, context)`` never touches the outside world: it
returns the next :class:`ViewState` plus the side effects the controller
must run, or ``None`` when the event means nothing in the current view.
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from .config import Settings
from .models import FeedbackDraft, HeatLevel, SaunaSettings, SensorRecord, Stats
from .state import (
    AdvicePayload,
    DraftPayload,
    EventType,
    FlowVariant,
    GoalPayload,
    HistoryPayload,
    SessionPayload,
    SummaryPayload,
    ViewEvent,
    ViewName,
    ViewState,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlowConfig:
    variant: FlowVariant = FlowVariant.CLASSIC
    min_temperature: int = 60
    max_temperature: int = 100
    newbie_temperature: int = 75
    newbie_timer_options: Tuple[int, ...] = (10, 15)
    min_timer_minutes: int = 5
    max_timer_minutes: int = 60
    recommended_unlock_sessions: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "FlowConfig":
        bounds = settings.bounds
        return cls(
            variant=FlowVariant(settings.flow.variant),
            min_temperature=bounds.min_temperature,
            max_temperature=bounds.max_temperature,
            newbie_temperature=bounds.newbie_temperature,
            newbie_timer_options=tuple(bounds.newbie_timer_options) or (15,),
            min_timer_minutes=bounds.min_timer_minutes,
            max_timer_minutes=bounds.max_timer_minutes,
            recommended_unlock_sessions=bounds.recommended_unlock_sessions,
        )

    @property
    def initial_view(self) -> ViewName:
        return ViewName.START_POINT if self.variant is FlowVariant.COACHED else ViewName.WELCOME

    def initial_state(self) -> ViewState:
        return ViewState(self.initial_view)


@dataclass(frozen=True)
class FlowContext:
    """Read-only facts the transition table may consult."""

    config: FlowConfig = field(default_factory=FlowConfig)
    stats: Stats = field(default_factory=Stats)
    sensor_history: Tuple[SensorRecord, ...] = ()


class EffectKind(str, enum.Enum):
    START_SESSION = "start_session"
    SAVE_SESSION = "save_session"
    RESET_DATA = "reset_data"
    REQUEST_ONBOARDING_ADVICE = "request_onboarding_advice"
    HEAT_SAUNA = "heat_sauna"


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    settings: Optional[SaunaSettings] = None
    draft: Optional[FeedbackDraft] = None
    sensor_history: Tuple[SensorRecord, ...] = ()


@dataclass(frozen=True)
class Transition:
    next_state: ViewState
    effects: Tuple[Effect, ...] = ()


Handler = Callable[[ViewState, ViewEvent, FlowContext], Optional[Transition]]


# ============================================================
# Event data helpers
# ============================================================

def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(round(number))


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _timer(data: Mapping[str, Any]) -> Optional[int]:
    return _as_int(_first(data, "timer_minutes", "timer"))


def _answer(data: Mapping[str, Any]) -> Optional[bool]:
    value = _first(data, "yes", "answer", "value")
    if value is None:
        return None
    return _as_bool(value)


def _newbie_settings(event: ViewEvent, config: FlowConfig) -> Optional[SaunaSettings]:
    timer = _timer(event.data)
    if timer is None:
        return None
    options = config.newbie_timer_options
    if timer not in options:
        timer = min(options, key=lambda option: abs(option - timer))
    return SaunaSettings(
        timer_minutes=timer, temperature_celsius=config.newbie_temperature, music_enabled=False
    )


def _custom_settings(event: ViewEvent, config: FlowConfig) -> Optional[SaunaSettings]:
    timer = _timer(event.data)
    temperature = _as_int(_first(event.data, "temperature_celsius", "temperature"))
    if timer is None or temperature is None:
        return None
    return SaunaSettings(
        timer_minutes=_clamp(timer, config.min_timer_minutes, config.max_timer_minutes),
        temperature_celsius=_clamp(temperature, config.min_temperature, config.max_temperature),
        music_enabled=_as_bool(_first(event.data, "music_enabled", "music")),
    )


def recommended_temperature(stats: Stats, config: FlowConfig) -> int:
    """Next temperature derived from the last session's heat answer."""

    last = stats.last_session
    if last is None:
        return config.newbie_temperature
    if last.heat is HeatLevel.TOO_HOT:
        return max(config.min_temperature, last.temperature_celsius - 2)
    if last.heat is HeatLevel.TOO_COLD:
        return min(config.max_temperature, last.temperature_celsius + 2)
    return last.temperature_celsius


def _recommended_settings(event: ViewEvent, context: FlowContext) -> SaunaSettings:
    config = context.config
    last = context.stats.last_session
    timer = _timer(event.data)
    if timer is None:
        timer = last.timer_minutes if last else 15
    music = _first(event.data, "music_enabled", "music")
    return SaunaSettings(
        timer_minutes=_clamp(timer, config.min_timer_minutes, config.max_timer_minutes),
        temperature_celsius=recommended_temperature(context.stats, config),
        music_enabled=_as_bool(music, default=last.music_enabled if last else False),
    )


def _draft(data: Mapping[str, Any]) -> Optional[FeedbackDraft]:
    try:
        return FeedbackDraft.model_validate(dict(data))
    except ValidationError as exc:
        logger.info("Ignoring malformed feedback: %s", exc.errors()[:1])
        return None


def _goto(name: ViewName, payload: Any = None, *effects: Effect) -> Transition:
    return Transition(ViewState(name, payload), tuple(effects))


def _settings_of(state: ViewState) -> SaunaSettings:
    settings = getattr(state.payload, "settings", None)
    return settings if settings is not None else SaunaSettings()


def _history_of(state: ViewState) -> Tuple[SensorRecord, ...]:
    return tuple(getattr(state.payload, "sensor_history", ()))


# ============================================================
# Classic flow
# ============================================================

def _choose_recommended(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    if context.stats.total_sessions < context.config.recommended_unlock_sessions:
        return None
    return _goto(ViewName.RECOMMENDED_SETTINGS)


def _start_timer(settings: Optional[SaunaSettings]) -> Optional[Transition]:
    if settings is None:
        return None
    return _goto(
        ViewName.SESSION_TIMER, SessionPayload(settings), Effect(EffectKind.START_SESSION, settings=settings)
    )


def _end_session(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    target = ViewName.FEEDBACK_FORM if state.name is ViewName.SESSION_TIMER else ViewName.POST_SESSION_PROMPT
    return _goto(target, HistoryPayload(_settings_of(state), tuple(context.sensor_history)))


def _submit_feedback_form(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    draft = _draft(event.data)
    if draft is None:
        return None
    save = Effect(
        EffectKind.SAVE_SESSION, settings=_settings_of(state), draft=draft, sensor_history=_history_of(state)
    )
    target = ViewName.STATS_DISPLAY if draft.show_stats else ViewName.GOODBYE
    return _goto(target, None, save)


# ============================================================
# Coached flow
# ============================================================

def _to_sauna_ready(settings: Optional[SaunaSettings]) -> Optional[Transition]:
    if settings is None:
        return None
    return _goto(ViewName.SAUNA_READY, SessionPayload(settings))


def _start_heating(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    settings = _settings_of(state)
    return _goto(ViewName.GENERATING, SessionPayload(settings), Effect(EffectKind.HEAT_SAUNA, settings=settings))


def _heating_done(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    settings = _settings_of(state)
    return _goto(
        ViewName.ACTIVE_SESSION, SessionPayload(settings), Effect(EffectKind.START_SESSION, settings=settings)
    )


def _advice_ready(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    advice = str(_first(event.data, "advice", "text") or "").strip()
    if not advice:
        return None
    return _goto(ViewName.NEWBIE_RECOMMENDATIONS, AdvicePayload(advice))


def _submit_goal(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    goal = str(_first(event.data, "goal", "text") or "").strip()
    return _goto(ViewName.EXPERIENCED_SETTINGS, GoalPayload(goal))


def _submit_feedback_questions(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    draft = _draft(event.data)
    if draft is None:
        return None
    return _goto(ViewName.ASK_SHOW_STATS, DraftPayload(_settings_of(state), draft, _history_of(state)))


def _answer_show_stats(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    answer = _answer(event.data)
    if answer is None or not isinstance(state.payload, DraftPayload):
        return None
    payload = state.payload
    draft = payload.draft.model_copy(update={"show_stats": answer})
    return _goto(ViewName.ASK_RECOMMENDATIONS, DraftPayload(payload.settings, draft, payload.sensor_history))


def _answer_recommendations(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    answer = _answer(event.data)
    if answer is None or not isinstance(state.payload, DraftPayload):
        return None
    payload = state.payload
    draft = payload.draft.model_copy(update={"recommendations_requested": answer})
    save = Effect(
        EffectKind.SAVE_SESSION, settings=payload.settings, draft=draft, sensor_history=payload.sensor_history
    )
    if draft.show_stats:
        return _goto(ViewName.SHOW_STATS, None, save)
    return _goto(ViewName.SUMMARY, SummaryPayload(include_recommendation=True), save)


def _after_show_stats(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    if context.stats.last_recommendation:
        return _goto(ViewName.SHOW_RECOMMENDATIONS)
    return _goto(ViewName.SUMMARY, SummaryPayload())


def _static(name: ViewName, payload: Any = None, *effects: Effect) -> Handler:
    def handler(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
        return _goto(name, payload, *effects)

    return handler


_HANDLERS: Dict[Tuple[ViewName, EventType], Handler] = {
    # classic
    (ViewName.WELCOME, EventType.CHOOSE_NEW_USER): _static(ViewName.NEW_USER_ONBOARDING),
    (ViewName.WELCOME, EventType.CHOOSE_EXPERIMENT): _static(ViewName.EXPERIMENT_SETTINGS),
    (ViewName.WELCOME, EventType.CHOOSE_RECOMMENDED): _choose_recommended,
    (ViewName.NEW_USER_ONBOARDING, EventType.SUBMIT_SETTINGS): (
        lambda s, e, c: _start_timer(_newbie_settings(e, c.config))
    ),
    (ViewName.EXPERIMENT_SETTINGS, EventType.SUBMIT_SETTINGS): (
        lambda s, e, c: _start_timer(_custom_settings(e, c.config))
    ),
    (ViewName.RECOMMENDED_SETTINGS, EventType.SUBMIT_SETTINGS): (
        lambda s, e, c: _start_timer(_recommended_settings(e, c))
    ),
    (ViewName.NEW_USER_ONBOARDING, EventType.BACK): _static(ViewName.WELCOME),
    (ViewName.EXPERIMENT_SETTINGS, EventType.BACK): _static(ViewName.WELCOME),
    (ViewName.RECOMMENDED_SETTINGS, EventType.BACK): _static(ViewName.WELCOME),
    (ViewName.SESSION_TIMER, EventType.END_EARLY): _end_session,
    (ViewName.SESSION_TIMER, EventType.COUNTDOWN_EXPIRED): _end_session,
    (ViewName.FEEDBACK_FORM, EventType.SUBMIT_FEEDBACK): _submit_feedback_form,
    (ViewName.FEEDBACK_FORM, EventType.CANCEL): _static(ViewName.WELCOME),
    (ViewName.STATS_DISPLAY, EventType.CONTINUE): _static(ViewName.GOODBYE),
    (ViewName.GOODBYE, EventType.CONTINUE): _static(ViewName.WELCOME),
    # coached
    (ViewName.START_POINT, EventType.BEGIN): _static(ViewName.WELCOME_NARRATION),
    (ViewName.WELCOME_NARRATION, EventType.CONTINUE): _static(ViewName.TRANSITION),
    (ViewName.TRANSITION, EventType.CONTINUE): _static(ViewName.FOLLOW_UP_QUESTION),
    (ViewName.FOLLOW_UP_QUESTION, EventType.CONTINUE): _static(ViewName.ONBOARDING_CHOICE),
    (ViewName.ONBOARDING_CHOICE, EventType.CHOOSE_NEW_USER): _static(
        ViewName.NEWBIE_RECOMMENDATIONS, AdvicePayload(), Effect(EffectKind.REQUEST_ONBOARDING_ADVICE)
    ),
    (ViewName.ONBOARDING_CHOICE, EventType.CHOOSE_EXPERIENCED): _static(ViewName.EXPERIENCED_GOAL_CAPTURE),
    (ViewName.NEWBIE_RECOMMENDATIONS, EventType.ADVICE_READY): _advice_ready,
    (ViewName.NEWBIE_RECOMMENDATIONS, EventType.SUBMIT_SETTINGS): (
        lambda s, e, c: _to_sauna_ready(_newbie_settings(e, c.config))
    ),
    (ViewName.NEWBIE_RECOMMENDATIONS, EventType.BACK): _static(ViewName.ONBOARDING_CHOICE),
    (ViewName.EXPERIENCED_GOAL_CAPTURE, EventType.SUBMIT_GOAL): _submit_goal,
    (ViewName.EXPERIENCED_GOAL_CAPTURE, EventType.BACK): _static(ViewName.ONBOARDING_CHOICE),
    (ViewName.EXPERIENCED_SETTINGS, EventType.SUBMIT_SETTINGS): (
        lambda s, e, c: _to_sauna_ready(_custom_settings(e, c.config))
    ),
    (ViewName.EXPERIENCED_SETTINGS, EventType.BACK): _static(ViewName.EXPERIENCED_GOAL_CAPTURE),
    (ViewName.SAUNA_READY, EventType.START): _start_heating,
    (ViewName.SAUNA_READY, EventType.BACK): _static(ViewName.ONBOARDING_CHOICE),
    (ViewName.GENERATING, EventType.HEATING_DONE): _heating_done,
    (ViewName.ACTIVE_SESSION, EventType.END_EARLY): _end_session,
    (ViewName.ACTIVE_SESSION, EventType.COUNTDOWN_EXPIRED): _end_session,
    (ViewName.POST_SESSION_PROMPT, EventType.CONTINUE): (
        lambda s, e, c: _goto(ViewName.FEEDBACK_QUESTIONS, s.payload)
    ),
    (ViewName.FEEDBACK_QUESTIONS, EventType.SUBMIT_FEEDBACK): _submit_feedback_questions,
    (ViewName.ASK_SHOW_STATS, EventType.ANSWER): _answer_show_stats,
    (ViewName.ASK_RECOMMENDATIONS, EventType.ANSWER): _answer_recommendations,
    (ViewName.SHOW_STATS, EventType.CONTINUE): _after_show_stats,
    (ViewName.SHOW_RECOMMENDATIONS, EventType.CONTINUE): _static(ViewName.SUMMARY, SummaryPayload()),
    (ViewName.SUMMARY, EventType.CONTINUE): _static(ViewName.START_POINT),
}


def transition(state: ViewState, event: ViewEvent, context: FlowContext) -> Optional[Transition]:
    """Next state and effects for ``event`` in ``state``; None when the event does not apply."""

    if event.type is EventType.RESET_DATA:
        return Transition(context.config.initial_state(), (Effect(EffectKind.RESET_DATA),))
    handler = _HANDLERS.get((state.name, event.type))
    if handler is None:
        logger.debug("Ignoring %s in %s", event.type.value, state.name.value)
        return None
    return handler(state, event, context)


# ============================================================
# Entry narration
# ============================================================

def entry_phrase(state: ViewState, context: FlowContext) -> str:
    """What the narrator says once a view has revealed; empty means silence."""

    stats = context.stats
    payload = state.payload
    name = state.name
    if name is ViewName.RECOMMENDED_SETTINGS:
        return (
            f"Your average rating is {stats.avg_rating}/10! "
            "Based on your last session, here are our recommendations."
        )
    if name is ViewName.STATS_DISPLAY:
        return stats.last_recommendation or "Here are your session statistics."
    if name is ViewName.NEWBIE_RECOMMENDATIONS:
        if isinstance(payload, AdvicePayload) and payload.advice:
            return payload.advice
        return ""
    if name is ViewName.EXPERIENCED_SETTINGS and isinstance(payload, GoalPayload) and payload.goal:
        return f"Great, let's work towards {payload.goal}. Choose your temperature and duration."
    if name is ViewName.SAUNA_READY and isinstance(payload, SessionPayload):
        settings = payload.settings
        return (
            f"Your sauna is set to {settings.temperature_celsius}°C for {settings.timer_minutes} minutes. "
            "Ready when you are."
        )
    if name is ViewName.SHOW_STATS:
        return (
            f"You have completed {stats.total_sessions} sessions "
            f"with an average rating of {stats.avg_rating} out of 10."
        )
    if name is ViewName.SHOW_RECOMMENDATIONS:
        return stats.last_recommendation or "Keep listening to your body, and enjoy your next session."
    if name is ViewName.SUMMARY:
        closing = "Thank you for relaxing with SensAI. Until next time."
        if isinstance(payload, SummaryPayload) and payload.include_recommendation and stats.last_recommendation:
            return f"{stats.last_recommendation} {closing}"
        return closing
    return _PHRASES.get(name, "")


_PHRASES: Dict[ViewName, str] = {
    ViewName.WELCOME: "Greetings! I am your personal sauna assistant, SensAI. How would you like to proceed?",
    ViewName.NEW_USER_ONBOARDING: "Please select your duration.",
    ViewName.EXPERIMENT_SETTINGS: "Please choose your settings.",
    ViewName.SESSION_TIMER: "Sauna time!",
    ViewName.FEEDBACK_FORM: "Welcome back. How was your sauna?",
    ViewName.GOODBYE: "Thank you for using SensAI. Until next time.",
    ViewName.WELCOME_NARRATION: "Hello, I am SensAI, your personal sauna coach.",
    ViewName.TRANSITION: "Let's get your sauna ready together.",
    ViewName.FOLLOW_UP_QUESTION: "Before we begin, I would like to know a little about you.",
    ViewName.ONBOARDING_CHOICE: "Is this your first time in a sauna, or are you an experienced bather?",
    ViewName.EXPERIENCED_GOAL_CAPTURE: "What would you like to get out of today's session?",
    ViewName.EXPERIENCED_SETTINGS: "Choose your temperature and duration.",
    ViewName.GENERATING: "Heating things up. This will only take a moment.",
    ViewName.ACTIVE_SESSION: "Your session has started. Relax and breathe slowly.",
    ViewName.POST_SESSION_PROMPT: "Welcome back. How are you feeling?",
    ViewName.FEEDBACK_QUESTIONS: "How would you rate your session, and how was the heat?",
    ViewName.ASK_SHOW_STATS: "Would you like to see your session statistics?",
    ViewName.ASK_RECOMMENDATIONS: "Would you like recommendations for next time?",
}


__all__ = [
    "Effect",
    "EffectKind",
    "FlowConfig",
    "FlowContext",
    "Transition",
    "entry_phrase",
    "recommended_temperature",
    "transition",
]
