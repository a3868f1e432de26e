"""View orchestration for the SensAI companion: runs the transition table against real collaborators."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import time
from typing import Any, Dict, List, Optional

from .backend.chat import ChatCompletionClient
from .backend.firebase import AuthSession, FirebaseAuthClient, FirestoreSessionDocument
from .backend.harvia import HarviaClient
from .backend.speech import SpeechSynthesizer, build_synthesizer
from .coach import Coach
from .config import Settings, get_settings
from .flow import Effect, EffectKind, FlowConfig, FlowContext, Transition, entry_phrase, transition
from .logging_config import TRANSITIONS_LOGGER
from .models import SaunaSettings, SensorRecord, SessionData
from .narration import AudioOutput, Narrator
from .sensors.feed import RemoteSensorFeed, SensorFeed, SimulatedSensorFeed, StopFn
from .state import (
    INTERNAL_EVENTS,
    SESSION_VIEWS,
    ControllerEvent,
    EventType,
    FlowVariant,
    ViewEvent,
    ViewName,
    ViewState,
)
from .stats import StatsTracker
from .storage import FirestoreSessionStore, InMemorySessionStore, SessionStore, StoreError

logger = logging.getLogger(__name__)
transition_logger = logging.getLogger(TRANSITIONS_LOGGER)

_UNSET = object()


def build_store(settings: Settings) -> SessionStore:
    if not settings.persistence_enabled:
        logger.warning("Firebase is not configured; sessions are kept in memory only")
        return InMemorySessionStore()
    auth = AuthSession(
        FirebaseAuthClient(settings),
        initial_token=settings.firebase.initial_auth_token,
        retry_seconds=settings.firebase.auth_retry_seconds,
    )
    return FirestoreSessionStore(
        auth,
        FirestoreSessionDocument(settings, auth),
        poll_seconds=settings.firebase.subscription_poll_seconds,
    )


def build_feed(settings: Settings, harvia: Optional[HarviaClient]) -> SensorFeed:
    source = settings.flow.sensor_source
    if source == "remote" and harvia is None:
        logger.warning("Remote sensors requested but Harvia credentials are missing; simulating")
    if harvia is not None and source in {"auto", "remote"}:
        return RemoteSensorFeed(harvia, interval_seconds=settings.flow.remote_sample_seconds)
    return SimulatedSensorFeed(interval_seconds=settings.flow.simulated_sample_seconds)


class ViewController:
    """Owns the current view, its timers, and every collaborator the views talk to.

    Events are applied one at a time under a lock. Entering a view bumps the
    epoch; anything started for an older epoch is cancelled or, if it still
    reports back, ignored.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        store: Optional[SessionStore] = None,
        feed: Optional[SensorFeed] = None,
        coach: Optional[Coach] = None,
        synthesizer: Any = _UNSET,
        harvia: Any = _UNSET,
    ) -> None:
        self.settings = settings or get_settings()
        self._flow = FlowConfig.from_settings(self.settings)

        if harvia is _UNSET:
            harvia = HarviaClient(self.settings) if self.settings.hardware_enabled else None
        self._harvia: Optional[HarviaClient] = harvia
        if synthesizer is _UNSET:
            synthesizer = build_synthesizer(self.settings)
        self._synthesizer: Optional[SpeechSynthesizer] = synthesizer
        if coach is None:
            chat = ChatCompletionClient(self.settings) if self.settings.chat_enabled else None
            coach = Coach(
                chat,
                min_temperature=self._flow.min_temperature,
                max_temperature=self._flow.max_temperature,
                reply_timeout=self.settings.chat.reply_timeout_seconds,
            )
        self._coach = coach
        self._feed = feed or build_feed(self.settings, self._harvia)
        self._store = store or build_store(self.settings)
        self._unsubscribe = self._store.subscribe(self._on_sessions)

        self._lock = asyncio.Lock()
        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []
        self._output = AudioOutput(self._publish)
        self._narrator = Narrator(self._synthesizer, self._output)
        self._tracker = StatsTracker()

        self._state: ViewState = self._flow.initial_state()
        self._epoch = 0
        self._phase = 1
        self._spoken = False
        self._state_started_at = time.time()
        self._state_tasks: List[asyncio.Task[Any]] = []
        self._background_tasks: List[asyncio.Task[Any]] = []
        self._persist_tasks: List[asyncio.Task[None]] = []
        self._sensor_stop: Optional[StopFn] = None
        self._sensor_history: List[SensorRecord] = []
        self._remaining_seconds: Optional[int] = None
        self._intervention_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def phase(self) -> int:
        return self._phase

    @property
    def stats(self):
        return self._tracker.stats

    @property
    def narrator(self) -> Narrator:
        return self._narrator

    @property
    def sensor_history(self) -> List[SensorRecord]:
        return list(self._sensor_history)

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self._remaining_seconds

    def snapshot(self) -> Dict[str, Any]:
        """Everything a freshly connected UI needs to render the current view."""

        return {
            **self._state.describe(),
            "phase": self._phase,
            "epoch": self._epoch,
            "flow": self._flow.variant.value,
            "remaining": self._remaining_seconds,
            "narration": {
                "enabled": self._narrator.enabled,
                "speaking": self._narrator.speaking,
            },
            "stats": self._tracker.stats.to_document(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        logger.info("Starting view controller (%s flow)", self._flow.variant.value)
        try:
            await self._store.start()
        except Exception as e:
            logger.exception("Failed to start session store: %s", e)
        self._background_tasks.append(asyncio.create_task(self._heartbeat_loop(), name="controller-heartbeat"))
        async with self._lock:
            await self._enter(self._flow.initial_state())
        logger.info("View controller started in %s", self._state.name.value)

    async def stop(self) -> None:
        logger.info("Stopping view controller")
        self._leave_state()
        await self._narrator.stop()
        await self._flush_pending_writes()
        self._unsubscribe()

        tasks = self._state_tasks + self._background_tasks
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping controller task: %s", e)
        self._state_tasks.clear()
        self._background_tasks.clear()

        try:
            await self._store.stop()
        except Exception as e:
            logger.warning("Error stopping session store: %s", e)
        for closer in (self._harvia, self._synthesizer, self._coach):
            if closer is None:
                continue
            try:
                await closer.aclose()
            except Exception as e:
                logger.warning("Error closing %s: %s", type(closer).__name__, e)
        logger.info("View controller stopped")

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.settings.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def dispatch(self, event: ViewEvent) -> bool:
        """Apply ``event``; returns False when it was stale or meant nothing in the current view."""

        async with self._lock:
            if event.type in INTERNAL_EVENTS and event.epoch is not None and event.epoch != self._epoch:
                logger.debug("Discarding stale %s (epoch %s, now %s)", event.type.value, event.epoch, self._epoch)
                return False
            if event.type not in INTERNAL_EVENTS:
                self._narrator.mark_interaction()

            result = transition(self._state, event, self._context())
            if result is None:
                return False
            transition_logger.info(
                "%s --%s--> %s (epoch %d)",
                self._state.name.value,
                event.type.value,
                result.next_state.name.value,
                self._epoch,
            )
            await self._apply(result)
            return True

    async def set_narration_enabled(self, enabled: bool) -> None:
        self._narrator.mark_interaction()
        await self._narrator.set_enabled(enabled)
        await self._publish("narration", {"enabled": enabled})

    async def reset(self) -> bool:
        return await self.dispatch(ViewEvent(EventType.RESET_DATA))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _context(self) -> FlowContext:
        return FlowContext(
            config=self._flow,
            stats=self._tracker.stats,
            sensor_history=tuple(self._sensor_history),
        )

    async def _apply(self, result: Transition) -> None:
        self._leave_state()
        await self._narrator.stop()

        entry_effects: List[Effect] = []
        for effect in result.effects:
            if effect.kind is EffectKind.SAVE_SESSION:
                await self._save_session(effect)
            elif effect.kind is EffectKind.RESET_DATA:
                await self._reset_data()
            else:
                entry_effects.append(effect)

        await self._enter(result.next_state)
        for effect in entry_effects:
            self._start_effect(effect)

    def _leave_state(self) -> None:
        """Cancel everything the current view started. Synchronous so no sample slips in between."""

        self._epoch += 1
        if self._sensor_stop is not None:
            self._sensor_stop()
            self._sensor_stop = None
        current = asyncio.current_task()
        for task in self._state_tasks:
            if task is not current and not task.done():
                task.cancel()
        self._state_tasks.clear()
        self._intervention_task = None
        self._remaining_seconds = None

    async def _enter(self, state: ViewState) -> None:
        self._epoch += 1
        self._state = state
        if state.name not in SESSION_VIEWS and getattr(state.payload, "sensor_history", None) is None:
            # samples only outlive the session through a payload that carries them
            self._sensor_history = []
        self._phase = 1
        self._spoken = False
        self._state_started_at = time.time()
        await self._broadcast_state()
        self._spawn(self._reveal(self._epoch), "reveal")

    async def _reveal(self, epoch: int) -> None:
        await asyncio.sleep(self.settings.flow.reveal_delay_seconds)
        if epoch != self._epoch:
            return
        self._phase = 2
        await self._broadcast_state()
        await self._narrate_entry(epoch)

    async def _narrate_entry(self, epoch: int) -> None:
        if self._spoken or epoch != self._epoch:
            return
        self._spoken = True
        phrase = entry_phrase(self._state, self._context())
        if phrase:
            await self._narrator.speak(phrase)

    def _spawn(self, coro: Any, label: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"view-{self._state.name.value}-{label}")
        self._state_tasks.append(task)
        return task

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _start_effect(self, effect: Effect) -> None:
        epoch = self._epoch
        if effect.kind is EffectKind.START_SESSION and effect.settings is not None:
            self._start_session(effect.settings, epoch)
        elif effect.kind is EffectKind.HEAT_SAUNA and effect.settings is not None:
            self._spawn(self._heat_sauna(effect.settings, epoch), "heating")
        elif effect.kind is EffectKind.REQUEST_ONBOARDING_ADVICE:
            self._spawn(self._request_onboarding_advice(epoch), "advice")

    def _start_session(self, settings: SaunaSettings, epoch: int) -> None:
        self._sensor_history = []
        self._remaining_seconds = settings.timer_minutes * 60
        self._spawn(self._countdown(epoch), "countdown")

        async def on_sample(record: SensorRecord) -> None:
            await self._on_sample(record, settings, epoch)

        self._sensor_stop = self._feed.start(settings.timer_minutes, settings.temperature_celsius, on_sample)

    async def _countdown(self, epoch: int) -> None:
        tick = self.settings.flow.countdown_tick_seconds
        while epoch == self._epoch and self._remaining_seconds:
            await asyncio.sleep(tick)
            if epoch != self._epoch or self._remaining_seconds is None:
                return
            self._remaining_seconds = max(0, self._remaining_seconds - 1)
            await self._publish("tick", {"remaining": self._remaining_seconds})
        if epoch == self._epoch:
            await self.dispatch(ViewEvent(EventType.COUNTDOWN_EXPIRED, epoch=epoch))

    async def _on_sample(self, record: SensorRecord, settings: SaunaSettings, epoch: int) -> None:
        if epoch != self._epoch:
            logger.debug("Dropping sample from a finished session")
            return
        self._sensor_history.append(record)
        await self._publish("sample", {**record.to_document(), "count": len(self._sensor_history)})

        if self._flow.variant is not FlowVariant.COACHED or not self.settings.flow.interventions_enabled:
            return
        if self._intervention_task is not None and not self._intervention_task.done():
            return
        elapsed = int(time.time() - self._state_started_at)
        self._intervention_task = self._spawn(self._intervene(settings, record, elapsed, epoch), "intervention")

    async def _intervene(self, settings: SaunaSettings, record: SensorRecord, elapsed: int, epoch: int) -> None:
        text = await self._coach.intervention(settings, record, elapsed)
        if not text or epoch != self._epoch:
            return
        await self._publish("intervention", {"text": text})
        await self._narrator.speak(text)

    async def _heat_sauna(self, settings: SaunaSettings, epoch: int) -> None:
        started = time.monotonic()
        if self._harvia is not None:
            accepted = await self._harvia.control_device(
                self.settings.harvia.device_id, target_temperature=settings.temperature_celsius
            )
            if not accepted:
                logger.warning("Heater did not accept %d°C; continuing with the session", settings.temperature_celsius)
        remaining = self.settings.flow.heating_seconds - (time.monotonic() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)
        if epoch == self._epoch:
            await self.dispatch(ViewEvent(EventType.HEATING_DONE, epoch=epoch))

    async def _request_onboarding_advice(self, epoch: int) -> None:
        advice = await self._coach.onboarding_advice()
        if epoch == self._epoch:
            await self.dispatch(ViewEvent(EventType.ADVICE_READY, {"advice": advice}, epoch=epoch))

    async def _save_session(self, effect: Effect) -> None:
        if effect.settings is None or effect.draft is None:
            return
        session = SessionData.compose(effect.settings, effect.draft, list(effect.sensor_history))
        recommendation: Optional[str] = None
        if session.recommendations_requested:
            snapshot = session.sensor_history[-1] if session.sensor_history else None
            recommendation = await self._coach.session_recommendation(session, snapshot)
        stats = self._tracker.record_saved(session, recommendation)
        logger.info("Session saved locally: rating=%d total=%d", session.rating, stats.total_sessions)
        await self._publish("stats", stats.to_document())
        self._persist_tasks.append(
            asyncio.create_task(self._persist(session), name="controller-persist-session")
        )
        self._sensor_history = []

    async def _persist(self, session: SessionData) -> None:
        try:
            await self._store.append(session)
        except StoreError as exc:
            logger.warning("Session kept locally only: %s", exc)
        except Exception as exc:
            logger.exception("Unexpected error persisting session: %s", exc)
        finally:
            task = asyncio.current_task()
            if task in self._persist_tasks:
                self._persist_tasks.remove(task)

    async def _flush_pending_writes(self) -> None:
        """Wait for in-flight session appends so later store operations apply after them."""

        pending = [task for task in self._persist_tasks if not task.done()]
        if not pending:
            return
        logger.info("Waiting for %d pending session write(s)", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)

    async def _reset_data(self) -> None:
        await self._flush_pending_writes()
        self._tracker.reset()
        self._sensor_history = []
        try:
            await self._store.reset()
        except StoreError as exc:
            logger.warning("Remote reset failed, local data cleared anyway: %s", exc)
        except Exception as exc:
            logger.exception("Unexpected error resetting stored sessions: %s", exc)
        await self._publish("stats", self._tracker.stats.to_document())

    async def _on_sessions(self, sessions: List[SessionData]) -> None:
        stats = self._tracker.apply_sessions(sessions)
        await self._publish("stats", stats.to_document())

    # ------------------------------------------------------------------
    # UI fan-out
    # ------------------------------------------------------------------

    async def _broadcast(self, event: ControllerEvent) -> None:
        """Broadcast event to all UI subscribers; a full queue drops its oldest event."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        await self._broadcast(ControllerEvent(type=event_type, data=data, view=self._state.name, phase=self._phase))

    async def _broadcast_state(self) -> None:
        await self._publish("state", self.snapshot())

    async def _heartbeat_loop(self) -> None:
        """Send periodic heartbeat to UI clients."""
        try:
            while True:
                await asyncio.sleep(30)
                await self._publish("heartbeat", {"epoch": self._epoch})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Heartbeat loop crashed: %s", e)


__all__ = ["ViewController", "build_feed", "build_store"]
