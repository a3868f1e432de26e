"""Voice narration: the single-flight speak gate and the single-slot audio output."""
from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional

from .backend.speech import AudioClip, SpeechSynthesizer

logger = logging.getLogger(__name__)

Publisher = Callable[[str, Dict[str, Any]], Awaitable[None]]


class AudioOutput:
    """One playback slot owned by a controller instance.

    Playback happens on the UI client; this handle pushes the clip out and
    holds the slot for the clip's duration. Starting a clip replaces the
    current one.
    """

    def __init__(self, publish: Publisher) -> None:
        self._publish = publish
        self._current: Optional[asyncio.Event] = None
        self._clip_counter = 0

    @property
    def playing(self) -> bool:
        return self._current is not None

    async def play(self, clip: AudioClip) -> None:
        """Send ``clip`` to the UI and return when it has finished or was stopped."""

        await self.stop()
        self._clip_counter += 1
        finished = asyncio.Event()
        self._current = finished
        await self._publish(
            "voice",
            {
                "clip": self._clip_counter,
                "encoding": clip.encoding,
                "sample_rate": clip.sample_rate,
                "duration": round(clip.duration_seconds, 3),
                "audio_b64": base64.b64encode(clip.to_bytes()).decode("ascii"),
            },
        )
        try:
            await asyncio.wait_for(finished.wait(), timeout=clip.duration_seconds)
        except asyncio.TimeoutError:
            pass
        finally:
            if self._current is finished:
                self._current = None

    async def stop(self) -> None:
        current = self._current
        if current is None:
            return
        self._current = None
        current.set()
        await self._publish("voice_stop", {"clip": self._clip_counter})


class Narrator:
    """Speaks text when narration is enabled, the user has interacted, and nothing is playing.

    Requests made while an utterance is in flight are dropped, not queued.
    """

    def __init__(
        self,
        synthesizer: Optional[SpeechSynthesizer],
        output: AudioOutput,
        *,
        enabled: bool = True,
    ) -> None:
        self._synthesizer = synthesizer
        self._output = output
        self._enabled = enabled
        self._has_interacted = False
        self._speaking = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def has_interacted(self) -> bool:
        return self._has_interacted

    def mark_interaction(self) -> None:
        if not self._has_interacted:
            logger.debug("First user interaction; narration unlocked")
        self._has_interacted = True

    async def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            await self._output.stop()
        logger.info("Narration %s", "enabled" if enabled else "muted")

    async def speak(self, text: str) -> bool:
        """Returns True when the utterance was played to the end (or stopped)."""

        if not text or not self._enabled or not self._has_interacted or self._speaking:
            return False
        self._speaking = True
        try:
            if self._synthesizer is None:
                logger.debug("No speech provider; skipping narration: %s", text[:60])
                return False
            clip = await self._synthesizer.synthesize(text)
            if clip is None:
                return False
            await self._output.play(clip)
            return True
        except Exception as exc:
            logger.exception("Narration failed: %s", exc)
            return False
        finally:
            self._speaking = False

    async def stop(self) -> None:
        await self._output.stop()


__all__ = ["AudioOutput", "Narrator", "Publisher"]
