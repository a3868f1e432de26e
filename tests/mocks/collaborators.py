"""
Fake collaborators for controller and narration tests.
"""

import asyncio
from typing import List, Optional, Tuple

import numpy as np

from sensai.backend.speech import PCM_ENCODING, AudioClip, SpeechSynthesizer
from sensai.models import SensorRecord
from sensai.sensors.feed import SampleCallback, SensorFeed, StopFn
from sensai.storage import InMemorySessionStore, StoreError


class FakeSynthesizer(SpeechSynthesizer):
    """
    Records every requested utterance and returns a short silent clip.

    Args:
        clip_seconds: Duration of the returned clip
        fail: Raise on every call instead of returning a clip
        gate: When set, synthesis waits on this event before returning
    """

    name = "fake"

    def __init__(self, clip_seconds: float = 0.01, fail: bool = False, gate: Optional[asyncio.Event] = None):
        self.clip_seconds = clip_seconds
        self.fail = fail
        self.gate = gate
        self.texts: List[str] = []
        self.closed = False

    async def synthesize(self, text: str) -> Optional[AudioClip]:
        self.texts.append(text)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("synthesis backend exploded")
        sample_rate = 1000
        samples = np.zeros(int(sample_rate * self.clip_seconds), dtype=np.float32)
        return AudioClip(encoding=PCM_ENCODING, sample_rate=sample_rate, samples=samples)

    async def aclose(self) -> None:
        self.closed = True


class ManualSensorFeed(SensorFeed):
    """
    Sensor feed driven by the test: ``push`` delivers a sample to the
    callback registered by the most recent ``start``.
    """

    name = "manual"

    def __init__(self):
        super().__init__(interval_seconds=0.0)
        self.starts: List[Tuple[int, int]] = []
        self.stop_calls = 0
        self._callback: Optional[SampleCallback] = None

    @property
    def running(self) -> bool:
        return self._callback is not None

    def start(self, duration_minutes: int, target_temp: int, on_sample: SampleCallback) -> StopFn:
        self.starts.append((duration_minutes, target_temp))
        self._callback = on_sample
        callback = on_sample

        def stop() -> None:
            self.stop_calls += 1
            if self._callback is callback:
                self._callback = None

        return stop

    async def push(self, temperature: float, humidity: float = 30.0, when: int = 0) -> None:
        """Deliver one sample; after stop the sample is delivered to nobody."""
        if self._callback is None:
            return
        await self._callback(SensorRecord(time=when, temperature=temperature, humidity=humidity))

    @property
    def callback(self) -> Optional[SampleCallback]:
        return self._callback


class FakeChat:
    """
    Scripted chat-completion delegate.

    Args:
        reply: Text returned from every call (None simulates an empty answer)
        error: Exception raised from every call instead of replying
        delay: Seconds to wait before answering
    """

    def __init__(
        self,
        reply: Optional[str] = "Stay hydrated and enjoy the heat.",
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts: List[Tuple[str, str]] = []
        self.closed = False

    async def complete(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        self.prompts.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    async def aclose(self) -> None:
        self.closed = True


class FailingStore(InMemorySessionStore):
    """In-memory store whose writes fail the way an unreachable backend does."""

    def __init__(self, sessions=None):
        super().__init__(sessions)
        self.append_attempts = 0
        self.reset_attempts = 0

    async def append(self, session) -> None:
        self.append_attempts += 1
        raise StoreError("Session could not be saved")

    async def reset(self) -> None:
        self.reset_attempts += 1
        raise StoreError("Session data could not be reset")


class SlowStore(InMemorySessionStore):
    """In-memory store whose appends take a while to land, like a remote write."""

    def __init__(self, sessions=None, append_delay: float = 0.05):
        super().__init__(sessions)
        self.append_delay = append_delay

    async def append(self, session) -> None:
        await asyncio.sleep(self.append_delay)
        await super().append(session)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Let background tasks run until ``predicate()`` holds or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()
