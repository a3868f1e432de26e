"""
Narration Gate Tests
====================

Tests for the single-flight narrator and the single-slot audio output.
"""

import asyncio
import base64

import numpy as np
import pytest

from sensai.backend.speech import PCM_ENCODING, AudioClip
from sensai.narration import AudioOutput, Narrator

from tests.mocks import FakeSynthesizer, wait_until


class RecordingPublisher:
    """Collects (event_type, data) pairs pushed to the UI."""

    def __init__(self):
        self.events = []

    async def __call__(self, event_type, data):
        self.events.append((event_type, data))

    def types(self):
        return [event_type for event_type, _ in self.events]


def make_narrator(synthesizer=None, enabled=True):
    publisher = RecordingPublisher()
    output = AudioOutput(publisher)
    narrator = Narrator(synthesizer or FakeSynthesizer(), output, enabled=enabled)
    return narrator, output, publisher


class TestNarratorGates:
    """Test the conditions under which narration is allowed."""

    @pytest.mark.asyncio
    async def test_requires_user_interaction(self):
        synthesizer = FakeSynthesizer()
        narrator, _, _ = make_narrator(synthesizer)

        assert await narrator.speak("Hello") is False
        assert synthesizer.texts == []

        narrator.mark_interaction()
        assert await narrator.speak("Hello") is True
        assert synthesizer.texts == ["Hello"]

    @pytest.mark.asyncio
    async def test_muted_narrator_stays_silent(self):
        synthesizer = FakeSynthesizer()
        narrator, _, _ = make_narrator(synthesizer, enabled=False)
        narrator.mark_interaction()

        assert await narrator.speak("Hello") is False
        assert synthesizer.texts == []

    @pytest.mark.asyncio
    async def test_empty_text_is_not_spoken(self):
        synthesizer = FakeSynthesizer()
        narrator, _, _ = make_narrator(synthesizer)
        narrator.mark_interaction()

        assert await narrator.speak("") is False
        assert synthesizer.texts == []

    @pytest.mark.asyncio
    async def test_no_provider_is_silent(self):
        narrator = Narrator(None, AudioOutput(RecordingPublisher()))
        narrator.mark_interaction()

        assert await narrator.speak("Hello") is False
        assert narrator.speaking is False


class TestSingleFlight:
    """Test that overlapping requests are dropped, not queued."""

    @pytest.mark.asyncio
    async def test_second_request_is_dropped(self):
        gate = asyncio.Event()
        synthesizer = FakeSynthesizer(gate=gate)
        narrator, _, _ = make_narrator(synthesizer)
        narrator.mark_interaction()

        first = asyncio.create_task(narrator.speak("first"))
        assert await wait_until(lambda: narrator.speaking)

        assert await narrator.speak("second") is False
        gate.set()
        assert await first is True
        assert synthesizer.texts == ["first"]
        assert narrator.speaking is False

    @pytest.mark.asyncio
    async def test_flag_cleared_after_failure(self):
        synthesizer = FakeSynthesizer(fail=True)
        narrator, _, _ = make_narrator(synthesizer)
        narrator.mark_interaction()

        assert await narrator.speak("boom") is False
        assert narrator.speaking is False

        synthesizer.fail = False
        assert await narrator.speak("recovered") is True

    @pytest.mark.asyncio
    async def test_flag_cleared_after_cancellation(self):
        gate = asyncio.Event()
        narrator, _, _ = make_narrator(FakeSynthesizer(gate=gate))
        narrator.mark_interaction()

        task = asyncio.create_task(narrator.speak("cancel me"))
        assert await wait_until(lambda: narrator.speaking)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert narrator.speaking is False


class TestAudioOutput:
    """Test the single playback slot."""

    @pytest.mark.asyncio
    async def test_play_publishes_clip(self):
        publisher = RecordingPublisher()
        output = AudioOutput(publisher)
        samples = np.array([0.0, 0.5, -0.5], dtype=np.float32)

        await output.play(AudioClip(encoding=PCM_ENCODING, sample_rate=1000, samples=samples))

        (event_type, data), = publisher.events
        assert event_type == "voice"
        assert data["encoding"] == PCM_ENCODING
        decoded = np.frombuffer(base64.b64decode(data["audio_b64"]), dtype="<f4")
        assert decoded.tolist() == [0.0, 0.5, -0.5]
        assert output.playing is False

    @pytest.mark.asyncio
    async def test_stop_interrupts_playback(self):
        publisher = RecordingPublisher()
        output = AudioOutput(publisher)
        long_clip = AudioClip(encoding=PCM_ENCODING, sample_rate=1000, samples=np.zeros(60_000, dtype=np.float32))

        task = asyncio.create_task(output.play(long_clip))
        assert await wait_until(lambda: output.playing)
        await output.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert publisher.types() == ["voice", "voice_stop"]
        assert output.playing is False

    @pytest.mark.asyncio
    async def test_new_clip_replaces_current(self):
        publisher = RecordingPublisher()
        output = AudioOutput(publisher)
        long_clip = AudioClip(encoding=PCM_ENCODING, sample_rate=1000, samples=np.zeros(60_000, dtype=np.float32))
        short_clip = AudioClip(encoding="audio/mpeg", data=b"\x00" * 16, bitrate_kbps=128)

        first = asyncio.create_task(output.play(long_clip))
        assert await wait_until(lambda: output.playing)
        await output.play(short_clip)
        await asyncio.wait_for(first, timeout=1.0)

        assert publisher.types() == ["voice", "voice_stop", "voice"]

    @pytest.mark.asyncio
    async def test_muting_stops_playback(self):
        narrator, output, publisher = make_narrator(FakeSynthesizer(clip_seconds=60))
        narrator.mark_interaction()

        task = asyncio.create_task(narrator.speak("long story"))
        assert await wait_until(lambda: output.playing)
        await narrator.set_enabled(False)

        assert await asyncio.wait_for(task, timeout=1.0) is True
        assert "voice_stop" in publisher.types()
        assert narrator.enabled is False
