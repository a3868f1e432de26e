"""
Fake Collaborators for Testing
==============================

In-process stand-ins for the network-backed collaborators so the
controller can be exercised without speech, hardware or chat services.

Classes:
    FakeSynthesizer: Records utterances, returns short silent clips
    ManualSensorFeed: Sensor feed whose samples are pushed by the test
    FakeChat: Scripted chat-completion delegate
    FailingStore: In-memory store whose remote operations fail
    SlowStore: In-memory store whose appends are delayed
    ScriptedTransport: httpx mock transport that records requests
    FakeAuth: Signed-in Firebase session stand-in
    wait_until: Polls a predicate while background tasks run
"""

from .collaborators import (
    FailingStore,
    FakeChat,
    FakeSynthesizer,
    ManualSensorFeed,
    SlowStore,
    wait_until,
)
from .http import FakeAuth, ScriptedTransport

__all__ = [
    "FailingStore",
    "FakeAuth",
    "FakeChat",
    "FakeSynthesizer",
    "ManualSensorFeed",
    "ScriptedTransport",
    "SlowStore",
    "wait_until",
]
