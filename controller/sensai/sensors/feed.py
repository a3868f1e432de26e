"""Sensor feed strategies producing temperature/humidity samples during a session."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterator
from typing import Optional, Tuple

from ..backend.harvia import HarviaClient
from ..models import SensorRecord

logger = logging.getLogger(__name__)

SampleCallback = Callable[[SensorRecord], Awaitable[None]]
SampleSource = Callable[[], Awaitable[Optional[SensorRecord]]]
StopFn = Callable[[], None]

BASELINE_TEMPERATURE = 25.0
BASELINE_HUMIDITY = 15.0
HUMIDITY_CEILING = 45.0


def simulate_ramp(
    duration_minutes: float,
    target_temp: float,
    *,
    tick_seconds: float = 3.0,
    rng: Optional[random.Random] = None,
) -> Iterator[Tuple[float, float]]:
    """Endless (temperature, humidity) trajectory.

    Both values climb linearly from the baseline and reach the target
    temperature and the humidity ceiling at the session midpoint; afterwards
    every tick adds uniform noise of +/-1 C and +/-0.5 %.
    """

    rng = rng or random.Random()
    steps = max(duration_minutes * 60.0 / tick_seconds, 2.0)
    half = steps / 2.0
    temp_step = (target_temp - BASELINE_TEMPERATURE) / half
    humidity_step = (HUMIDITY_CEILING - BASELINE_HUMIDITY) / half

    temperature = BASELINE_TEMPERATURE
    humidity = BASELINE_HUMIDITY
    tick = 0
    while True:
        tick += 1
        if tick <= half:
            temperature = min(target_temp, temperature + temp_step)
            humidity = min(HUMIDITY_CEILING, humidity + humidity_step)
        else:
            temperature += rng.uniform(-1.0, 1.0)
            humidity += rng.uniform(-0.5, 0.5)
        yield temperature, humidity


class SensorFeed:
    """Base polling feed: ``start`` spawns a sampling task and returns an idempotent stop."""

    name = "base"

    def __init__(self, *, interval_seconds: float) -> None:
        self.interval_seconds = interval_seconds

    def _source(self, duration_minutes: int, target_temp: int) -> SampleSource:
        raise NotImplementedError

    def start(self, duration_minutes: int, target_temp: int, on_sample: SampleCallback) -> StopFn:
        source = self._source(duration_minutes, target_temp)
        task = asyncio.create_task(self._run_loop(source, on_sample), name=f"sensor-feed-{self.name}")
        stopped = False

        def stop() -> None:
            nonlocal stopped
            if stopped:
                return
            stopped = True
            task.cancel()

        return stop

    async def _run_loop(self, source: SampleSource, on_sample: SampleCallback) -> None:
        logger.info("Sensor feed %s active (every %.1fs)", self.name, self.interval_seconds)
        ticks = 0
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                ticks += 1
                try:
                    record = await source()
                except Exception as exc:
                    logger.warning("Sensor tick %d failed: %s", ticks, exc)
                    continue
                if record is None:
                    logger.debug("Sensor tick %d skipped (no reading)", ticks)
                    continue
                try:
                    await on_sample(record)
                except Exception:
                    logger.exception("Sensor sample callback failed")
        except asyncio.CancelledError:
            logger.info("Sensor feed %s stopped after %d tick(s)", self.name, ticks)
            raise


class SimulatedSensorFeed(SensorFeed):
    name = "simulated"

    def __init__(self, *, interval_seconds: float = 3.0, rng: Optional[random.Random] = None) -> None:
        super().__init__(interval_seconds=interval_seconds)
        self._rng = rng or random.Random()

    def _source(self, duration_minutes: int, target_temp: int) -> SampleSource:
        trajectory = simulate_ramp(
            duration_minutes, target_temp, tick_seconds=self.interval_seconds, rng=self._rng
        )

        async def next_sample() -> Optional[SensorRecord]:
            temperature, humidity = next(trajectory)
            return SensorRecord(time=int(time.time()), temperature=round(temperature), humidity=round(humidity))

        return next_sample


class RemoteSensorFeed(SensorFeed):
    name = "remote"

    def __init__(self, client: HarviaClient, *, interval_seconds: float = 5.0) -> None:
        super().__init__(interval_seconds=interval_seconds)
        self._client = client

    def _source(self, duration_minutes: int, target_temp: int) -> SampleSource:
        async def next_sample() -> Optional[SensorRecord]:
            reading = await self._client.get_sensor_data()
            return reading.to_record() if reading else None

        return next_sample


__all__ = [
    "RemoteSensorFeed",
    "SampleCallback",
    "SensorFeed",
    "SimulatedSensorFeed",
    "StopFn",
    "simulate_ramp",
]
