#!/usr/bin/env python3
"""Recompute pipeline - re-derives zone levels on clock and anchor ticks.

Holds the latest clock value and the latest Twilight (combine-latest) and,
whenever either changes, recalculates every registered zone and emits the
levels that differ from the previous emission for that zone.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple

from almanac import AnchorCache
from lightzones import ZoneRegistry
from timeframes import LightLevels
from twilight import Twilight

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_INTERVAL = 60.0
DEFAULT_DATE_INTERVAL = 300.0

Subscriber = Callable[[str, LightLevels], None]


class RecomputePipeline:
    """Single-threaded driver for the level interpolator."""

    def __init__(
        self,
        registry: ZoneRegistry,
        anchor_cache: AnchorCache,
        clock: Callable[[], datetime] = datetime.now,
        clock_interval: float = DEFAULT_CLOCK_INTERVAL,
        date_interval: float = DEFAULT_DATE_INTERVAL,
    ):
        self.registry = registry
        self.anchor_cache = anchor_cache
        self.clock = clock
        self.clock_interval = clock_interval
        self.date_interval = date_interval

        self.now: Optional[datetime] = None
        self.today: Optional[date] = None
        self.twilight: Optional[Twilight] = None

        self._subscribers: List[Subscriber] = []
        self._last: Dict[str, LightLevels] = {}
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def latest(self, device_id: str) -> Optional[LightLevels]:
        return self._last.get(device_id)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def on_clock_tick(self, now: datetime) -> None:
        """Take a new clock value, at minute resolution, and recompute."""
        if self.now is not None and now.replace(second=0, microsecond=0) == self.now:
            return
        self.now = now.replace(second=0, microsecond=0)
        self.recompute()

    def on_date_tick(self, day: date) -> None:
        """Refresh anchors for a new date and rebuild schedules if they moved."""
        if day == self.today:
            return
        self.anchor_cache.refresh(day)
        self._apply_day(day)

    def _apply_day(self, day: date) -> None:
        self.today = day
        twilight = self.anchor_cache.lookup(day)
        if twilight != self.twilight:
            logger.info(f"New anchors for {day}: {twilight.as_dict()}")
            self.twilight = twilight
            self.registry.rebuild(twilight)
        self.recompute()

    def reset(self) -> None:
        """Forget previous emissions so the next recompute emits every zone."""
        self._last.clear()

    def recompute(self) -> List[Tuple[str, LightLevels]]:
        """Recalculate all zones; emit and return the ones that changed."""
        if self.now is None or self.twilight is None:
            return []

        emitted = []
        for zone in self.registry.zones():
            levels = zone.calculate(self.now)
            previous = self._last.get(zone.device_id)
            if previous is not None and (previous.low_level, previous.high_level) == (
                levels.low_level,
                levels.high_level,
            ):
                continue
            self._last[zone.device_id] = levels
            emitted.append((zone.device_id, levels))
            self._emit(zone.device_id, levels)

        for device_id in [d for d in self._last if d not in self.registry]:
            del self._last[device_id]

        return emitted

    def _emit(self, device_id: str, levels: LightLevels) -> None:
        logger.debug(f"[{device_id}] {levels.low_level}/{levels.high_level} at {levels.timestamp}")
        for callback in list(self._subscribers):
            try:
                callback(device_id, levels)
            except Exception as e:
                logger.error(f"Subscriber failed for zone '{device_id}': {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        # Anchors first so the first clock tick can emit
        await self._date_tick()
        self._tasks = [
            asyncio.create_task(self._date_loop()),
            asyncio.create_task(self._clock_loop()),
        ]
        logger.info(
            f"Recompute pipeline started (clock every {self.clock_interval}s, "
            f"date every {self.date_interval}s)"
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Recompute pipeline stopped")

    async def _date_tick(self) -> None:
        day = self.clock().date()
        if day == self.today:
            return
        # Only place that may block on I/O; awaited, so the cache has one writer
        await asyncio.to_thread(self.anchor_cache.refresh, day)
        self._apply_day(day)

    async def _date_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.date_interval)
                await self._date_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in date ticker: {e}")

    async def _clock_loop(self) -> None:
        while True:
            try:
                self.on_clock_tick(self.clock())
                await asyncio.sleep(self.clock_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in clock ticker: {e}")
                await asyncio.sleep(self.clock_interval)
