#!/usr/bin/env python3
"""Toggle and auto-dim decisions.

Both decisions are pure: they take the zone, the light's current value and
the time, and return what the device layer should do. Nothing here talks to
hardware.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import Callable, FrozenSet, List, Optional, Tuple, Union

from lightzones import LightZone, ZoneRegistry

logger = logging.getLogger(__name__)

# Largest drift auto-dim will correct; anything further is a manual override
AUTO_DIM_TOLERANCE = 2

ZoneLookup = Callable[[str], Optional[LightZone]]


@dataclass(frozen=True)
class AutoDimResult:
    dim_level: int
    needs_reschedule: bool

    @property
    def changed(self) -> bool:
        return self.dim_level >= 0


AutoDimResult.NO_CHANGE = AutoDimResult(-1, False)


@dataclass(frozen=True)
class ToggleLightValue:
    device_id: str
    value: int


@dataclass(frozen=True)
class ToggleLightResult:
    """Levels to apply, parent zone first, then cascaded zones."""

    results: Tuple[ToggleLightValue, ...]

    @property
    def levels(self) -> List[Tuple[str, int]]:
        return [(r.device_id, r.value) for r in self.results]

    def value_for(self, device_id: str) -> Optional[int]:
        for result in self.results:
            if result.device_id == device_id:
                return result.value
        return None


def _clock(now: Union[time, datetime]) -> time:
    return now.time() if isinstance(now, datetime) else now


def auto_dim(zone: LightZone, current_value: int, now: Union[time, datetime]) -> AutoDimResult:
    """Nudge a light that is already near the calculated level.

    A light that is off, or any light during the opening frame of the day,
    is left alone. A light more than AUTO_DIM_TOLERANCE away was probably set
    by hand and is left alone too.
    """
    clock = _clock(now)
    if current_value == 0 or zone.is_in_first_frame(clock):
        return AutoDimResult.NO_CHANGE

    calculated = zone.calculate(clock).low_level
    delta = abs(calculated - current_value)
    if delta > AUTO_DIM_TOLERANCE:
        logger.debug(
            f"[{zone.device_id}] auto-dim skipped: at {current_value}, calculated {calculated}"
        )
        return AutoDimResult.NO_CHANGE

    return AutoDimResult(calculated, delta > 1)


def toggle_lights(
    zone: LightZone,
    current_value: int,
    now: Union[time, datetime],
    lookup: ZoneLookup,
) -> ToggleLightResult:
    """Pick the level opposite of where the light is now.

    Below the low level, or at/above the high level, the light goes to the
    low level; anywhere else it goes to the frame's high level. Turning a
    zone on from off also turns on every dependent zone whose window
    contains ``now``, recursively.

    Args:
        zone: The zone being toggled
        current_value: The light's level before the toggle (0 = off)
        now: Time of day
        lookup: Resolves dependent zone ids; unknown ids return None

    Returns:
        ToggleLightResult listing (device_id, level) pairs
    """
    return ToggleLightResult(tuple(_toggle(zone, current_value, _clock(now), lookup, frozenset())))


def _toggle(
    zone: LightZone,
    current_value: int,
    now: time,
    lookup: ZoneLookup,
    ancestors: FrozenSet[str],
) -> List[ToggleLightValue]:
    levels = zone.calculate(now)

    if current_value < levels.low_level or current_value >= levels.high_level:
        level = levels.low_level
    else:
        level = levels.high_level

    results = [ToggleLightValue(zone.device_id, level)]
    if current_value != 0:
        return results

    # Ancestors only; a zone reachable by two routes appears once per route
    path = ancestors | {zone.device_id}
    for sub_zone in zone.sub_zones:
        if not sub_zone.is_active(now):
            continue
        if sub_zone.device_id in path:
            logger.warning(f"[{zone.device_id}] '{sub_zone.device_id}' loops back to a parent zone, skipping")
            continue
        child = lookup(sub_zone.device_id)
        if child is None:
            logger.debug(f"[{zone.device_id}] dependent zone '{sub_zone.device_id}' not registered")
            continue
        results.extend(_toggle(child, 0, now, lookup, path))

    return results


class DimCalculator:
    """Binds the decisions to a registry and a clock."""

    def __init__(self, registry: ZoneRegistry, now: Callable[[], Union[time, datetime]]):
        self.registry = registry
        self.now = now

    def _zone(self, zone: Union[LightZone, str]) -> LightZone:
        if isinstance(zone, LightZone):
            return zone
        resolved = self.registry.zone(zone)
        if resolved is None:
            raise KeyError(zone)
        return resolved

    def auto_dim(self, zone: Union[LightZone, str], current_value: int) -> AutoDimResult:
        return auto_dim(self._zone(zone), current_value, self.now())

    def toggle_lights(self, zone: Union[LightZone, str], current_value: int) -> ToggleLightResult:
        zone = self._zone(zone)
        result = toggle_lights(zone, current_value, self.now(), self.registry.zone)
        logger.info(f"[{zone.device_id}] toggle from {current_value}: {result.levels}")
        return result
