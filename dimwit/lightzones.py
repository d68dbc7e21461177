#!/usr/bin/env python3
"""Light zone configuration, dependent zones and the zone registry.

Zone documents are JSON or YAML:

    deviceId: "11"
    timeFrames:
      - {endTime: "sunrise:-30", lowLevel: 10, highLevel: 35}
      - {endTime: "24:00", lowLevel: 1, highLevel: 35}
    subZones:
      - deviceId: "12"
        windows:
          - {startTime: "00:00", endTime: "twilightBegin"}

Definitions are validated once at load time. The registry builds a
LightZone from each definition against the current Twilight and rebuilds
them when the anchors change.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import voluptuous as vol
import yaml

from timeframes import FrameSchedule, LightLevels, calculate_levels
from twilight import ConfigurationError, TimeSpec, Twilight, parse_time_spec

logger = logging.getLogger(__name__)

ZONE_FILE_EXTENSIONS = (".json", ".yaml", ".yml")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_LEVEL = vol.All(vol.Coerce(int), vol.Range(min=0))

TIME_FRAME_SCHEMA = vol.Schema(
    {
        vol.Required("endTime"): str,
        vol.Required("lowLevel"): _LEVEL,
        vol.Required("highLevel"): _LEVEL,
    },
    extra=vol.REMOVE_EXTRA,
)

WINDOW_SCHEMA = vol.Schema(
    {
        vol.Required("startTime"): str,
        vol.Required("endTime"): str,
    },
    extra=vol.REMOVE_EXTRA,
)

SUB_ZONE_SCHEMA = vol.Schema(
    {
        vol.Required("deviceId"): vol.Coerce(str),
        vol.Optional("windows", default=list): [WINDOW_SCHEMA],
    },
    extra=vol.REMOVE_EXTRA,
)

ZONE_SCHEMA = vol.Schema(
    {
        vol.Required("deviceId"): vol.Coerce(str),
        vol.Required("timeFrames"): vol.All([TIME_FRAME_SCHEMA], vol.Length(min=1)),
        vol.Optional("subZones", default=list): [SUB_ZONE_SCHEMA],
    },
    extra=vol.REMOVE_EXTRA,
)

# ---------------------------------------------------------------------------
# Resolved zone model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivationWindow:
    start_spec: str
    end_spec: str
    start: time
    end: time

    def contains(self, now: time) -> bool:
        return self.start < now < self.end


@dataclass(frozen=True)
class DependentZone:
    """A zone toggled along with its parent during its windows.

    Refers to the other zone by id only; the registry resolves it.
    """

    device_id: str
    windows: Tuple[ActivationWindow, ...] = ()

    def is_active(self, now: time) -> bool:
        return any(window.contains(now) for window in self.windows)


@dataclass(frozen=True)
class LightZone:
    device_id: str
    schedule: FrameSchedule
    sub_zones: Tuple[DependentZone, ...] = ()
    twilight: Optional[Twilight] = field(default=None, compare=False)

    def calculate(self, now: Union[time, datetime]) -> LightLevels:
        return calculate_levels(self.schedule, now)

    def is_in_first_frame(self, now: time) -> bool:
        return self.schedule.is_in_first_frame(now)


# ---------------------------------------------------------------------------
# Definitions (validated, unresolved)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubZoneDefinition:
    device_id: str
    windows: Tuple[Tuple[TimeSpec, TimeSpec], ...] = ()

    def build(self, twilight: Twilight) -> DependentZone:
        return DependentZone(
            self.device_id,
            tuple(
                ActivationWindow(start.raw, end.raw, start.resolve(twilight), end.resolve(twilight))
                for start, end in self.windows
            ),
        )


@dataclass(frozen=True)
class ZoneDefinition:
    """A zone document after validation; every endpoint already parsed."""

    device_id: str
    time_frames: Tuple[Tuple[TimeSpec, int, int], ...]
    sub_zones: Tuple[SubZoneDefinition, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ZoneDefinition":
        """Validate a zone document.

        Raises:
            ConfigurationError: Wrong shape, or any endpoint that does not
                follow the endpoint grammar (UnknownAnchor,
                InvalidTimeLiteral, InvalidOffset)
        """
        try:
            zone = ZONE_SCHEMA(data)
        except vol.Invalid as e:
            device_id = data.get("deviceId") if isinstance(data, dict) else None
            raise ConfigurationError(f"Invalid zone configuration for '{device_id}': {e}") from e

        frames = tuple(
            (parse_time_spec(frame["endTime"]), frame["lowLevel"], frame["highLevel"])
            for frame in zone["timeFrames"]
        )
        sub_zones = tuple(
            SubZoneDefinition(
                sub["deviceId"],
                tuple(
                    (parse_time_spec(window["startTime"]), parse_time_spec(window["endTime"]))
                    for window in sub["windows"]
                ),
            )
            for sub in zone["subZones"]
        )
        return cls(zone["deviceId"], frames, sub_zones)

    def build(self, twilight: Twilight) -> LightZone:
        """Resolve against ``twilight``. Raises ScheduleError on bad ordering."""
        return LightZone(
            self.device_id,
            FrameSchedule.build(self.time_frames, twilight),
            tuple(sub.build(twilight) for sub in self.sub_zones),
            twilight,
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_zone_document(text: str, fmt: str = "json") -> List[ZoneDefinition]:
    """Parse a JSON or YAML document holding one zone, a list, or ``{"zones": [...]}``."""
    try:
        if fmt == "json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Unable to parse zone document: {e}") from e

    if isinstance(data, dict) and "zones" in data:
        data = data["zones"]
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ConfigurationError("Zone document must hold a zone, a list of zones, or 'zones'")

    return [ZoneDefinition.from_dict(item) for item in data]


def document_format(path: str) -> str:
    return "json" if path.lower().endswith(".json") else "yaml"


def load_zone_file(path: str) -> List[ZoneDefinition]:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    try:
        return parse_zone_document(text, document_format(path))
    except ConfigurationError as e:
        raise ConfigurationError(f"{path}: {e}") from e


def zone_files(directory: str) -> List[str]:
    return [
        os.path.join(directory, name)
        for name in sorted(os.listdir(directory))
        if name.lower().endswith(ZONE_FILE_EXTENSIONS)
    ]


def check_unique(definitions: Iterable[ZoneDefinition]) -> List[ZoneDefinition]:
    seen = set()
    result = []
    for definition in definitions:
        if definition.device_id in seen:
            raise ConfigurationError(f"Duplicate zone deviceId '{definition.device_id}'")
        seen.add(definition.device_id)
        result.append(definition)
    return result


def load_zone_directory(directory: str) -> List[ZoneDefinition]:
    """Load every zone document in ``directory`` in file-name order."""
    definitions: List[ZoneDefinition] = []
    for path in zone_files(directory):
        definitions.extend(load_zone_file(path))
    logger.info(f"Loaded {len(definitions)} zone(s) from {directory}")
    return check_unique(definitions)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ZoneRegistry:
    """Maps device ids to zones built against the current anchors."""

    def __init__(self, twilight: Twilight, definitions: Iterable[ZoneDefinition] = ()):
        self.twilight = twilight
        self._definitions: Dict[str, ZoneDefinition] = {}
        self._zones: Dict[str, LightZone] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ZoneDefinition) -> LightZone:
        """Add or replace a zone. Fails fast on configuration errors."""
        zone = definition.build(self.twilight)
        self._definitions[definition.device_id] = definition
        self._zones[definition.device_id] = zone
        logger.debug(f"Registered zone '{definition.device_id}' with {len(zone.schedule)} frame(s)")
        return zone

    def remove(self, device_id: str) -> bool:
        self._definitions.pop(device_id, None)
        return self._zones.pop(device_id, None) is not None

    def replace_all(self, definitions: Iterable[ZoneDefinition]) -> None:
        """Swap in a new configuration; the old one stays if any zone fails to build."""
        definitions = check_unique(definitions)
        zones = {d.device_id: d.build(self.twilight) for d in definitions}
        self._definitions = {d.device_id: d for d in definitions}
        self._zones = zones
        logger.info(f"Zone registry now holds {len(zones)} zone(s)")

    def rebuild(self, twilight: Twilight) -> None:
        """Re-resolve every zone for a new day's anchors."""
        self.twilight = twilight
        for device_id, definition in self._definitions.items():
            try:
                self._zones[device_id] = definition.build(twilight)
            except ConfigurationError as e:
                logger.error(
                    f"Zone '{device_id}' is invalid with anchors for {twilight.date}, "
                    f"keeping previous schedule: {e}"
                )

    def zone(self, device_id: str) -> Optional[LightZone]:
        return self._zones.get(device_id)

    def definition(self, device_id: str) -> Optional[ZoneDefinition]:
        return self._definitions.get(device_id)

    def device_ids(self) -> List[str]:
        return list(self._zones)

    def zones(self) -> List[LightZone]:
        return list(self._zones.values())

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._zones

    def __len__(self) -> int:
        return len(self._zones)

    def __iter__(self) -> Iterator[LightZone]:
        return iter(list(self._zones.values()))
