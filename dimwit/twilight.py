#!/usr/bin/env python3
"""Solar anchor times and the endpoint grammar that refers to them.

An endpoint is either a literal wall-clock time (``"15:30"``) or a named
solar anchor plus a signed minute offset (``"sunrise:-30"``). Endpoints are
validated once, when a zone is loaded, and resolved against a ``Twilight``
snapshot whenever a schedule is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Optional


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ANCHOR_NAMES = ("twilightBegin", "sunrise", "solarNoon", "sunset", "twilightEnd")

# Lower-cased anchor name -> Twilight attribute
_ANCHOR_ATTRIBUTES: Dict[str, str] = {
    "twilightbegin": "twilight_begin",
    "sunrise": "sunrise",
    "solarnoon": "solar_noon",
    "sunset": "sunset",
    "twilightend": "twilight_end",
}

# Offsets are minutes past an anchor, never an hour or more
MAX_OFFSET_MINUTES = 59

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ConfigurationError(ValueError):
    """An authoring mistake in zone configuration."""


class UnknownAnchor(ConfigurationError):
    """Endpoint base is not one of ANCHOR_NAMES."""


class InvalidTimeLiteral(ConfigurationError):
    """Literal endpoint is not a valid hh:mm time of day."""


class InvalidOffset(ConfigurationError):
    """Anchor offset is out of range."""


# ---------------------------------------------------------------------------
# Anchors
# ---------------------------------------------------------------------------


def add_minutes(value: time, minutes: int) -> time:
    """Add minutes to a time of day, wrapping around midnight like a clock."""
    if not minutes:
        return value
    shifted = datetime.combine(date(2000, 1, 1), value) + timedelta(minutes=minutes)
    return shifted.time()


@dataclass(frozen=True)
class Twilight:
    """The five solar anchor times for one calendar date."""

    date: date
    twilight_begin: time
    sunrise: time
    solar_noon: time
    sunset: time
    twilight_end: time

    def anchor(self, name: str, offset: int = 0) -> time:
        """Return the named anchor shifted by ``offset`` minutes.

        Args:
            name: One of ANCHOR_NAMES (case-insensitive)
            offset: Signed minute offset

        Raises:
            UnknownAnchor: If the name is not a known anchor
        """
        attribute = _ANCHOR_ATTRIBUTES.get(name.lower())
        if attribute is None:
            raise UnknownAnchor(
                f"Unknown base: '{name}'. Must be one of: {', '.join(ANCHOR_NAMES)}"
            )
        return add_minutes(getattr(self, attribute), offset)

    def as_dict(self) -> Dict[str, str]:
        return {
            "date": self.date.isoformat(),
            "twilightBegin": self.twilight_begin.isoformat(),
            "sunrise": self.sunrise.isoformat(),
            "solarNoon": self.solar_noon.isoformat(),
            "sunset": self.sunset.isoformat(),
            "twilightEnd": self.twilight_end.isoformat(),
        }


# ---------------------------------------------------------------------------
# Endpoint grammar
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeSpec:
    """A validated endpoint, ready to resolve against any Twilight."""

    raw: str
    anchor: Optional[str] = None
    offset: int = 0
    literal: Optional[time] = None

    @property
    def is_literal(self) -> bool:
        return self.literal is not None

    def resolve(self, twilight: Twilight) -> time:
        if self.literal is not None:
            return self.literal
        return twilight.anchor(self.anchor, self.offset)


def _parse_component(raw: str, text: str, name: str, upper: int) -> int:
    try:
        value = int(text)
    except ValueError as e:
        raise InvalidTimeLiteral(f"Unable to convert '{raw}' to hh:mm. Bad {name}: '{text}'") from e
    if value < 0 or value > upper:
        raise InvalidTimeLiteral(
            f"Invalid value for {name}: {text} (valid values 0 - {upper}) in '{raw}'"
        )
    return value


def _parse_literal(raw: str) -> time:
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not all(parts):
        raise InvalidTimeLiteral(f"Unable to convert '{raw}' to hh:mm")

    # 24:00 closes the day
    if len(parts) == 2 and parts[0] == "24" and parts[1] == "00":
        return time.max

    hour = _parse_component(raw, parts[0], "hour", 23)
    minute = _parse_component(raw, parts[1], "minute", 59)

    second = 0
    microsecond = 0
    if len(parts) == 3:
        seconds_text, _, fraction = parts[2].partition(".")
        second = _parse_component(raw, seconds_text, "second", 59)
        if fraction:
            if not fraction.isdigit():
                raise InvalidTimeLiteral(f"Unable to convert '{raw}' to hh:mm. Bad fraction: '{fraction}'")
            microsecond = int(fraction[:6].ljust(6, "0"))

    return time(hour, minute, second, microsecond)


def parse_time_spec(raw: str) -> TimeSpec:
    """Validate an endpoint string without resolving it.

    Accepts ``HH:MM`` literals (optionally with seconds) and
    ``<anchor>[:<signed minutes>]``. A missing or non-numeric offset is 0.

    Raises:
        InvalidTimeLiteral: Literal with a bad or out-of-range component
        UnknownAnchor: Base is not one of ANCHOR_NAMES
        InvalidOffset: Offset of an hour or more either way
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidTimeLiteral(f"Unable to convert '{raw}' to hh:mm")
    raw = raw.strip()

    if raw[0].isdigit():
        return TimeSpec(raw=raw, literal=_parse_literal(raw))

    base, _, offset_text = raw.partition(":")
    try:
        offset = int(offset_text)
    except ValueError:
        offset = 0

    if abs(offset) > MAX_OFFSET_MINUTES:
        raise InvalidOffset(
            f"Illegal offset: {offset_text} in '{raw}'. "
            f"Must be between -{MAX_OFFSET_MINUTES} and {MAX_OFFSET_MINUTES} minutes"
        )

    if base.lower() not in _ANCHOR_ATTRIBUTES:
        raise UnknownAnchor(
            f"Unknown base: '{base}' in '{raw}'. Must be one of: {', '.join(ANCHOR_NAMES)}"
        )

    return TimeSpec(raw=raw, anchor=base, offset=offset)


def resolve_time_spec(raw: str, twilight: Twilight) -> time:
    """Parse and resolve an endpoint against one day's anchors."""
    return parse_time_spec(raw).resolve(twilight)
