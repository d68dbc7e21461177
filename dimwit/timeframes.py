#!/usr/bin/env python3
"""Time frames and the level interpolator.

A schedule is a list of frames stacked through the day, each closing at its
end time. The low level ramps linearly from one frame's end to the next; the
high level steps to the current frame's value. The first frame of the day is
a quiescent period and always reports its configured levels verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Iterable, Iterator, Mapping, Optional, Sequence, Tuple, Union

from twilight import ConfigurationError, TimeSpec, Twilight, parse_time_spec


class ScheduleError(ConfigurationError):
    """Frames violate the schedule ordering invariant."""


@dataclass(frozen=True)
class LightLevels:
    low_level: int
    high_level: int
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "low_level": self.low_level,
            "high_level": self.high_level,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class TimeFrame:
    """One frame: the levels in effect until ``end_time``."""

    end_time_spec: str
    end_time: time
    low_level: int
    high_level: int

    def contains(self, now: time) -> bool:
        return self.end_time > now

    @classmethod
    def static(cls, end_time: time, low_level: int, high_level: int) -> "TimeFrame":
        """Frame with a fixed end time, for code that has no endpoint string."""
        return cls(end_time.isoformat(), end_time, low_level, high_level)


def _micros(value: time) -> int:
    return ((value.hour * 60 + value.minute) * 60 + value.second) * 1_000_000 + value.microsecond


def minutes_between(start: time, end: time) -> int:
    """Whole minutes from ``start`` to ``end``, truncated toward zero."""
    return int((_micros(end) - _micros(start)) / 60_000_000)


class FrameSchedule:
    """Ordered, validated frames for one zone. Immutable once built."""

    def __init__(self, frames: Iterable[TimeFrame]):
        self._frames: Tuple[TimeFrame, ...] = tuple(frames)
        self._validate()

    def _validate(self) -> None:
        if not self._frames:
            raise ScheduleError("A schedule needs at least one time frame")

        previous: Optional[TimeFrame] = None
        for frame in self._frames:
            if frame.low_level < 0 or frame.high_level < 0:
                raise ScheduleError(
                    f"Levels must be non-negative, got {frame.low_level}/{frame.high_level} "
                    f"for frame ending '{frame.end_time_spec}'"
                )
            if previous is not None and frame.end_time <= previous.end_time:
                raise ScheduleError(
                    f"Frame ending '{frame.end_time_spec}' ({frame.end_time}) must end after "
                    f"'{previous.end_time_spec}' ({previous.end_time})"
                )
            previous = frame

        last = self._frames[-1]
        if last.end_time != time.max:
            raise ScheduleError(
                f"Last frame must close the day (24:00), got '{last.end_time_spec}' ({last.end_time})"
            )

    @classmethod
    def build(
        cls,
        frames: Sequence[Tuple[Union[str, TimeSpec], int, int]],
        twilight: Twilight,
    ) -> "FrameSchedule":
        """Resolve ``(end, low, high)`` triples against one day's anchors."""
        resolved = []
        for end, low, high in frames:
            spec = end if isinstance(end, TimeSpec) else parse_time_spec(end)
            resolved.append(TimeFrame(spec.raw, spec.resolve(twilight), int(low), int(high)))
        return cls(resolved)

    @classmethod
    def from_config(cls, frames: Iterable[Mapping], twilight: Twilight) -> "FrameSchedule":
        return cls.build(
            [(f["endTime"], f["lowLevel"], f["highLevel"]) for f in frames], twilight
        )

    @property
    def frames(self) -> Tuple[TimeFrame, ...]:
        return self._frames

    @property
    def first_frame(self) -> TimeFrame:
        return self._frames[0]

    def __iter__(self) -> Iterator[TimeFrame]:
        return iter(self._frames)

    def __len__(self) -> int:
        return len(self._frames)

    def __getitem__(self, index: int) -> TimeFrame:
        return self._frames[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FrameSchedule):
            return NotImplemented
        return self._frames == other._frames

    def __hash__(self) -> int:
        return hash(self._frames)

    def __repr__(self) -> str:
        return f"FrameSchedule({list(self._frames)!r})"

    def current_frame(self, now: time) -> TimeFrame:
        """First frame whose end is strictly after ``now``."""
        for frame in self._frames:
            if frame.contains(now):
                return frame
        # time.max sentinel; only reachable for now == time.max itself
        return self._frames[-1]

    def previous_frame(self, now: time) -> Optional[TimeFrame]:
        """Last frame whose end is not after ``now``."""
        previous = None
        for frame in self._frames:
            if frame.contains(now):
                break
            previous = frame
        return previous

    def is_in_first_frame(self, now: time) -> bool:
        return self.first_frame.contains(now)


def calculate_levels(schedule: FrameSchedule, now: Union[time, datetime]) -> LightLevels:
    """Compute (low, high) for ``now``.

    Args:
        schedule: A validated FrameSchedule
        now: Time of day, or a datetime whose time is used and which becomes
            the result's timestamp

    Returns:
        LightLevels with the interpolated low level and the current frame's
        high level
    """
    timestamp = now if isinstance(now, datetime) else None
    clock = now.time() if isinstance(now, datetime) else now

    current = schedule.current_frame(clock)
    previous = schedule.previous_frame(clock)

    # Always use the configured floor in the opening frame of the day
    if previous is None or current is schedule.first_frame:
        first = schedule.first_frame
        return LightLevels(first.low_level, first.high_level, timestamp)

    start_value = previous.low_level
    end_value = current.low_level

    frame_span = minutes_between(previous.end_time, current.end_time)
    elapsed = minutes_between(previous.end_time, clock)
    ratio = elapsed / frame_span if frame_span > 0 else 0.0
    magnitude = int(abs(start_value - end_value) * ratio)

    if start_value > end_value:
        low = max(abs(magnitude - start_value), end_value)
    else:
        low = max(magnitude + start_value, start_value)

    return LightLevels(low, current.high_level, timestamp)
