"""Dimwit: time-of-day light levels anchored to sunrise and sunset."""

from .twilight import (
    ANCHOR_NAMES,
    ConfigurationError,
    InvalidOffset,
    InvalidTimeLiteral,
    Twilight,
    UnknownAnchor,
    parse_time_spec,
    resolve_time_spec,
)

__all__ = [
    "ANCHOR_NAMES",
    "ConfigurationError",
    "InvalidOffset",
    "InvalidTimeLiteral",
    "Twilight",
    "UnknownAnchor",
    "parse_time_spec",
    "resolve_time_spec",
]
