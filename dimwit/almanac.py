#!/usr/bin/env python3
"""Per-date solar anchor cache and the almanac sources that feed it.

The cache keeps today's and tomorrow's Twilight in memory. Loading is the
only place in the core that touches I/O; any failure there is logged and
replaced by a fixed default anchor set so lights keep dimming through a
data-source outage.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Set

from zoneinfo import ZoneInfo
from astral import LocationInfo
from astral.sun import sun

from twilight import Twilight

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_TWILIGHT = Twilight(
    date=date(1970, 1, 1),
    twilight_begin=time(6, 30),
    sunrise=time(7, 0),
    solar_noon=time(12, 30),
    sunset=time(18, 30),
    twilight_end=time(19, 0),
)


def default_twilight(day: date) -> Twilight:
    """Return the default anchor set stamped with ``day``."""
    return replace(DEFAULT_TWILIGHT, date=day)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class AlmanacSource(ABC):
    """Maps a calendar date to that day's solar anchors."""

    @abstractmethod
    def load(self, day: date) -> Twilight:
        """Load anchors for ``day``. May raise on I/O or parse failure."""


class SunriseSunsetFileSource(AlmanacSource):
    """Reads sunrise-sunset.org responses saved one file per date.

    Files are named ``YYYY-M-D.json`` and look like::

        {
          "results": {
            "sunrise": "2017-02-13T14:59:12+00:00",
            "sunset": "2017-02-14T01:46:02+00:00",
            "solar_noon": "2017-02-13T20:22:37+00:00",
            "civil_twilight_begin": "2017-02-13T14:32:21+00:00",
            "civil_twilight_end": "2017-02-14T02:12:53+00:00",
            ...
          },
          "status": "OK"
        }
    """

    def __init__(self, data_dir: str, timezone: str = "UTC"):
        self.data_dir = data_dir
        self.timezone = ZoneInfo(timezone)

    def path_for(self, day: date) -> str:
        return os.path.join(self.data_dir, f"{day.year}-{day.month}-{day.day}.json")

    def _to_local_time(self, value: str) -> time:
        moment = datetime.fromisoformat(value)
        if moment.tzinfo is None:
            raise ValueError(f"Timestamp without offset: {value}")
        return moment.astimezone(self.timezone).time()

    def load(self, day: date) -> Twilight:
        with open(self.path_for(day), "r", encoding="utf-8") as f:
            data = json.load(f)

        results = data["results"]
        return Twilight(
            date=day,
            twilight_begin=self._to_local_time(results["civil_twilight_begin"]),
            sunrise=self._to_local_time(results["sunrise"]),
            solar_noon=self._to_local_time(results["solar_noon"]),
            sunset=self._to_local_time(results["sunset"]),
            twilight_end=self._to_local_time(results["civil_twilight_end"]),
        )


class AstralSource(AlmanacSource):
    """Computes anchors locally with astral (civil dawn/dusk as twilight)."""

    def __init__(self, latitude: float, longitude: float, timezone: str = "UTC"):
        self.location = LocationInfo(latitude=latitude, longitude=longitude, timezone=timezone)

    def load(self, day: date) -> Twilight:
        tzinfo = ZoneInfo(self.location.timezone)
        events = sun(self.location.observer, date=day, tzinfo=tzinfo)
        return Twilight(
            date=day,
            twilight_begin=events["dawn"].time(),
            sunrise=events["sunrise"].time(),
            solar_noon=events["noon"].time(),
            sunset=events["sunset"].time(),
            twilight_end=events["dusk"].time(),
        )


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class AnchorCache:
    """Holds Twilight keyed by date; owned by a single writer."""

    def __init__(self, source: AlmanacSource):
        self.source = source
        self._data: Dict[date, Twilight] = {}
        self.failed_dates: Set[date] = set()

    def refresh(self, day: date) -> None:
        """Evict dates before ``day`` and (re)load ``day`` and ``day + 1``.

        Loading tomorrow too covers a tick that lands on a date boundary.
        """
        for stale in [d for d in self._data if d < day]:
            del self._data[stale]
            self.failed_dates.discard(stale)

        logger.info(f"Loading twilight data for {day} from {type(self.source).__name__}")
        for target in (day, day + timedelta(days=1)):
            self._data[target] = self._load(target)

    def _load(self, day: date) -> Twilight:
        try:
            twilight = self.source.load(day)
        except Exception as e:
            logger.error(f"Unable to load twilight data for {day}, using defaults: {e}")
            self.failed_dates.add(day)
            return default_twilight(day)

        self.failed_dates.discard(day)
        logger.debug(f"Twilight for {day}: {twilight.as_dict()}")
        return twilight

    def lookup(self, day: date) -> Twilight:
        """Return cached anchors for ``day`` or the default set. Never does I/O."""
        twilight = self._data.get(day)
        if twilight is None:
            logger.error(f"No twilight data for {day}. Did we really load it?")
            return default_twilight(day)
        return twilight

    def is_loaded(self, day: date) -> bool:
        return day in self._data

    def dates(self) -> List[date]:
        return sorted(self._data)

    def close(self) -> None:
        self._data.clear()
        self.failed_dates.clear()
