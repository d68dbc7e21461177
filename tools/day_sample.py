"""Dimwit day sample.

Feeds zone documents through the recompute pipeline one minute at a time and
prints every level change, the way the service would log them over a day.
Running more than one day shows schedules being rebuilt as the anchors move.

Example usage:
    python tools/day_sample.py zones/family_room.yaml
    python tools/day_sample.py zones --date 2017-02-12 --days 2 --latitude 34.05 --longitude -118.24 --timezone America/Los_Angeles

The script can also be imported by tests to drive a day programmatically.
"""

from __future__ import annotations

import argparse
import logging
import os
import pathlib
import sys
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
DIMWIT_ROOT = REPO_ROOT / "dimwit"
if str(DIMWIT_ROOT) not in sys.path:
    sys.path.insert(0, str(DIMWIT_ROOT))

from almanac import AlmanacSource, AnchorCache, AstralSource, SunriseSunsetFileSource, default_twilight  # noqa: E402
from lightzones import ZoneDefinition, ZoneRegistry, load_zone_directory, load_zone_file  # noqa: E402
from recompute import RecomputePipeline  # noqa: E402
from timeframes import LightLevels  # noqa: E402
from twilight import ConfigurationError, Twilight  # noqa: E402

MINUTES_PER_DAY = 24 * 60

Emission = Tuple[str, LightLevels]


class DefaultAlmanac(AlmanacSource):
    """The fallback anchor set for every date."""

    def load(self, day: date) -> Twilight:
        return default_twilight(day)


def simulate_days(
    definitions: Iterable[ZoneDefinition],
    source: AlmanacSource,
    start: date,
    days: int = 1,
) -> List[Emission]:
    """Tick every minute of ``days`` days from ``start``; return the emissions in order."""
    cache = AnchorCache(source)
    cache.refresh(start)
    registry = ZoneRegistry(cache.lookup(start), definitions)
    pipeline = RecomputePipeline(registry, cache)

    emitted: List[Emission] = []
    pipeline.subscribe(lambda device_id, levels: emitted.append((device_id, levels)))

    try:
        for n in range(days):
            day = start + timedelta(days=n)
            midnight = datetime.combine(day, time.min)
            pipeline.on_date_tick(day)
            for minute in range(MINUTES_PER_DAY):
                pipeline.on_clock_tick(midnight + timedelta(minutes=minute))
    finally:
        cache.close()
    return emitted


def format_emissions(emitted: Iterable[Emission]) -> str:
    return "\n".join(
        f"{levels.timestamp:%Y-%m-%d %H:%M} [{device_id}]: {levels.low_level}/{levels.high_level}"
        for device_id, levels in emitted
    )


def load_definitions(path: str) -> List[ZoneDefinition]:
    if os.path.isdir(path):
        return load_zone_directory(path)
    return load_zone_file(path)


def create_source(args: argparse.Namespace) -> AlmanacSource:
    if args.almanac_dir:
        return SunriseSunsetFileSource(args.almanac_dir, args.timezone)
    if args.latitude is not None and args.longitude is not None:
        return AstralSource(args.latitude, args.longitude, args.timezone)
    return DefaultAlmanac()


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print a simulated day of Dimwit zone levels")
    parser.add_argument("zones", help="Zone document (.json/.yaml) or a directory of them")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="First day to simulate, YYYY-MM-DD (default: today)",
    )
    parser.add_argument("--days", type=int, default=1, help="Number of consecutive days")
    parser.add_argument("--almanac-dir", default=None, help="Directory of sunrise-sunset.org JSON files")
    parser.add_argument("--latitude", type=float, default=None)
    parser.add_argument("--longitude", type=float, default=None)
    parser.add_argument("--timezone", default="UTC", help="IANA zone the anchors are shown in")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        definitions = load_definitions(args.zones)
    except (ConfigurationError, OSError) as e:
        print(f"Cannot load zones from {args.zones}: {e}", file=sys.stderr)
        return 1

    emitted = simulate_days(definitions, create_source(args), args.date or date.today(), args.days)
    print(format_emissions(emitted))
    return 0


if __name__ == "__main__":
    sys.exit(main())
